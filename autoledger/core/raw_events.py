"""
RawEventStore — Append-only audit trail of received notifications.

Every notification is saved here before parsing. An event starts
``pending`` and is resolved exactly once to ``processed``, ``ignored`` or
``error``; events are never deleted and can be re-parsed later.
"""

from __future__ import annotations

import asyncio
import structlog

from autoledger.core.storage import KeyValueStore
from autoledger.errors import InvalidTransitionError
from autoledger.models import RawEventStatus, RawNotificationEvent, RawPayload

logger = structlog.get_logger(__name__)

STORAGE_KEY = "raw_events"


class RawEventStore:
    """Owns the ``raw_events`` key. Written only by the orchestrator."""

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._lock = asyncio.Lock()

    async def _load(self) -> list[dict]:
        return await self._store.get(STORAGE_KEY, []) or []

    async def save(self, payload: RawPayload) -> RawNotificationEvent:
        event = RawNotificationEvent(payload=payload)
        async with self._lock:
            events = await self._load()
            events.append(event.model_dump(mode="json"))
            await self._store.set(STORAGE_KEY, events)
        logger.debug("raw_event_saved", raw_event_id=event.id, app_id=payload.app_id)
        return event

    async def get(self, event_id: str) -> RawNotificationEvent | None:
        for data in await self._load():
            if data.get("id") == event_id:
                return RawNotificationEvent.model_validate(data)
        return None

    async def list_events(
        self, *, status: RawEventStatus | None = None
    ) -> list[RawNotificationEvent]:
        events = [RawNotificationEvent.model_validate(d) for d in await self._load()]
        if status is not None:
            events = [e for e in events if e.status == status]
        return events

    # ── Resolution (exactly once per event) ──────────────────────────

    async def mark_processed(
        self, event_id: str, transaction_id: str
    ) -> RawNotificationEvent | None:
        return await self._resolve(
            event_id, RawEventStatus.PROCESSED, transaction_id=transaction_id
        )

    async def mark_ignored(self, event_id: str, reason: str) -> RawNotificationEvent | None:
        return await self._resolve(event_id, RawEventStatus.IGNORED, ignore_reason=reason)

    async def mark_error(self, event_id: str, reason: str) -> RawNotificationEvent | None:
        return await self._resolve(event_id, RawEventStatus.ERROR, error_reason=reason)

    async def _resolve(
        self, event_id: str, status: RawEventStatus, **fields
    ) -> RawNotificationEvent | None:
        """
        Move a pending event to its final status.

        Returns None when the event is unknown (its save may have failed).

        Raises:
            InvalidTransitionError: The event was already resolved.
        """
        async with self._lock:
            events = await self._load()
            for index, data in enumerate(events):
                if data.get("id") != event_id:
                    continue
                event = RawNotificationEvent.model_validate(data)
                if event.status != RawEventStatus.PENDING:
                    raise InvalidTransitionError(
                        f"Raw event {event_id} already {event.status.value}",
                        current=event.status.value,
                        target=status.value,
                    )
                resolved = event.model_copy(update={"status": status, **fields})
                events[index] = resolved.model_dump(mode="json")
                await self._store.set(STORAGE_KEY, events)
                logger.info("raw_event_resolved", raw_event_id=event_id, status=status.value)
                return resolved

        logger.warning("raw_event_missing", raw_event_id=event_id, status=status.value)
        return None
