"""
EventBus — Pipeline events for UI collaborators.

The orchestrator announces every state change here; the pending list,
the transfer confirmation dialog and the permission toggle subscribe
instead of reading orchestrator internals.

Topics (``domain.verb``):
  - ``notification.received``, ``notification.ignored``
  - ``transaction.pending``, ``transaction.confirmed``, ``transaction.ignored``
  - ``transfer.confirmation_needed``
  - ``pending.refreshed``, ``permission.changed``

Subscriptions take ``fnmatch`` patterns, so ``"transaction.*"`` follows
every transaction outcome. A failing subscriber is logged and skipped:
it never reaches the orchestrator or the other subscribers.

Usage::

    bus = get_event_bus()
    sub = bus.subscribe("transaction.*", on_transaction)
    ...
    bus.unsubscribe(sub)
"""

import asyncio
import fnmatch
import structlog
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

from pydantic import BaseModel, Field
from opentelemetry import trace

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class Event(BaseModel):
    """
    One published pipeline event.

    Attributes:
        topic: Topic it was published to.
        sender: Publishing component.
        payload: JSON-friendly body (usually a dumped model).
        timestamp: UTC ISO-8601 publication time.
        correlation_id: Transaction id the event belongs to, when there is one.
    """

    topic: str
    sender: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: str = Field(default_factory=lambda: uuid4().hex[:16])


EventHandler = Callable[[Event], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by ``subscribe()``; pass it to ``unsubscribe()``."""

    topic_pattern: str
    handler: EventHandler = field(repr=False)
    id: str = field(default_factory=lambda: uuid4().hex[:12])


class EventBus:
    """In-memory fan-out of pipeline events to async subscribers."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}

    def subscribe(self, topic_pattern: str, handler: EventHandler) -> Subscription:
        sub = Subscription(topic_pattern=topic_pattern, handler=handler)
        self._subscriptions[sub.id] = sub
        logger.debug("bus_subscribed", sub_id=sub.id, topic_pattern=topic_pattern)
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Returns ``True`` if the subscription was still active."""
        return self._subscriptions.pop(subscription.id, None) is not None

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def publish(
        self,
        topic: str,
        payload: dict[str, Any] | None = None,
        *,
        sender: str = "",
        correlation_id: str | None = None,
    ) -> Event:
        """Deliver an event to every matching subscriber concurrently."""
        event = Event(
            topic=topic,
            sender=sender,
            payload=payload or {},
            **({"correlation_id": correlation_id} if correlation_id else {}),
        )
        handlers = [
            sub.handler
            for sub in list(self._subscriptions.values())
            if fnmatch.fnmatch(topic, sub.topic_pattern)
        ]

        with tracer.start_as_current_span(
            "bus.publish",
            attributes={"topic": topic, "sender": sender, "subscribers": len(handlers)},
        ) as span:
            if handlers:
                outcomes = await asyncio.gather(*(self._deliver(h, event) for h in handlers))
                span.set_attribute("failed", outcomes.count(False))
        return event

    @staticmethod
    async def _deliver(handler: EventHandler, event: Event) -> bool:
        try:
            await handler(event)
        except Exception as exc:
            logger.error(
                "bus_handler_error",
                topic=event.topic,
                handler=getattr(handler, "__name__", repr(handler)),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False
        return True

    def clear(self) -> None:
        self._subscriptions.clear()

    def __repr__(self) -> str:
        return f"EventBus(subscriptions={self.subscription_count})"


# ── Singleton ────────────────────────────────────────────────────────

_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Process-wide bus used when the orchestrator is not given one."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Drop the process-wide bus (tests)."""
    global _event_bus
    if _event_bus is not None:
        _event_bus.clear()
    _event_bus = None
