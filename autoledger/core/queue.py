"""
PendingTransactionQueue — Durable store of transactions awaiting disposition.

Backed by the ``pending_transactions`` key (a JSON object keyed by
transaction id), so an id is present at most once and the queue survives
restarts. Removal operations are idempotent: removing an id that is not
there is a no-op, never an error.
"""

from __future__ import annotations

import asyncio
import structlog

from autoledger.core.storage import KeyValueStore
from autoledger.models import AutoTransaction, now_ms

logger = structlog.get_logger(__name__)

STORAGE_KEY = "pending_transactions"


class PendingTransactionQueue:
    """Owns the ``pending_transactions`` key."""

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._lock = asyncio.Lock()

    async def _load(self) -> dict[str, dict]:
        return await self._store.get(STORAGE_KEY, {}) or {}

    async def add(self, tx: AutoTransaction) -> bool:
        """Insert ``tx``. Returns False if its id is already queued."""
        async with self._lock:
            items = await self._load()
            if tx.id in items:
                return False
            items[tx.id] = tx.model_dump(mode="json")
            await self._store.set(STORAGE_KEY, items)
        logger.info(
            "pending_added",
            transaction_id=tx.id,
            source_app=tx.source_app,
            amount=str(tx.amount),
            type=tx.type.value,
        )
        return True

    async def get(self, transaction_id: str) -> AutoTransaction | None:
        data = (await self._load()).get(transaction_id)
        return AutoTransaction.model_validate(data) if data is not None else None

    async def list_all(self) -> list[AutoTransaction]:
        """Every queued transaction, newest first."""
        items = [AutoTransaction.model_validate(d) for d in (await self._load()).values()]
        return sorted(items, key=lambda tx: tx.created_at, reverse=True)

    async def get_pending(self, *, exclude_id: str | None = None) -> list[AutoTransaction]:
        """Queued transactions for the general list, minus ``exclude_id``."""
        return [tx for tx in await self.list_all() if tx.id != exclude_id]

    async def remove(self, transaction_id: str) -> AutoTransaction | None:
        """Drop an item. Returns the removed transaction, or None if absent."""
        async with self._lock:
            items = await self._load()
            data = items.pop(transaction_id, None)
            if data is None:
                return None
            await self._store.set(STORAGE_KEY, items)
        logger.debug("pending_removed", transaction_id=transaction_id)
        return AutoTransaction.model_validate(data)

    async def ignore(self, transaction_id: str) -> bool:
        """Discard without ledger effect. True only on the call that removed it."""
        removed = await self.remove(transaction_id)
        if removed is None:
            logger.debug("pending_ignore_noop", transaction_id=transaction_id)
            return False
        logger.info("pending_ignored", transaction_id=transaction_id)
        return True

    async def cleanup_older_than(
        self, max_age_ms: int, *, now: int | None = None
    ) -> list[AutoTransaction]:
        """Remove items created more than ``max_age_ms`` ago. Returns them."""
        cutoff = (now if now is not None else now_ms()) - max_age_ms
        async with self._lock:
            items = await self._load()
            expired = {k: v for k, v in items.items() if v.get("created_at", 0) < cutoff}
            if not expired:
                return []
            await self._store.set(
                STORAGE_KEY, {k: v for k, v in items.items() if k not in expired}
            )
        logger.info("pending_cleanup", removed=len(expired))
        return [AutoTransaction.model_validate(v) for v in expired.values()]

    async def count(self) -> int:
        return len(await self._load())
