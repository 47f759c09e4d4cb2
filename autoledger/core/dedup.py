"""
DeduplicationCache — Bounded, persisted record of already-seen notifications.

The hash covers ``source_app|title|text`` and deliberately leaves out the
delivery timestamp: the OS re-delivers identical notifications with fresh
timestamps. The most recent ``capacity`` hashes are kept (FIFO eviction)
under the ``processed_raw_notifications`` key.
"""

from __future__ import annotations

import asyncio
import hashlib
import structlog
from collections import deque

from autoledger.core.storage import KeyValueStore

logger = structlog.get_logger(__name__)

STORAGE_KEY = "processed_raw_notifications"
DEFAULT_CAPACITY = 100


def content_hash(source_app: str, title: str, text: str) -> str:
    """128-bit hex digest of the notification content."""
    key = f"{source_app}|{title}|{text}"
    return hashlib.md5(key.encode("utf-8")).hexdigest()


class DeduplicationCache:
    """
    Ring buffer of content hashes, loaded lazily from the store.

    The orchestrator's single consumer task makes check-then-insert one
    logical step per hash; writes are additionally serialized by a lock.
    """

    def __init__(self, store: KeyValueStore, *, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._store = store
        self._capacity = capacity
        self._hashes: deque[str] | None = None
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    async def _load(self) -> deque[str]:
        if self._hashes is None:
            stored = await self._store.get(STORAGE_KEY, [])
            self._hashes = deque(stored or [], maxlen=self._capacity)
        return self._hashes

    async def should_process(self, digest: str) -> bool:
        """True if ``digest`` has not been seen among the recent hashes."""
        hashes = await self._load()
        return digest not in hashes

    async def mark_processed(self, digest: str) -> None:
        """Append ``digest`` (no-op if present) and persist the buffer."""
        async with self._lock:
            await self._mark_locked(digest)

    async def _mark_locked(self, digest: str) -> None:
        hashes = await self._load()
        if digest in hashes:
            return
        hashes.append(digest)
        await self._store.set(STORAGE_KEY, list(hashes))
        logger.debug("dedup_marked", hash=digest, size=len(hashes))

    async def recent(self) -> list[str]:
        """Stored hashes, oldest first."""
        return list(await self._load())

    async def clear(self) -> None:
        async with self._lock:
            self._hashes = deque(maxlen=self._capacity)
            await self._store.delete(STORAGE_KEY)
