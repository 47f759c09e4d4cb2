"""
KeyValueStore — Local persisted state for the reconciliation engine.

Every durable collection (dedup hashes, saved rules, raw events, pending
queue, transfer confirmations) lives under a single key holding a
JSON-serializable value.  Each key is owned by exactly one component.

Three implementations:
  - InMemoryStore: Dict-backed, no persistence (dev/test).
  - JsonFileStore: One ``{key}.json`` file per key, atomic replace (default).
  - RedisStore: redis-py asyncio, keys prefixed per installation.

Backend failures are raised as ``PersistenceError``.
"""

from __future__ import annotations

import abc
import asyncio
import copy
import json
import os
from pathlib import Path
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError
import structlog

from autoledger.errors import PersistenceError

logger = structlog.get_logger(__name__)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  KeyValueStore — Abstract contract
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class KeyValueStore(abc.ABC):
    """
    Abstract contract for the engine's local storage.

    Not transactional: callers that need check-then-write semantics on a
    key serialize access themselves (see ``DeduplicationCache``).
    """

    @abc.abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a value by key. Returns *default* if missing."""
        ...

    @abc.abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under *key*."""
        ...

    @abc.abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove *key*. Returns True if the key existed, False otherwise."""
        ...

    @abc.abstractmethod
    async def keys(self) -> list[str]:
        """List stored keys."""
        ...


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  InMemoryStore — Dict-backed implementation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class InMemoryStore(KeyValueStore):
    """
    In-memory store backed by a plain ``dict``.

    Values are deep-copied on the way in and out so callers can't mutate
    internal state, which mirrors the serialization boundary of the
    durable backends.
    """

    def __init__(self, *, initial_state: dict[str, Any] | None = None):
        self._store: dict[str, Any] = copy.deepcopy(initial_state or {})

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._store:
            return default
        return copy.deepcopy(self._store[key])

    async def set(self, key: str, value: Any) -> None:
        self._store[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> bool:
        if key in self._store:
            del self._store[key]
            return True
        return False

    async def keys(self) -> list[str]:
        return sorted(self._store)

    def __repr__(self) -> str:
        return f"<InMemoryStore keys={len(self._store)}>"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  JsonFileStore — Directory of JSON documents
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class JsonFileStore(KeyValueStore):
    """
    Durable local store: each key is written to ``<root>/<key>.json``.

    Writes go to a temporary sibling first and are moved into place with
    ``os.replace`` so a crash never leaves a half-written document.
    File I/O runs in a worker thread to keep the event loop free.
    """

    def __init__(self, root: str | Path):
        self._root = Path(root)

    def _path(self, key: str) -> Path:
        return self._root / f"{key}.json"

    async def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        try:
            text = await asyncio.to_thread(_read_text, path)
        except FileNotFoundError:
            return default
        except OSError as exc:
            raise PersistenceError(f"Cannot read '{key}': {exc}", key=key) from exc
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise PersistenceError(
                f"Corrupt document for '{key}'", key=key, detail=str(exc)
            ) from exc

    async def set(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Value for '{key}' is not JSON-serializable", key=key) from exc
        try:
            await asyncio.to_thread(_atomic_write, self._path(key), payload)
        except OSError as exc:
            raise PersistenceError(f"Cannot write '{key}': {exc}", key=key) from exc

    async def delete(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._path(key).unlink)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise PersistenceError(f"Cannot delete '{key}': {exc}", key=key) from exc
        return True

    async def keys(self) -> list[str]:
        if not self._root.exists():
            return []
        return sorted(p.stem for p in self._root.glob("*.json"))

    def __repr__(self) -> str:
        return f"<JsonFileStore root={str(self._root)!r}>"


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _atomic_write(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".json.tmp")
    tmp.write_text(payload, encoding="utf-8")
    os.replace(tmp, path)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  RedisStore — Redis-backed implementation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class RedisStore(KeyValueStore):
    """
    Redis-backed store for hosts that already run Redis.

    Keys are prefixed to isolate installations sharing a database.
    Dependencies: `redis` (redis-py async module).
    """

    def __init__(self, redis_url: str, prefix: str = "autoledger:"):
        self._client = redis.from_url(redis_url, decode_responses=True)
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str, default: Any = None) -> Any:
        try:
            value = await self._client.get(self._key(key))
        except RedisError as exc:
            raise PersistenceError(f"Cannot read '{key}': {exc}", key=key) from exc
        if value is None:
            return default
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise PersistenceError(
                f"Corrupt document for '{key}'", key=key, detail=str(exc)
            ) from exc

    async def set(self, key: str, value: Any) -> None:
        try:
            await self._client.set(self._key(key), json.dumps(value, ensure_ascii=False))
        except RedisError as exc:
            raise PersistenceError(f"Cannot write '{key}': {exc}", key=key) from exc

    async def delete(self, key: str) -> bool:
        try:
            deleted = await self._client.delete(self._key(key))
        except RedisError as exc:
            raise PersistenceError(f"Cannot delete '{key}': {exc}", key=key) from exc
        return deleted > 0

    async def keys(self) -> list[str]:
        try:
            raw = await self._client.keys(f"{self._prefix}*")
        except RedisError as exc:
            raise PersistenceError(f"Cannot list keys: {exc}") from exc
        prefix_len = len(self._prefix)
        return sorted(k[prefix_len:] for k in raw)

    def __repr__(self) -> str:
        return f"<RedisStore prefix={self._prefix!r}>"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Factory
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def create_store(backend: str | None = None) -> KeyValueStore:
    """Create a store for the configured ``storage_backend``.

    | storage_backend | Store          |
    |-----------------|----------------|
    | ``memory``      | InMemoryStore  |
    | ``file``        | JsonFileStore  |
    | ``redis``       | RedisStore     |

    Raises:
        ValueError: If the backend name is unknown.
    """
    from autoledger.config import get_settings

    settings = get_settings()
    backend = (backend or settings.storage_backend).lower().strip()
    logger.info("storage_backend_selected", backend=backend)

    if backend == "memory":
        return InMemoryStore()
    if backend == "file":
        return JsonFileStore(settings.storage_path)
    if backend == "redis":
        return RedisStore(settings.redis_url)

    raise ValueError(f"Unknown storage backend: {backend!r}")
