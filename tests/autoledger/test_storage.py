import json
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import RedisError

from autoledger.core.storage import InMemoryStore, JsonFileStore, RedisStore, create_store
from autoledger.errors import PersistenceError


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  InMemoryStore
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.asyncio
async def test_memory_get_default():
    store = InMemoryStore()
    assert await store.get("missing", default=[]) == []


@pytest.mark.asyncio
async def test_memory_values_are_copied():
    store = InMemoryStore()
    value = {"items": [1, 2]}
    await store.set("k", value)
    value["items"].append(3)

    fetched = await store.get("k")
    fetched["items"].append(4)
    assert await store.get("k") == {"items": [1, 2]}


@pytest.mark.asyncio
async def test_memory_delete_and_keys():
    store = InMemoryStore(initial_state={"b": 1, "a": 2})
    assert await store.keys() == ["a", "b"]
    assert await store.delete("a") is True
    assert await store.delete("a") is False
    assert await store.keys() == ["b"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  JsonFileStore
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.asyncio
async def test_file_roundtrip_and_layout(tmp_path):
    store = JsonFileStore(tmp_path / "state")
    await store.set("saved_rules", [{"counterparty": "caffè"}])

    path = tmp_path / "state" / "saved_rules.json"
    assert json.loads(path.read_text(encoding="utf-8")) == [{"counterparty": "caffè"}]
    assert not (tmp_path / "state" / "saved_rules.json.tmp").exists()
    assert await JsonFileStore(tmp_path / "state").get("saved_rules") == [{"counterparty": "caffè"}]


@pytest.mark.asyncio
async def test_file_missing_key_returns_default(tmp_path):
    store = JsonFileStore(tmp_path)
    assert await store.get("nothing", default="fallback") == "fallback"
    assert await store.delete("nothing") is False


@pytest.mark.asyncio
async def test_file_corrupt_document_raises(tmp_path):
    (tmp_path / "pending_transactions.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError) as exc_info:
        await JsonFileStore(tmp_path).get("pending_transactions")
    assert exc_info.value.key == "pending_transactions"
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_file_unserializable_value_raises(tmp_path):
    with pytest.raises(PersistenceError):
        await JsonFileStore(tmp_path).set("bad", {"obj": object()})


@pytest.mark.asyncio
async def test_file_keys(tmp_path):
    store = JsonFileStore(tmp_path / "absent")
    assert await store.keys() == []
    await store.set("raw_events", [])
    await store.set("dedup", [])
    assert await store.keys() == ["dedup", "raw_events"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  RedisStore
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.fixture
def mock_redis_client():
    client = AsyncMock()
    client.keys.return_value = []
    return client


@pytest.fixture
def redis_store(mock_redis_client):
    with patch("autoledger.core.storage.redis.from_url", return_value=mock_redis_client):
        return RedisStore(redis_url="redis://localhost:6379/0")


@pytest.mark.asyncio
async def test_redis_get_missing(redis_store, mock_redis_client):
    mock_redis_client.get.return_value = None

    assert await redis_store.get("saved_rules", default=[]) == []
    mock_redis_client.get.assert_called_once_with("autoledger:saved_rules")


@pytest.mark.asyncio
async def test_redis_set_encodes_json(redis_store, mock_redis_client):
    await redis_store.set("saved_rules", [{"id": "r1"}])
    mock_redis_client.set.assert_called_once_with("autoledger:saved_rules", '[{"id": "r1"}]')

    mock_redis_client.get.return_value = '[{"id": "r1"}]'
    assert await redis_store.get("saved_rules") == [{"id": "r1"}]


@pytest.mark.asyncio
async def test_redis_delete(redis_store, mock_redis_client):
    mock_redis_client.delete.return_value = 0
    assert await redis_store.delete("gone") is False
    mock_redis_client.delete.assert_called_once_with("autoledger:gone")


@pytest.mark.asyncio
async def test_redis_keys_strip_prefix(redis_store, mock_redis_client):
    mock_redis_client.keys.return_value = ["autoledger:raw_events", "autoledger:dedup"]
    assert await redis_store.keys() == ["dedup", "raw_events"]
    mock_redis_client.keys.assert_called_once_with("autoledger:*")


@pytest.mark.asyncio
async def test_redis_failure_raises_persistence_error(redis_store, mock_redis_client):
    mock_redis_client.get.side_effect = RedisError("connection refused")
    with pytest.raises(PersistenceError):
        await redis_store.get("raw_events")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Factory
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_store_memory():
    assert isinstance(create_store("memory"), InMemoryStore)


def test_create_store_file():
    assert isinstance(create_store(" FILE "), JsonFileStore)


def test_create_store_unknown():
    with pytest.raises(ValueError):
        create_store("sqlite")
