"""
Tests for autoledger.core.bus — pipeline events for UI subscribers.

Covers:
  - Event: defaults
  - EventBus: subscribe, publish, unsubscribe, wildcards
  - Failing subscribers are isolated from the publisher and each other
  - Singleton: get_event_bus / reset_event_bus
"""

import pytest
from unittest.mock import AsyncMock

from autoledger.core.bus import Event, get_event_bus, reset_event_bus


class TestEvent:
    def test_creation_with_defaults(self):
        msg = Event(topic="transaction.pending")
        assert msg.sender == ""
        assert msg.payload == {}
        assert msg.timestamp
        assert len(msg.correlation_id) == 16


class TestPublishSubscribe:
    @pytest.mark.asyncio
    async def test_publish_subscribe_basic(self, bus):
        handler = AsyncMock()
        bus.subscribe("transaction.pending", handler)

        msg = await bus.publish("transaction.pending", {"id": "tx-1"}, sender="orchestrator")

        handler.assert_awaited_once_with(msg)
        assert msg.payload == {"id": "tx-1"}
        assert msg.sender == "orchestrator"

    @pytest.mark.asyncio
    async def test_correlation_id_passthrough(self, bus):
        msg = await bus.publish("notification.received", correlation_id="raw-1")
        assert msg.correlation_id == "raw-1"

    @pytest.mark.asyncio
    async def test_star_wildcard(self, bus):
        handler = AsyncMock()
        bus.subscribe("transaction.*", handler)

        await bus.publish("transaction.confirmed")
        await bus.publish("transaction.ignored")
        await bus.publish("notification.received")

        assert [c.args[0].topic for c in handler.await_args_list] == [
            "transaction.confirmed",
            "transaction.ignored",
        ]

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self, bus):
        msg = await bus.publish("pending.refreshed", {"count": 0})
        assert msg.topic == "pending.refreshed"

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, bus):
        handler = AsyncMock()
        sub = bus.subscribe("pending.refreshed", handler)
        assert bus.unsubscribe(sub) is True
        assert bus.unsubscribe(sub) is False

        await bus.publish("pending.refreshed")
        handler.assert_not_awaited()
        assert bus.subscription_count == 0

    @pytest.mark.asyncio
    async def test_handler_error_does_not_block_others(self, bus):
        failing = AsyncMock(side_effect=RuntimeError("ui crashed"))
        healthy = AsyncMock()
        bus.subscribe("permission.changed", failing)
        bus.subscribe("permission.changed", healthy)

        await bus.publish("permission.changed", {"enabled": True})

        failing.assert_awaited_once()
        healthy.assert_awaited_once()

    def test_clear(self, bus):
        bus.subscribe("*", AsyncMock())
        bus.clear()
        assert bus.subscription_count == 0


class TestSingleton:
    def test_get_event_bus_returns_same_instance(self):
        assert get_event_bus() is get_event_bus()

    def test_reset_event_bus_provides_fresh_instance(self):
        first = get_event_bus()
        reset_event_bus()
        assert get_event_bus() is not first
