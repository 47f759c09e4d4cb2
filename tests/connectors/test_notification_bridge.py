"""Tests for LocalNotificationBridge — the in-process notification source."""

import pytest

from autoledger.connectors.notification_bridge import NOTIFICATION_RECEIVED, LocalNotificationBridge
from autoledger.errors import PermissionDeniedError


@pytest.mark.asyncio
async def test_emit_reaches_listener_while_listening():
    bridge = LocalNotificationBridge()
    received = []
    bridge.add_listener(NOTIFICATION_RECEIVED, received.append)
    await bridge.start_listening()

    payload = bridge.emit("revolut", "Revolut", "Hai speso €4,00 da Bar", timestamp=123)

    assert received == [payload]
    assert payload.timestamp == 123
    assert await bridge.get_pending_notifications() == []


@pytest.mark.asyncio
async def test_emit_without_listener_is_parked_until_drained():
    bridge = LocalNotificationBridge()
    await bridge.start_listening()

    bridge.emit("revolut", "Revolut", "one")
    bridge.emit("revolut", "Revolut", "two")

    assert [p.text for p in await bridge.get_pending_notifications()] == ["one", "two"]
    assert await bridge.get_pending_notifications() == []


@pytest.mark.asyncio
async def test_removed_listener_stops_receiving():
    bridge = LocalNotificationBridge()
    received = []
    handle = bridge.add_listener(NOTIFICATION_RECEIVED, received.append)
    await bridge.start_listening()

    handle.remove()
    handle.remove()
    bridge.emit("paypal", "PayPal", "Hai ricevuto 5,00 EUR da Anna Verdi")

    assert received == []
    assert bridge.listener_count == 0
    assert len(await bridge.get_pending_notifications()) == 1


@pytest.mark.asyncio
async def test_cannot_listen_without_permission():
    bridge = LocalNotificationBridge(enabled=False, grant_on_request=False)
    with pytest.raises(PermissionDeniedError):
        await bridge.start_listening()

    assert bridge.listening is False
    assert await bridge.request_permission() is False


@pytest.mark.asyncio
async def test_request_permission_grants_access():
    bridge = LocalNotificationBridge(enabled=False)
    assert await bridge.is_enabled() is False
    assert await bridge.request_permission() is True
    assert await bridge.is_enabled() is True


@pytest.mark.asyncio
async def test_revoking_access_stops_listening():
    bridge = LocalNotificationBridge()
    await bridge.start_listening()
    bridge.set_enabled(False)
    assert bridge.listening is False


@pytest.mark.asyncio
async def test_teardown_stops_listening():
    bridge = LocalNotificationBridge()
    await bridge.start_listening()
    await bridge.teardown()
    assert bridge.listening is False


def test_unknown_event_rejected():
    with pytest.raises(ValueError):
        LocalNotificationBridge().add_listener("sms_received", lambda payload: None)

