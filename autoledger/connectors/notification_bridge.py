"""
NotificationBridge — Contract for the native notification listener.

The platform-specific bridge delivers banking-app notifications to the
engine. Implementations must support:
  - permission status and request (may return only after the user comes
    back from the OS settings screen)
  - start/stop of the listener service
  - ``notification_received`` listeners, removable through a handle
  - a catch-up queue of notifications missed while nobody was listening

``LocalNotificationBridge`` is an in-process implementation used by the
CLI and tests: notifications are injected with ``emit()``.
"""

from __future__ import annotations

import structlog
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Callable
from uuid import uuid4

from autoledger.connectors.base_connector import BaseConnector
from autoledger.errors import PermissionDeniedError
from autoledger.models import RawPayload, now_ms

logger = structlog.get_logger(__name__)

NOTIFICATION_RECEIVED = "notification_received"

NotificationListener = Callable[[RawPayload], None]


@dataclass
class ListenerHandle:
    """Returned by ``add_listener``; call ``remove()`` to detach."""

    event: str
    id: str = field(default_factory=lambda: uuid4().hex[:12])
    _remove: Callable[["ListenerHandle"], None] | None = field(default=None, repr=False)

    def remove(self) -> None:
        if self._remove is not None:
            self._remove(self)
            self._remove = None


class NotificationBridge(BaseConnector):
    """Abstract native bridge."""

    @abstractmethod
    async def is_enabled(self) -> bool:
        """Whether notification access is currently granted."""
        ...

    @abstractmethod
    async def request_permission(self) -> bool:
        """Ask the user for notification access. Returns the resulting status."""
        ...

    @abstractmethod
    async def start_listening(self) -> None:
        """
        Start the OS listener service.

        Raises:
            PermissionDeniedError: Notification access is not granted.
        """
        ...

    async def stop_listening(self) -> None:
        pass

    @abstractmethod
    def add_listener(self, event: str, callback: NotificationListener) -> ListenerHandle:
        ...

    @abstractmethod
    async def get_pending_notifications(self) -> list[RawPayload]:
        """Drain notifications delivered while no listener was attached."""
        ...

    async def teardown(self) -> None:
        await self.stop_listening()


class LocalNotificationBridge(NotificationBridge):
    """
    In-process bridge. ``emit()`` plays the role of the OS.

    Notifications emitted while not listening (or with no listener
    attached) are parked and returned by ``get_pending_notifications()``.
    """

    name = "local_bridge"
    description = "In-process notification source for development and tests"

    def __init__(self, *, enabled: bool = True, grant_on_request: bool = True):
        self._enabled = enabled
        self._grant_on_request = grant_on_request
        self._listening = False
        self._listeners: dict[str, tuple[str, NotificationListener]] = {}
        self._backlog: list[RawPayload] = []

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def set_enabled(self, enabled: bool) -> None:
        """Simulate the user toggling access in the OS settings."""
        self._enabled = enabled
        if not enabled:
            self._listening = False
        logger.info("bridge_permission_toggled", enabled=enabled)

    async def is_enabled(self) -> bool:
        return self._enabled

    async def request_permission(self) -> bool:
        if self._grant_on_request:
            self._enabled = True
        return self._enabled

    async def start_listening(self) -> None:
        if not self._enabled:
            raise PermissionDeniedError("Notification access is not granted")
        self._listening = True
        logger.info("bridge_listening")

    async def stop_listening(self) -> None:
        self._listening = False

    def add_listener(self, event: str, callback: NotificationListener) -> ListenerHandle:
        if event != NOTIFICATION_RECEIVED:
            raise ValueError(f"Unsupported bridge event: {event!r}")
        handle = ListenerHandle(event=event, _remove=self._detach)
        self._listeners[handle.id] = (event, callback)
        return handle

    def _detach(self, handle: ListenerHandle) -> None:
        self._listeners.pop(handle.id, None)

    def emit(
        self,
        app_id: str,
        title: str,
        text: str,
        timestamp: int | None = None,
    ) -> RawPayload:
        """Deliver a notification as the OS would."""
        payload = RawPayload(
            app_id=app_id,
            title=title,
            text=text,
            timestamp=timestamp if timestamp is not None else now_ms(),
        )
        if not (self._listening and self._listeners):
            self._backlog.append(payload)
            logger.debug("bridge_notification_parked", app_id=app_id, backlog=len(self._backlog))
            return payload
        for _, callback in list(self._listeners.values()):
            callback(payload)
        return payload

    async def get_pending_notifications(self) -> list[RawPayload]:
        pending, self._backlog = self._backlog, []
        return pending
