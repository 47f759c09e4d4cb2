"""
Connectors — The engine's external collaborators.

  - NotificationBridge: native notification access (+ in-process LocalNotificationBridge)
  - LedgerConnector: the single addTransaction write path (+ in-memory and HTTP ledgers)
"""

from autoledger.connectors.base_connector import BaseConnector
from autoledger.connectors.ledger import (
    HttpLedgerConnector,
    InMemoryLedger,
    LedgerConnector,
    create_ledger,
)
from autoledger.connectors.notification_bridge import (
    NOTIFICATION_RECEIVED,
    ListenerHandle,
    LocalNotificationBridge,
    NotificationBridge,
)

__all__ = [
    "BaseConnector",
    "LedgerConnector",
    "InMemoryLedger",
    "HttpLedgerConnector",
    "create_ledger",
    "NotificationBridge",
    "LocalNotificationBridge",
    "ListenerHandle",
    "NOTIFICATION_RECEIVED",
]
