"""
AutoLedger — Notification-driven transaction extraction & reconciliation.

Turns banking-app notifications into deduplicated, user-confirmable
transactions, learns classification rules from user decisions, and
commits confirmed items to the user's ledger.
"""

from autoledger.core.orchestrator import ReconciliationOrchestrator
from autoledger.models import (
    Account,
    AutoTransaction,
    Disposition,
    LedgerTransaction,
    ParsedTransaction,
    ParseFailure,
    RawPayload,
    SavedRule,
)
from autoledger.parsing import BankPatternLibrary, NotificationParser
from autoledger.version import VERSION

__version__ = VERSION

__all__ = [
    "ReconciliationOrchestrator",
    "NotificationParser",
    "BankPatternLibrary",
    # Models
    "Account",
    "AutoTransaction",
    "Disposition",
    "LedgerTransaction",
    "ParsedTransaction",
    "ParseFailure",
    "RawPayload",
    "SavedRule",
]
