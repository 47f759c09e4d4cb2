"""
Structured Error Taxonomy — Typed exceptions for the AutoLedger engine.

Design principles:
  - Every error carries `retryable` + `error_code` for automated decisions
  - Hierarchy mirrors the pipeline layers: Parse → Persistence → Permission
    → Transfer confirmation → Ledger connector
  - Structured logging friendly: all errors serialize cleanly to JSON
"""

from __future__ import annotations

__all__ = [
    # Base
    "AutoLedgerError",
    # Parse layer
    "ParseError",
    "UnknownSourceError",
    "NoAmountMatchError",
    "InvalidAmountError",
    # Persistence layer
    "PersistenceError",
    # Bridge layer
    "PermissionDeniedError",
    # Disposition layer
    "TransactionNotFoundError",
    "TransferAccountsInvalidError",
    "InvalidTransitionError",
    # Connector layer
    "ConnectorError",
    "ConnectorUnavailableError",
    "ConnectorRateLimitError",
    "LedgerCommitError",
]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Base
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class AutoLedgerError(Exception):
    """Root exception for the AutoLedger engine.

    Attributes:
        retryable: If True, the caller should consider retrying the operation.
        error_code: Machine-readable code for dashboards and alerting.
    """

    retryable: bool = False
    error_code: str = "AUTOLEDGER_ERROR"

    def __init__(self, message: str, *, detail: str | None = None):
        self.detail = detail
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serialize for structured logging and UI surfaces."""
        return {
            "error_code": self.error_code,
            "message": str(self),
            "detail": self.detail,
            "retryable": self.retryable,
        }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Parse Layer — Expected noise from irrelevant notifications
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ParseError(AutoLedgerError):
    """Base for all notification parse failures. Recovered locally, never shown."""

    error_code = "PARSE_ERROR"
    reason = "parse_error"

    def __init__(self, message: str, *, source_app: str = "", **kwargs):
        self.source_app = source_app
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["source_app"] = self.source_app
        d["reason"] = self.reason
        return d


class UnknownSourceError(ParseError):
    """No bank pattern is registered for the notification's source app."""

    error_code = "UNKNOWN_SOURCE"
    reason = "unknown_source"


class NoAmountMatchError(ParseError):
    """The bank pattern's amount expression found nothing in the text."""

    error_code = "NO_AMOUNT_MATCH"
    reason = "no_amount_match"


class InvalidAmountError(ParseError):
    """An amount was captured but is zero, negative or unparsable."""

    error_code = "INVALID_AMOUNT"
    reason = "invalid_amount"

    def __init__(self, message: str, *, raw_amount: str = "", **kwargs):
        self.raw_amount = raw_amount
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["raw_amount"] = self.raw_amount
        return d


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Persistence Layer — Key-value store failures
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class PersistenceError(AutoLedgerError):
    """The local key-value store could not read or write a key."""

    retryable = True
    error_code = "PERSISTENCE_ERROR"

    def __init__(self, message: str, *, key: str = "", **kwargs):
        self.key = key
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["key"] = self.key
        return d


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Bridge Layer — Native notification access
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class PermissionDeniedError(AutoLedgerError):
    """Notification access is not granted (or the check itself failed)."""

    retryable = True
    error_code = "PERMISSION_DENIED"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Disposition Layer — User confirm / ignore / transfer choices
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TransactionNotFoundError(AutoLedgerError):
    """A pending transaction id is not (or no longer) in the queue."""

    error_code = "TRANSACTION_NOT_FOUND"

    def __init__(self, message: str, *, transaction_id: str = "", **kwargs):
        self.transaction_id = transaction_id
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["transaction_id"] = self.transaction_id
        return d


class TransferAccountsInvalidError(AutoLedgerError):
    """Transfer accounts missing or identical. Blocks confirmation."""

    error_code = "TRANSFER_ACCOUNTS_INVALID"

    def __init__(
        self,
        message: str,
        *,
        account_from: str | None = None,
        account_to: str | None = None,
        **kwargs,
    ):
        self.account_from = account_from
        self.account_to = account_to
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["account_from"] = self.account_from
        d["account_to"] = self.account_to
        return d


class InvalidTransitionError(AutoLedgerError):
    """A transfer confirmation was driven through an illegal state change."""

    error_code = "INVALID_TRANSITION"

    def __init__(self, message: str, *, current: str = "", target: str = "", **kwargs):
        self.current = current
        self.target = target
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["current"] = self.current
        d["target"] = self.target
        return d


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Connector Layer — Ledger / bridge integrations
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ConnectorError(AutoLedgerError):
    """Base for all connector/integration errors."""

    error_code = "CONNECTOR_ERROR"

    def __init__(self, message: str, *, connector_name: str | None = None, **kwargs):
        self.connector_name = connector_name or getattr(self, "connector_name", None)
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["connector_name"] = self.connector_name
        return d


class ConnectorUnavailableError(ConnectorError):
    """External service is unreachable or returning errors."""

    retryable = True
    error_code = "CONNECTOR_UNAVAILABLE"


class ConnectorRateLimitError(ConnectorError):
    """External service returned a rate limit error."""

    retryable = True
    error_code = "CONNECTOR_RATE_LIMIT"


class LedgerCommitError(ConnectorError):
    """The ledger rejected or failed to record a confirmed transaction."""

    error_code = "LEDGER_COMMIT_FAILED"

    def __init__(self, message: str, *, transaction_id: str = "", **kwargs):
        self.transaction_id = transaction_id
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["transaction_id"] = self.transaction_id
        return d
