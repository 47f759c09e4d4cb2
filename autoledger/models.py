"""
Pydantic models for each stage of the notification → ledger pipeline.

Each stage produces a progressively richer model:
  RawPayload → RawNotificationEvent → ParsedTransaction → AutoTransaction
  → (user Disposition) → LedgerTransaction → LedgerEntry legs
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Literal
from uuid import uuid4
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator

from autoledger.errors import ParseError


def _new_id() -> str:
    return uuid4().hex


def now_ms() -> int:
    """Current wall-clock time as a millisecond epoch."""
    return int(time.time() * 1000)


def normalize_text(text: str) -> str:
    """Lower-case, trim and collapse whitespace (rule storage & matching form)."""
    return " ".join(text.lower().split())


# ── Enumerations ─────────────────────────────────────────────────────


class RawEventStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    IGNORED = "ignored"
    ERROR = "error"


class TransactionType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class ParseFailureReason(str, Enum):
    UNKNOWN_SOURCE = "unknown_source"
    NO_AMOUNT_MATCH = "no_amount_match"
    INVALID_AMOUNT = "invalid_amount"


class MatchTier(IntEnum):
    """Rule match strength. The value is the confidence score."""

    NONE = 0
    PARTIAL = 75
    EXACT = 100


class TransferState(str, Enum):
    UNCLASSIFIED = "unclassified"
    PARSED_AS_EXPENSE = "parsed_as_expense"
    PENDING_TRANSFER_CONFIRMATION = "pending_transfer_confirmation"
    CONFIRMED_TRANSFER = "confirmed_transfer"
    CONFIRMED_EXPENSE = "confirmed_expense"


LedgerKind = Literal["expense", "income", "transfer"]


# ── External collaborators ───────────────────────────────────────────


class Account(BaseModel):
    """A user account owned by the external ledger (read-only here)."""

    id: str
    name: str


# ── Stage 0: Raw capture (audit trail) ───────────────────────────────


class RawPayload(BaseModel):
    """Notification exactly as delivered by the native bridge."""

    app_id: str
    title: str = ""
    text: str = ""
    timestamp: int = Field(default_factory=now_ms, description="OS delivery time (ms epoch).")


class RawNotificationEvent(BaseModel):
    """Persisted copy of a received notification. Never deleted."""

    id: str = Field(default_factory=_new_id)
    source: Literal["notification"] = "notification"
    payload: RawPayload
    status: RawEventStatus = RawEventStatus.PENDING
    transaction_id: str | None = None
    error_reason: str | None = None
    ignore_reason: str | None = None
    created_at: int = Field(default_factory=now_ms)


# ── Stage 1: Parser output ───────────────────────────────────────────


class ParsedTransaction(BaseModel):
    """Structured data extracted from a bank notification. Ephemeral."""

    amount: Decimal = Field(gt=0)
    currency: str = "EUR"
    description: str
    counterparty: str | None = Field(
        default=None,
        description="Merchant / person captured by the bank's counterparty expression.",
    )
    type: Literal["expense", "income"]
    source_app: str
    account_name: str = Field(default="", description="Display name of the bank's own account.")
    raw_text: str
    timestamp: int = Field(default_factory=now_ms)


class ParseFailure(BaseModel):
    """Value form of a ParseError, returned by ``NotificationParser.parse``."""

    reason: ParseFailureReason
    source_app: str = ""
    message: str = ""
    detail: str | None = None

    @classmethod
    def from_error(cls, error: ParseError) -> "ParseFailure":
        return cls(
            reason=ParseFailureReason(error.reason),
            source_app=error.source_app,
            message=str(error),
            detail=error.detail,
        )


# ── Stage 2: Rule engine ─────────────────────────────────────────────


class SavedRule(BaseModel):
    """User-approved mapping from a counterparty to a transaction type."""

    id: str = Field(default_factory=_new_id)
    app_name: str
    counterparty: str
    type: TransactionType
    account_from: str | None = None
    account_to: str | None = None
    created_at: int = Field(default_factory=now_ms)

    @field_validator("app_name")
    @classmethod
    def _lower_app(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("counterparty")
    @classmethod
    def _normalize_counterparty(cls, v: str) -> str:
        normalized = normalize_text(v)
        if not normalized:
            raise ValueError("counterparty must not be empty")
        return normalized


class RuleMatch(BaseModel):
    rule: SavedRule | None = None
    tier: MatchTier = MatchTier.NONE

    @property
    def confidence(self) -> int:
        return int(self.tier)


# ── Stage 3: Pending queue item ──────────────────────────────────────


class AutoTransaction(BaseModel):
    """Parsed transaction awaiting user disposition in the pending queue."""

    id: str = Field(default_factory=_new_id)
    source_app: str
    description: str
    counterparty: str | None = None
    amount: Decimal = Field(gt=0)
    currency: str = "EUR"
    type: TransactionType
    created_at: int = Field(default_factory=now_ms)
    date: str = ""
    time: str = ""
    account_name: str = ""
    account_id: str | None = None
    account_from: str | None = None
    account_to: str | None = None
    raw_event_id: str | None = None
    raw_text: str = ""

    # Rule engine outcome
    rule_id: str | None = None
    rule_confidence: int = 0

    # Transfer heuristic outcome
    requires_confirmation: bool = False
    suggested_account_id: str | None = None

    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_parsed(
        cls,
        parsed: ParsedTransaction,
        *,
        tz: str = "UTC",
        raw_event_id: str | None = None,
    ) -> "AutoTransaction":
        """Build a queue item; date/time are derived from the OS timestamp."""
        moment = datetime.fromtimestamp(parsed.timestamp / 1000, tz=timezone.utc)
        local = moment.astimezone(ZoneInfo(tz))
        return cls(
            source_app=parsed.source_app,
            description=parsed.description,
            counterparty=parsed.counterparty,
            amount=parsed.amount,
            currency=parsed.currency,
            type=TransactionType(parsed.type),
            created_at=parsed.timestamp,
            date=local.strftime("%Y-%m-%d"),
            time=local.strftime("%H:%M"),
            account_name=parsed.account_name,
            raw_event_id=raw_event_id,
            raw_text=parsed.raw_text,
        )


class Disposition(BaseModel):
    """The user's final decision for a pending transaction."""

    type: LedgerKind
    account_id: str | None = None
    account_from: str | None = None
    account_to: str | None = None
    category: str | None = None
    save_rule: bool = False


# ── Stage 4: Ledger commit ───────────────────────────────────────────


class LedgerEntry(BaseModel):
    """One signed leg as recorded in an account."""

    account_id: str
    amount: Decimal
    kind: LedgerKind
    description: str
    date: str
    link_id: str


class LedgerTransaction(BaseModel):
    """Payload of the single ``addTransaction`` call to the ledger."""

    id: str = Field(default_factory=_new_id)
    kind: LedgerKind
    amount: Decimal = Field(gt=0)
    currency: str = "EUR"
    description: str
    date: str
    time: str = ""
    account_id: str
    to_account_id: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    source_transaction_id: str | None = None

    def entries(self) -> list[LedgerEntry]:
        """Signed legs; a transfer yields a linked debit/credit pair."""
        if self.kind == "transfer":
            return [
                LedgerEntry(
                    account_id=self.account_id,
                    amount=-self.amount,
                    kind="transfer",
                    description=self.description,
                    date=self.date,
                    link_id=self.id,
                ),
                LedgerEntry(
                    account_id=self.to_account_id or "",
                    amount=self.amount,
                    kind="transfer",
                    description=self.description,
                    date=self.date,
                    link_id=self.id,
                ),
            ]
        sign = -1 if self.kind == "expense" else 1
        return [
            LedgerEntry(
                account_id=self.account_id,
                amount=self.amount * sign,
                kind=self.kind,
                description=self.description,
                date=self.date,
                link_id=self.id,
            )
        ]


# ── Transfer confirmation sub-flow ───────────────────────────────────


class TransferCandidate(BaseModel):
    """A pending transaction held for mandatory transfer confirmation."""

    transaction_id: str
    state: TransferState = TransferState.PENDING_TRANSFER_CONFIRMATION
    source_account_id: str | None = None
    suggested_account_id: str | None = None
    created_at: int = Field(default_factory=now_ms)
