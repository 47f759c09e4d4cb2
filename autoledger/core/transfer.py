"""
TransferClassifier — Flags possible transfers between the user's own accounts.

A parsed expense whose counterparty mentions another of the user's
accounts might be money moving between accounts, not spending. Such
transactions are held for mandatory confirmation:

    unclassified → parsed_as_expense → pending_transfer_confirmation
        → confirmed_transfer | confirmed_expense

Held candidates are persisted under ``transfer_confirmations`` so an
unanswered confirmation is re-surfaced in the next session. The oldest
held candidate is the *current* one shown to the user.
"""

from __future__ import annotations

import asyncio
import structlog

from autoledger.core.storage import KeyValueStore
from autoledger.errors import InvalidTransitionError, TransferAccountsInvalidError
from autoledger.models import (
    Account,
    AutoTransaction,
    TransactionType,
    TransferCandidate,
    TransferState,
)

logger = structlog.get_logger(__name__)

STORAGE_KEY = "transfer_confirmations"

_TRANSITIONS: dict[TransferState, frozenset[TransferState]] = {
    TransferState.UNCLASSIFIED: frozenset({TransferState.PARSED_AS_EXPENSE}),
    TransferState.PARSED_AS_EXPENSE: frozenset({TransferState.PENDING_TRANSFER_CONFIRMATION}),
    TransferState.PENDING_TRANSFER_CONFIRMATION: frozenset(
        {TransferState.CONFIRMED_TRANSFER, TransferState.CONFIRMED_EXPENSE}
    ),
    TransferState.CONFIRMED_TRANSFER: frozenset(),
    TransferState.CONFIRMED_EXPENSE: frozenset(),
}


def check_transition(current: TransferState, target: TransferState) -> None:
    """Raises ``InvalidTransitionError`` unless ``current → target`` is allowed."""
    if target not in _TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move transfer confirmation from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        )


def validate_accounts(account_from: str | None, account_to: str | None) -> None:
    """
    Raises:
        TransferAccountsInvalidError: An account is missing or both are the same.
    """
    if not account_from or not account_to:
        raise TransferAccountsInvalidError(
            "Select both the source and the destination account",
            account_from=account_from,
            account_to=account_to,
        )
    if account_from == account_to:
        raise TransferAccountsInvalidError(
            "Source and destination account must differ",
            account_from=account_from,
            account_to=account_to,
        )


class TransferClassifier:
    """Owns the ``transfer_confirmations`` key."""

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._lock = asyncio.Lock()

    # ── Heuristic ────────────────────────────────────────────────────

    @staticmethod
    def detect(
        tx: AutoTransaction,
        accounts: list[Account],
        *,
        source_account_id: str | None = None,
    ) -> Account | None:
        """
        Return the own account the counterparty seems to name, if any.

        Only expenses qualify, and the notification's own account is never
        a candidate destination.
        """
        if tx.type != TransactionType.EXPENSE:
            return None
        haystack = (tx.counterparty or "").lower()
        if not haystack:
            return None
        for account in accounts:
            if account.id == source_account_id:
                continue
            name = account.name.strip().lower()
            if name and name in haystack:
                return account
        return None

    # ── Persisted candidates ─────────────────────────────────────────

    async def list_candidates(self) -> list[TransferCandidate]:
        stored = await self._store.get(STORAGE_KEY, []) or []
        candidates = [TransferCandidate.model_validate(c) for c in stored]
        return sorted(candidates, key=lambda c: c.created_at)

    async def _save(self, candidates: list[TransferCandidate]) -> None:
        await self._store.set(STORAGE_KEY, [c.model_dump(mode="json") for c in candidates])

    async def get(self, transaction_id: str) -> TransferCandidate | None:
        for candidate in await self.list_candidates():
            if candidate.transaction_id == transaction_id:
                return candidate
        return None

    async def current(self) -> TransferCandidate | None:
        """The confirmation to show now (oldest held candidate)."""
        candidates = await self.list_candidates()
        return candidates[0] if candidates else None

    async def hold(
        self,
        tx: AutoTransaction,
        *,
        source_account_id: str | None,
        suggested_account_id: str | None,
    ) -> TransferCandidate:
        """Move a parsed expense into ``pending_transfer_confirmation``."""
        state = TransferState.UNCLASSIFIED
        for target in (TransferState.PARSED_AS_EXPENSE, TransferState.PENDING_TRANSFER_CONFIRMATION):
            check_transition(state, target)
            state = target

        candidate = TransferCandidate(
            transaction_id=tx.id,
            state=state,
            source_account_id=source_account_id,
            suggested_account_id=suggested_account_id,
            created_at=tx.created_at,
        )
        async with self._lock:
            candidates = [c for c in await self.list_candidates() if c.transaction_id != tx.id]
            candidates.append(candidate)
            await self._save(candidates)

        logger.info(
            "transfer_confirmation_needed",
            transaction_id=tx.id,
            source_account_id=source_account_id,
            suggested_account_id=suggested_account_id,
        )
        return candidate

    async def resolve(self, transaction_id: str, target: TransferState) -> TransferCandidate:
        """
        Apply the user's answer and drop the candidate from the held list.

        Raises:
            InvalidTransitionError: No held candidate, or ``target`` is not a
                confirmation outcome.
        """
        async with self._lock:
            candidates = await self.list_candidates()
            candidate = next((c for c in candidates if c.transaction_id == transaction_id), None)
            if candidate is None:
                raise InvalidTransitionError(
                    f"Transaction {transaction_id} is not awaiting transfer confirmation",
                    current=TransferState.UNCLASSIFIED.value,
                    target=target.value,
                )
            check_transition(candidate.state, target)
            await self._save([c for c in candidates if c.transaction_id != transaction_id])

        logger.info("transfer_confirmation_resolved", transaction_id=transaction_id, state=target.value)
        return candidate.model_copy(update={"state": target})

    async def release(self, transaction_id: str) -> bool:
        """Forget a candidate without resolving it (its transaction was ignored)."""
        async with self._lock:
            candidates = await self.list_candidates()
            kept = [c for c in candidates if c.transaction_id != transaction_id]
            if len(kept) == len(candidates):
                return False
            await self._save(kept)
        logger.info("transfer_confirmation_released", transaction_id=transaction_id)
        return True
