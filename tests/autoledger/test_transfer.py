"""
Tests for autoledger.core.transfer — transfer heuristic and confirmation states.
"""

from decimal import Decimal

import pytest

from autoledger.core.transfer import TransferClassifier, check_transition, validate_accounts
from autoledger.errors import InvalidTransitionError, TransferAccountsInvalidError
from autoledger.models import AutoTransaction, TransactionType, TransferState


def _tx(counterparty: str | None, type=TransactionType.EXPENSE, created_at: int = 1) -> AutoTransaction:
    return AutoTransaction(
        source_app="unicredit",
        description=counterparty or "Transazione",
        counterparty=counterparty,
        amount=Decimal("100.00"),
        type=type,
        created_at=created_at,
    )


class TestDetect:
    def test_counterparty_naming_other_account(self, accounts):
        found = TransferClassifier.detect(
            _tx("Ricarica REVOLUT**4821"), accounts, source_account_id="acc-unicredit"
        )
        assert found.id == "acc-revolut"

    def test_own_source_account_is_not_a_destination(self, accounts):
        found = TransferClassifier.detect(
            _tx("UniCredit commissioni"), accounts, source_account_id="acc-unicredit"
        )
        assert found is None

    def test_income_never_flagged(self, accounts):
        assert TransferClassifier.detect(_tx("Revolut", type=TransactionType.INCOME), accounts) is None

    def test_unrelated_merchant(self, accounts):
        assert TransferClassifier.detect(_tx("Esselunga"), accounts) is None

    def test_missing_counterparty(self, accounts):
        assert TransferClassifier.detect(_tx(None), accounts) is None


class TestValidation:
    @pytest.mark.parametrize("account_from, account_to", [(None, "b"), ("a", ""), ("a", "a")])
    def test_invalid_accounts(self, account_from, account_to):
        with pytest.raises(TransferAccountsInvalidError) as exc_info:
            validate_accounts(account_from, account_to)
        assert exc_info.value.to_dict()["error_code"] == "TRANSFER_ACCOUNTS_INVALID"

    def test_valid_accounts(self):
        validate_accounts("a", "b")

    def test_transitions(self):
        check_transition(TransferState.PENDING_TRANSFER_CONFIRMATION, TransferState.CONFIRMED_TRANSFER)
        check_transition(TransferState.PENDING_TRANSFER_CONFIRMATION, TransferState.CONFIRMED_EXPENSE)
        with pytest.raises(InvalidTransitionError):
            check_transition(TransferState.CONFIRMED_EXPENSE, TransferState.CONFIRMED_TRANSFER)
        with pytest.raises(InvalidTransitionError):
            check_transition(TransferState.UNCLASSIFIED, TransferState.CONFIRMED_TRANSFER)


class TestHeldCandidates:
    @pytest.mark.asyncio
    async def test_hold_and_current(self, store):
        classifier = TransferClassifier(store)
        older, newer = _tx("Revolut", created_at=1), _tx("PayPal", created_at=2)
        await classifier.hold(newer, source_account_id="acc-unicredit", suggested_account_id="acc-paypal")
        candidate = await classifier.hold(
            older, source_account_id="acc-unicredit", suggested_account_id="acc-revolut"
        )

        assert candidate.state == TransferState.PENDING_TRANSFER_CONFIRMATION
        assert (await classifier.current()).transaction_id == older.id
        assert len(await classifier.list_candidates()) == 2

    @pytest.mark.asyncio
    async def test_resolve_removes_candidate(self, store):
        classifier = TransferClassifier(store)
        tx = _tx("Revolut")
        await classifier.hold(tx, source_account_id="acc-unicredit", suggested_account_id="acc-revolut")

        resolved = await classifier.resolve(tx.id, TransferState.CONFIRMED_TRANSFER)
        assert resolved.state == TransferState.CONFIRMED_TRANSFER
        assert await classifier.current() is None

    @pytest.mark.asyncio
    async def test_resolve_unknown_raises(self, store):
        with pytest.raises(InvalidTransitionError):
            await TransferClassifier(store).resolve("missing", TransferState.CONFIRMED_EXPENSE)

    @pytest.mark.asyncio
    async def test_unanswered_candidate_survives_restart(self, store):
        tx = _tx("Revolut")
        await TransferClassifier(store).hold(
            tx, source_account_id="acc-unicredit", suggested_account_id="acc-revolut"
        )
        assert (await TransferClassifier(store).current()).transaction_id == tx.id

    @pytest.mark.asyncio
    async def test_release(self, store):
        classifier = TransferClassifier(store)
        tx = _tx("Revolut")
        await classifier.hold(tx, source_account_id=None, suggested_account_id="acc-revolut")
        assert await classifier.release(tx.id) is True
        assert await classifier.release(tx.id) is False
