"""Tests for the structured error taxonomy."""

import pytest

from autoledger.errors import (
    AutoLedgerError,
    ConnectorError,
    ConnectorRateLimitError,
    ConnectorUnavailableError,
    InvalidAmountError,
    LedgerCommitError,
    NoAmountMatchError,
    ParseError,
    PersistenceError,
    PermissionDeniedError,
    UnknownSourceError,
)
from autoledger.models import ParseFailure, ParseFailureReason


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc_cls, parent",
        [
            (UnknownSourceError, ParseError),
            (NoAmountMatchError, ParseError),
            (InvalidAmountError, ParseError),
            (LedgerCommitError, ConnectorError),
            (ConnectorRateLimitError, ConnectorError),
            (PersistenceError, AutoLedgerError),
            (PermissionDeniedError, AutoLedgerError),
        ],
    )
    def test_subclassing(self, exc_cls, parent):
        assert issubclass(exc_cls, parent)

    def test_retryable_flags(self):
        assert PersistenceError("x").retryable is True
        assert ConnectorUnavailableError("x").retryable is True
        assert LedgerCommitError("x").retryable is False
        assert UnknownSourceError("x").retryable is False


class TestSerialization:
    def test_base_to_dict(self):
        d = AutoLedgerError("boom", detail="context").to_dict()
        assert d == {
            "error_code": "AUTOLEDGER_ERROR",
            "message": "boom",
            "detail": "context",
            "retryable": False,
        }

    def test_invalid_amount_to_dict(self):
        d = InvalidAmountError("bad", raw_amount="0,00", source_app="postepay").to_dict()
        assert d["error_code"] == "INVALID_AMOUNT"
        assert d["reason"] == "invalid_amount"
        assert d["raw_amount"] == "0,00"
        assert d["source_app"] == "postepay"

    def test_connector_name_carried(self):
        d = LedgerCommitError("down", transaction_id="tx-1", connector_name="http_ledger").to_dict()
        assert d["connector_name"] == "http_ledger"
        assert d["transaction_id"] == "tx-1"

    def test_parse_failure_from_error(self):
        failure = ParseFailure.from_error(NoAmountMatchError("nothing", source_app="bnl"))
        assert failure.reason == ParseFailureReason.NO_AMOUNT_MATCH
        assert failure.source_app == "bnl"
        assert failure.message == "nothing"
