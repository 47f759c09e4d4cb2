"""Tests for the autoledger CLI entry point."""

import asyncio
import json
from decimal import Decimal

import pytest
import structlog

from autoledger.cli import main
from autoledger.core.queue import PendingTransactionQueue
from autoledger.core.rules import RuleEngine
from autoledger.core.storage import JsonFileStore
from autoledger.models import AutoTransaction, TransactionType
from autoledger.version import VERSION


@pytest.fixture(autouse=True)
def restore_logging():
    """main() binds structlog to the captured stderr; undo it after each test."""
    yield
    structlog.reset_defaults()


def test_parse_prints_transaction(capsys):
    code = main([
        "parse",
        "--app", "unicredit",
        "--title", "UniCredit",
        "autorizzata op.Internet 60,40 EUR carta *1210 c/o PAYPAL *KICKKICK.IT 12/01/24",
    ])

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["amount"] == "60.40"
    assert out["type"] == "expense"
    assert out["counterparty"] == "PAYPAL *KICKKICK.IT"


def test_parse_failure_exit_code(capsys):
    code = main(["parse", "--app", "whatsapp", "ciao"])

    out = json.loads(capsys.readouterr().out)
    assert code == 1
    assert out["reason"] == "unknown_source"


def test_apps(capsys):
    assert main(["apps"]) == 0
    out = capsys.readouterr().out
    assert "unicredit" in out
    assert "Intesa Sanpaolo" in out


def test_version(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])
    assert exc_info.value.code == 0
    assert VERSION in capsys.readouterr().out


def test_pending_reads_store(tmp_path, capsys):
    tx = AutoTransaction(
        source_app="postepay",
        description="Ristorante Roma",
        amount=Decimal("22.50"),
        type=TransactionType.EXPENSE,
    )
    asyncio.run(PendingTransactionQueue(JsonFileStore(tmp_path)).add(tx))
    capsys.readouterr()

    assert main(["--storage-path", str(tmp_path), "pending"]) == 0
    [item] = json.loads(capsys.readouterr().out)
    assert item["id"] == tx.id
    assert item["amount"] == "22.50"


def test_rules_list_and_delete(tmp_path, capsys):
    engine = RuleEngine(JsonFileStore(tmp_path))
    rule = asyncio.run(engine.add_rule("paypal", "Mario Rossi", "income"))
    capsys.readouterr()

    assert main(["--storage-path", str(tmp_path), "rules", "list", "--app", "paypal"]) == 0
    [listed] = json.loads(capsys.readouterr().out)
    assert listed["counterparty"] == "mario rossi"

    assert main(["--storage-path", str(tmp_path), "rules", "delete", rule.id]) == 0
    assert rule.id in capsys.readouterr().out

    assert main(["--storage-path", str(tmp_path), "rules", "delete", rule.id]) == 1
    assert "no rule" in capsys.readouterr().err
