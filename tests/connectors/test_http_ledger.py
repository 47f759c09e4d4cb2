"""
Tests for HttpLedgerConnector and InMemoryLedger.

The HTTP connector runs against ``httpx.MockTransport`` so endpoint paths,
payloads, status mapping and retries are checked without a network.
"""

import json
from decimal import Decimal

import httpx
import pytest

from autoledger.config import AutoLedgerSettings
from autoledger.connectors.ledger import HttpLedgerConnector, InMemoryLedger, create_ledger
from autoledger.errors import ConnectorRateLimitError, LedgerCommitError
from autoledger.models import Account, LedgerTransaction


BASE_URL = "https://ledger.example.test/api"


def _transfer() -> LedgerTransaction:
    return LedgerTransaction(
        kind="transfer",
        amount=Decimal("100.00"),
        description="Trasferimento → Revolut",
        date="2024-01-12",
        account_id="acc-unicredit",
        to_account_id="acc-revolut",
    )


def _connector(handler, **kwargs) -> HttpLedgerConnector:
    kwargs.setdefault("retry_backoff_seconds", 0)
    return HttpLedgerConnector(
        BASE_URL,
        api_token="secret",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


# ── HttpLedgerConnector ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_accounts():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"accounts": [{"id": "a1", "name": "UniCredit"}]})

    ledger = _connector(handler)
    accounts = await ledger.list_accounts()
    await ledger.teardown()

    assert accounts == [Account(id="a1", name="UniCredit")]
    assert seen[0].url.path == "/api/accounts"
    assert seen[0].headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_add_transfer_posts_both_legs():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"ok": True})

    ledger = _connector(handler)
    tx = _transfer()
    await ledger.add_transaction(tx)

    payload = bodies[0]["transaction"]
    assert payload["id"] == tx.id
    assert payload["kind"] == "transfer"
    assert [(e["account_id"], e["amount"]) for e in payload["entries"]] == [
        ("acc-unicredit", "-100.00"),
        ("acc-revolut", "100.00"),
    ]
    assert {e["link_id"] for e in payload["entries"]} == {tx.id}


@pytest.mark.asyncio
async def test_server_error_is_retried():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503, text="maintenance")
        return httpx.Response(200, json={"accounts": []})

    ledger = _connector(handler, retry_attempts=3)
    assert await ledger.list_accounts() == []
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_rate_limit_exhausts_retries():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(429)

    ledger = _connector(handler, retry_attempts=2)
    with pytest.raises(ConnectorRateLimitError):
        await ledger.list_accounts()
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_rejected_commit_is_not_retried():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(422, text="unknown account")

    ledger = _connector(handler)
    tx = _transfer()
    with pytest.raises(LedgerCommitError) as exc_info:
        await ledger.add_transaction(tx)

    assert calls["n"] == 1
    assert exc_info.value.transaction_id == tx.id
    assert exc_info.value.detail == "unknown account"
    assert exc_info.value.to_dict()["error_code"] == "LEDGER_COMMIT_FAILED"


@pytest.mark.asyncio
async def test_connection_failure_becomes_commit_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    ledger = _connector(handler, retry_attempts=2)
    with pytest.raises(LedgerCommitError):
        await ledger.add_transaction(_transfer())


@pytest.mark.asyncio
async def test_health_check():
    healthy = _connector(lambda request: httpx.Response(200, json={"accounts": []}))
    broken = _connector(lambda request: httpx.Response(500))

    assert await healthy.health_check() is True
    assert await broken.health_check() is False


# ── InMemoryLedger ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_memory_ledger_transfer_balances(accounts):
    ledger = InMemoryLedger(accounts)
    await ledger.add_transaction(_transfer())

    assert ledger.balance("acc-unicredit") == Decimal("-100.00")
    assert ledger.balance("acc-revolut") == Decimal("100.00")
    assert len(ledger.transactions) == 1


@pytest.mark.asyncio
async def test_memory_ledger_rejects_unknown_account(accounts):
    ledger = InMemoryLedger(accounts)
    tx = _transfer().model_copy(update={"to_account_id": "acc-ghost"})

    with pytest.raises(LedgerCommitError):
        await ledger.add_transaction(tx)
    assert ledger.entries == []


# ── Factory ──────────────────────────────────────────────────────────


def test_create_ledger_uses_configured_endpoint():
    ledger = create_ledger(
        AutoLedgerSettings(ledger_url=BASE_URL, ledger_api_token="secret", ledger_timeout_seconds=5)
    )
    assert isinstance(ledger, HttpLedgerConnector)
    assert str(ledger._client.base_url).rstrip("/") == BASE_URL
    assert ledger._client.timeout.read == 5
    assert ledger._client.headers["Authorization"] == "Bearer secret"


def test_create_ledger_without_endpoint_is_in_memory():
    assert isinstance(create_ledger(AutoLedgerSettings(ledger_url="")), InMemoryLedger)
