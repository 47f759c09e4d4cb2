"""
LedgerConnector — The single write path into the user's ledger.

The engine never reads or edits ledger history. It lists the user's
accounts (for transfer detection and default-account fallback) and calls
``add_transaction`` once per confirmed item. A transfer is one call that
the ledger records as two linked legs.

Implementations:
  - InMemoryLedger: keeps transactions and signed legs in memory (dev/test).
  - HttpLedgerConnector: posts to a ledger HTTP API via httpx, with
    tenacity retries on rate limits and unavailability.

``create_ledger()`` picks one from settings.
"""

from __future__ import annotations

import time
import structlog
from abc import abstractmethod
from decimal import Decimal

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from autoledger.config import AutoLedgerSettings, get_settings
from autoledger.connectors.base_connector import BaseConnector
from autoledger.errors import (
    ConnectorError,
    ConnectorRateLimitError,
    ConnectorUnavailableError,
    LedgerCommitError,
)
from autoledger.models import Account, LedgerEntry, LedgerTransaction

logger = structlog.get_logger(__name__)


class LedgerConnector(BaseConnector):
    """Abstract ledger collaborator."""

    @abstractmethod
    async def list_accounts(self) -> list[Account]:
        ...

    @abstractmethod
    async def add_transaction(self, tx: LedgerTransaction) -> None:
        """
        Record ``tx`` atomically.

        Raises:
            LedgerCommitError: Nothing was recorded.
        """
        ...


# ── In-memory ledger ─────────────────────────────────────────────────


class InMemoryLedger(LedgerConnector):
    name = "memory_ledger"
    description = "In-memory ledger for development and tests"

    def __init__(self, accounts: list[Account] | None = None):
        self._accounts = list(accounts or [])
        self.transactions: list[LedgerTransaction] = []
        self.entries: list[LedgerEntry] = []

    async def list_accounts(self) -> list[Account]:
        return list(self._accounts)

    async def add_transaction(self, tx: LedgerTransaction) -> None:
        known = {a.id for a in self._accounts}
        legs = tx.entries()
        unknown = [leg.account_id for leg in legs if leg.account_id not in known]
        if unknown:
            raise LedgerCommitError(
                f"Unknown account(s): {', '.join(unknown)}",
                transaction_id=tx.id,
                connector_name=self.name,
            )
        self.transactions.append(tx)
        self.entries.extend(legs)
        logger.info("ledger_transaction_added", ledger_id=tx.id, kind=tx.kind, legs=len(legs))

    def balance(self, account_id: str) -> Decimal:
        return sum((e.amount for e in self.entries if e.account_id == account_id), Decimal("0"))


# ── HTTP ledger ──────────────────────────────────────────────────────


class HttpLedgerConnector(LedgerConnector):
    """
    Async client for a ledger HTTP API.

    Endpoints:
      - ``GET  /accounts``      → ``{"accounts": [{"id", "name"}, ...]}``
      - ``POST /transactions``  → body is the ``LedgerTransaction`` plus its legs

    Rate limits (429) and server errors (5xx, connection failures) are
    retried with exponential backoff; anything else fails immediately.
    """

    name = "http_ledger"
    description = "Posts confirmed transactions to a ledger HTTP API"

    def __init__(
        self,
        base_url: str,
        *,
        api_token: str | None = None,
        timeout: float = 15.0,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            transport=transport,
        )
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff = retry_backoff_seconds

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        """Execute an API request, mapping failures to connector errors."""
        start = time.monotonic()
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.ConnectError as e:
            raise ConnectorUnavailableError(f"Connection failed: {e}", connector_name=self.name) from e
        except httpx.TimeoutException as e:
            raise ConnectorUnavailableError(f"Request timed out: {e}", connector_name=self.name) from e

        latency_ms = (time.monotonic() - start) * 1000

        if resp.status_code == 429:
            logger.warning("ledger_rate_limited", path=path, latency_ms=round(latency_ms))
            raise ConnectorRateLimitError("Rate limit exceeded", connector_name=self.name)
        if resp.status_code >= 500:
            raise ConnectorUnavailableError(
                f"Ledger error: {resp.status_code}", connector_name=self.name, detail=resp.text
            )
        if resp.status_code >= 400:
            raise ConnectorError(
                f"Ledger rejected request: {resp.status_code}",
                connector_name=self.name,
                detail=resp.text,
            )

        logger.debug(
            "ledger_request",
            method=method,
            path=path,
            status=resp.status_code,
            latency_ms=round(latency_ms),
        )
        return resp.json() if resp.content else {}

    async def _request_with_retry(self, method: str, path: str, **kwargs) -> dict:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=self._retry_backoff, max=30),
            retry=retry_if_exception_type((ConnectorRateLimitError, ConnectorUnavailableError)),
            reraise=True,
        ):
            with attempt:
                return await self._request(method, path, **kwargs)
        raise AssertionError("unreachable")  # pragma: no cover

    async def list_accounts(self) -> list[Account]:
        data = await self._request_with_retry("GET", "/accounts")
        return [Account.model_validate(a) for a in data.get("accounts", [])]

    async def add_transaction(self, tx: LedgerTransaction) -> None:
        body = tx.model_dump(mode="json")
        body["entries"] = [leg.model_dump(mode="json") for leg in tx.entries()]
        logger.info(
            "ledger_creating_transaction",
            ledger_id=tx.id,
            kind=tx.kind,
            amount=str(tx.amount),
        )
        try:
            await self._request_with_retry("POST", "/transactions", json={"transaction": body})
        except ConnectorError as exc:
            raise LedgerCommitError(
                f"Ledger commit failed: {exc}",
                transaction_id=tx.id,
                connector_name=self.name,
                detail=exc.detail,
            ) from exc
        logger.info("ledger_transaction_created", ledger_id=tx.id)

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/accounts")
        except ConnectorError:
            return False
        return True

    async def teardown(self) -> None:
        await self._client.aclose()


# ── Factory ──────────────────────────────────────────────────────────


def create_ledger(settings: AutoLedgerSettings | None = None) -> LedgerConnector:
    """
    Ledger for the configured endpoint.

    ``ledger_url`` set → ``HttpLedgerConnector``; empty → ``InMemoryLedger``.
    """
    settings = settings or get_settings()
    if settings.ledger_url:
        logger.info("ledger_selected", backend="http", url=settings.ledger_url)
        return HttpLedgerConnector(
            settings.ledger_url,
            api_token=settings.ledger_api_token or None,
            timeout=settings.ledger_timeout_seconds,
            retry_attempts=settings.ledger_retry_attempts,
        )
    logger.info("ledger_selected", backend="memory")
    return InMemoryLedger()
