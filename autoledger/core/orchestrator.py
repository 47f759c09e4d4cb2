"""
ReconciliationOrchestrator — Notification → pending queue → ledger.

Wires the native bridge to the pipeline and exposes the user-facing
dispositions:

    bridge ─► inbox (asyncio.Queue) ─► consumer task
        raw-store → dedup gate → parse → rule match → transfer classify
        → pending queue  (or transfer confirmation)
    user ─► confirm / ignore / confirm_transfer / confirm_expense
        → ledger commit → queue removal → raw event resolved

All per-process mutable state (listener handle, background tasks,
permission debounce, ids with a disposition in flight) lives in one
``OrchestratorState`` owned by the orchestrator and torn down by ``stop()``.
A transaction id is claimed by at most one confirm/ignore at a time, so
overlapping dispositions of the same item commit at most once.

Events published on the bus:
  - ``notification.received`` / ``notification.ignored``
  - ``transaction.pending`` / ``transfer.confirmation_needed``
  - ``transaction.confirmed`` / ``transaction.ignored``
  - ``pending.refreshed`` / ``permission.changed``
"""

from __future__ import annotations

import asyncio
import structlog
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from tenacity import AsyncRetrying, stop_after_attempt, wait_incrementing

from autoledger.config import AutoLedgerSettings, get_settings
from autoledger.connectors.ledger import LedgerConnector, create_ledger
from autoledger.connectors.notification_bridge import (
    NOTIFICATION_RECEIVED,
    ListenerHandle,
    NotificationBridge,
)
from autoledger.core.bus import EventBus, get_event_bus
from autoledger.core.dedup import DeduplicationCache, content_hash
from autoledger.core.queue import PendingTransactionQueue
from autoledger.core.raw_events import RawEventStore
from autoledger.core.rules import RuleEngine
from autoledger.core.storage import KeyValueStore, create_store
from autoledger.core.transfer import TransferClassifier, check_transition, validate_accounts
from autoledger.errors import (
    ConnectorError,
    InvalidTransitionError,
    LedgerCommitError,
    PermissionDeniedError,
    PersistenceError,
    TransactionNotFoundError,
)
from autoledger.models import (
    Account,
    AutoTransaction,
    Disposition,
    LedgerTransaction,
    MatchTier,
    ParsedTransaction,
    ParseFailure,
    RawEventStatus,
    RawNotificationEvent,
    RawPayload,
    TransactionType,
    TransferCandidate,
    TransferState,
)
from autoledger.observability import LEDGER_COMMITS, NOTIFICATIONS_PROCESSED, trace_stage
from autoledger.parsing.parser import NotificationParser
from autoledger.parsing.validation import validate_transaction

logger = structlog.get_logger(__name__)

SENDER = "orchestrator"
AUTO_TAG = "auto-rilevata"
TRANSFER_TAG = "transfer"
TRANSFER_CATEGORY = "Trasferimenti"
USER_IGNORED = "user_ignored"
EXPIRED = "expired"

_DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class OrchestratorState:
    """Per-process runtime state. Created once, reset by ``stop()``."""

    started: bool = False
    permission_enabled: bool = False
    listener: ListenerHandle | None = None
    consumer_task: asyncio.Task | None = None
    poll_task: asyncio.Task | None = None
    permission_check: asyncio.Task | None = None
    last_permission_check: float | None = None
    claimed: set[str] = field(default_factory=set)


def find_source_account(
    accounts: list[Account], source_app: str, account_name: str = ""
) -> Account | None:
    """The user's account belonging to the notifying bank, by name."""
    app = source_app.strip().lower()
    bank = account_name.strip().lower()
    for account in accounts:
        name = account.name.lower()
        if (app and app in name) or (bank and bank in name):
            return account
    return None


def _already_resolving(transaction_id: str) -> TransactionNotFoundError:
    return TransactionNotFoundError(
        f"Transaction {transaction_id} is already being confirmed or ignored",
        transaction_id=transaction_id,
    )


class ReconciliationOrchestrator:
    """Top-level coordinator consumed by the UI layer."""

    def __init__(
        self,
        bridge: NotificationBridge,
        ledger: LedgerConnector | None = None,
        *,
        store: KeyValueStore | None = None,
        parser: NotificationParser | None = None,
        bus: EventBus | None = None,
        settings: AutoLedgerSettings | None = None,
    ):
        self._settings = settings or get_settings()
        store = store or create_store(self._settings.storage_backend)

        self.bridge = bridge
        self.ledger = ledger or create_ledger(self._settings)
        self.bus = bus or get_event_bus()
        self.parser = parser or NotificationParser(default_currency=self._settings.default_currency)
        self.raw_events = RawEventStore(store)
        self.dedup = DeduplicationCache(store, capacity=self._settings.dedup_capacity)
        self.rules = RuleEngine(store)
        self.transfers = TransferClassifier(store)
        self.queue = PendingTransactionQueue(store)

        self.state = OrchestratorState()
        self._inbox: asyncio.Queue[RawPayload] = asyncio.Queue()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    #  Lifecycle
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def start(self) -> None:
        """Purge stale items, start the consumer, check permission, start polling."""
        if self.state.started:
            return
        self.state.started = True

        await self.bridge.setup()
        await self.ledger.setup()
        await self.purge_stale_pending()

        self.state.consumer_task = asyncio.create_task(self._consume())
        await self.check_permission()

        if self._settings.poll_interval_seconds > 0:
            self.state.poll_task = asyncio.create_task(self._poll())
        logger.info("orchestrator_started", permission=self.state.permission_enabled)

    async def stop(self) -> None:
        """Cancel background tasks and detach from the bridge. Queued items are kept."""
        state = self.state
        for task in (state.poll_task, state.consumer_task, state.permission_check):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if state.listener is not None:
            state.listener.remove()
        await self.bridge.teardown()
        await self.ledger.teardown()
        # dispositions still running keep their claim across a restart
        self.state = OrchestratorState(claimed=state.claimed)
        logger.info("orchestrator_stopped")

    async def _consume(self) -> None:
        """Single consumer: one notification at a time."""
        while True:
            payload = await self._inbox.get()
            try:
                await self.handle_notification(payload)
            except Exception as exc:
                logger.error(
                    "notification_pipeline_failed",
                    app_id=payload.app_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            finally:
                self._inbox.task_done()

    async def _poll(self) -> None:
        """Fallback for missed push events: recheck permission, refresh the list."""
        while True:
            await asyncio.sleep(self._settings.poll_interval_seconds)
            try:
                await self.check_permission()
                await self.refresh_pending()
            except PersistenceError as exc:
                logger.warning("poll_failed", error=str(exc))

    def submit(self, payload: RawPayload) -> None:
        """Put a notification on the inbox (bridge listener callback)."""
        self._inbox.put_nowait(payload)

    async def drain(self) -> None:
        """Wait until every submitted notification has been handled."""
        await self._inbox.join()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    #  Permission
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def check_permission(self) -> bool:
        """
        Debounced permission check.

        A check already in flight is shared; a repeat inside the debounce
        window returns the last result without touching the bridge.
        """
        state = self.state
        if state.permission_check is not None:
            return await state.permission_check

        loop = asyncio.get_running_loop()
        if (
            state.last_permission_check is not None
            and loop.time() - state.last_permission_check < self._settings.permission_debounce_seconds
        ):
            return state.permission_enabled

        task = asyncio.create_task(self._query_permission())
        state.permission_check = task
        try:
            enabled = await task
        finally:
            state.permission_check = None
            state.last_permission_check = loop.time()

        return await self._apply_permission(enabled)

    async def _query_permission(self) -> bool:
        """Ask the bridge, retrying with linear backoff; failure means disabled."""
        retries = self._settings.permission_retry_attempts
        backoff = self._settings.permission_retry_backoff_seconds
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(retries + 1),
                wait=wait_incrementing(start=backoff, increment=backoff),
                reraise=True,
            ):
                with attempt:
                    return await self.bridge.is_enabled()
        except Exception as exc:
            logger.warning(
                "permission_check_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                attempts=retries + 1,
            )
        return False

    async def _apply_permission(self, enabled: bool) -> bool:
        """Attach or detach the listener to match ``enabled``. Returns the effective status."""
        state = self.state
        if enabled and state.listener is None:
            try:
                await self.bridge.start_listening()
            except PermissionDeniedError as exc:
                logger.warning("notification_listener_refused", error=str(exc))
                enabled = False
            else:
                state.listener = self.bridge.add_listener(NOTIFICATION_RECEIVED, self.submit)
                await self.catch_up()
        elif not enabled and state.listener is not None:
            state.listener.remove()
            state.listener = None
            logger.warning("notification_listener_detached")

        changed = enabled != state.permission_enabled
        state.permission_enabled = enabled
        if changed:
            logger.info("permission_changed", enabled=enabled)
            await self.bus.publish("permission.changed", {"enabled": enabled}, sender=SENDER)
        return enabled

    async def request_permission(self) -> bool:
        """Ask the OS for access, then re-run the (non-debounced) check."""
        await self.bridge.request_permission()
        self.state.last_permission_check = None
        return await self.check_permission()

    async def catch_up(self) -> int:
        """Feed notifications missed while not listening through the pipeline."""
        missed = await self.bridge.get_pending_notifications()
        for payload in missed:
            self.submit(payload)
        if missed:
            logger.info("notification_catch_up", count=len(missed))
        return len(missed)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    #  Pipeline
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def handle_notification(self, payload: RawPayload) -> AutoTransaction | None:
        """
        Run one notification through the pipeline.

        Returns the queued transaction, or None for duplicates and parse
        failures. Unexpected errors mark the raw event ``error`` and propagate.
        """
        digest = content_hash(payload.app_id, payload.title, payload.text)
        if not await self.dedup.should_process(digest):
            NOTIFICATIONS_PROCESSED.labels(outcome="duplicate").inc()
            logger.debug("dedup_skipped", app_id=payload.app_id, hash=digest)
            return None

        raw_event: RawNotificationEvent | None = None
        try:
            raw_event = await self.raw_events.save(payload)
        except PersistenceError as exc:
            logger.warning("raw_event_save_failed", app_id=payload.app_id, error=str(exc))

        raw_event_id = raw_event.id if raw_event else None
        await self.bus.publish(
            "notification.received",
            {"app_id": payload.app_id, "raw_event_id": raw_event_id},
            sender=SENDER,
        )

        tx: AutoTransaction | None = None
        try:
            try:
                with trace_stage("parse", source_app=payload.app_id):
                    result = self.parser.parse(
                        payload.app_id, payload.title, payload.text, payload.timestamp
                    )
            finally:
                await self.dedup.mark_processed(digest)

            if isinstance(result, ParseFailure):
                await self._ignore_unparsable(result, raw_event_id)
                return None

            tx = AutoTransaction.from_parsed(
                result, tz=self._settings.timezone, raw_event_id=raw_event_id
            )
            await self._classify_and_queue(tx, result)
        except Exception as exc:
            NOTIFICATIONS_PROCESSED.labels(outcome="error").inc()
            await self._recover_failed(raw_event_id, tx, exc)
            raise

        NOTIFICATIONS_PROCESSED.labels(outcome="queued").inc()
        return tx

    async def _ignore_unparsable(self, failure: ParseFailure, raw_event_id: str | None) -> None:
        NOTIFICATIONS_PROCESSED.labels(outcome="ignored").inc()
        if raw_event_id:
            await self.raw_events.mark_ignored(raw_event_id, failure.reason.value)
        logger.info(
            "notification_ignored",
            source_app=failure.source_app,
            reason=failure.reason.value,
            raw_event_id=raw_event_id,
        )
        await self.bus.publish(
            "notification.ignored",
            {
                "source_app": failure.source_app,
                "reason": failure.reason.value,
                "raw_event_id": raw_event_id,
            },
            sender=SENDER,
        )

    async def _classify_and_queue(self, tx: AutoTransaction, parsed: ParsedTransaction) -> None:
        accounts = await self.ledger.list_accounts()
        source = find_source_account(accounts, tx.source_app, tx.account_name)
        tx.account_id = source.id if source else None

        match = await self.rules.match(tx.source_app, parsed.raw_text)
        if match.rule is not None:
            tx.rule_id = match.rule.id
            tx.rule_confidence = match.confidence
        if match.tier == MatchTier.EXACT:
            tx.type = match.rule.type
            if match.rule.type == TransactionType.TRANSFER:
                tx.account_from = match.rule.account_from or tx.account_id
                tx.account_to = match.rule.account_to

        destination = None
        if match.tier != MatchTier.EXACT:
            destination = self.transfers.detect(tx, accounts, source_account_id=tx.account_id)
            if destination is not None:
                tx.requires_confirmation = True
                tx.suggested_account_id = destination.id

        tx.warnings = validate_transaction(
            tx, high_amount_threshold=self._settings.high_amount_threshold
        )
        await self.queue.add(tx)
        body = tx.model_dump(mode="json")

        if destination is not None:
            await self.transfers.hold(
                tx, source_account_id=tx.account_id, suggested_account_id=destination.id
            )
            await self.bus.publish(
                "transfer.confirmation_needed", body, sender=SENDER, correlation_id=tx.id
            )
        else:
            await self.bus.publish("transaction.pending", body, sender=SENDER, correlation_id=tx.id)

        logger.info(
            "transaction_queued",
            transaction_id=tx.id,
            source_app=tx.source_app,
            type=tx.type.value,
            rule_confidence=tx.rule_confidence,
            requires_confirmation=tx.requires_confirmation,
        )

    async def _recover_failed(
        self, raw_event_id: str | None, tx: AutoTransaction | None, exc: Exception
    ) -> None:
        """Leave no half-queued transaction behind and record the failure."""
        reason = f"{type(exc).__name__}: {exc}"
        try:
            if tx is not None:
                await self.queue.remove(tx.id)
                await self.transfers.release(tx.id)
            if raw_event_id:
                event = await self.raw_events.get(raw_event_id)
                if event is not None and event.status == RawEventStatus.PENDING:
                    await self.raw_events.mark_error(raw_event_id, reason)
        except PersistenceError as cleanup_exc:
            logger.error(
                "pipeline_recovery_failed",
                raw_event_id=raw_event_id,
                error=str(cleanup_exc),
            )

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    #  Queries
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def get_pending(self) -> list[AutoTransaction]:
        """General pending list, without the transaction in transfer confirmation."""
        current = await self.transfers.current()
        return await self.queue.get_pending(
            exclude_id=current.transaction_id if current else None
        )

    async def current_transfer_confirmation(
        self,
    ) -> tuple[TransferCandidate, AutoTransaction] | None:
        """The transfer confirmation to show now, with its transaction."""
        while (candidate := await self.transfers.current()) is not None:
            tx = await self.queue.get(candidate.transaction_id)
            if tx is not None:
                return candidate, tx
            await self.transfers.release(candidate.transaction_id)
        return None

    async def refresh_pending(self) -> list[AutoTransaction]:
        pending = await self.get_pending()
        await self.bus.publish(
            "pending.refreshed",
            {"count": len(pending), "ids": [tx.id for tx in pending]},
            sender=SENDER,
        )
        return pending

    async def stats(self) -> dict[str, int]:
        return {
            "pending": len(await self.get_pending()),
            "awaiting_transfer_confirmation": len(await self.transfers.list_candidates()),
        }

    async def reparse(self, raw_event_id: str) -> ParsedTransaction | ParseFailure | None:
        """Parse a stored raw event again. No state is changed."""
        event = await self.raw_events.get(raw_event_id)
        if event is None:
            return None
        p = event.payload
        return self.parser.parse(p.app_id, p.title, p.text, p.timestamp)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    #  Dispositions
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def confirm(
        self, transaction_id: str, disposition: Disposition
    ) -> LedgerTransaction | None:
        """
        Commit a pending transaction with the user's final type and accounts.

        Idempotent: an id no longer in the queue, or already being confirmed
        or ignored by another call, is a no-op returning None.

        Raises:
            TransferAccountsInvalidError: Transfer accounts missing or equal.
            LedgerCommitError: The ledger did not record it; the item stays queued.
        """
        with self._claim(transaction_id) as owned:
            if not owned:
                return None
            tx = await self.queue.get(transaction_id)
            if tx is None:
                logger.debug("confirm_noop", transaction_id=transaction_id)
                return None
            return await self._commit(tx, disposition)

    async def confirm_transfer(
        self,
        transaction_id: str,
        account_from: str | None,
        account_to: str | None,
        *,
        save_rule: bool = False,
    ) -> LedgerTransaction:
        """Answer a transfer confirmation with "yes, between my accounts"."""
        validate_accounts(account_from, account_to)
        with self._claim(transaction_id) as owned:
            if not owned:
                raise _already_resolving(transaction_id)
            tx = await self._held_transaction(transaction_id, TransferState.CONFIRMED_TRANSFER)
            return await self._commit(
                tx,
                Disposition(
                    type="transfer",
                    account_from=account_from,
                    account_to=account_to,
                    save_rule=save_rule,
                ),
            )

    async def confirm_expense(
        self,
        transaction_id: str,
        *,
        category: str | None = None,
        save_rule: bool = False,
    ) -> LedgerTransaction:
        """Answer a transfer confirmation with "no, it is a normal expense"."""
        with self._claim(transaction_id) as owned:
            if not owned:
                raise _already_resolving(transaction_id)
            tx = await self._held_transaction(transaction_id, TransferState.CONFIRMED_EXPENSE)
            candidate = await self.transfers.get(transaction_id)
            return await self._commit(
                tx,
                Disposition(
                    type="expense",
                    account_id=candidate.source_account_id if candidate else None,
                    category=category,
                    save_rule=save_rule,
                ),
            )

    async def dismiss_transfer_confirmation(self, transaction_id: str) -> TransferCandidate | None:
        """The dialog was closed without an answer: keep the transaction on hold."""
        candidate = await self.transfers.get(transaction_id)
        logger.info(
            "transfer_confirmation_dismissed",
            transaction_id=transaction_id,
            held=candidate is not None,
        )
        return candidate

    async def ignore(self, transaction_id: str) -> bool:
        """Discard a pending transaction. Idempotent."""
        with self._claim(transaction_id) as owned:
            if not owned:
                return False
            tx = await self.queue.get(transaction_id)
            if not await self.queue.ignore(transaction_id):
                return False
            await self.transfers.release(transaction_id)
            if tx is not None and tx.raw_event_id:
                await self._resolve_raw_event(tx.raw_event_id, ignored=USER_IGNORED)
        await self.bus.publish(
            "transaction.ignored", {"id": transaction_id}, sender=SENDER, correlation_id=transaction_id
        )
        return True

    async def ignore_all(self) -> int:
        """Ignore every item of the general list (the transfer in confirmation is kept)."""
        count = 0
        for tx in await self.get_pending():
            if await self.ignore(tx.id):
                count += 1
        logger.info("pending_ignored_all", count=count)
        return count

    async def purge_stale_pending(self) -> int:
        """Drop pending items older than ``pending_max_age_days``."""
        max_age_ms = self._settings.pending_max_age_days * _DAY_MS
        expired = await self.queue.cleanup_older_than(max_age_ms)
        for tx in expired:
            await self.transfers.release(tx.id)
            if tx.raw_event_id:
                await self._resolve_raw_event(tx.raw_event_id, ignored=EXPIRED)
        return len(expired)

    # ── Internals ────────────────────────────────────────────────────

    @contextmanager
    def _claim(self, transaction_id: str) -> Iterator[bool]:
        """
        Reserve ``transaction_id`` for a single disposition.

        Yields False while another confirm or ignore holds the id. The check
        and the reservation happen before any await.
        """
        claimed = self.state.claimed
        if transaction_id in claimed:
            logger.info("disposition_in_progress", transaction_id=transaction_id)
            yield False
            return
        claimed.add(transaction_id)
        try:
            yield True
        finally:
            claimed.discard(transaction_id)

    async def _held_transaction(self, transaction_id: str, target: TransferState) -> AutoTransaction:
        tx = await self.queue.get(transaction_id)
        if tx is None:
            raise TransactionNotFoundError(
                f"Transaction {transaction_id} is no longer pending",
                transaction_id=transaction_id,
            )
        candidate = await self.transfers.get(transaction_id)
        if candidate is None:
            raise InvalidTransitionError(
                f"Transaction {transaction_id} is not awaiting transfer confirmation",
                current=TransferState.UNCLASSIFIED.value,
                target=target.value,
            )
        check_transition(candidate.state, target)
        return tx

    async def _commit(self, tx: AutoTransaction, disposition: Disposition) -> LedgerTransaction:
        """Ledger first; the queue item is removed only after a successful commit."""
        accounts = await self.ledger.list_accounts()
        ledger_tx = self._build_ledger_transaction(tx, disposition, accounts)

        try:
            await self.ledger.add_transaction(ledger_tx)
        except LedgerCommitError:
            LEDGER_COMMITS.labels(kind=ledger_tx.kind, status="failed").inc()
            logger.error("ledger_commit_failed", transaction_id=tx.id, kind=ledger_tx.kind)
            raise
        except ConnectorError as exc:
            LEDGER_COMMITS.labels(kind=ledger_tx.kind, status="failed").inc()
            logger.error("ledger_commit_failed", transaction_id=tx.id, kind=ledger_tx.kind)
            raise LedgerCommitError(
                str(exc), transaction_id=tx.id, connector_name=exc.connector_name
            ) from exc
        LEDGER_COMMITS.labels(kind=ledger_tx.kind, status="ok").inc()

        await self.queue.remove(tx.id)
        if await self.transfers.get(tx.id) is not None:
            outcome = (
                TransferState.CONFIRMED_TRANSFER
                if ledger_tx.kind == "transfer"
                else TransferState.CONFIRMED_EXPENSE
            )
            await self.transfers.resolve(tx.id, outcome)
        if tx.raw_event_id:
            await self._resolve_raw_event(tx.raw_event_id, processed=tx.id)
        if disposition.save_rule:
            await self._remember(tx, disposition, ledger_tx)

        logger.info(
            "transaction_confirmed",
            transaction_id=tx.id,
            ledger_id=ledger_tx.id,
            kind=ledger_tx.kind,
            amount=str(ledger_tx.amount),
        )
        await self.bus.publish(
            "transaction.confirmed",
            {
                "id": tx.id,
                "ledger_id": ledger_tx.id,
                "kind": ledger_tx.kind,
                "amount": str(ledger_tx.amount),
                "account_id": ledger_tx.account_id,
                "to_account_id": ledger_tx.to_account_id,
            },
            sender=SENDER,
            correlation_id=tx.id,
        )
        return ledger_tx

    def _build_ledger_transaction(
        self, tx: AutoTransaction, disposition: Disposition, accounts: list[Account]
    ) -> LedgerTransaction:
        common = dict(
            amount=tx.amount,
            currency=tx.currency,
            date=tx.date,
            time=tx.time,
            source_transaction_id=tx.id,
        )

        if disposition.type == "transfer":
            account_from = disposition.account_from or tx.account_from
            account_to = disposition.account_to or tx.account_to
            validate_accounts(account_from, account_to)
            names = {a.id: a.name for a in accounts}
            return LedgerTransaction(
                kind="transfer",
                description=f"Trasferimento → {names.get(account_to, account_to)}",
                account_id=account_from,
                to_account_id=account_to,
                category=disposition.category or TRANSFER_CATEGORY,
                tags=[AUTO_TAG, TRANSFER_TAG, tx.source_app],
                **common,
            )

        account_id = disposition.account_id or tx.account_id
        if account_id is None:
            fallback = find_source_account(accounts, tx.source_app, tx.account_name)
            if fallback is None and accounts:
                fallback = accounts[0]
            account_id = fallback.id if fallback else None
        if account_id is None:
            raise LedgerCommitError(
                "No ledger account available for this transaction",
                transaction_id=tx.id,
                connector_name=self.ledger.name,
            )

        return LedgerTransaction(
            kind=disposition.type,
            description=tx.description,
            account_id=account_id,
            category=disposition.category,
            tags=[AUTO_TAG, tx.source_app],
            **common,
        )

    async def _remember(
        self, tx: AutoTransaction, disposition: Disposition, ledger_tx: LedgerTransaction
    ) -> None:
        if not tx.counterparty:
            logger.debug("rule_not_saved_no_counterparty", transaction_id=tx.id)
            return
        await self.rules.add_rule(
            tx.source_app,
            tx.counterparty,
            disposition.type,
            account_from=ledger_tx.account_id if ledger_tx.kind == "transfer" else None,
            account_to=ledger_tx.to_account_id,
        )

    async def _resolve_raw_event(
        self,
        raw_event_id: str,
        *,
        processed: str | None = None,
        ignored: str | None = None,
    ) -> None:
        """Resolve the audit copy; the disposition already happened, so only log conflicts."""
        try:
            if processed is not None:
                await self.raw_events.mark_processed(raw_event_id, processed)
            else:
                await self.raw_events.mark_ignored(raw_event_id, ignored or USER_IGNORED)
        except InvalidTransitionError as exc:
            logger.error("raw_event_already_resolved", raw_event_id=raw_event_id, error=str(exc))
