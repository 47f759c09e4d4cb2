import pytest
import pytest_asyncio
from opentelemetry import trace

from autoledger.config import AutoLedgerSettings
from autoledger.connectors.ledger import InMemoryLedger
from autoledger.connectors.notification_bridge import LocalNotificationBridge
from autoledger.core.bus import Event, EventBus, reset_event_bus
from autoledger.core.orchestrator import ReconciliationOrchestrator
from autoledger.core.storage import InMemoryStore
from autoledger.models import Account


@pytest.fixture(autouse=True)
def disable_tracing():
    """Disable OpenTelemetry tracer console exports to prevent Pytest stdout closed exceptions."""
    # Set a dummy provider so background spans do not log to pytest stdout on exit
    from opentelemetry.sdk.trace import TracerProvider
    trace.set_tracer_provider(TracerProvider())
    yield


@pytest.fixture(autouse=True)
def reset_bus_singleton():
    reset_event_bus()
    yield
    reset_event_bus()


@pytest.fixture
def settings():
    """Fast settings: in-memory store, no polling, no permission backoff."""
    return AutoLedgerSettings(
        storage_backend="memory",
        poll_interval_seconds=0,
        permission_debounce_seconds=0,
        permission_retry_backoff_seconds=0,
        timezone="Europe/Rome",
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def accounts():
    return [
        Account(id="acc-unicredit", name="UniCredit"),
        Account(id="acc-revolut", name="Revolut"),
        Account(id="acc-poste", name="Postepay Evolution"),
        Account(id="acc-paypal", name="PayPal"),
    ]


@pytest.fixture
def ledger(accounts):
    return InMemoryLedger(accounts)


@pytest.fixture
def bridge():
    return LocalNotificationBridge()


@pytest.fixture
def bus():
    return EventBus()


class RecordedEvents:
    """Wildcard subscriber keeping every event published on a bus."""

    def __init__(self, bus: EventBus):
        self.events: list[Event] = []
        bus.subscribe("*", self._record)

    async def _record(self, event: Event) -> None:
        self.events.append(event)

    def of(self, topic: str) -> list[Event]:
        """Events published to ``topic``, newest first."""
        return [e for e in reversed(self.events) if e.topic == topic]


@pytest.fixture
def events(bus):
    return RecordedEvents(bus)


@pytest.fixture
def orchestrator(bridge, ledger, store, bus, settings):
    """Orchestrator wired to in-process collaborators (not started)."""
    return ReconciliationOrchestrator(bridge, ledger, store=store, bus=bus, settings=settings)


@pytest_asyncio.fixture
async def running(orchestrator):
    """Started orchestrator, stopped after the test."""
    await orchestrator.start()
    yield orchestrator
    await orchestrator.stop()
