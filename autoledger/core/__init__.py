"""
AutoLedger Core — Pipeline components and their shared infrastructure.

  - KeyValueStore backends: local persisted state (memory / JSON files / Redis)
  - DeduplicationCache: bounded content-hash gate
  - RawEventStore: audit trail of received notifications
  - RuleEngine: learned counterparty → type rules with confidence tiers
  - TransferClassifier: own-account transfer detection + confirmation states
  - PendingTransactionQueue: durable queue awaiting user disposition
  - ReconciliationOrchestrator: wires the bridge, pipeline and ledger
  - EventBus: typed pub/sub for UI collaborators
"""

from autoledger.core.bus import Event, EventBus, Subscription, get_event_bus, reset_event_bus
from autoledger.core.dedup import DeduplicationCache, content_hash
from autoledger.core.orchestrator import OrchestratorState, ReconciliationOrchestrator
from autoledger.core.queue import PendingTransactionQueue
from autoledger.core.raw_events import RawEventStore
from autoledger.core.rules import RuleEngine, exact_match, surname_match
from autoledger.core.storage import (
    InMemoryStore,
    JsonFileStore,
    KeyValueStore,
    RedisStore,
    create_store,
)
from autoledger.core.transfer import TransferClassifier, validate_accounts

__all__ = [
    # Storage
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    "RedisStore",
    "create_store",
    # Pipeline components
    "DeduplicationCache",
    "content_hash",
    "RawEventStore",
    "RuleEngine",
    "exact_match",
    "surname_match",
    "TransferClassifier",
    "validate_accounts",
    "PendingTransactionQueue",
    # Coordination
    "ReconciliationOrchestrator",
    "OrchestratorState",
    # Event bus
    "Event",
    "EventBus",
    "Subscription",
    "get_event_bus",
    "reset_event_bus",
]
