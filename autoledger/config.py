"""
AutoLedger Configuration — Process-wide settings for the reconciliation engine.

The settings object manages:
  - Persistence backend selection (memory / file / redis)
  - Pipeline tuning (dedup capacity, poll interval, permission debounce & retry)
  - Ledger collaborator endpoint
  - Logging level and format
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class AutoLedgerSettings(BaseSettings):
    """Process-wide settings. Components accept explicit overrides in their constructors."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        env_prefix="AUTOLEDGER_",
        extra="ignore",
    )

    # ── Runtime ──────────────────────────────────────────────────────
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    log_json: bool = False

    # ── Persistence ──────────────────────────────────────────────────
    storage_backend: Literal["memory", "file", "redis"] = "file"
    storage_path: str = ".autoledger"
    redis_url: str = "redis://localhost:6379/0"

    # ── Pipeline ─────────────────────────────────────────────────────
    dedup_capacity: int = 100
    poll_interval_seconds: float = 10.0
    permission_debounce_seconds: float = 2.0
    permission_retry_attempts: int = 3
    permission_retry_backoff_seconds: float = 1.0
    pending_max_age_days: int = 30

    # ── Locale ───────────────────────────────────────────────────────
    timezone: str = "Europe/Rome"
    default_currency: str = "EUR"
    high_amount_threshold: float = 1000.0

    # ── Ledger collaborator ──────────────────────────────────────────
    ledger_url: str = ""
    ledger_api_token: str = ""
    ledger_timeout_seconds: float = 15.0
    ledger_retry_attempts: int = 3


@lru_cache
def get_settings() -> AutoLedgerSettings:
    """Singleton accessor — parsed once, cached forever."""
    return AutoLedgerSettings()
