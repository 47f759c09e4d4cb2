"""
NotificationParser — Applies a bank pattern to a raw notification.

``parse()`` never raises for expected noise: unknown apps and texts
without a usable amount come back as a ``ParseFailure`` value so the
orchestrator can mark the raw event ``ignored`` and move on.
"""

from __future__ import annotations

import time
import structlog

from autoledger.config import get_settings
from autoledger.errors import ParseError, UnknownSourceError
from autoledger.models import ParsedTransaction, ParseFailure
from autoledger.observability import PARSE_LATENCY
from autoledger.parsing.patterns import BankPatternLibrary, parse_amount

logger = structlog.get_logger(__name__)

__all__ = ["NotificationParser", "build_full_text", "parse_amount"]


def build_full_text(title: str, text: str) -> str:
    """Title and body joined the way patterns expect to see them."""
    return f"{title or ''} {text or ''}".strip()


class NotificationParser:
    """Turns ``(source_app, title, text, timestamp)`` into a parse result."""

    def __init__(
        self,
        library: BankPatternLibrary | None = None,
        *,
        default_currency: str | None = None,
    ):
        self._library = library or BankPatternLibrary()
        self._currency = default_currency or get_settings().default_currency

    @property
    def library(self) -> BankPatternLibrary:
        return self._library

    def parse(
        self,
        source_app: str,
        title: str,
        text: str,
        timestamp: int | None = None,
    ) -> ParsedTransaction | ParseFailure:
        start = time.monotonic()
        try:
            return self.parse_or_raise(source_app, title, text, timestamp)
        except ParseError as exc:
            logger.debug(
                "notification_parse_failed",
                source_app=source_app,
                reason=exc.reason,
                error=str(exc),
            )
            return ParseFailure.from_error(exc)
        finally:
            PARSE_LATENCY.labels(source_app=(source_app or "").lower()).observe(
                time.monotonic() - start
            )

    def parse_or_raise(
        self,
        source_app: str,
        title: str,
        text: str,
        timestamp: int | None = None,
    ) -> ParsedTransaction:
        """
        Same as ``parse`` but raises the ``ParseError`` subclass.

        Raises:
            UnknownSourceError: No pattern registered for ``source_app``.
            NoAmountMatchError: The pattern found no amount.
            InvalidAmountError: The amount is zero, negative or unparsable.
        """
        pattern = self._library.get(source_app or "")
        if pattern is None:
            raise UnknownSourceError(
                f"No bank pattern for app {source_app!r}", source_app=source_app
            )

        full_text = build_full_text(title, text)
        parsed = pattern.extract(
            full_text, title=title or "", timestamp=timestamp, currency=self._currency
        )

        logger.info(
            "notification_parsed",
            source_app=parsed.source_app,
            amount=str(parsed.amount),
            type=parsed.type,
            counterparty=parsed.counterparty,
            text=full_text[:80],
        )
        return parsed
