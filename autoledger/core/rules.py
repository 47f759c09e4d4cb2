"""
RuleEngine — Learned ``(app, counterparty) → type`` classification rules.

Rules are created when the user confirms a transaction with "remember
this" and are consulted on every later notification from the same app.

Two-tier confidence:
  - 100 (exact):   the stored counterparty occurs verbatim in the text
  - 75  (partial): the stored counterparty has ≥ 2 tokens and its last
                   token ("surname", > 3 chars) occurs in the text
  - 0:             no rule applies

The best tier wins; among equal tiers the most recent rule wins.
"""

from __future__ import annotations

import asyncio
import structlog

from autoledger.core.storage import KeyValueStore
from autoledger.models import (
    MatchTier,
    RuleMatch,
    SavedRule,
    TransactionType,
    normalize_text,
)

logger = structlog.get_logger(__name__)

STORAGE_KEY = "saved_rules"


# ── Pure matchers ────────────────────────────────────────────────────


def exact_match(counterparty: str, text: str) -> MatchTier:
    """``EXACT`` when the normalized counterparty is a substring of the normalized text."""
    needle = normalize_text(counterparty)
    if needle and needle in normalize_text(text):
        return MatchTier.EXACT
    return MatchTier.NONE


def surname_match(counterparty: str, text: str) -> MatchTier:
    """``PARTIAL`` when the counterparty's last token (> 3 chars) appears in the text."""
    tokens = normalize_text(counterparty).split(" ")
    if len(tokens) < 2:
        return MatchTier.NONE
    surname = tokens[-1]
    if len(surname) > 3 and surname in normalize_text(text):
        return MatchTier.PARTIAL
    return MatchTier.NONE


def match_tier(counterparty: str, text: str) -> MatchTier:
    return max(exact_match(counterparty, text), surname_match(counterparty, text))


# ── Engine ───────────────────────────────────────────────────────────


class RuleEngine:
    """Owns the ``saved_rules`` key."""

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._lock = asyncio.Lock()

    async def list_rules(self, app_name: str | None = None) -> list[SavedRule]:
        rules = [SavedRule.model_validate(r) for r in await self._store.get(STORAGE_KEY, []) or []]
        if app_name is not None:
            app = app_name.strip().lower()
            rules = [r for r in rules if r.app_name == app]
        return rules

    async def _save(self, rules: list[SavedRule]) -> None:
        await self._store.set(STORAGE_KEY, [r.model_dump(mode="json") for r in rules])

    async def add_rule(
        self,
        app_name: str,
        counterparty: str,
        type: TransactionType | str,
        *,
        account_from: str | None = None,
        account_to: str | None = None,
    ) -> SavedRule:
        """
        Append a rule. Earlier rules for the same app and counterparty are
        kept; ``match`` prefers the most recent one.

        Raises:
            pydantic.ValidationError: The counterparty is empty.
        """
        rule = SavedRule(
            app_name=app_name,
            counterparty=counterparty,
            type=TransactionType(type),
            account_from=account_from,
            account_to=account_to,
        )
        async with self._lock:
            rules = await self.list_rules()
            rules.append(rule)
            await self._save(rules)
        logger.info(
            "rule_saved",
            rule_id=rule.id,
            app_name=rule.app_name,
            counterparty=rule.counterparty,
            type=rule.type.value,
        )
        return rule

    async def delete_rule(self, rule_id: str) -> bool:
        async with self._lock:
            rules = await self.list_rules()
            kept = [r for r in rules if r.id != rule_id]
            if len(kept) == len(rules):
                return False
            await self._save(kept)
        logger.info("rule_deleted", rule_id=rule_id)
        return True

    async def match(self, source_app: str, text: str) -> RuleMatch:
        best = RuleMatch()
        for rule in await self.list_rules(source_app):
            tier = match_tier(rule.counterparty, text)
            if tier == MatchTier.NONE:
                continue
            if tier > best.tier or (
                tier == best.tier and best.rule is not None and rule.created_at >= best.rule.created_at
            ):
                best = RuleMatch(rule=rule, tier=tier)

        if best.rule is not None:
            logger.info(
                "rule_matched",
                rule_id=best.rule.id,
                source_app=source_app,
                confidence=best.confidence,
            )
        return best
