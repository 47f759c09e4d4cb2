"""Sanity warnings attached to pending transactions before the user reviews them."""

from __future__ import annotations

from decimal import Decimal

from autoledger.models import AutoTransaction, TransactionType

HIGH_AMOUNT_WARNING = "Importo elevato (> €{threshold})"
SHORT_DESCRIPTION_WARNING = "Descrizione troppo breve"
POSSIBLE_TRANSFER_WARNING = "Possibile trasferimento classificato come spesa"

_TRANSFER_WORDS = ("giroconto", "trasferimento")


def validate_transaction(
    tx: AutoTransaction,
    *,
    high_amount_threshold: Decimal | float = 1000,
) -> list[str]:
    """Return human-readable warnings; an empty list means nothing looks odd."""
    warnings: list[str] = []
    threshold = Decimal(str(high_amount_threshold))

    if tx.amount > threshold:
        warnings.append(HIGH_AMOUNT_WARNING.format(threshold=f"{threshold:.0f}"))

    if len(tx.description.strip()) < 3:
        warnings.append(SHORT_DESCRIPTION_WARNING)

    lowered = tx.description.lower()
    if tx.type == TransactionType.EXPENSE and any(w in lowered for w in _TRANSFER_WORDS):
        warnings.append(POSSIBLE_TRANSFER_WARNING)

    return warnings
