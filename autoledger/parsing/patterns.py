"""
BankPatternLibrary — Per-bank extraction rules for notification text.

Each supported banking app is one ``BankPattern`` variant. A variant owns:
  - ``identifier``: the normalized source-app key the bridge reports
  - ``name`` / ``account_name``: display names
  - ``amount_pattern``: amount capture anchored on the bank's keywords
  - ``counterparty_pattern``: merchant / person capture, applied to the
    text that follows the amount
  - ``is_expense()``: the bank's expense-vs-income keyword predicate

``BankPattern.extract()`` turns a full notification text into a
``ParsedTransaction`` or raises a ``ParseError`` subclass.

Usage::

    library = BankPatternLibrary()
    pattern = library.get("UniCredit")
    parsed = pattern.extract("autorizzata op.Internet 60,40 EUR ...")
"""

from __future__ import annotations

import re
import structlog
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation

from autoledger.errors import InvalidAmountError, NoAmountMatchError
from autoledger.models import ParsedTransaction, now_ms

logger = structlog.get_logger(__name__)

DEFAULT_DESCRIPTION = "Transazione"

_NUMBER = r"-?\d+(?:[.,]\d{3})*(?:[.,]\d{1,2})?"
_CURRENCY = r"(?:€|\beuro?\b)"


def amount_after(*keywords: str) -> re.Pattern[str]:
    """
    Amount expression anchored on a bank's transaction keywords.

    Captures the first number after the earliest keyword. A ``€``, ``EUR``
    or ``euro`` marker on either side of it is optional.
    """
    return re.compile(
        r"\b(?:" + "|".join(keywords) + r")\b.*?"
        + _CURRENCY + r"?\s*(?P<amount>" + _NUMBER + r")(?:\s*" + _CURRENCY + r")?",
        re.IGNORECASE | re.DOTALL,
    )


# Boilerplate removed from the title when no counterparty is captured
_TITLE_BOILERPLATE = re.compile(
    r"\b(?:pagamento|spesa|addebito|accredito|eur)\b|€", re.IGNORECASE
)

_MERCHANT_NOISE = (
    re.compile(r"\s+\d{2}/\d{2}/\d{2,4}.*$"),  # trailing date
    re.compile(r"\s+\d{2}:\d{2}.*$"),  # trailing time
    re.compile(r"\s*Per info.*$", re.IGNORECASE),  # footer
    re.compile(r"\s+\d{6,}.*$"),  # reference numbers
    re.compile(r"\*+\d+\*+"),  # masked card numbers
)


# ── Amount & merchant normalization ──────────────────────────────────


def parse_amount(raw: str, *, source_app: str = "") -> Decimal:
    """
    Normalize a captured amount string into a positive ``Decimal``.

    Currency symbols and whitespace are stripped. When both ``.`` and
    ``,`` occur, the last one is the decimal separator; a lone separator
    followed by exactly three digits is a thousands separator.

    Raises:
        InvalidAmountError: The value is unparsable, zero or negative.
    """
    cleaned = re.sub(r"(?i)eur|€|\s", "", raw or "")
    if "." in cleaned and "," in cleaned:
        decimal_sep = "." if cleaned.rfind(".") > cleaned.rfind(",") else ","
        thousands_sep = "," if decimal_sep == "." else "."
        cleaned = cleaned.replace(thousands_sep, "").replace(decimal_sep, ".")
    else:
        sep = "," if "," in cleaned else "."
        parts = cleaned.split(sep)
        if len(parts) > 2 or (len(parts) == 2 and len(parts[1]) == 3):
            cleaned = "".join(parts)
        else:
            cleaned = cleaned.replace(",", ".")

    try:
        value = Decimal(cleaned)
    except InvalidOperation as exc:
        raise InvalidAmountError(
            f"Unparsable amount {raw!r}", raw_amount=raw, source_app=source_app
        ) from exc

    if not value.is_finite() or value <= 0:
        raise InvalidAmountError(
            f"Amount must be positive, got {raw!r}", raw_amount=raw, source_app=source_app
        )
    return value.quantize(Decimal("0.01"))


def clean_merchant_name(name: str) -> str:
    """Strip trailing dates, times, footers and masked card numbers."""
    cleaned = name.strip()
    for noise in _MERCHANT_NOISE:
        cleaned = noise.sub("", cleaned)
    return cleaned.strip(" .,;:-")


def strip_title_boilerplate(title: str, amount_text: str = "") -> str:
    """Remove generic words and the amount substring from a notification title."""
    stripped = title
    if amount_text:
        stripped = stripped.replace(amount_text, "")
    stripped = _TITLE_BOILERPLATE.sub("", stripped)
    return " ".join(stripped.split()).strip(" .,;:-")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  BankPattern — One variant per supported banking app
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BankPattern(ABC):
    """
    Extraction rules for one banking app.

    Subclasses MUST define:
      - identifier, name, account_name (class attributes)
      - amount_pattern: exposes an ``amount`` group (see ``amount_after``)
      - is_expense(full_text): expense keyword predicate

    Subclasses MAY override:
      - counterparty_pattern: must expose a ``counterparty`` group
      - currency: fixed currency of the bank, else the parser default
    """

    identifier: str = ""
    name: str = ""
    account_name: str = ""
    currency: str | None = None

    amount_pattern: re.Pattern[str] | None = None
    counterparty_pattern: re.Pattern[str] | None = None

    @abstractmethod
    def is_expense(self, full_text: str) -> bool:
        """True when the text reads as money leaving the account."""
        ...

    # ── Extraction ───────────────────────────────────────────────────

    def find_amount(self, full_text: str) -> re.Match[str]:
        match = self.amount_pattern.search(full_text)
        if match is None:
            raise NoAmountMatchError(
                f"No amount found in {self.name} notification",
                source_app=self.identifier,
            )
        return match

    def find_counterparty(self, text_after_amount: str) -> str | None:
        if self.counterparty_pattern is None:
            return None
        match = self.counterparty_pattern.search(text_after_amount)
        if match is None:
            return None
        name = clean_merchant_name(match.group("counterparty"))
        return name or None

    def extract(
        self,
        full_text: str,
        *,
        title: str = "",
        timestamp: int | None = None,
        currency: str = "EUR",
    ) -> ParsedTransaction:
        """
        Extract a transaction from ``full_text`` (title + body).

        ``currency`` applies unless the bank pins its own.

        Raises:
            NoAmountMatchError: No amount expression matched.
            InvalidAmountError: The captured amount is not a positive number.
        """
        match = self.find_amount(full_text)
        amount_text = match.group("amount")
        amount = parse_amount(amount_text, source_app=self.identifier)

        counterparty = self.find_counterparty(full_text[match.end():])
        description = (
            counterparty
            or strip_title_boilerplate(title, amount_text)
            or DEFAULT_DESCRIPTION
        )

        return ParsedTransaction(
            amount=amount,
            currency=self.currency or currency,
            description=description,
            counterparty=counterparty,
            type="expense" if self.is_expense(full_text) else "income",
            source_app=self.identifier,
            account_name=self.account_name,
            raw_text=full_text,
            timestamp=timestamp if timestamp is not None else now_ms(),
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} identifier={self.identifier!r}>"


def _keywords(*words: str) -> re.Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(words) + r")\b", re.IGNORECASE)


def _counterparty_after(*markers: str, stop: str = r"$") -> re.Pattern[str]:
    return re.compile(
        r"(?:^|\s)(?:" + "|".join(markers) + r")\s+(?P<counterparty>.+?)\s*(?=" + stop + ")",
        re.IGNORECASE,
    )


class KeywordBankPattern(BankPattern):
    """Pattern whose expense predicate is a keyword expression."""

    expense_keywords: re.Pattern[str] = _keywords("pagamento", "addebito")

    def is_expense(self, full_text: str) -> bool:
        return self.expense_keywords.search(full_text) is not None


# ── Built-in banks ───────────────────────────────────────────────────


class RevolutPattern(KeywordBankPattern):
    identifier = "revolut"
    name = "Revolut"
    account_name = "Revolut"
    expense_keywords = _keywords(
        r"you\s+spent", r"hai\s+speso", "payment", "pagamento",
        "transfer", "trasferimento", "bonifico",
    )
    amount_pattern = amount_after(
        r"you\s+spent", r"hai\s+speso", "payment", "pagamento",
        r"you\s+received", r"hai\s+ricevuto", "received", "accredito",
        "transfer", "trasferimento", "bonifico",
    )
    counterparty_pattern = _counterparty_after(
        "at", "presso", "in", "to", "a", "di", "da", "from"
    )


class PayPalPattern(KeywordBankPattern):
    identifier = "paypal"
    name = "PayPal"
    account_name = "PayPal"
    expense_keywords = _keywords(
        r"you\s+sent", r"hai\s+inviato", "pagamento", r"hai\s+pagato", r"you\s+paid"
    )
    amount_pattern = amount_after(
        r"you\s+sent", r"hai\s+inviato", "pagamento", r"hai\s+pagato", r"you\s+paid",
        r"you\s+received", r"hai\s+ricevuto",
    )
    counterparty_pattern = _counterparty_after("to", "a", "from", "da")


class PostepayPattern(KeywordBankPattern):
    identifier = "postepay"
    name = "Postepay"
    account_name = "Postepay"
    expense_keywords = _keywords(
        "pagamento", "addebito", "autorizzazione", "bonifico", "prelievo"
    )
    amount_pattern = amount_after(
        "pagamento", "addebito", "autorizzazione", "bonifico", "prelievo",
        "accredito", "ricarica",
    )
    counterparty_pattern = _counterparty_after("presso", "at", "c/o", "a", "verso")


class BBVAPattern(KeywordBankPattern):
    identifier = "bbva"
    name = "BBVA"
    account_name = "BBVA"
    expense_keywords = _keywords("compra", "pago", "cargo", "acquisto", "transferencia")
    amount_pattern = amount_after(
        "compra", "pago", "cargo", "acquisto", "transferencia",
        "ingreso", "abono", "entrata",
    )
    counterparty_pattern = _counterparty_after("en", "c/o", "a")


class IntesaPattern(KeywordBankPattern):
    identifier = "intesa"
    name = "Intesa Sanpaolo"
    account_name = "Intesa Sanpaolo"
    expense_keywords = _keywords("addebito", "pagamento", "pos", "bonifico", "prelievo")
    amount_pattern = amount_after(
        "addebito", "pagamento", "pos", "bonifico", "prelievo", "accredito"
    )
    counterparty_pattern = _counterparty_after(r"a\s+favore\s+di", "presso", "c/o", "a")


class BNLPattern(KeywordBankPattern):
    identifier = "bnl"
    name = "BNL"
    account_name = "BNL"
    expense_keywords = _keywords("pagamento", "prelievo", "addebito")
    amount_pattern = amount_after("pagamento", "prelievo", "addebito", "accredito")
    counterparty_pattern = _counterparty_after("presso", "c/o")


class UniCreditPattern(KeywordBankPattern):
    identifier = "unicredit"
    name = "UniCredit"
    account_name = "UniCredit"
    expense_keywords = _keywords(
        "autorizzata", "addebito", "pagamento", "transazione", "prelievo"
    )
    amount_pattern = amount_after(
        "autorizzata", "addebito", "pagamento", "transazione", "prelievo",
        "accredito", "bonifico",
    )
    counterparty_pattern = _counterparty_after(
        "c/o", "presso", "at",
        stop=r"\s\d{6,}|\s\d{2}/\d{2}/\d{2}|Per info|$",
    )


BUILTIN_PATTERNS: tuple[type[BankPattern], ...] = (
    RevolutPattern,
    PayPalPattern,
    PostepayPattern,
    BBVAPattern,
    IntesaPattern,
    BNLPattern,
    UniCreditPattern,
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  BankPatternLibrary — Lookup by source-app identifier
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BankPatternLibrary:
    """
    Registry of bank patterns keyed by lower-cased identifier.

    Selection is an exact, case-insensitive key lookup, so the result never
    depends on registration order.
    """

    def __init__(self, patterns: list[BankPattern] | None = None):
        self._patterns: dict[str, BankPattern] = {}
        for pattern in patterns if patterns is not None else [cls() for cls in BUILTIN_PATTERNS]:
            self.register(pattern)

    def register(self, pattern: BankPattern) -> None:
        """Add (or replace) the pattern for ``pattern.identifier``."""
        key = pattern.identifier.strip().lower()
        if not key:
            raise ValueError("BankPattern.identifier must not be empty")
        if pattern.amount_pattern is None:
            raise ValueError(f"BankPattern {key!r} has no amount_pattern")
        if key in self._patterns:
            logger.warning("bank_pattern_replaced", identifier=key)
        self._patterns[key] = pattern
        logger.debug("bank_pattern_registered", identifier=key, name=pattern.name)

    def get(self, source_app: str) -> BankPattern | None:
        return self._patterns.get(source_app.strip().lower())

    def supported_apps(self) -> list[str]:
        return sorted(self._patterns)

    def __contains__(self, source_app: str) -> bool:
        return self.get(source_app) is not None

    def __len__(self) -> int:
        return len(self._patterns)
