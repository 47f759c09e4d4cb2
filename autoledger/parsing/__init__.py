"""
Parsing — Bank notification text → ParsedTransaction.
"""

from autoledger.parsing.parser import NotificationParser, build_full_text
from autoledger.parsing.patterns import (
    BankPattern,
    BankPatternLibrary,
    KeywordBankPattern,
    amount_after,
    clean_merchant_name,
    parse_amount,
)
from autoledger.parsing.validation import validate_transaction

__all__ = [
    "BankPattern",
    "BankPatternLibrary",
    "KeywordBankPattern",
    "amount_after",
    "NotificationParser",
    "build_full_text",
    "clean_merchant_name",
    "parse_amount",
    "validate_transaction",
]
