"""
Dedupe key generation (CRITICAL).

This module defines THE deterministic identity functions for ingested records.
This is the ONLY place where idempotency keys are computed.

Key formats:
1. Bank transaction hash (persisted): SHA256(date|amount|description[:80])[:32]
   - Unique per bank account in the store; re-importing the same statement
     inserts nothing new.

2. Bank transaction display key (in-memory): date|amount|description[:60]
   - Used to collapse duplicates produced by overlapping chunks before saving.

3. Invoice hash: SHA256 of the whitespace-normalized XML, with the body index
   appended for every body after the first.

Every key must be:
- Stable: Same inputs always produce same output
- Order independent: The position of a record in its batch never matters
"""

import hashlib
import re
from decimal import Decimal

# Length of the persisted transaction hash
TRANSACTION_HASH_LENGTH = 32

# Description prefix lengths
HASH_DESCRIPTION_LENGTH = 80
DISPLAY_KEY_DESCRIPTION_LENGTH = 60

_WHITESPACE = re.compile(r"\s+")


def normalize_amount(amount: Decimal | str | float) -> str:
    """
    Normalize amount to consistent format for hashing.

    Args:
        amount: Amount in various formats

    Returns:
        Normalized amount string with 2 decimal places
    """
    if isinstance(amount, str):
        amount = Decimal(amount.replace(",", "."))
    elif isinstance(amount, (float, int)):
        amount = Decimal(str(amount))
    elif not isinstance(amount, Decimal):
        raise ValueError(f"amount must be Decimal, str, or float, got: {type(amount)}")

    return f"{amount:.2f}"


def compute_transaction_hash(date: str, amount: Decimal | str | float, description: str | None) -> str:
    """
    Compute the persisted idempotency hash of a bank transaction.

    Args:
        date: ISO date (YYYY-MM-DD)
        amount: Signed amount
        description: Transaction description (only the first 80 chars count)

    Returns:
        32-character lowercase hex string

    Examples:
        >>> compute_transaction_hash("2024-03-01", "-12.50", "POS ESSELUNGA")
        '...'  # Deterministic hash
    """
    desc = (description or "")[:HASH_DESCRIPTION_LENGTH]
    canonical = f"{(date or '').strip()}|{normalize_amount(amount)}|{desc}"
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:TRANSACTION_HASH_LENGTH]


def dedupe_key(date: str, amount: Decimal | str | float, description: str | None) -> str:
    """Key used to drop duplicate transactions within one extraction run."""
    desc = (description or "")[:DISPLAY_KEY_DESCRIPTION_LENGTH]
    return f"{date}|{normalize_amount(amount)}|{desc}"


def compute_invoice_hash(xml: str, body_index: int = 0) -> str:
    """
    Compute the idempotency key of an invoice body.

    Args:
        xml: Invoice XML as extracted from the file
        body_index: Zero-based index of the body within the document

    Returns:
        64-character lowercase hex string
    """
    normalized = _WHITESPACE.sub(" ", xml).strip()
    if body_index:
        normalized = f"{normalized}#{body_index}"
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

