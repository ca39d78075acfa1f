"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY transaction models used across all modules.
"""

from .dedupe import (
    TRANSACTION_HASH_LENGTH,
    compute_invoice_hash,
    compute_transaction_hash,
    dedupe_key,
    normalize_amount,
)
from .transactions import BankTransaction, TransactionType

__all__ = [
    # Canonical transaction
    "BankTransaction",
    "TransactionType",
    # Dedupe
    "TRANSACTION_HASH_LENGTH",
    "compute_transaction_hash",
    "compute_invoice_hash",
    "dedupe_key",
    "normalize_amount",
]
