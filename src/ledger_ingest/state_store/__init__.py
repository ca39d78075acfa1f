"""
State Store (SQLite-based).

Lightweight persistent DB for:
- Parsed invoices and their line items
- Bank accounts and statement transactions
- Import batches

Enforces uniqueness on invoice content hash and (account, transaction hash).
"""

from .sqlite_store import BatchStatus, ImportBatchRecord, StateStore

__all__ = [
    "StateStore",
    "BatchStatus",
    "ImportBatchRecord",
]
