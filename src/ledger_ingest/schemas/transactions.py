"""
Canonical bank transaction (SSOT).

Every extracted statement movement is normalized into BankTransaction before
it is deduplicated, displayed or persisted.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from .dedupe import compute_transaction_hash


class TransactionType(str, Enum):
    """Closed set of statement movement types."""

    BONIFICO_IN = "bonifico_in"
    BONIFICO_OUT = "bonifico_out"
    RIBA = "riba"
    SDD = "sdd"
    POS = "pos"
    PRELIEVO = "prelievo"
    COMMISSIONE = "commissione"
    STIPENDIO = "stipendio"
    F24 = "f24"
    ALTRO = "altro"


@dataclass
class BankTransaction:
    """
    One normalized bank statement movement.

    Sign conventions:
    - amount: negative = money out, positive = money in
    - commission_amount: always <= 0 (an adjustment, never a credit)
    - net_amount: amount minus the absolute commission
    """

    date: str  # ISO format YYYY-MM-DD
    amount: Decimal
    description: str
    transaction_type: TransactionType = TransactionType.ALTRO
    value_date: Optional[str] = None
    commission_amount: Decimal = Decimal("0")
    net_amount: Optional[Decimal] = None
    balance: Optional[Decimal] = None
    counterparty_name: Optional[str] = None
    counterparty_account: Optional[str] = None
    reference: Optional[str] = None
    invoice_ref: Optional[str] = None
    branch: Optional[str] = None
    cbi_flow_id: Optional[str] = None
    category_code: Optional[str] = None
    raw_text: Optional[str] = None

    def __post_init__(self) -> None:
        if self.net_amount is None:
            self.net_amount = self.amount - abs(self.commission_amount)

    @property
    def hash(self) -> str:
        """Persisted idempotency key."""
        return compute_transaction_hash(self.date, self.amount, self.description)

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON output."""
        return {
            "date": self.date,
            "value_date": self.value_date,
            "amount": str(self.amount),
            "commission_amount": str(self.commission_amount),
            "net_amount": str(self.net_amount),
            "balance": str(self.balance) if self.balance is not None else None,
            "description": self.description,
            "counterparty_name": self.counterparty_name,
            "counterparty_account": self.counterparty_account,
            "transaction_type": self.transaction_type.value,
            "reference": self.reference,
            "invoice_ref": self.invoice_ref,
            "branch": self.branch,
            "cbi_flow_id": self.cbi_flow_id,
            "category_code": self.category_code,
            "raw_text": self.raw_text,
            "hash": self.hash,
        }
