"""
Normalizer & deduplicator for extracted statement movements.

Two stages:
- Server side (per chunk): sanitize_candidate() clips and coerces each raw
  model object into a wire-safe dict, dedupe_candidates() drops duplicates.
- Client side (per import): normalize_transaction() turns wire dicts into
  BankTransaction, dedupe_transactions() collapses duplicates from
  overlapping windows, sort_for_display() orders newest first.
"""

import logging
import math
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from ledger_ingest.schemas.dedupe import dedupe_key
from ledger_ingest.schemas.transactions import BankTransaction, TransactionType

logger = logging.getLogger(__name__)

# Field length limits applied to model output
CLIP_LIMITS = {
    "date": 20,
    "value_date": 20,
    "description": 400,
    "counterparty_name": 180,
    "reference": 120,
    "invoice_ref": 80,
    "category_code": 40,
    "raw_text": 180,
}

_WHITESPACE = re.compile(r"\s")
# A dot followed by exactly three digits is a thousands separator
_THOUSANDS_DOT = re.compile(r"\.(?=\d{3}(\D|$))")
_NON_NUMERIC = re.compile(r"[^0-9+\-.]")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_SEPARATORS = re.compile(r"[/\-.]")

_TRANSACTION_TYPES = {t.value for t in TransactionType}


def to_number(value: Any) -> Optional[float]:
    """
    Coerce a model-provided amount to float.

    Handles Italian formatting ("1.234,56"), currency symbols and stray
    whitespace. Returns None when nothing numeric remains.

    Examples:
        >>> to_number("€ -1.234,56")
        -1234.56
        >>> to_number("12,5")
        12.5
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    text = _WHITESPACE.sub("", text).replace("€", "")
    text = _THOUSANDS_DOT.sub("", text)
    text = text.replace(",", ".", 1)
    text = _NON_NUMERIC.sub("", text)
    if not text:
        return None

    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _clip(value: Any, limit: int) -> Optional[str]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    return text[:limit]


def normalize_transaction_type(value: Any) -> str:
    """Map to the closed transaction_type set ("altro" when unknown)."""
    text = value.strip().lower() if isinstance(value, str) else ""
    return text if text in _TRANSACTION_TYPES else TransactionType.ALTRO.value


def sanitize_candidate(raw: Any) -> Optional[dict]:
    """
    Clip and coerce one raw model object.

    Returns None when the object has no date or no numeric amount.
    The commission, when present, is reported as a positive number.
    """
    if not isinstance(raw, dict):
        return None

    date = _clip(raw.get("date"), CLIP_LIMITS["date"])
    amount = to_number(raw.get("amount"))
    if not date or amount is None:
        return None

    commission = to_number(raw.get("commission"))

    return {
        "date": date,
        "value_date": _clip(raw.get("value_date"), CLIP_LIMITS["value_date"]),
        "amount": amount,
        "commission": abs(commission) if commission is not None else None,
        "description": _clip(raw.get("description"), CLIP_LIMITS["description"]) or "",
        "counterparty_name": _clip(raw.get("counterparty_name"), CLIP_LIMITS["counterparty_name"]),
        "transaction_type": normalize_transaction_type(raw.get("transaction_type")),
        "reference": _clip(raw.get("reference"), CLIP_LIMITS["reference"]),
        "invoice_ref": _clip(raw.get("invoice_ref"), CLIP_LIMITS["invoice_ref"]),
        "category_code": _clip(raw.get("category_code"), CLIP_LIMITS["category_code"]),
        "raw_text": _clip(raw.get("raw_text"), CLIP_LIMITS["raw_text"]),
    }


def dedupe_candidates(items: Iterable[dict]) -> list[dict]:
    """Drop sanitized candidates sharing date, amount and description prefix."""
    seen: set[str] = set()
    unique: list[dict] = []
    for item in items:
        key = dedupe_key(item["date"], item["amount"], item.get("description"))
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def parse_italian_date(value: Any) -> Optional[str]:
    """
    Convert DD/MM/YYYY (or D-M-YYYY, DD.MM.YYYY, YYYY/MM/DD) to ISO.

    ISO input is returned unchanged. Anything else, including impossible
    calendar dates, yields None.

    Examples:
        >>> parse_italian_date("1/3/2024")
        '2024-03-01'
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None

    if _ISO_DATE.match(text):
        iso = text
    else:
        parts = _DATE_SEPARATORS.split(text)
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            return None
        first, middle, last = parts
        if len(last) == 4:
            iso = f"{last}-{middle.zfill(2)}-{first.zfill(2)}"
        elif len(first) == 4:
            iso = f"{first}-{middle.zfill(2)}-{last.zfill(2)}"
        else:
            return None

    try:
        datetime.strptime(iso, "%Y-%m-%d")
    except ValueError:
        return None
    return iso


def _to_decimal(value: Any) -> Optional[Decimal]:
    number = to_number(value)
    if number is None:
        return None
    try:
        return Decimal(str(number))
    except InvalidOperation:
        return None


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_transaction(candidate: dict) -> Optional[BankTransaction]:
    """
    Build a BankTransaction from a wire candidate.

    Returns None (the entry is discarded) when the date or the amount is
    missing, or the date cannot be parsed.
    """
    date = parse_italian_date(candidate.get("date"))
    amount = _to_decimal(candidate.get("amount"))
    if date is None or amount is None:
        logger.debug("Discarding candidate without usable date/amount")
        return None

    commission_raw = candidate.get("commission")
    if commission_raw is None:
        commission_raw = candidate.get("commission_amount")
    commission = _to_decimal(commission_raw)
    commission_amount = -abs(commission) if commission is not None else Decimal("0")

    description = str(candidate.get("description") or "").strip()
    raw_text = str(candidate.get("raw_text") or description).strip()

    return BankTransaction(
        date=date,
        value_date=parse_italian_date(candidate.get("value_date")),
        amount=amount,
        commission_amount=commission_amount,
        net_amount=amount - abs(commission_amount),
        balance=_to_decimal(candidate.get("balance")),
        description=description,
        counterparty_name=_optional_text(candidate.get("counterparty_name")),
        counterparty_account=_optional_text(candidate.get("counterparty_account")),
        transaction_type=TransactionType(normalize_transaction_type(candidate.get("transaction_type"))),
        reference=_optional_text(candidate.get("reference")),
        invoice_ref=_optional_text(candidate.get("invoice_ref")),
        branch=_optional_text(candidate.get("branch")),
        cbi_flow_id=_optional_text(candidate.get("cbi_flow_id")),
        category_code=_optional_text(candidate.get("category_code")),
        raw_text=raw_text or None,
    )


def dedupe_transactions(transactions: Iterable[BankTransaction]) -> list[BankTransaction]:
    """Keep the first transaction per (date, amount, description[:60])."""
    seen: set[str] = set()
    unique: list[BankTransaction] = []
    for tx in transactions:
        key = dedupe_key(tx.date, tx.amount, tx.description)
        if key in seen:
            continue
        seen.add(key)
        unique.append(tx)
    return unique


def sort_for_display(transactions: Iterable[BankTransaction]) -> list[BankTransaction]:
    """Newest first; ties keep their extraction order."""
    return sorted(transactions, key=lambda tx: tx.date, reverse=True)


def normalize_and_dedupe(candidates: Iterable[dict]) -> list[BankTransaction]:
    """Full client-side pass: normalize, discard unusable, dedupe, sort."""
    normalized = []
    discarded = 0
    for candidate in candidates:
        tx = normalize_transaction(candidate) if isinstance(candidate, dict) else None
        if tx is None:
            discarded += 1
            continue
        normalized.append(tx)

    if discarded:
        logger.info("Discarded %d unusable candidates", discarded)

    return sort_for_display(dedupe_transactions(normalized))
