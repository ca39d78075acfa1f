"""
SQLite-based state store implementation.

Tables:
- invoices: One row per invoice body, unique by content_hash
- invoice_lines: Line items of each stored invoice body
- bank_accounts: Accounts statements are imported into (unique IBAN)
- bank_transactions: Statement movements, unique per (bank_account_id, hash)
- import_batches: One row per import run with its summary
"""

import json
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ledger_ingest.einvoice.models import InvoiceBody, ParsedInvoice
from ledger_ingest.schemas.dedupe import compute_invoice_hash
from ledger_ingest.schemas.transactions import BankTransaction


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _decimal_text(value) -> Optional[str]:
    return str(value) if value is not None else None


class BatchStatus(str, Enum):
    """Status of an import batch."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ImportBatchRecord:
    """Record of an import run."""

    id: int
    kind: str  # "invoices" | "statement"
    filename: str | None
    status: BatchStatus
    total: int
    saved: int
    duplicates: int
    failed: int
    errors: list[str]
    created_at: str
    completed_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportBatchRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            kind=row["kind"],
            filename=row["filename"],
            status=BatchStatus(row["status"]),
            total=row["total"],
            saved=row["saved"],
            duplicates=row["duplicates"],
            failed=row["failed"],
            errors=json.loads(row["errors_json"]) if row["errors_json"] else [],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )


class StateStore:
    """
    SQLite-based state store for the ingestion pipeline.

    Provides persistent storage of:
    - Parsed invoices (with raw XML and line items)
    - Bank accounts and their transactions
    - Import batches

    Thread-safe for single-writer scenarios.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS invoices (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    content_hash TEXT NOT NULL UNIQUE,
                    source_filename TEXT,
                    parse_method TEXT,
                    xml_version TEXT,
                    body_index INTEGER NOT NULL DEFAULT 0,
                    document_type TEXT,
                    number TEXT,
                    date TEXT,
                    currency TEXT,
                    total_amount TEXT,
                    supplier_name TEXT,
                    supplier_vat_id TEXT,
                    customer_name TEXT,
                    customer_vat_id TEXT,
                    payload_json TEXT NOT NULL,
                    raw_xml TEXT,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS invoice_lines (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    invoice_id INTEGER NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
                    line_number TEXT,
                    article_code TEXT,
                    description TEXT,
                    quantity TEXT,
                    unit_of_measure TEXT,
                    unit_price TEXT,
                    total_price TEXT,
                    vat_rate TEXT,
                    vat_nature TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bank_accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    iban TEXT UNIQUE,
                    bank_name TEXT,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS import_batches (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    filename TEXT,
                    status TEXT NOT NULL,
                    total INTEGER NOT NULL DEFAULT 0,
                    saved INTEGER NOT NULL DEFAULT 0,
                    duplicates INTEGER NOT NULL DEFAULT 0,
                    failed INTEGER NOT NULL DEFAULT 0,
                    errors_json TEXT,
                    created_at TEXT NOT NULL,
                    completed_at TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bank_transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    bank_account_id INTEGER NOT NULL REFERENCES bank_accounts(id),
                    import_batch_id INTEGER REFERENCES import_batches(id),
                    hash TEXT NOT NULL,
                    date TEXT NOT NULL,
                    value_date TEXT,
                    amount TEXT NOT NULL,
                    commission_amount TEXT,
                    net_amount TEXT,
                    balance TEXT,
                    description TEXT,
                    counterparty_name TEXT,
                    counterparty_account TEXT,
                    transaction_type TEXT,
                    reference TEXT,
                    invoice_ref TEXT,
                    branch TEXT,
                    cbi_flow_id TEXT,
                    category_code TEXT,
                    raw_text TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE (bank_account_id, hash)
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_invoices_identity ON invoices(number, date, supplier_vat_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_invoice_lines_invoice ON invoice_lines(invoice_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_bank_transactions_date ON bank_transactions(bank_account_id, date)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    # Invoice methods

    def insert_invoice(
        self,
        invoice: ParsedInvoice,
        raw_xml: str,
        body_index: int = 0,
        source_filename: str | None = None,
        parse_method: str | None = None,
    ) -> int:
        """
        Store one invoice body with its lines. Returns the invoice ID.

        Raises:
            sqlite3.IntegrityError: If the same body is already stored
        """
        body: InvoiceBody = invoice.bodies[body_index]
        payload = invoice.to_dict()
        payload["body"] = payload.pop("bodies")[body_index]

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO invoices
                (content_hash, source_filename, parse_method, xml_version, body_index,
                 document_type, number, date, currency, total_amount,
                 supplier_name, supplier_vat_id, customer_name, customer_vat_id,
                 payload_json, raw_xml, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    compute_invoice_hash(raw_xml, body_index),
                    source_filename,
                    parse_method,
                    invoice.version,
                    body_index,
                    body.document_type,
                    body.number,
                    body.date,
                    body.currency,
                    body.total_amount,
                    invoice.supplier.name,
                    invoice.supplier.vat_id,
                    invoice.customer.name,
                    invoice.customer.vat_id,
                    json.dumps(payload),
                    raw_xml,
                    _now(),
                ),
            )
            invoice_id = cursor.lastrowid or 0

            conn.executemany(
                """
                INSERT INTO invoice_lines
                (invoice_id, line_number, article_code, description, quantity,
                 unit_of_measure, unit_price, total_price, vat_rate, vat_nature)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                [
                    (
                        invoice_id,
                        line.number,
                        line.article_code,
                        line.description,
                        line.quantity,
                        line.unit_of_measure,
                        line.unit_price,
                        line.total_price,
                        line.vat_rate,
                        line.vat_nature,
                    )
                    for line in body.lines
                ],
            )
            return invoice_id

    def find_invoice(self, number: str, date: str, supplier_vat_id: str) -> dict[str, Any] | None:
        """Find a stored invoice by number, date and supplier VAT id."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM invoices
                WHERE number = ? AND date = ? AND supplier_vat_id = ?
                LIMIT 1
            """,
                (number, date, supplier_vat_id),
            ).fetchone()
            return dict(row) if row else None

    def get_invoice(self, invoice_id: int) -> dict[str, Any] | None:
        """Get a stored invoice by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,)).fetchone()
            return dict(row) if row else None

    def get_invoice_lines(self, invoice_id: int) -> list[dict[str, Any]]:
        """Get the line items of a stored invoice, in document order."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM invoice_lines WHERE invoice_id = ? ORDER BY id", (invoice_id,)
            ).fetchall()
            return [dict(row) for row in rows]

    # Bank account methods

    def ensure_bank_account(
        self,
        iban: str | None = None,
        name: str | None = None,
        bank_name: str | None = None,
    ) -> int:
        """
        Return the ID of the account with this IBAN (or name), creating it if needed.

        Without an IBAN the account is looked up by name ("Default" if omitted).
        """
        iban = iban.replace(" ", "").upper() if iban else None
        name = name or iban or "Default"

        with self._transaction() as conn:
            if iban:
                row = conn.execute("SELECT id FROM bank_accounts WHERE iban = ?", (iban,)).fetchone()
            else:
                row = conn.execute(
                    "SELECT id FROM bank_accounts WHERE iban IS NULL AND name = ?", (name,)
                ).fetchone()
            if row:
                return row["id"]

            cursor = conn.execute(
                "INSERT INTO bank_accounts (name, iban, bank_name, created_at) VALUES (?, ?, ?, ?)",
                (name, iban, bank_name, _now()),
            )
            return cursor.lastrowid or 0

    # Import batch methods

    def create_import_batch(self, kind: str, filename: str | None = None, total: int = 0) -> int:
        """Create an import batch in processing state. Returns the batch ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO import_batches (kind, filename, status, total, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (kind, filename, BatchStatus.PROCESSING.value, total, _now()),
            )
            return cursor.lastrowid or 0

    def update_import_batch(
        self,
        batch_id: int,
        status: BatchStatus,
        saved: int,
        duplicates: int,
        failed: int,
        errors: Sequence[str] = (),
    ) -> None:
        """Record the final summary of an import batch."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE import_batches
                SET status = ?, saved = ?, duplicates = ?, failed = ?, errors_json = ?, completed_at = ?
                WHERE id = ?
            """,
                (status.value, saved, duplicates, failed, json.dumps(list(errors)), _now(), batch_id),
            )

    def get_import_batch(self, batch_id: int) -> ImportBatchRecord | None:
        """Get an import batch by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM import_batches WHERE id = ?", (batch_id,)).fetchone()
            return ImportBatchRecord.from_row(row) if row else None

    # Bank transaction methods

    def insert_transactions(
        self,
        account_id: int,
        batch_id: int | None,
        transactions: Sequence[BankTransaction],
    ) -> int:
        """
        Insert transactions, ignoring ones already stored for this account.

        Returns:
            Number of rows actually inserted
        """
        if not transactions:
            return 0

        now = _now()
        with self._transaction() as conn:
            cursor = conn.executemany(
                """
                INSERT OR IGNORE INTO bank_transactions
                (bank_account_id, import_batch_id, hash, date, value_date, amount,
                 commission_amount, net_amount, balance, description, counterparty_name,
                 counterparty_account, transaction_type, reference, invoice_ref, branch,
                 cbi_flow_id, category_code, raw_text, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                [
                    (
                        account_id,
                        batch_id,
                        tx.hash,
                        tx.date,
                        tx.value_date,
                        str(tx.amount),
                        _decimal_text(tx.commission_amount),
                        _decimal_text(tx.net_amount),
                        _decimal_text(tx.balance),
                        tx.description,
                        tx.counterparty_name,
                        tx.counterparty_account,
                        tx.transaction_type.value,
                        tx.reference,
                        tx.invoice_ref,
                        tx.branch,
                        tx.cbi_flow_id,
                        tx.category_code,
                        tx.raw_text,
                        now,
                    )
                    for tx in transactions
                ],
            )
            return max(cursor.rowcount, 0)

    def list_transactions(self, account_id: int | None = None, limit: int | None = None) -> list[dict[str, Any]]:
        """List stored transactions, newest first."""
        query = "SELECT * FROM bank_transactions"
        params: list[Any] = []
        if account_id is not None:
            query += " WHERE bank_account_id = ?"
            params.append(account_id)
        query += " ORDER BY date DESC, id ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [dict(row) for row in rows]

    # Statistics

    def get_stats(self) -> dict[str, Any]:
        """Get storage statistics."""
        with self._transaction() as conn:
            invoices = conn.execute("SELECT COUNT(*) as count FROM invoices").fetchone()
            accounts = conn.execute("SELECT COUNT(*) as count FROM bank_accounts").fetchone()
            transactions = conn.execute("SELECT COUNT(*) as count FROM bank_transactions").fetchone()
            batches = conn.execute("SELECT COUNT(*) as count FROM import_batches").fetchone()

            return {
                "invoices_total": invoices["count"] if invoices else 0,
                "bank_accounts_total": accounts["count"] if accounts else 0,
                "transactions_total": transactions["count"] if transactions else 0,
                "import_batches_total": batches["count"] if batches else 0,
            }
