"""
Tests for the SQLite state store.
"""

import sqlite3
from decimal import Decimal

import pytest
from conftest import MULTI_BODY_XML, SAMPLE_FATTURA_XML

from ledger_ingest.einvoice import parse_fattura
from ledger_ingest.schemas.transactions import BankTransaction, TransactionType
from ledger_ingest.state_store import BatchStatus, StateStore


def _tx(date: str, amount: str, description: str, **kwargs) -> BankTransaction:
    return BankTransaction(date=date, amount=Decimal(amount), description=description, **kwargs)


@pytest.fixture
def store(temp_db):
    return StateStore(temp_db)


class TestSchema:
    def test_tables_created(self, store, temp_db):
        conn = sqlite3.connect(temp_db)
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        conn.close()
        assert {"invoices", "invoice_lines", "bank_accounts", "bank_transactions", "import_batches"} <= tables

    def test_reopen_existing_database(self, store, temp_db):
        store.ensure_bank_account(iban="IT60X0542811101000000123456")
        reopened = StateStore(temp_db)
        assert reopened.get_stats()["bank_accounts_total"] == 1


class TestInvoices:
    """Test invoice storage."""

    def test_insert_and_get(self, store):
        invoice = parse_fattura(SAMPLE_FATTURA_XML)

        invoice_id = store.insert_invoice(
            invoice, SAMPLE_FATTURA_XML, source_filename="IT01234567890_00042.xml", parse_method="plain-XML"
        )

        row = store.get_invoice(invoice_id)
        assert row["number"] == "FT-2024/042"
        assert row["date"] == "2024-03-15"
        assert row["document_type"] == "TD01"
        assert row["supplier_vat_id"] == "IT01234567890"
        assert row["parse_method"] == "plain-XML"
        assert row["raw_xml"] == SAMPLE_FATTURA_XML

        lines = store.get_invoice_lines(invoice_id)
        assert len(lines) == 2
        assert lines[0]["line_number"] == "1"

    def test_find_invoice(self, store):
        invoice = parse_fattura(SAMPLE_FATTURA_XML)
        store.insert_invoice(invoice, SAMPLE_FATTURA_XML)

        assert store.find_invoice("FT-2024/042", "2024-03-15", "IT01234567890") is not None
        assert store.find_invoice("FT-2024/042", "2024-03-16", "IT01234567890") is None

    def test_same_body_twice_is_rejected(self, store):
        invoice = parse_fattura(SAMPLE_FATTURA_XML)
        store.insert_invoice(invoice, SAMPLE_FATTURA_XML)

        with pytest.raises(sqlite3.IntegrityError):
            store.insert_invoice(invoice, SAMPLE_FATTURA_XML)

    def test_bodies_of_one_file_stored_separately(self, store):
        invoice = parse_fattura(MULTI_BODY_XML)

        first = store.insert_invoice(invoice, MULTI_BODY_XML, body_index=0)
        second = store.insert_invoice(invoice, MULTI_BODY_XML, body_index=1)

        assert store.get_invoice(first)["number"] == "101"
        assert store.get_invoice(second)["number"] == "102"
        assert store.get_invoice(second)["body_index"] == 1

    def test_get_missing(self, store):
        assert store.get_invoice(999) is None
        assert store.get_invoice_lines(999) == []


class TestBankAccounts:
    def test_iban_normalized_and_reused(self, store):
        first = store.ensure_bank_account(iban="it60 x054 2811 1010 0000 0123 456")
        second = store.ensure_bank_account(iban="IT60X0542811101000000123456", name="Conto corrente")
        assert first == second

    def test_default_account(self, store):
        assert store.ensure_bank_account() == store.ensure_bank_account(name="Default")

    def test_named_accounts_are_distinct(self, store):
        assert store.ensure_bank_account(name="Cassa") != store.ensure_bank_account(name="Carta")


class TestImportBatches:
    def test_create_and_update(self, store):
        batch_id = store.create_import_batch("statement", "estratto.pdf", total=4)

        batch = store.get_import_batch(batch_id)
        assert batch.status == BatchStatus.PROCESSING
        assert batch.completed_at is None

        store.update_import_batch(batch_id, BatchStatus.COMPLETED, saved=3, duplicates=1, failed=0, errors=["x"])

        batch = store.get_import_batch(batch_id)
        assert batch.kind == "statement"
        assert batch.filename == "estratto.pdf"
        assert batch.status == BatchStatus.COMPLETED
        assert (batch.total, batch.saved, batch.duplicates, batch.failed) == (4, 3, 1, 0)
        assert batch.errors == ["x"]
        assert batch.completed_at is not None

    def test_missing_batch(self, store):
        assert store.get_import_batch(42) is None


class TestTransactions:
    """Test idempotent transaction storage."""

    def test_insert_is_idempotent(self, store):
        account = store.ensure_bank_account(name="Conto")
        transactions = [
            _tx("2024-03-01", "-12.50", "POS BAR", transaction_type=TransactionType.POS),
            _tx("2024-03-02", "1500.00", "STIPENDIO MARZO", transaction_type=TransactionType.STIPENDIO),
        ]

        assert store.insert_transactions(account, None, transactions) == 2
        assert store.insert_transactions(account, None, transactions) == 0
        assert store.get_stats()["transactions_total"] == 2

    def test_same_transaction_other_account(self, store):
        tx = _tx("2024-03-01", "-12.50", "POS BAR")
        first = store.ensure_bank_account(name="A")
        second = store.ensure_bank_account(name="B")

        assert store.insert_transactions(first, None, [tx]) == 1
        assert store.insert_transactions(second, None, [tx]) == 1

    def test_empty_batch(self, store):
        assert store.insert_transactions(store.ensure_bank_account(), None, []) == 0

    def test_list_newest_first(self, store):
        account = store.ensure_bank_account()
        store.insert_transactions(
            account,
            None,
            [_tx("2024-01-10", "-1.00", "A"), _tx("2024-03-10", "-2.00", "B"), _tx("2024-02-10", "-3.00", "C")],
        )

        rows = store.list_transactions(account)
        assert [r["date"] for r in rows] == ["2024-03-10", "2024-02-10", "2024-01-10"]
        assert rows[0]["amount"] == "-2.00"
        assert rows[0]["net_amount"] == "-2.00"
        assert len(store.list_transactions(limit=1)) == 1


class TestStats:
    def test_empty(self, store):
        assert store.get_stats() == {
            "invoices_total": 0,
            "bank_accounts_total": 0,
            "transactions_total": 0,
            "import_batches_total": 0,
        }
