"""Bank statement import service.

Runs the window orchestrator on a statement PDF and stores the resulting
transactions in batches. A failed batch is recorded in the summary and the
following batches are still attempted. Protocol and timeout errors from the
orchestrator abort the import and propagate to the caller.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING, Sequence

from .summary import ImportSummary

if TYPE_CHECKING:
    from ledger_ingest.schemas.transactions import BankTransaction
    from ledger_ingest.state_store import StateStore
    from ledger_ingest.statements.orchestrator import StatementParseResult, WindowOrchestrator

logger = logging.getLogger(__name__)


class StatementImportService:
    """Extract and persist bank statement transactions."""

    def __init__(
        self,
        state_store: StateStore,
        batch_size: int = 50,
        max_reported_errors: int = 20,
    ) -> None:
        """Initialize the import service.

        Args:
            state_store: Store receiving the transactions.
            batch_size: Rows per insert batch.
            max_reported_errors: Error messages kept in the summary.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got: {batch_size}")
        self.store = state_store
        self.batch_size = batch_size
        self.max_reported_errors = max_reported_errors

    def import_statement(
        self,
        pdf_bytes: bytes,
        orchestrator: WindowOrchestrator,
        iban: str | None = None,
        account_name: str | None = None,
        filename: str | None = None,
    ) -> tuple[StatementParseResult, ImportSummary]:
        """Extract a statement and save its transactions."""
        result = orchestrator.run(pdf_bytes)
        summary = self.save_transactions(
            result.transactions,
            iban=iban,
            account_name=account_name,
            filename=filename,
            extraction_errors=result.errors,
        )
        return result, summary

    def save_transactions(
        self,
        transactions: Sequence[BankTransaction],
        iban: str | None = None,
        account_name: str | None = None,
        filename: str | None = None,
        extraction_errors: Sequence[str] = (),
    ) -> ImportSummary:
        """
        Persist transactions in batches of ``batch_size``.

        Rows already stored for the account count as duplicates.
        """
        summary = ImportSummary(max_reported_errors=self.max_reported_errors)
        for message in extraction_errors:
            summary.add_error(message)

        account_id = self.store.ensure_bank_account(iban=iban, name=account_name)
        summary.batch_id = self.store.create_import_batch(
            "statement", filename, total=len(transactions)
        )

        for start in range(0, len(transactions), self.batch_size):
            batch = list(transactions[start : start + self.batch_size])
            batch_number = start // self.batch_size + 1
            try:
                inserted = self.store.insert_transactions(account_id, summary.batch_id, batch)
            except sqlite3.Error as e:
                logger.error("Batch %d failed: %s", batch_number, e)
                summary.failed += len(batch)
                summary.add_error(f"Batch {batch_number}: {e}")
                continue
            summary.saved += inserted
            summary.duplicates += len(batch) - inserted

        self.store.update_import_batch(
            summary.batch_id,
            summary.status,
            saved=summary.saved,
            duplicates=summary.duplicates,
            failed=summary.failed,
            errors=summary.errors,
        )
        logger.info(
            "Statement import %s: %d saved, %d duplicates, %d failed",
            filename or "(transactions)",
            summary.saved,
            summary.duplicates,
            summary.failed,
        )
        return summary
