"""Invoice import service.

Parses an uploaded invoice file (XML, P7M or ZIP) and stores every invoice
body it contains. Re-importing the same file stores nothing new: a body is a
duplicate when its content hash is already stored, or when an invoice with
the same number, date and supplier VAT id exists.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from ledger_ingest.einvoice import ParseResult, process_invoice_file

from .summary import ImportSummary

if TYPE_CHECKING:
    from ledger_ingest.state_store import StateStore

logger = logging.getLogger(__name__)


class InvoiceImportService:
    """Store parsed invoices in the state store."""

    def __init__(self, state_store: StateStore, max_reported_errors: int = 20) -> None:
        self.store = state_store
        self.max_reported_errors = max_reported_errors

    def import_file(self, filename: str, data: bytes) -> tuple[list[ParseResult], ImportSummary]:
        """Parse and store one uploaded file (ZIP archives are expanded)."""
        results = process_invoice_file(filename, data)
        summary = self.import_results(results, source=filename)
        return results, summary

    def import_results(self, results: list[ParseResult], source: str | None = None) -> ImportSummary:
        """Store already parsed results and record an import batch."""
        summary = ImportSummary(max_reported_errors=self.max_reported_errors)
        summary.batch_id = self.store.create_import_batch("invoices", source, total=len(results))

        for result in results:
            if result.data is None:
                summary.failed += 1
                summary.add_error(f"{result.filename}: {result.error}")
                continue
            self._save_result(result, summary)

        self.store.update_import_batch(
            summary.batch_id,
            summary.status,
            saved=summary.saved,
            duplicates=summary.duplicates,
            failed=summary.failed,
            errors=summary.errors,
        )
        logger.info(
            "Invoice import %s: %d saved, %d duplicates, %d failed",
            source or "(results)",
            summary.saved,
            summary.duplicates,
            summary.failed,
        )
        return summary

    def _save_result(self, result: ParseResult, summary: ImportSummary) -> None:
        invoice = result.data
        for index, body in enumerate(invoice.bodies):
            label = f"{result.filename} #{body.number or index + 1}"

            if body.number and self.store.find_invoice(body.number, body.date, invoice.supplier.vat_id):
                logger.debug("Duplicate invoice %s", label)
                summary.duplicates += 1
                continue

            try:
                self.store.insert_invoice(
                    invoice,
                    result.raw_xml,
                    body_index=index,
                    source_filename=result.filename,
                    parse_method=result.method,
                )
            except sqlite3.IntegrityError:
                logger.debug("Duplicate invoice content %s", label)
                summary.duplicates += 1
            except sqlite3.Error as e:
                logger.error("Failed to store invoice %s: %s", label, e)
                summary.failed += 1
                summary.add_error(f"{label}: {e}")
            else:
                summary.saved += 1
