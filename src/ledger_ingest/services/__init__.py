"""Import services persisting parsed documents."""

from ledger_ingest.services.invoice_import import InvoiceImportService
from ledger_ingest.services.statement_import import StatementImportService
from ledger_ingest.services.summary import ImportSummary

__all__ = ["ImportSummary", "InvoiceImportService", "StatementImportService"]
