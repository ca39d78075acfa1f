"""
Invoice & bank statement ingestion → canonical records → storage

A deterministic, testable pipeline that turns Italian electronic invoices
(FatturaPA XML, signed P7M, ZIP bundles) and bank-statement PDFs into typed
invoice and transaction records with idempotent deduplication.
"""

__version__ = "0.1.0"
