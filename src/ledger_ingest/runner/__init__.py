"""
CLI runner module.

Provides commands:
- init-config: Write a default config file
- parse-invoice / import-invoices: FatturaPA XML, P7M and ZIP files
- parse-statement / import-statement: Bank statement PDFs
- serve: Window endpoint and API server
- status: Storage statistics
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
