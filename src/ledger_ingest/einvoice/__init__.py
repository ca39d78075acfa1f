"""
Italian electronic invoice (FatturaPA) ingestion.

Decodes bare XML, PKCS#7-signed ``.p7m`` files and ZIP bundles into
ParsedInvoice records.
"""

from .byte_scan import ByteScanError, scan_for_xml
from .envelope import (
    EnvelopeError,
    EnvelopeOutcome,
    MalformedLengthError,
    MissingMarkerError,
    OidNotFoundError,
    UnrecognizedEnvelopeError,
    extract_signed_content,
    resolve_envelope,
    unwrap_transport_encoding,
)
from .mapper import MappingError, parse_fattura, strip_namespaces
from .models import InvoiceBody, InvoiceLine, ParsedInvoice, ParseResult
from .router import process_buffer, process_invoice_file

__all__ = [
    # Envelope
    "EnvelopeError",
    "EnvelopeOutcome",
    "UnrecognizedEnvelopeError",
    "OidNotFoundError",
    "MalformedLengthError",
    "MissingMarkerError",
    "extract_signed_content",
    "resolve_envelope",
    "unwrap_transport_encoding",
    "ByteScanError",
    "scan_for_xml",
    # Mapping
    "MappingError",
    "parse_fattura",
    "strip_namespaces",
    "ParsedInvoice",
    "InvoiceBody",
    "InvoiceLine",
    "ParseResult",
    # Routing
    "process_buffer",
    "process_invoice_file",
]
