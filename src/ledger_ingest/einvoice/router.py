"""
Invoice file router.

Routes a named buffer to the right decoding path:
- ``.zip``: every ``.xml`` / ``.p7m`` entry is processed independently
- ``.p7m``: envelope resolution (DER, then byte-scan)
- anything else: plain UTF-8 XML

One bad file never aborts its siblings; each produces its own ParseResult.
"""

import io
import logging
import zipfile

from .envelope import INVOICE_MARKER, resolve_envelope
from .mapper import MappingError, parse_fattura
from .models import ParseResult

logger = logging.getLogger(__name__)

METHOD_DER = "DER"
METHOD_BYTE_SCAN = "byte-scan"
METHOD_PLAIN_XML = "plain-XML"
METHOD_FAILED = "failed"

SUPPORTED_EXTENSIONS = (".xml", ".p7m")


class InvoiceDecodeError(Exception):
    """The file could not be turned into FatturaPA XML."""

    pass


def _decode(filename: str, data: bytes) -> tuple[str, str]:
    if filename.lower().endswith(".p7m"):
        outcome = resolve_envelope(data)
        if not outcome.ok:
            raise InvoiceDecodeError(outcome.error_message)
        return outcome.xml, outcome.method
    return data.decode("utf-8", errors="replace"), METHOD_PLAIN_XML


def process_buffer(filename: str, data: bytes) -> ParseResult:
    """
    Decode and map a single invoice file.

    Never raises: failures come back as a ParseResult with ``error`` set and
    ``method == "failed"``. Raw XML is kept whenever it could be recovered.
    """
    try:
        xml, method = _decode(filename, data)
    except InvoiceDecodeError as e:
        logger.warning("Could not decode %s: %s", filename, e)
        return ParseResult(filename=filename, method=METHOD_FAILED, error=str(e))

    if INVOICE_MARKER not in xml:
        logger.warning("%s is not a FatturaElettronica", filename)
        return ParseResult(
            filename=filename,
            method=METHOD_FAILED,
            raw_xml=xml,
            error=f"Not a {INVOICE_MARKER}",
        )

    try:
        invoice = parse_fattura(xml)
    except MappingError as e:
        logger.warning("Could not map %s: %s", filename, e)
        return ParseResult(filename=filename, method=METHOD_FAILED, raw_xml=xml, error=str(e))

    logger.info("Parsed %s via %s (%d bodies)", filename, method, len(invoice.bodies))
    return ParseResult(filename=filename, method=method, raw_xml=xml, data=invoice)


def process_invoice_file(filename: str, data: bytes) -> list[ParseResult]:
    """
    Process an uploaded invoice file, expanding ZIP archives.

    Args:
        filename: Original file name (the extension selects the path)
        data: File bytes

    Returns:
        One ParseResult per processed file, in archive order
    """
    name = filename or "unknown"
    if not name.lower().endswith(".zip"):
        return [process_buffer(name, data)]

    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        logger.warning("Corrupt archive %s: %s", name, e)
        return [ParseResult(filename=name, method=METHOD_FAILED, error=f"Invalid ZIP: {e}")]

    results: list[ParseResult] = []
    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            if not info.filename.lower().endswith(SUPPORTED_EXTENSIONS):
                logger.debug("Skipping %s in %s", info.filename, name)
                continue
            try:
                entry = archive.read(info)
            except (zipfile.BadZipFile, OSError) as e:
                results.append(
                    ParseResult(filename=info.filename, method=METHOD_FAILED, error=f"Unreadable entry: {e}")
                )
                continue
            results.append(process_buffer(info.filename, entry))

    logger.info(
        "Processed %s: %d files, %d ok",
        name,
        len(results),
        sum(1 for r in results if r.status == "ok"),
    )
    return results
