"""
Heuristic byte-scanner for embedded FatturaPA XML.

Fallback used when strict DER parsing fails: look for the XML start by byte
pattern and cut at the closing FatturaElettronica tag, whatever its prefix.
"""

import re

XML_DECLARATION = b"<?xml"

_START_TAG = re.compile(rb"<[A-Za-z]")
_CLOSING_TAG = re.compile(r"</[\w.-]*:?FatturaElettronica>")


class ByteScanError(Exception):
    """No embedded FatturaElettronica XML could be located."""

    pass


def scan_for_xml(data: bytes) -> str:
    """
    Locate and cut out FatturaPA XML embedded in arbitrary bytes.

    Args:
        data: Raw bytes (typically a damaged PKCS#7 envelope)

    Returns:
        XML text from the declaration (or first start tag) to the closing
        FatturaElettronica tag inclusive

    Raises:
        ByteScanError: If no start or no closing tag is found
    """
    start = data.find(XML_DECLARATION)
    if start < 0:
        match = _START_TAG.search(data)
        if match is None:
            raise ByteScanError("No XML (byte-scan)")
        start = match.start()

    text = data[start:].decode("utf-8", errors="replace")

    closing = _CLOSING_TAG.search(text)
    if closing is None:
        raise ByteScanError("No closing tag (byte-scan)")
    return text[: closing.end()]
