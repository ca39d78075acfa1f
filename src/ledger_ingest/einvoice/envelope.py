"""
PKCS#7 envelope resolver and minimal DER reader.

Recovers the signed content (FatturaPA XML) from a ``.p7m`` file without a
general ASN.1 library:

1. Undo transport encodings (bare base64, PEM armor) until the buffer is
   DER-shaped (starts with a SEQUENCE tag).
2. Locate the ``pkcs7-data`` OID by a bounded byte scan.
3. Read the content TLV that follows. A primitive OCTET STRING is taken as-is;
   a constructed or indefinite-length one is walked with an explicit stack,
   concatenating every OCTET STRING fragment.

The walker never recurses, so hostile nesting cannot blow the interpreter
stack; depth is capped by MAX_DER_DEPTH instead.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .byte_scan import ByteScanError, scan_for_xml

logger = logging.getLogger(__name__)

# 1.2.840.113549.1.7.1 (pkcs7-data), encoded as OBJECT IDENTIFIER TLV
PKCS7_DATA_OID = bytes([0x06, 0x09, 0x2A, 0x86, 0x48, 0x86, 0xF7, 0x0D, 0x01, 0x07, 0x01])

# Only the head of the structure is searched for the OID
OID_SCAN_LIMIT = 2000

MAX_DER_DEPTH = 64

# Long-form lengths wider than this cannot describe a real invoice
MAX_LENGTH_OCTETS = 4

TAG_SEQUENCE = 0x30
TAG_OCTET_STRING = 0x04
TAG_CONTEXT_0 = 0xA0
CONSTRUCTED_BIT = 0x20

INVOICE_MARKER = "FatturaElettronica"

_BASE64_HEAD = re.compile(r"^[A-Za-z0-9+/]+=*$")
_PEM_ARMOR = re.compile(r"-----[^-]+-----")
_WHITESPACE = re.compile(r"\s+")


class EnvelopeError(Exception):
    """Base exception for envelope decoding errors."""

    pass


class UnrecognizedEnvelopeError(EnvelopeError):
    """The bytes are neither DER nor a base64/PEM rendition of DER."""

    pass


class OidNotFoundError(EnvelopeError):
    """The pkcs7-data OID is not present in the structure head."""

    pass


class MalformedLengthError(EnvelopeError):
    """A TLV length is unreadable or points past the end of the buffer."""

    pass


class MissingMarkerError(EnvelopeError):
    """Decoded content does not look like a FatturaElettronica document."""

    pass


@dataclass
class EnvelopeOutcome:
    """Tagged result of the envelope resolution chain.

    Exactly one of ``xml`` / ``errors`` describes the outcome: on success
    ``xml`` and ``method`` are set; on failure ``xml`` is None and ``errors``
    holds one message per attempted method, in order.
    """

    xml: Optional[str] = None
    method: Optional[str] = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.xml is not None

    @property
    def error_message(self) -> str:
        """Combined failure message carrying every underlying cause."""
        return " | ".join(self.errors)


def _try_b64decode(text: str) -> Optional[bytes]:
    try:
        return base64.b64decode(text, validate=False)
    except (binascii.Error, ValueError):
        return None


def unwrap_transport_encoding(data: bytes) -> bytes:
    """
    Undo base64 / PEM wrapping around a DER structure.

    Args:
        data: Raw file bytes

    Returns:
        DER bytes (first byte is a SEQUENCE tag)

    Raises:
        UnrecognizedEnvelopeError: If no decoding yields DER
    """
    if data[:1] == bytes([TAG_SEQUENCE]):
        return data

    text = data.decode("ascii", errors="ignore")

    # Bare base64 of the whole stream
    compact = _WHITESPACE.sub("", text)
    if compact and _BASE64_HEAD.match(compact[:100]):
        decoded = _try_b64decode(compact)
        if decoded and decoded[0] == TAG_SEQUENCE:
            logger.debug("P7M was base64 encoded (%d -> %d bytes)", len(data), len(decoded))
            return decoded

    # PEM armor
    armored = _WHITESPACE.sub("", _PEM_ARMOR.sub("", text))
    if armored:
        decoded = _try_b64decode(armored)
        if decoded and decoded[0] == TAG_SEQUENCE:
            logger.debug("P7M was PEM armored (%d -> %d bytes)", len(data), len(decoded))
            return decoded

    raise UnrecognizedEnvelopeError("Unrecognized envelope: not DER, base64 or PEM")


def read_length(buf: bytes, pos: int) -> tuple[int, int]:
    """
    Read a DER/BER length field.

    Args:
        buf: Buffer
        pos: Offset of the first length octet

    Returns:
        Tuple of (length, offset after the length field). Length is -1 for
        the indefinite form.

    Raises:
        MalformedLengthError: If the field is truncated or too wide
    """
    if pos >= len(buf):
        raise MalformedLengthError(f"Length field missing at offset {pos}")

    first = buf[pos]
    if first < 0x80:
        return first, pos + 1
    if first == 0x80:
        return -1, pos + 1

    count = first & 0x7F
    if count > MAX_LENGTH_OCTETS:
        raise MalformedLengthError(f"Length field of {count} octets at offset {pos}")
    if pos + 1 + count > len(buf):
        raise MalformedLengthError(f"Truncated length field at offset {pos}")

    length = 0
    for octet in buf[pos + 1 : pos + 1 + count]:
        length = length * 256 + octet
    return length, pos + 1 + count


def collect_octet_strings(buf: bytes, pos: int, end: int, max_depth: int = MAX_DER_DEPTH) -> list[bytes]:
    """
    Walk TLVs in ``buf[pos:end]`` and gather every OCTET STRING payload.

    Constructed containers (definite or indefinite) are entered; a ``00 00``
    pair closes the innermost indefinite container. Other primitives are
    skipped.

    Raises:
        MalformedLengthError: If a definite length overruns the buffer
        EnvelopeError: If nesting exceeds ``max_depth``
    """
    fragments: list[bytes] = []
    # Each frame: (end of the enclosing region, resume offset or None).
    # resume is set for definite containers, None for indefinite ones.
    stack: list[tuple[int, Optional[int]]] = []
    size = len(buf)

    while True:
        if pos >= end or pos >= size:
            if not stack:
                break
            end, resume = stack.pop()
            if resume is not None:
                pos = resume
            continue

        tag = buf[pos]
        if tag == 0x00 and pos + 1 < size and buf[pos + 1] == 0x00:
            pos += 2
            if not stack:
                break
            end, resume = stack.pop()
            if resume is not None:
                pos = resume
            continue

        length, pos = read_length(buf, pos + 1)

        if length == -1:
            if len(stack) >= max_depth:
                raise EnvelopeError(f"DER nesting deeper than {max_depth}")
            stack.append((end, None))
            continue

        if pos + length > size:
            raise MalformedLengthError(
                f"TLV at offset {pos} claims {length} bytes, only {size - pos} available"
            )

        if tag == TAG_OCTET_STRING:
            fragments.append(buf[pos : pos + length])
            pos += length
        elif tag & CONSTRUCTED_BIT:
            if len(stack) >= max_depth:
                raise EnvelopeError(f"DER nesting deeper than {max_depth}")
            stack.append((end, pos + length))
            end = pos + length
        else:
            pos += length

    return fragments


def extract_signed_content(data: bytes) -> str:
    """
    Extract the signed XML from a PKCS#7 SignedData structure.

    Args:
        data: Raw ``.p7m`` bytes (DER, base64 or PEM)

    Returns:
        XML text with any leading BOM/whitespace removed

    Raises:
        EnvelopeError: Any of the typed envelope errors
    """
    if not data:
        raise UnrecognizedEnvelopeError("Empty file")

    der = unwrap_transport_encoding(data)

    window = der[: OID_SCAN_LIMIT + len(PKCS7_DATA_OID) - 1]
    oid_at = window.find(PKCS7_DATA_OID)
    if oid_at < 0:
        raise OidNotFoundError("pkcs7-data OID not found")

    pos = oid_at + len(PKCS7_DATA_OID)
    if pos < len(der) and der[pos] == TAG_CONTEXT_0:
        _, pos = read_length(der, pos + 1)

    if pos >= len(der):
        raise MalformedLengthError("Structure ends after the content type")

    tag = der[pos]
    length, pos = read_length(der, pos + 1)

    if tag == TAG_OCTET_STRING and length >= 0:
        if pos + length > len(der):
            raise MalformedLengthError(
                f"OCTET STRING claims {length} bytes, only {len(der) - pos} available"
            )
        content = der[pos : pos + length]
    else:
        if length == -1:
            end = len(der)
        else:
            end = pos + length
            if end > len(der):
                raise MalformedLengthError(
                    f"Content claims {length} bytes, only {len(der) - pos} available"
                )
        content = b"".join(collect_octet_strings(der, pos, end))

    xml = content.decode("utf-8", errors="replace").lstrip("\ufeff \t\r\n")
    if INVOICE_MARKER not in xml:
        raise MissingMarkerError("P7M content is not a FatturaElettronica")
    return xml


def resolve_envelope(data: bytes) -> EnvelopeOutcome:
    """
    Recover invoice XML from a signed file, DER first then byte-scan.

    Attempts are tried in order; the first success wins. When both fail
    the outcome carries both causes.
    """
    outcome = EnvelopeOutcome()

    try:
        outcome.xml = extract_signed_content(data)
        outcome.method = "DER"
        return outcome
    except EnvelopeError as e:
        logger.debug("DER extraction failed: %s", e)
        outcome.errors.append(f"DER: {e}")

    try:
        outcome.xml = scan_for_xml(data)
        outcome.method = "byte-scan"
        return outcome
    except ByteScanError as e:
        logger.debug("Byte-scan failed: %s", e)
        outcome.errors.append(f"Scan: {e}")

    return outcome
