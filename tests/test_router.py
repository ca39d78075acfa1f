"""
Tests for invoice file routing (XML, P7M, ZIP).
"""

import base64

from conftest import MULTI_BODY_XML, RECEIPT_XML, SAMPLE_FATTURA_XML, build_p7m, make_zip

from ledger_ingest.einvoice import process_buffer, process_invoice_file
from ledger_ingest.einvoice.router import METHOD_BYTE_SCAN, METHOD_DER, METHOD_FAILED, METHOD_PLAIN_XML

XML_BYTES = SAMPLE_FATTURA_XML.encode("utf-8")


class TestProcessBuffer:
    """Test single-file processing."""

    def test_plain_xml(self):
        result = process_buffer("IT01234567890_00042.xml", XML_BYTES)
        assert result.status == "ok"
        assert result.method == METHOD_PLAIN_XML
        assert result.data.bodies[0].number == "FT-2024/042"
        assert result.raw_xml == SAMPLE_FATTURA_XML
        assert result.xml_length == len(SAMPLE_FATTURA_XML)
        assert result.error is None

    def test_p7m_der(self, sample_p7m):
        result = process_buffer("IT01234567890_00042.xml.p7m", sample_p7m)
        assert result.status == "ok"
        assert result.method == METHOD_DER

    def test_p7m_extension_case_insensitive(self, sample_p7m):
        result = process_buffer("FATTURA.XML.P7M", sample_p7m)
        assert result.method == METHOD_DER

    def test_p7m_base64(self, sample_p7m):
        result = process_buffer("fattura.p7m", base64.b64encode(sample_p7m))
        assert result.status == "ok"
        assert result.method == METHOD_DER

    def test_p7m_byte_scan(self):
        corrupt = b"\x04\x84\x7f\xff\xff\xff" + XML_BYTES
        result = process_buffer("fattura.p7m", build_p7m(XML_BYTES, content_tlv=corrupt))
        assert result.status == "ok"
        assert result.method == METHOD_BYTE_SCAN

    def test_p7m_unrecoverable(self):
        result = process_buffer("fattura.p7m", b"\x30\x03\x02\x01\x01 no markup here")
        assert result.status == "parse_error"
        assert result.method == METHOD_FAILED
        assert "DER: " in result.error
        assert "Scan: " in result.error
        assert result.raw_xml == ""

    def test_not_an_invoice_keeps_xml(self):
        result = process_buffer("ricevuta.xml", RECEIPT_XML.encode("utf-8"))
        assert result.status == "parse_error"
        assert result.error == "Not a FatturaElettronica"
        assert result.raw_xml == RECEIPT_XML

    def test_mapping_error_keeps_xml(self):
        xml = "<FatturaElettronica><FatturaElettronicaHeader/></FatturaElettronica>"
        result = process_buffer("empty.xml", xml.encode("utf-8"))
        assert result.status == "parse_error"
        assert "No FatturaElettronicaBody" in result.error
        assert result.raw_xml == xml

    def test_to_dict_omits_xml_by_default(self):
        result = process_buffer("a.xml", XML_BYTES)
        data = result.to_dict()
        assert "raw_xml" not in data
        assert data["status"] == "ok"
        assert data["data"]["supplier"]["name"] == "Forniture Senesi S.r.l."
        assert result.to_dict(include_xml=True)["raw_xml"] == SAMPLE_FATTURA_XML


class TestProcessInvoiceFile:
    """Test ZIP expansion and per-file isolation."""

    def test_single_file(self):
        results = process_invoice_file("a.xml", XML_BYTES)
        assert len(results) == 1

    def test_zip_mixed_entries(self, sample_p7m):
        """Three entries, one with an unsupported root: two ok, one parse error."""
        archive = make_zip(
            {
                "IT01234567890_00042.xml": XML_BYTES,
                "IT05550001112_00001.xml.p7m": build_p7m(MULTI_BODY_XML.encode("utf-8")),
                "ricevuta.xml": RECEIPT_XML.encode("utf-8"),
            }
        )

        results = process_invoice_file("batch.zip", archive)

        assert [r.status for r in results] == ["ok", "ok", "parse_error"]
        assert [r.filename for r in results] == [
            "IT01234567890_00042.xml",
            "IT05550001112_00001.xml.p7m",
            "ricevuta.xml",
        ]
        assert results[1].method == METHOD_DER
        assert len(results[1].data.bodies) == 2

    def test_zip_skips_unsupported_and_directories(self):
        archive = make_zip(
            {
                "fatture/": b"",
                "fatture/a.xml": XML_BYTES,
                "fatture/readme.txt": b"not an invoice",
                "fatture/logo.png": b"\x89PNG",
            }
        )

        results = process_invoice_file("batch.ZIP", archive)

        assert [r.filename for r in results] == ["fatture/a.xml"]

    def test_corrupt_zip(self):
        results = process_invoice_file("batch.zip", b"PK\x03\x04 truncated")
        assert len(results) == 1
        assert results[0].status == "parse_error"
        assert results[0].error.startswith("Invalid ZIP")

    def test_empty_zip(self):
        assert process_invoice_file("empty.zip", make_zip({})) == []
