"""Test fixtures and utilities."""

import io
import json
import zipfile
from pathlib import Path

import pytest

from ledger_ingest.config import Config, ExtractionModelConfig, StatementConfig
from ledger_ingest.einvoice.envelope import PKCS7_DATA_OID
from ledger_ingest.statements.model_client import ExtractionModel, ModelResponse

# Signed FatturaPA as produced by most invoicing software: prefixed
# namespace, schema location attribute, one body
SAMPLE_FATTURA_XML = """<?xml version="1.0" encoding="UTF-8"?>
<p:FatturaElettronica versione="FPR12"
    xmlns:ds="http://www.w3.org/2000/09/xmldsig#"
    xmlns:p="http://ivaservizi.agenziaentrate.gov.it/docs/xsd/fatture/v1.2"
    xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
    xsi:schemaLocation="http://ivaservizi.agenziaentrate.gov.it/docs/xsd/fatture/v1.2 Schema_VFPR12.xsd">
  <FatturaElettronicaHeader>
    <DatiTrasmissione>
      <IdTrasmittente>
        <IdPaese>IT</IdPaese>
        <IdCodice>01234567890</IdCodice>
      </IdTrasmittente>
      <ProgressivoInvio>00042</ProgressivoInvio>
      <FormatoTrasmissione>FPR12</FormatoTrasmissione>
      <CodiceDestinatario>KRRH6B9</CodiceDestinatario>
    </DatiTrasmissione>
    <CedentePrestatore>
      <DatiAnagrafici>
        <IdFiscaleIVA>
          <IdPaese>IT</IdPaese>
          <IdCodice>01234567890</IdCodice>
        </IdFiscaleIVA>
        <CodiceFiscale>01234567890</CodiceFiscale>
        <Anagrafica>
          <Denominazione>Forniture Senesi S.r.l.</Denominazione>
        </Anagrafica>
        <RegimeFiscale>RF01</RegimeFiscale>
      </DatiAnagrafici>
      <Sede>
        <Indirizzo>Via Banchi di Sopra</Indirizzo>
        <NumeroCivico>12</NumeroCivico>
        <CAP>53100</CAP>
        <Comune>Siena</Comune>
        <Provincia>SI</Provincia>
        <Nazione>IT</Nazione>
      </Sede>
      <IscrizioneREA>
        <Ufficio>SI</Ufficio>
        <NumeroREA>123456</NumeroREA>
        <CapitaleSociale>10000.00</CapitaleSociale>
        <StatoLiquidazione>LN</StatoLiquidazione>
      </IscrizioneREA>
      <Contatti>
        <Telefono>0577123456</Telefono>
        <Email>amministrazione@forniture-senesi.it</Email>
      </Contatti>
    </CedentePrestatore>
    <CessionarioCommittente>
      <DatiAnagrafici>
        <IdFiscaleIVA>
          <IdPaese>IT</IdPaese>
          <IdCodice>09876543210</IdCodice>
        </IdFiscaleIVA>
        <Anagrafica>
          <Nome>Mario</Nome>
          <Cognome>Rossi</Cognome>
        </Anagrafica>
      </DatiAnagrafici>
      <Sede>
        <Indirizzo>Rue de Rivoli</Indirizzo>
        <NumeroCivico>8</NumeroCivico>
        <CAP>75001</CAP>
        <Comune>Paris</Comune>
        <Nazione>FR</Nazione>
      </Sede>
    </CessionarioCommittente>
  </FatturaElettronicaHeader>
  <FatturaElettronicaBody>
    <DatiGenerali>
      <DatiGeneraliDocumento>
        <TipoDocumento>TD01</TipoDocumento>
        <Divisa>EUR</Divisa>
        <Data>2024-03-15</Data>
        <Numero>FT-2024/042</Numero>
        <DatiRitenuta>
          <TipoRitenuta>RT02</TipoRitenuta>
          <ImportoRitenuta>40.00</ImportoRitenuta>
          <AliquotaRitenuta>20.00</AliquotaRitenuta>
          <CausalePagamento>A</CausalePagamento>
        </DatiRitenuta>
        <DatiBollo>
          <BolloVirtuale>SI</BolloVirtuale>
          <ImportoBollo>2.00</ImportoBollo>
        </DatiBollo>
        <ImportoTotaleDocumento>1222.00</ImportoTotaleDocumento>
        <Causale>Fornitura materiale marzo</Causale>
        <Causale>Rif. ordine 77</Causale>
      </DatiGeneraliDocumento>
      <DatiOrdineAcquisto>
        <IdDocumento>77</IdDocumento>
        <Data>2024-03-01</Data>
        <CodiceCIG>Z1234567AB</CodiceCIG>
      </DatiOrdineAcquisto>
      <DatiDDT>
        <NumeroDDT>DDT-15</NumeroDDT>
        <DataDDT>2024-03-10</DataDDT>
      </DatiDDT>
    </DatiGenerali>
    <DatiBeniServizi>
      <DettaglioLinee>
        <NumeroLinea>1</NumeroLinea>
        <CodiceArticolo>
          <CodiceTipo>EAN</CodiceTipo>
          <CodiceValore>8001234567890</CodiceValore>
        </CodiceArticolo>
        <Descrizione>Carta A4 risme</Descrizione>
        <Quantita>100.00</Quantita>
        <UnitaMisura>PZ</UnitaMisura>
        <PrezzoUnitario>8.00</PrezzoUnitario>
        <PrezzoTotale>800.00</PrezzoTotale>
        <AliquotaIVA>22.00</AliquotaIVA>
      </DettaglioLinee>
      <DettaglioLinee>
        <NumeroLinea>2</NumeroLinea>
        <Descrizione>Trasporto</Descrizione>
        <Quantita>1.00</Quantita>
        <PrezzoUnitario>200.00</PrezzoUnitario>
        <PrezzoTotale>200.00</PrezzoTotale>
        <AliquotaIVA>22.00</AliquotaIVA>
      </DettaglioLinee>
      <DatiRiepilogo>
        <AliquotaIVA>22.00</AliquotaIVA>
        <ImponibileImporto>1000.00</ImponibileImporto>
        <Imposta>220.00</Imposta>
        <EsigibilitaIVA>I</EsigibilitaIVA>
      </DatiRiepilogo>
    </DatiBeniServizi>
    <DatiPagamento>
      <CondizioniPagamento>TP02</CondizioniPagamento>
      <DettaglioPagamento>
        <ModalitaPagamento>MP05</ModalitaPagamento>
        <DataScadenzaPagamento>2024-04-14</DataScadenzaPagamento>
        <ImportoPagamento>1182.00</ImportoPagamento>
        <IstitutoFinanziario>Banca Monte dei Paschi di Siena</IstitutoFinanziario>
        <IBAN>IT60X0542811101000000123456</IBAN>
      </DettaglioPagamento>
    </DatiPagamento>
    <Allegati>
      <NomeAttachment>fattura.pdf</NomeAttachment>
      <FormatoAttachment>PDF</FormatoAttachment>
      <DescrizioneAttachment>Copia di cortesia</DescrizioneAttachment>
      <Attachment>{attachment}</Attachment>
    </Allegati>
  </FatturaElettronicaBody>
</p:FatturaElettronica>
""".replace("{attachment}", "QUJD" * 1024)

# Batch invoice: one header, two bodies, no namespace prefix
MULTI_BODY_XML = """<?xml version="1.0" encoding="UTF-8"?>
<FatturaElettronica versione="FPR12">
  <FatturaElettronicaHeader>
    <CedentePrestatore>
      <DatiAnagrafici>
        <IdFiscaleIVA><IdPaese>IT</IdPaese><IdCodice>05550001112</IdCodice></IdFiscaleIVA>
        <Anagrafica><Denominazione>Servizi Toscani S.p.A.</Denominazione></Anagrafica>
        <RegimeFiscale>RF01</RegimeFiscale>
      </DatiAnagrafici>
    </CedentePrestatore>
    <CessionarioCommittente>
      <DatiAnagrafici>
        <CodiceFiscale>RSSMRA80A01I726X</CodiceFiscale>
        <Anagrafica><Denominazione>Cliente Uno</Denominazione></Anagrafica>
      </DatiAnagrafici>
    </CessionarioCommittente>
  </FatturaElettronicaHeader>
  <FatturaElettronicaBody>
    <DatiGenerali>
      <DatiGeneraliDocumento>
        <TipoDocumento>TD01</TipoDocumento>
        <Divisa>EUR</Divisa>
        <Data>2024-01-31</Data>
        <Numero>101</Numero>
        <ImportoTotaleDocumento>122.00</ImportoTotaleDocumento>
      </DatiGeneraliDocumento>
    </DatiGenerali>
    <DatiBeniServizi>
      <DettaglioLinee>
        <NumeroLinea>1</NumeroLinea>
        <Descrizione>Canone gennaio</Descrizione>
        <PrezzoUnitario>100.00</PrezzoUnitario>
        <PrezzoTotale>100.00</PrezzoTotale>
        <AliquotaIVA>22.00</AliquotaIVA>
      </DettaglioLinee>
    </DatiBeniServizi>
  </FatturaElettronicaBody>
  <FatturaElettronicaBody>
    <DatiGenerali>
      <DatiGeneraliDocumento>
        <TipoDocumento>TD04</TipoDocumento>
        <Divisa>EUR</Divisa>
        <Data>2024-02-05</Data>
        <Numero>102</Numero>
        <ImportoTotaleDocumento>24.40</ImportoTotaleDocumento>
      </DatiGeneraliDocumento>
    </DatiGenerali>
    <DatiBeniServizi>
      <DettaglioLinee>
        <NumeroLinea>1</NumeroLinea>
        <Descrizione>Storno parziale</Descrizione>
        <PrezzoUnitario>20.00</PrezzoUnitario>
        <PrezzoTotale>20.00</PrezzoTotale>
        <AliquotaIVA>22.00</AliquotaIVA>
      </DettaglioLinee>
    </DatiBeniServizi>
  </FatturaElettronicaBody>
</FatturaElettronica>
"""

# Well-formed XML whose root is not an invoice (e.g. an SdI receipt)
RECEIPT_XML = """<?xml version="1.0" encoding="UTF-8"?>
<RicevutaConsegna versione="1.0">
  <IdentificativoSdI>111222333</IdentificativoSdI>
  <NomeFile>IT01234567890_00042.xml.p7m</NomeFile>
</RicevutaConsegna>
"""

# 1.2.840.113549.1.7.2 (pkcs7-signedData)
PKCS7_SIGNED_DATA_OID = bytes([0x06, 0x09, 0x2A, 0x86, 0x48, 0x86, 0xF7, 0x0D, 0x01, 0x07, 0x02])
# 2.16.840.1.101.3.4.2.1 (sha256) with NULL parameters
SHA256_ALGORITHM = bytes([0x06, 0x09, 0x60, 0x86, 0x48, 0x01, 0x65, 0x03, 0x04, 0x02, 0x01, 0x05, 0x00])


def der_length(length: int) -> bytes:
    """Encode a definite DER length."""
    if length < 0x80:
        return bytes([length])
    body = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def tlv(tag: int, content: bytes) -> bytes:
    """Encode a definite-length TLV."""
    return bytes([tag]) + der_length(len(content)) + content


def build_p7m(
    content: bytes,
    fragment_size: int | None = None,
    indefinite: bool = False,
    content_tlv: bytes | None = None,
) -> bytes:
    """
    Build a minimal PKCS#7 SignedData wrapping ``content``.

    Args:
        content: Signed payload (the invoice XML bytes)
        fragment_size: Split the payload into a constructed OCTET STRING
        indefinite: Use BER indefinite lengths for every container
        content_tlv: Pre-encoded eContent TLV (used to inject corruption)
    """
    version = b"\x02\x01\x01"
    digest_algorithms = tlv(0x31, tlv(0x30, SHA256_ALGORITHM))
    signer_infos = tlv(0x31, b"")

    if fragment_size:
        fragments = [content[i : i + fragment_size] for i in range(0, len(content), fragment_size)]
        pieces = b"".join(tlv(0x04, f) for f in fragments)
    else:
        pieces = None

    if not indefinite:
        if content_tlv is None:
            content_tlv = tlv(0x24, pieces) if pieces is not None else tlv(0x04, content)
        encap = tlv(0x30, PKCS7_DATA_OID + tlv(0xA0, content_tlv))
        signed = tlv(0x30, version + digest_algorithms + encap + signer_infos)
        return tlv(0x30, PKCS7_SIGNED_DATA_OID + tlv(0xA0, signed))

    eoc = b"\x00\x00"
    if content_tlv is None:
        content_tlv = b"\x24\x80" + (pieces if pieces is not None else tlv(0x04, content)) + eoc
    encap = b"\x30\x80" + PKCS7_DATA_OID + b"\xa0\x80" + content_tlv + eoc + eoc
    signed = b"\x30\x80" + version + digest_algorithms + encap + signer_infos + eoc
    return b"\x30\x80" + PKCS7_SIGNED_DATA_OID + b"\xa0\x80" + signed + eoc + eoc


def make_zip(entries: dict[str, bytes]) -> bytes:
    """Build a ZIP archive from ``{name: data}``."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def make_pdf(pages: int) -> bytes:
    """Generate a statement-like PDF with ``pages`` pages."""
    from reportlab.lib.pagesizes import A4
    from reportlab.pdfgen import canvas

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    for number in range(1, pages + 1):
        pdf.drawString(72, 800, f"Estratto conto - pagina {number}")
        pdf.drawString(72, 780, f"0{number % 9 + 1}/03/2024  BONIFICO A VOSTRO FAVORE  1.234,56")
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def model_json(*transactions: dict) -> str:
    """Serialize transactions the way the model answers."""
    return json.dumps({"transactions": list(transactions)})


class FakeModel(ExtractionModel):
    """
    Scripted extraction model.

    Each generate() call consumes the next scripted item: a ModelResponse is
    returned, an exception is raised. When the script runs out, ``default``
    is returned (or built from the call number when it is callable).
    """

    def __init__(self, script=None, default=None):
        self.script = list(script or [])
        self.default = default
        self.calls: list[bytes] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "fake-model"

    def generate(self, pdf_bytes: bytes, prompt: str) -> ModelResponse:
        self.calls.append(pdf_bytes)
        if self.script:
            item = self.script.pop(0)
        elif callable(self.default):
            item = self.default(len(self.calls))
        else:
            item = self.default or ModelResponse(text=model_json(), finish_reason="STOP")
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


def chunk_transaction(call_number: int) -> ModelResponse:
    """One distinct transaction per model call."""
    return ModelResponse(
        text=model_json(
            {
                "date": f"{call_number:02d}/03/2024",
                "amount": f"-{call_number},50",
                "description": f"PAGAMENTO POS {call_number}",
                "transaction_type": "pos",
            }
        ),
        finish_reason="STOP",
    )


@pytest.fixture
def sample_xml() -> str:
    """Single-body FatturaPA with prefixed namespace."""
    return SAMPLE_FATTURA_XML


@pytest.fixture
def multi_body_xml() -> str:
    """FatturaPA batch with two bodies."""
    return MULTI_BODY_XML


@pytest.fixture
def sample_p7m() -> bytes:
    """DER-signed sample invoice."""
    return build_p7m(SAMPLE_FATTURA_XML.encode("utf-8"))


@pytest.fixture
def fake_model() -> FakeModel:
    return FakeModel(default=chunk_transaction)


@pytest.fixture
def test_config(tmp_path) -> Config:
    """Config suitable for in-process pipelines (no waits)."""
    return Config(
        model=ExtractionModelConfig(api_key="test-key"),
        statements=StatementConfig(
            chunk_pages=2,
            max_chunks_per_window=3,
            backoff_seconds=0.0,
            inter_chunk_delay=0.0,
        ),
        state_db_path=tmp_path / "ledger.db",
    )


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"
