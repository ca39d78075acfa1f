"""
Canonical FatturaPA invoice model.

The mapper projects the XML onto these dataclasses losslessly: every value is
kept as the verbatim string found in the document (missing -> ""). Totals are
never recomputed here.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional

from ..schemas.dedupe import compute_invoice_hash


@dataclass
class TransmissionHeader:
    """DatiTrasmissione block."""

    transmitter_id: str = ""  # IdPaese + IdCodice
    sequence_number: str = ""  # ProgressivoInvio
    format: str = ""  # FPR12 / FPA12
    recipient_code: str = ""  # CodiceDestinatario
    recipient_pec: str = ""


@dataclass
class SupplierIdentity:
    """CedentePrestatore (the party issuing the invoice)."""

    name: str = ""
    vat_id: str = ""
    tax_code: str = ""
    tax_regime: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""
    rea_office: str = ""
    rea_number: str = ""
    share_capital: str = ""
    liquidation_status: str = ""


@dataclass
class CustomerIdentity:
    """CessionarioCommittente (the party receiving the invoice)."""

    name: str = ""
    vat_id: str = ""
    tax_code: str = ""
    address: str = ""


@dataclass
class StampDuty:
    virtual: str = ""
    amount: str = ""


@dataclass
class Withholding:
    type: str = ""
    amount: str = ""
    rate: str = ""
    payment_reason: str = ""


@dataclass
class PensionFund:
    type: str = ""
    rate: str = ""
    amount: str = ""
    taxable_base: str = ""
    vat_rate: str = ""


@dataclass
class DocumentReference:
    """DatiContratto / DatiOrdineAcquisto entry."""

    document_id: str = ""
    date: str = ""
    cig: str = ""
    cup: str = ""


@dataclass
class DeliveryNote:
    number: str = ""
    date: str = ""


@dataclass
class InvoiceLine:
    """DettaglioLinee entry."""

    number: str = ""
    article_code: str = ""  # "TYPE: VALUE, TYPE: VALUE"
    description: str = ""
    quantity: str = ""
    unit_of_measure: str = ""
    unit_price: str = ""
    total_price: str = ""
    vat_rate: str = ""
    vat_nature: str = ""


@dataclass
class VatSummaryEntry:
    """DatiRiepilogo entry."""

    vat_rate: str = ""
    vat_nature: str = ""
    taxable_amount: str = ""
    tax: str = ""
    vat_collectability: str = ""
    legal_reference: str = ""


@dataclass
class Payment:
    """DettaglioPagamento entry."""

    method: str = ""
    due_date: str = ""
    amount: str = ""
    iban: str = ""
    bank: str = ""


@dataclass
class Attachment:
    name: str = ""
    format: str = ""
    description: str = ""
    size_kb: int = 0
    has_data: bool = False


@dataclass
class InvoiceBody:
    """One FatturaElettronicaBody (a lotto may carry several)."""

    document_type: str = ""
    currency: str = ""
    date: str = ""
    number: str = ""
    total_amount: str = ""
    rounding: str = ""
    reasons: list[str] = field(default_factory=list)
    stamp: Optional[StampDuty] = None
    withholding: Optional[Withholding] = None
    pension_fund: Optional[PensionFund] = None
    payment_terms: str = ""
    payments: list[Payment] = field(default_factory=list)
    lines: list[InvoiceLine] = field(default_factory=list)
    vat_summary: list[VatSummaryEntry] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    contracts: list[DocumentReference] = field(default_factory=list)
    purchase_orders: list[DocumentReference] = field(default_factory=list)
    delivery_notes: list[DeliveryNote] = field(default_factory=list)


@dataclass
class ParsedInvoice:
    version: str
    transmission: TransmissionHeader
    supplier: SupplierIdentity
    customer: CustomerIdentity
    bodies: list[InvoiceBody]

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON output."""
        return asdict(self)


@dataclass
class ParseResult:
    """
    Outcome of processing one file (or one ZIP entry).

    Exactly one of ``data`` / ``error`` is set.
    """

    filename: str
    method: str  # "DER" | "byte-scan" | "plain-XML" | "failed"
    raw_xml: str = ""
    data: Optional[ParsedInvoice] = None
    error: Optional[str] = None

    @property
    def status(self) -> str:
        return "ok" if self.data is not None else "parse_error"

    @property
    def xml_length(self) -> int:
        return len(self.raw_xml)

    @property
    def content_hash(self) -> Optional[str]:
        if not self.raw_xml:
            return None
        return compute_invoice_hash(self.raw_xml)

    def to_dict(self, include_xml: bool = False) -> dict:
        result = {
            "filename": self.filename,
            "method": self.method,
            "status": self.status,
            "xml_length": self.xml_length,
            "data": self.data.to_dict() if self.data else None,
            "error": self.error,
        }
        if include_xml:
            result["raw_xml"] = self.raw_xml
        return result
