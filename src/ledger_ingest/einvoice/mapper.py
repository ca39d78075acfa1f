"""
FatturaPA XML mapper.

Projects a FatturaElettronica document onto ParsedInvoice. Namespaces are
stripped textually first so that every lookup can use bare element names,
whatever prefix the issuer's software chose (p:, ns2:, none...).

Lookups follow descendant semantics: ``_get(el, "DatiBollo ImportoBollo")``
returns the text of the first ImportoBollo anywhere below a DatiBollo below
``el``. Missing elements map to "".
"""

import logging
import re
from typing import Optional
from xml.etree import ElementTree as ET

from .models import (
    Attachment,
    CustomerIdentity,
    DeliveryNote,
    DocumentReference,
    InvoiceBody,
    InvoiceLine,
    ParsedInvoice,
    PensionFund,
    Payment,
    StampDuty,
    SupplierIdentity,
    TransmissionHeader,
    VatSummaryEntry,
    Withholding,
)

logger = logging.getLogger(__name__)

ROOT_TAG = "FatturaElettronica"

_ELEMENT_PREFIX = re.compile(r"<(/?)[\w.-]+:")
_XMLNS_ATTR = re.compile(r'\sxmlns[^=]*="[^"]*"')
_PREFIXED_ATTR = re.compile(r'\s[\w.-]+:[\w.-]+="[^"]*"')
_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")


class MappingError(Exception):
    """The XML cannot be mapped to a FatturaPA invoice."""

    pass


def strip_namespaces(xml: str) -> str:
    """Remove element prefixes, xmlns declarations and prefixed attributes."""
    xml = _ELEMENT_PREFIX.sub(r"<\1", xml)
    xml = _XMLNS_ATTR.sub("", xml)
    xml = _PREFIXED_ATTR.sub("", xml)
    return xml


def _path(selector: str) -> str:
    return ".//" + "//".join(selector.split())


def _get(el: Optional[ET.Element], selector: str) -> str:
    if el is None:
        return ""
    found = el.find(_path(selector))
    if found is None or found.text is None:
        return ""
    return found.text.strip()


def _all(el: Optional[ET.Element], selector: str) -> list[ET.Element]:
    if el is None:
        return []
    return el.findall(_path(selector))


def _first(el: Optional[ET.Element], selector: str) -> Optional[ET.Element]:
    if el is None:
        return None
    return el.find(_path(selector))


def _format_address(sede: Optional[ET.Element]) -> str:
    """Assemble "street number, ZIP city (PROV), COUNTRY" (country only if not IT)."""
    if sede is None:
        return ""
    street = " ".join(p for p in (_get(sede, "Indirizzo"), _get(sede, "NumeroCivico")) if p)
    province = _get(sede, "Provincia")
    locality = " ".join(
        p for p in (_get(sede, "CAP"), _get(sede, "Comune"), f"({province})" if province else "") if p
    )
    country = _get(sede, "Nazione")
    if country == "IT":
        country = ""
    return ", ".join(p for p in (street, locality, country) if p)


def _party_name(party: Optional[ET.Element]) -> str:
    name = _get(party, "DatiAnagrafici Anagrafica Denominazione")
    if name:
        return name
    first = _get(party, "DatiAnagrafici Anagrafica Nome")
    last = _get(party, "DatiAnagrafici Anagrafica Cognome")
    return " ".join(p for p in (first, last) if p)


def _vat_id(party: Optional[ET.Element]) -> str:
    return _get(party, "DatiAnagrafici IdFiscaleIVA IdPaese") + _get(
        party, "DatiAnagrafici IdFiscaleIVA IdCodice"
    )


def _map_supplier(ced: Optional[ET.Element]) -> SupplierIdentity:
    return SupplierIdentity(
        name=_party_name(ced),
        vat_id=_vat_id(ced),
        tax_code=_get(ced, "DatiAnagrafici CodiceFiscale"),
        tax_regime=_get(ced, "DatiAnagrafici RegimeFiscale"),
        address=_format_address(_first(ced, "Sede")),
        phone=_get(ced, "Contatti Telefono"),
        email=_get(ced, "Contatti Email"),
        rea_office=_get(ced, "IscrizioneREA Ufficio"),
        rea_number=_get(ced, "IscrizioneREA NumeroREA"),
        share_capital=_get(ced, "IscrizioneREA CapitaleSociale"),
        liquidation_status=_get(ced, "IscrizioneREA StatoLiquidazione"),
    )


def _map_customer(ces: Optional[ET.Element]) -> CustomerIdentity:
    return CustomerIdentity(
        name=_party_name(ces),
        vat_id=_vat_id(ces),
        tax_code=_get(ces, "DatiAnagrafici CodiceFiscale"),
        address=_format_address(_first(ces, "Sede")),
    )


def _map_reference(el: ET.Element) -> DocumentReference:
    return DocumentReference(
        document_id=_get(el, "IdDocumento"),
        date=_get(el, "Data"),
        cig=_get(el, "CodiceCIG"),
        cup=_get(el, "CodiceCUP"),
    )


def _map_line(el: ET.Element) -> InvoiceLine:
    codes = [
        f"{_get(c, 'CodiceTipo')}: {_get(c, 'CodiceValore')}" for c in _all(el, "CodiceArticolo")
    ]
    return InvoiceLine(
        number=_get(el, "NumeroLinea"),
        article_code=", ".join(codes),
        description=_get(el, "Descrizione"),
        quantity=_get(el, "Quantita"),
        unit_of_measure=_get(el, "UnitaMisura"),
        unit_price=_get(el, "PrezzoUnitario"),
        total_price=_get(el, "PrezzoTotale"),
        vat_rate=_get(el, "AliquotaIVA"),
        vat_nature=_get(el, "Natura"),
    )


def _map_attachment(el: ET.Element) -> Attachment:
    data = _get(el, "Attachment")
    return Attachment(
        name=_get(el, "NomeAttachment"),
        format=_get(el, "FormatoAttachment"),
        description=_get(el, "DescrizioneAttachment"),
        size_kb=round(len(data) * 3 / 4 / 1024) if data else 0,
        has_data=bool(data),
    )


def _map_body(body: ET.Element) -> InvoiceBody:
    general = _first(body, "DatiGenerali")
    doc = _first(body, "DatiGenerali DatiGeneraliDocumento")
    goods = _first(body, "DatiBeniServizi")
    payment = _first(body, "DatiPagamento")

    stamp = None
    if _first(doc, "DatiBollo") is not None:
        stamp = StampDuty(
            virtual=_get(doc, "DatiBollo BolloVirtuale"),
            amount=_get(doc, "DatiBollo ImportoBollo"),
        )

    withholding = None
    if _first(doc, "DatiRitenuta") is not None:
        withholding = Withholding(
            type=_get(doc, "DatiRitenuta TipoRitenuta"),
            amount=_get(doc, "DatiRitenuta ImportoRitenuta"),
            rate=_get(doc, "DatiRitenuta AliquotaRitenuta"),
            payment_reason=_get(doc, "DatiRitenuta CausalePagamento"),
        )

    pension_fund = None
    if _first(doc, "DatiCassaPrevidenziale") is not None:
        pension_fund = PensionFund(
            type=_get(doc, "DatiCassaPrevidenziale TipoCassa"),
            rate=_get(doc, "DatiCassaPrevidenziale AlCassa"),
            amount=_get(doc, "DatiCassaPrevidenziale ImportoContributoCassa"),
            taxable_base=_get(doc, "DatiCassaPrevidenziale ImponibileCassa"),
            vat_rate=_get(doc, "DatiCassaPrevidenziale AliquotaIVA"),
        )

    return InvoiceBody(
        document_type=_get(doc, "TipoDocumento"),
        currency=_get(doc, "Divisa"),
        date=_get(doc, "Data"),
        number=_get(doc, "Numero"),
        total_amount=_get(doc, "ImportoTotaleDocumento"),
        rounding=_get(doc, "Arrotondamento"),
        reasons=[(c.text or "").strip() for c in _all(doc, "Causale")],
        stamp=stamp,
        withholding=withholding,
        pension_fund=pension_fund,
        payment_terms=_get(payment, "CondizioniPagamento"),
        payments=[
            Payment(
                method=_get(p, "ModalitaPagamento"),
                due_date=_get(p, "DataScadenzaPagamento"),
                amount=_get(p, "ImportoPagamento"),
                iban=_get(p, "IBAN"),
                bank=_get(p, "IstitutoFinanziario"),
            )
            for p in _all(payment, "DettaglioPagamento")
        ],
        lines=[_map_line(line) for line in _all(goods, "DettaglioLinee")],
        vat_summary=[
            VatSummaryEntry(
                vat_rate=_get(r, "AliquotaIVA"),
                vat_nature=_get(r, "Natura"),
                taxable_amount=_get(r, "ImponibileImporto"),
                tax=_get(r, "Imposta"),
                vat_collectability=_get(r, "EsigibilitaIVA"),
                legal_reference=_get(r, "RiferimentoNormativo"),
            )
            for r in _all(goods, "DatiRiepilogo")
        ],
        attachments=[_map_attachment(a) for a in _all(body, "Allegati")],
        contracts=[_map_reference(c) for c in _all(general, "DatiContratto")],
        purchase_orders=[_map_reference(o) for o in _all(general, "DatiOrdineAcquisto")],
        delivery_notes=[
            DeliveryNote(number=_get(d, "NumeroDDT"), date=_get(d, "DataDDT"))
            for d in _all(general, "DatiDDT")
        ],
    )


def parse_fattura(xml: str) -> ParsedInvoice:
    """
    Map FatturaPA XML to a ParsedInvoice.

    Args:
        xml: Invoice XML, with or without namespace prefixes

    Returns:
        ParsedInvoice with at least one body

    Raises:
        MappingError: If the XML is ill-formed, has no FatturaElettronica
            element, or has no body
    """
    cleaned = _XML_DECLARATION.sub("", strip_namespaces(xml.lstrip("\ufeff")), count=1)

    try:
        root = ET.fromstring(cleaned.strip())
    except ET.ParseError as e:
        raise MappingError(f"Invalid XML: {str(e)[:200]}") from e

    if root.tag != ROOT_TAG:
        root = root.find(f".//{ROOT_TAG}")
        if root is None:
            raise MappingError(f"{ROOT_TAG} not found")

    header = _first(root, "FatturaElettronicaHeader")
    transmission = _first(header, "DatiTrasmissione")

    bodies = [_map_body(body) for body in _all(root, "FatturaElettronicaBody")]
    if not bodies:
        raise MappingError("No FatturaElettronicaBody found")

    invoice = ParsedInvoice(
        version=root.get("versione", ""),
        transmission=TransmissionHeader(
            transmitter_id=_get(transmission, "IdTrasmittente IdPaese")
            + _get(transmission, "IdTrasmittente IdCodice"),
            sequence_number=_get(transmission, "ProgressivoInvio"),
            format=_get(transmission, "FormatoTrasmissione"),
            recipient_code=_get(transmission, "CodiceDestinatario"),
            recipient_pec=_get(transmission, "PECDestinatario"),
        ),
        supplier=_map_supplier(_first(header, "CedentePrestatore")),
        customer=_map_customer(_first(header, "CessionarioCommittente")),
        bodies=bodies,
    )

    logger.debug(
        "Mapped FatturaPA %s from %s with %d bodies",
        invoice.version or "(no version)",
        invoice.supplier.vat_id or "(unknown supplier)",
        len(bodies),
    )
    return invoice
