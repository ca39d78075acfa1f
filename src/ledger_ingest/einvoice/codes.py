"""FatturaPA code tables used for display labels."""

DOCUMENT_TYPES = {
    "TD01": "Fattura",
    "TD02": "Acconto/Anticipo",
    "TD03": "Acconto Parcella",
    "TD04": "Nota di Credito",
    "TD05": "Nota di Debito",
    "TD06": "Parcella",
    "TD07": "Fatt. semplificata",
    "TD08": "NC semplificata",
    "TD16": "Integr. RC interno",
    "TD17": "Integr. servizi UE",
    "TD18": "Integr. beni UE",
    "TD19": "Integr. art.17",
    "TD20": "Autofattura",
    "TD24": "Fatt. differita",
    "TD25": "Fatt. differita (b)",
    "TD26": "Cess. ammortizzabili",
    "TD27": "Autoconsumo",
    "TD28": "Acq. San Marino",
}

PAYMENT_METHODS = {
    "MP01": "Contanti",
    "MP02": "Assegno",
    "MP03": "Assegno circ.",
    "MP05": "Bonifico",
    "MP08": "Carta",
    "MP09": "RID",
    "MP12": "RIBA",
    "MP13": "MAV",
    "MP19": "SEPA DD",
    "MP20": "SEPA CORE",
    "MP22": "Trattenuta",
    "MP23": "PagoPA",
}

TAX_REGIMES = {
    "RF01": "Ordinario",
    "RF02": "Minimi",
    "RF04": "Agricoltura",
    "RF18": "Altro",
    "RF19": "Forfettario",
}

# Credit notes reverse the sign when an invoice is booked
CREDIT_NOTE_TYPES = frozenset({"TD04", "TD08"})


def label(table: dict[str, str], code: str) -> str:
    """Return ``"CODE Label"``, or the bare code when it is unknown."""
    if not code:
        return ""
    name = table.get(code)
    return f"{code} {name}" if name else code
