"""Prompt templates for bank statement extraction.

Prompts are versioned so that a change in wording can be traced in the
per-chunk extraction log.
"""

from __future__ import annotations

from dataclasses import dataclass

# v1.0: JSON-only output, signed amounts, closed transaction_type set
PROMPT_VERSION = "v1.0"


@dataclass
class StatementPrompt:
    """Prompt sent with every PDF chunk.

    Attributes:
        version: Prompt version.
        text: Instruction text placed after the inline PDF part.
    """

    version: str = PROMPT_VERSION

    text: str = """Sei un parser contabile italiano.
Estrai i movimenti bancari presenti nel PDF (estratto conto MPS o simile).
Restituisci SOLO JSON valido, senza testo extra.

Formato richiesto:
{
  "transactions": [
    {
      "date": "DD/MM/YYYY",
      "value_date": "DD/MM/YYYY oppure null",
      "amount": numero (negativo=uscita, positivo=entrata),
      "commission": numero positivo oppure null,
      "description": "causale completa",
      "counterparty_name": "nome controparte oppure null",
      "transaction_type": "bonifico_in|bonifico_out|riba|sdd|pos|prelievo|commissione|stipendio|f24|altro",
      "reference": "CRO/TRN/rif oppure null",
      "invoice_ref": "numero fattura se presente, altrimenti null",
      "category_code": "codice causale se presente, altrimenti null",
      "raw_text": "estratto testo max 180 caratteri, oppure null"
    }
  ]
}

Regole:
- Includi TUTTI i movimenti presenti nel chunk.
- Non inventare dati mancanti.
- Se non trovi movimenti, restituisci {"transactions":[]}."""
