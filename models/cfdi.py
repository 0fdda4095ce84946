"""Extracted CFDI invoice models.

These models are the single hand-off format between the two extraction
strategies (structured XML and fallback text) and the matching/reconciliation
stages. An ExtractedInvoiceDocument is built per attachment, consumed
immediately and discarded; it is never persisted as-is.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Value Parsers (handle attribute strings and printed currency amounts)
# =============================================================================

def _parse_decimal(value):
    """Parse decimal from various formats (string with $ or commas, floats, etc.)."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        s = s.replace("$", "").replace(",", "").strip()
        return Decimal(s)
    return value


DecimalValue = Annotated[Decimal, BeforeValidator(_parse_decimal)]


# =============================================================================
# Base Model
# =============================================================================

class CfdiBase(BaseModel):
    """Base model for all extracted CFDI structures."""
    model_config = ConfigDict(populate_by_name=True)


class ExtractionSource(str, Enum):
    """Which extraction strategy produced a document."""
    STRUCTURED = "structured"  # CFDI XML attribute tree
    TEXT = "text"              # Regex over decoded text


# =============================================================================
# Parties
# =============================================================================

class Counterparty(CfdiBase):
    """Invoice recipient (CFDI Receptor), i.e. our customer."""
    name: str
    tax_id: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    fiscal_regime: Optional[str] = None
    cfdi_usage: Optional[str] = None
    confidence: int = Field(default=0, ge=0, le=100)
    source: ExtractionSource


class Issuer(CfdiBase):
    """Invoice issuer (CFDI Emisor)."""
    name: str
    tax_id: str
    fiscal_regime: Optional[str] = None
    place_of_issue: Optional[str] = None


# =============================================================================
# Line Items & Document
# =============================================================================

class ExtractedLineItem(CfdiBase):
    """A CFDI Concepto with its SAT catalogue codes."""
    product_code: str = ""
    quantity: DecimalValue = Decimal("0")
    unit_code: str = ""
    description: str = ""
    unit_price: DecimalValue = Decimal("0")
    amount: DecimalValue = Decimal("0")
    tax_object: Optional[str] = None
    identification: Optional[str] = None
    tax_rate: Optional[DecimalValue] = None
    tax_amount: Optional[DecimalValue] = None


class ExtractedInvoiceDocument(CfdiBase):
    """Canonical output of both extraction strategies.

    Attributes:
        counterparty: Receptor data used for client matching
        issuer: Emisor data, copied onto the invoice header
        fiscal_uuid: Folio Fiscal from the digital seal; the deduplication key
        invoice_number: Folio printed on the invoice
        operation_reference: Operation code (e.g. NAVI-0001234) found in filename or items
        issue_date: Raw issue date as printed or stored in the XML
        confidence: 100 for structured documents, computed for text documents
    """
    counterparty: Counterparty
    issuer: Optional[Issuer] = None

    fiscal_uuid: Optional[str] = None
    invoice_number: Optional[str] = None
    operation_reference: Optional[str] = None
    issue_date: Optional[str] = None

    subtotal: Optional[DecimalValue] = None
    tax: Optional[DecimalValue] = None
    total: Optional[DecimalValue] = None
    currency: Optional[str] = None

    payment_method: Optional[str] = None
    payment_form: Optional[str] = None
    voucher_type: Optional[str] = None
    export_status: Optional[str] = None

    line_items: List[ExtractedLineItem] = Field(default_factory=list)

    is_valid_invoice: bool = True
    confidence: int = Field(default=0, ge=0, le=100)

    @property
    def source(self) -> ExtractionSource:
        return self.counterparty.source

    @property
    def concepts(self) -> List[str]:
        """Line item descriptions, in document order."""
        return [item.description for item in self.line_items]
