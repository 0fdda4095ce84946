"""Persisted Records.

Rows owned by the persistence collaborator and mutated by the pipeline:
- ClientRecord: a customer, usually the CFDI Receptor
- InvoiceRecord: an invoice header keyed by its fiscal UUID
- InvoiceLineItemRecord: one Concepto of an invoice
- OperationRecord / AttachmentRecord: the freight operation and its files

Rows are created once and afterwards only updated; the pipeline never deletes.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from models.cfdi import DecimalValue


class ClientRecord(BaseModel):
    """A customer.

    Attributes:
        id: Primary key
        name: Display name (the Receptor Nombre for auto-created clients)
        email: Contact email; auto-created clients get a placeholder address
        tax_id: RFC
        currency: Preferred invoicing currency; follows the latest invoice
        created_from_invoice: True when this pipeline created the row
        source_attachment_id: Attachment that created or last backfilled the row
    """
    id: Optional[str] = None
    name: str
    email: Optional[str] = None
    legal_name: Optional[str] = None
    tax_id: Optional[str] = None
    currency: str = "MXN"
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    fiscal_regime: Optional[str] = None
    cfdi_usage: Optional[str] = None
    notes: Optional[str] = None
    created_from_invoice: bool = False
    source_attachment_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvoiceRecord(BaseModel):
    """An invoice header.

    `created_automatically` separates rows owned by the pipeline (never
    rewritten) from human-entered rows (eligible for one correction).
    """
    id: Optional[str] = None
    invoice_number: str
    fiscal_uuid: Optional[str] = None
    operation_id: Optional[str] = None
    client_id: Optional[str] = None
    owner_id: Optional[str] = None

    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    status: str = "pending"

    subtotal: DecimalValue = Decimal("0")
    tax: DecimalValue = Decimal("0")
    total: DecimalValue = Decimal("0")
    currency: str = "MXN"

    issuer_tax_id: Optional[str] = None
    issuer_name: Optional[str] = None
    issuer_fiscal_regime: Optional[str] = None
    payment_method: Optional[str] = None
    payment_form: Optional[str] = None
    cfdi_usage: Optional[str] = None

    created_automatically: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvoiceLineItemRecord(BaseModel):
    """A persisted line item."""
    id: Optional[str] = None
    invoice_id: str
    product_code: Optional[str] = None
    description: str = ""
    quantity: DecimalValue = Decimal("0")
    unit_code: Optional[str] = None
    unit_price: DecimalValue = Decimal("0")
    amount: DecimalValue = Decimal("0")
    tax_rate: Optional[DecimalValue] = None
    tax_amount: DecimalValue = Decimal("0")
    tax_object: Optional[str] = None
    identification: Optional[str] = None

    class Config:
        from_attributes = True


class OperationRecord(BaseModel):
    """A freight operation; the unit of work for batch sweeps."""
    id: Optional[str] = None
    name: str = ""
    client_id: Optional[str] = None
    created_at: Optional[datetime] = None


class AttachmentRecord(BaseModel):
    """A file attached to an operation.

    `storage_key` is the opaque key handed to the blob collaborator.
    """
    id: Optional[str] = None
    operation_id: str
    filename: str
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = Field(default=None, ge=0)
    is_inline: bool = False
    storage_key: str
    created_at: Optional[datetime] = None
