"""Reconciliation engine for extracted CFDI invoices.

Exposes one high-level entry point:
- InvoiceReconciler.reconcile(document, operation_id) -> ReconciliationResult

The fiscal UUID is the uniqueness key. A document is either written as a new
invoice, used once to correct a human-entered invoice, or recognised as
already ingested and left alone. Line items are never duplicated.
"""

import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

from client_resolver.resolver import ClientResolver
from core.config import DEFAULT_CONFIG, PipelineConfig
from core.errors import MissingFiscalIdentifier
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import record_processing_time
from models.cfdi import ExtractedInvoiceDocument, ExtractedLineItem
from models.outcomes import ReconciliationAction, ReconciliationResult
from models.records import InvoiceLineItemRecord, InvoiceRecord


logger = get_logger(__name__)

NO_FOLIO = "Sin Folio"


class InvoiceStore(Protocol):
    """Protocol for the invoice side of the persistence collaborator."""

    def find_invoice_by_fiscal_uuid(self, fiscal_uuid: str) -> Optional[InvoiceRecord]:
        ...

    def create_invoice(self, invoice: InvoiceRecord) -> InvoiceRecord:
        ...

    def update_invoice(self, invoice_id: str, updates: Dict[str, Any]) -> InvoiceRecord:
        ...

    def create_line_items(self, items: List[InvoiceLineItemRecord]) -> List[InvoiceLineItemRecord]:
        """All-or-nothing insert."""
        ...

    def list_line_items(self, invoice_id: str) -> List[InvoiceLineItemRecord]:
        ...


# =============================================================================
# Utility Functions
# =============================================================================

def normalize_fiscal_uuid(value: str) -> str:
    """Fiscal UUIDs compare case-insensitively; store them uppercase."""
    return value.strip().upper()


def invoice_number_for(document: ExtractedInvoiceDocument) -> str:
    """Folio, else the first 15 characters of the fiscal UUID, else "Sin Folio"."""
    if document.invoice_number:
        return document.invoice_number
    if document.fiscal_uuid:
        return document.fiscal_uuid[:15]
    return NO_FOLIO


def parse_issue_date(raw: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp (XML) or a dd/mm/yyyy date (printed invoice)."""
    if not raw:
        return None
    raw = raw.strip()
    try:
        return datetime.strptime(raw, "%d/%m/%Y")
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        logger.warning(f"Unrecognised issue date: {raw!r}")
        return None


def line_item_amount(item: ExtractedLineItem) -> Decimal:
    """Printed amount, or quantity x unit price when the amount is zero."""
    if item.amount:
        return item.amount
    return item.quantity * item.unit_price


def to_line_item_record(invoice_id: str, item: ExtractedLineItem) -> InvoiceLineItemRecord:
    return InvoiceLineItemRecord(
        invoice_id=invoice_id,
        product_code=item.product_code or None,
        description=item.description,
        quantity=item.quantity,
        unit_code=item.unit_code or None,
        unit_price=item.unit_price,
        amount=line_item_amount(item),
        tax_rate=item.tax_rate,
        tax_amount=item.tax_amount or Decimal("0"),
        tax_object=item.tax_object,
        identification=item.identification,
    )


# =============================================================================
# Reconciler
# =============================================================================

class InvoiceReconciler:
    """Idempotent create-or-correct of invoices keyed by fiscal UUID.

    - Not found: create the invoice and its line items, owned by the
      configured system actor, flagged created_automatically.
    - Found and created_automatically: no-op.
    - Found and human-entered: overwrite fiscal fields, totals, currency and
      client linkage once, flip the flag, and add line items only if the
      invoice has none.
    """

    def __init__(
        self,
        store: InvoiceStore,
        client_resolver: ClientResolver,
        config: PipelineConfig = DEFAULT_CONFIG,
    ):
        self.store = store
        self.client_resolver = client_resolver
        self.config = config

    def reconcile(
        self,
        document: ExtractedInvoiceDocument,
        operation_id: Optional[str] = None,
        source_attachment_id: Optional[str] = None,
    ) -> ReconciliationResult:
        """Write an extracted document to the store.

        Args:
            document: Extracted invoice
            operation_id: Operation the invoice belongs to
            source_attachment_id: Attachment the document came from

        Returns:
            ReconciliationResult

        Raises:
            MissingFiscalIdentifier: If the document has no fiscal UUID
            PersistenceFailure: If a store call fails
        """
        if not document.fiscal_uuid:
            raise MissingFiscalIdentifier()

        start = time.time()
        fiscal_uuid = normalize_fiscal_uuid(document.fiscal_uuid)

        with with_correlation(fiscal_uuid=fiscal_uuid, stage="reconcile"):
            existing = self.store.find_invoice_by_fiscal_uuid(fiscal_uuid)

            if existing is None:
                result = self._create(document, fiscal_uuid, operation_id, source_attachment_id)
            elif existing.created_automatically:
                logger.info(f"Invoice {existing.invoice_number} already ingested, skipping")
                result = ReconciliationResult(
                    action=ReconciliationAction.ALREADY_INGESTED,
                    invoice_id=existing.id,
                    fiscal_uuid=fiscal_uuid,
                    client_id=existing.client_id,
                )
            else:
                result = self._correct(existing, document, fiscal_uuid, operation_id, source_attachment_id)

        record_processing_time("reconcile", (time.time() - start) * 1000)
        return result

    def _header_fields(self, document: ExtractedInvoiceDocument) -> Dict[str, Any]:
        """Invoice columns taken from the extracted document."""
        issuer = document.issuer
        return {
            "invoice_number": invoice_number_for(document),
            "subtotal": document.subtotal or Decimal("0"),
            "tax": document.tax or Decimal("0"),
            "total": document.total or Decimal("0"),
            "currency": (document.currency or self.config.default_currency).upper(),
            "issuer_tax_id": issuer.tax_id if issuer else None,
            "issuer_name": issuer.name if issuer else None,
            "issuer_fiscal_regime": issuer.fiscal_regime if issuer else None,
            "payment_method": document.payment_method,
            "payment_form": document.payment_form,
            "cfdi_usage": document.counterparty.cfdi_usage,
        }

    def _write_line_items(self, invoice_id: str, items: List[ExtractedLineItem]) -> int:
        self.store.create_line_items([to_line_item_record(invoice_id, item) for item in items])
        return len(items)

    def _create(
        self,
        document: ExtractedInvoiceDocument,
        fiscal_uuid: str,
        operation_id: Optional[str],
        source_attachment_id: Optional[str],
    ) -> ReconciliationResult:
        resolution = self.client_resolver.resolve_client(
            document.counterparty,
            invoice_currency=document.currency,
            source_attachment_id=source_attachment_id,
        )

        issue_date = parse_issue_date(document.issue_date) or datetime.utcnow()
        invoice = self.store.create_invoice(InvoiceRecord(
            fiscal_uuid=fiscal_uuid,
            operation_id=operation_id,
            client_id=resolution.client.id,
            owner_id=self.config.system_actor_id,
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=self.config.invoice_due_days),
            status="pending",
            created_automatically=False,
            **self._header_fields(document),
        ))

        # Claimed only after the line items are in; an unclaimed row is finished by _correct
        created_items = self._write_line_items(invoice.id, document.line_items)
        self.store.update_invoice(invoice.id, {"created_automatically": True})

        logger.info(
            f"Created invoice {invoice.invoice_number} ({invoice.currency} {invoice.total})",
            extra_fields={
                "invoice_id": invoice.id,
                "client_id": resolution.client.id,
                "line_items": created_items,
            },
        )
        return ReconciliationResult(
            action=ReconciliationAction.CREATED,
            invoice_id=invoice.id,
            fiscal_uuid=fiscal_uuid,
            client_id=resolution.client.id,
            client_created=resolution.created,
            line_items_created=created_items,
        )

    def _correct(
        self,
        existing: InvoiceRecord,
        document: ExtractedInvoiceDocument,
        fiscal_uuid: str,
        operation_id: Optional[str],
        source_attachment_id: Optional[str],
    ) -> ReconciliationResult:
        resolution = self.client_resolver.resolve_client(
            document.counterparty,
            invoice_currency=document.currency,
            source_attachment_id=source_attachment_id,
        )

        updates = self._header_fields(document)
        updates.update({
            "client_id": resolution.client.id,
            "issue_date": parse_issue_date(document.issue_date) or existing.issue_date or datetime.utcnow(),
            "created_automatically": True,
        })
        if operation_id:
            updates["operation_id"] = operation_id

        created_items = 0
        if not self.store.list_line_items(existing.id):
            created_items = self._write_line_items(existing.id, document.line_items)

        self.store.update_invoice(existing.id, updates)

        logger.info(
            f"Corrected manually entered invoice {existing.invoice_number}",
            extra_fields={"invoice_id": existing.id, "line_items": created_items},
        )
        return ReconciliationResult(
            action=ReconciliationAction.CORRECTED,
            invoice_id=existing.id,
            fiscal_uuid=fiscal_uuid,
            client_id=resolution.client.id,
            client_created=resolution.created,
            line_items_created=created_items,
        )
