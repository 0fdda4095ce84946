"""Models Package.

Data models for the invoice ingestion pipeline including:
- Extracted CFDI document models
- Persisted record models (clients, invoices, operations, attachments)
- Outcome models for matching, reconciliation and orchestration
- Blob reference model
"""

from models.cfdi import (
    Counterparty,
    DecimalValue,
    ExtractedInvoiceDocument,
    ExtractedLineItem,
    ExtractionSource,
    Issuer,
)

from models.records import (
    AttachmentRecord,
    ClientRecord,
    InvoiceLineItemRecord,
    InvoiceRecord,
    OperationRecord,
)

from models.outcomes import (
    AssignmentAction,
    AttachmentOutcome,
    ClientBatchSummary,
    ClientMatchResult,
    ClientResolution,
    InvoiceBatchSummary,
    MatchType,
    ReconciliationAction,
    ReconciliationResult,
)

from models.refs import BlobReference

__all__ = [
    # Extraction
    "Counterparty",
    "DecimalValue",
    "ExtractedInvoiceDocument",
    "ExtractedLineItem",
    "ExtractionSource",
    "Issuer",
    # Records
    "AttachmentRecord",
    "ClientRecord",
    "InvoiceLineItemRecord",
    "InvoiceRecord",
    "OperationRecord",
    # Outcomes
    "AssignmentAction",
    "AttachmentOutcome",
    "ClientBatchSummary",
    "ClientMatchResult",
    "ClientResolution",
    "InvoiceBatchSummary",
    "MatchType",
    "ReconciliationAction",
    "ReconciliationResult",
    # Refs
    "BlobReference",
]
