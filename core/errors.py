"""Error taxonomy for the invoice ingestion pipeline.

Skip conditions (the attachment is simply not something we ingest):
- NotAnInvoice: filename pre-filter or CFDI marker threshold failed
- MalformedStructuredDocument: XML lacks the mandatory CFDI nodes

Error conditions (the attachment looked like an invoice but could not be written):
- MissingFiscalIdentifier: no fiscal UUID to deduplicate on
- BlobFetchFailure: the blob store could not return the bytes
- PersistenceFailure: a store read or write failed

Orchestrators translate every one of these into a tagged outcome; they are
never surfaced to callers as bare exceptions.
"""

from typing import Optional


class InvoicePipelineError(Exception):
    """Base exception for the ingestion pipeline."""
    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason or message


class ExtractionSkipped(InvoicePipelineError):
    """The attachment is not an ingestible CFDI invoice."""
    pass


class NotAnInvoice(ExtractionSkipped):
    """Pre-filter or keyword threshold failure."""
    pass


class MalformedStructuredDocument(ExtractionSkipped):
    """XML document is missing mandatory CFDI nodes or does not parse."""
    pass


class MissingFiscalIdentifier(InvoicePipelineError):
    """Extracted document carries no fiscal UUID."""
    def __init__(self, message: str = "invoice has no fiscal UUID"):
        super().__init__(message)


class BlobFetchFailure(InvoicePipelineError):
    """Blob store could not return the attachment bytes."""
    def __init__(self, message: str, storage_key: str = ""):
        super().__init__(message)
        self.storage_key = storage_key


class PersistenceFailure(InvoicePipelineError):
    """Persistence store read or write failed."""
    def __init__(self, message: str, operation: str = ""):
        super().__init__(message)
        self.operation = operation
