"""Extractor interface shared by the structured and text strategies."""

from typing import Protocol

from models.cfdi import ExtractedInvoiceDocument, ExtractionSource


class DocumentExtractor(Protocol):
    """Protocol for one extraction strategy.

    Implementations turn raw attachment bytes into an ExtractedInvoiceDocument.
    An attachment that is not an ingestible invoice raises a subclass of
    core.errors.ExtractionSkipped instead of returning a partial document.
    """

    source: ExtractionSource

    def extract(self, data: bytes, filename: str) -> ExtractedInvoiceDocument:
        """Extract an invoice document from raw bytes.

        Args:
            data: Whole attachment buffer
            filename: Attachment filename (may carry the operation reference)

        Returns:
            ExtractedInvoiceDocument

        Raises:
            ExtractionSkipped: If the attachment is not an ingestible CFDI
        """
        ...
