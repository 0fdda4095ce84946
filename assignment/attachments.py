"""Attachment handling shared by the invoice and client orchestrators."""

from typing import List, Optional

from core.config import PipelineConfig
from core.observability.logging import get_logger
from extraction.detector import is_invoice_candidate, is_noise_attachment
from extraction.runner import extract_invoice
from models.cfdi import ExtractedInvoiceDocument
from models.records import AttachmentRecord
from storage.blobs import BlobStore


logger = get_logger(__name__)


def invoice_candidates(attachments: List[AttachmentRecord]) -> List[AttachmentRecord]:
    """Attachments worth running the pipeline on, in their stored order."""
    candidates = []
    for attachment in attachments:
        if not attachment.filename or not attachment.storage_key:
            continue
        if is_noise_attachment(
            attachment.filename,
            attachment.mime_type,
            attachment.size_bytes,
            attachment.is_inline,
        ):
            logger.debug(f"Ignoring noise attachment {attachment.filename}")
            continue
        if is_invoice_candidate(attachment.filename, attachment.mime_type):
            candidates.append(attachment)
    return candidates


def load_document(
    blobs: BlobStore,
    storage_key: str,
    filename: str,
    mime_type: Optional[str],
    config: PipelineConfig,
) -> ExtractedInvoiceDocument:
    """Fetch an attachment's bytes and extract the invoice it carries.

    Raises:
        BlobFetchFailure: If the blob cannot be read
        ExtractionSkipped: If the attachment is not an ingestible CFDI
    """
    data = blobs.get_bytes(storage_key)
    return extract_invoice(data, filename, mime_type, config=config)
