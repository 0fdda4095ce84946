"""Extraction entry point.

Exposes one high-level function for turning an attachment into an
ExtractedInvoiceDocument:
- extract_invoice(data, filename, mime_type) -> ExtractedInvoiceDocument

The Format Detector picks the strategy; the strategy does the parsing.
"""

import time
from typing import Dict, Optional

from core.config import DEFAULT_CONFIG, PipelineConfig
from core.errors import ExtractionSkipped
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import record_extraction, record_processing_time
from extraction.base import DocumentExtractor
from extraction.cfdi_xml import CfdiXmlParser
from extraction.detector import detect_format
from extraction.text_extractor import CfdiTextExtractor
from models.cfdi import ExtractedInvoiceDocument, ExtractionSource


logger = get_logger(__name__)


def build_extractors(config: PipelineConfig = DEFAULT_CONFIG) -> Dict[ExtractionSource, DocumentExtractor]:
    """One extractor per route."""
    return {
        ExtractionSource.STRUCTURED: CfdiXmlParser(),
        ExtractionSource.TEXT: CfdiTextExtractor(config),
    }


def extract_invoice(
    data: bytes,
    filename: str,
    mime_type: Optional[str] = None,
    config: PipelineConfig = DEFAULT_CONFIG,
    extractors: Optional[Dict[ExtractionSource, DocumentExtractor]] = None,
) -> ExtractedInvoiceDocument:
    """Detect the format of an attachment and run the matching extractor.

    Args:
        data: Whole attachment buffer
        filename: Attachment filename
        mime_type: Declared media type, if any
        config: Pipeline configuration
        extractors: Strategy overrides (default: build_extractors(config))

    Returns:
        ExtractedInvoiceDocument

    Raises:
        ExtractionSkipped: NotAnInvoice or MalformedStructuredDocument
    """
    start = time.time()

    try:
        route = detect_format(data, filename, mime_type)
    except ExtractionSkipped:
        record_extraction(None)
        raise

    extractor = (extractors or build_extractors(config))[route]

    with with_correlation(stage="extract"):
        logger.debug(f"Routing {filename} to {route.value} extractor")
        try:
            document = extractor.extract(data, filename)
        except ExtractionSkipped as exc:
            record_extraction(None)
            logger.info(f"Skipped {filename}: {exc.reason}")
            raise

    record_extraction(route.value)
    record_processing_time("extract", (time.time() - start) * 1000)
    return document
