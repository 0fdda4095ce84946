"""CFDI extraction: format detection, XML parsing and the text fallback.

Usage:
    from extraction import extract_invoice

    document = extract_invoice(data, "factura_A123.xml")
    print(document.counterparty.tax_id, document.total)
"""

from extraction.cfdi_xml import CfdiXmlParser
from extraction.detector import detect_format, is_invoice_candidate, is_noise_attachment
from extraction.runner import build_extractors, extract_invoice
from extraction.text_extractor import CfdiTextExtractor

__all__ = [
    "CfdiXmlParser",
    "CfdiTextExtractor",
    "detect_format",
    "is_invoice_candidate",
    "is_noise_attachment",
    "build_extractors",
    "extract_invoice",
]
