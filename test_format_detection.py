"""
Format detection and attachment heuristics tests.

Covers routing (structured vs text), the filename pre-filter, the batch
candidate heuristic, and the noise filter for signature images.
"""

import pytest

from core.errors import NotAnInvoice
from extraction.detector import (
    detect_format,
    is_invoice_candidate,
    is_invoice_filename,
    is_noise_attachment,
    looks_like_xml,
)
from models.cfdi import ExtractionSource


class TestDetectFormat:
    """Routing between the structured and text extractors."""

    def test_xml_extension_routes_structured(self):
        assert detect_format(b"anything", "factura_A123.xml") == ExtractionSource.STRUCTURED

    def test_xml_extension_is_case_insensitive(self):
        assert detect_format(b"anything", "FACTURA_A123.XML") == ExtractionSource.STRUCTURED

    def test_xml_media_type_routes_structured(self):
        assert detect_format(b"anything", "factura_A123", "application/xml") == ExtractionSource.STRUCTURED
        assert detect_format(b"anything", "factura_A123", "text/xml") == ExtractionSource.STRUCTURED

    def test_xml_declaration_routes_structured(self):
        data = b'<?xml version="1.0"?><cfdi:Comprobante/>'
        assert detect_format(data, "factura_A123.bin") == ExtractionSource.STRUCTURED

    def test_whitespace_before_declaration_routes_structured(self):
        data = b'  \n\t<?xml version="1.0"?><cfdi:Comprobante/>'
        assert detect_format(data, "factura_A123.dat") == ExtractionSource.STRUCTURED

    def test_bom_then_whitespace_routes_structured(self):
        data = b'\xef\xbb\xbf  \n<?xml version="1.0"?><cfdi:Comprobante/>'
        assert looks_like_xml(data)
        assert detect_format(data, "factura_A123.dat") == ExtractionSource.STRUCTURED

    def test_pdf_routes_text(self):
        assert detect_format(b"%PDF-1.7 ...", "factura_A123.pdf", "application/pdf") == ExtractionSource.TEXT

    def test_unrelated_filename_is_rejected(self):
        with pytest.raises(NotAnInvoice) as exc_info:
            detect_format(b"<?xml version='1.0'?>", "photo.jpg")
        assert exc_info.value.reason == "filename does not look like an invoice"

    def test_missing_filename_is_rejected(self):
        with pytest.raises(NotAnInvoice):
            detect_format(b"data", "")


class TestFilenameHeuristics:

    @pytest.mark.parametrize("filename", [
        "Factura_A123.pdf",
        "invoice-2025.PDF",
        "CFDI_5FB2822E.zip",
        "documento.xml",
    ])
    def test_invoice_filenames(self, filename):
        assert is_invoice_filename(filename)

    def test_non_invoice_filename(self):
        assert not is_invoice_filename("logo.png")

    def test_looks_like_xml_ignores_bom(self):
        assert looks_like_xml('\ufeff<?xml version="1.0"?>'.encode("utf-8"))
        assert not looks_like_xml(b"%PDF-1.4")

    @pytest.mark.parametrize("filename,mime_type,expected", [
        ("Factura_A123.xml", None, True),
        ("INVOICE 2025.pdf", None, True),
        ("fact. 1234.pdf", None, True),
        ("inv.889.pdf", None, True),
        ("scan0001.pdf", "application/pdf", True),
        ("scan0001.pdf", None, False),
        ("packing-list.xlsx", None, False),
    ])
    def test_is_invoice_candidate(self, filename, mime_type, expected):
        assert is_invoice_candidate(filename, mime_type) is expected


class TestNoiseFilter:
    """Signature images, tracking pixels and inline logos are ignored."""

    @pytest.mark.parametrize("filename", [
        "image001.png",
        "signature.jpg",
        "logo.gif",
        "spacer.gif",
        "1x1.png",
        "jdoe_signature_2025.png",
        "cid:ii_18c2f",
    ])
    def test_signature_names_are_noise(self, filename):
        assert is_noise_attachment(filename, "image/png", 200_000)

    def test_tiny_file_is_noise(self):
        assert is_noise_attachment("factura_A123.pdf", "application/pdf", 512)

    def test_small_inline_image_is_noise(self):
        assert is_noise_attachment("banner.png", "image/png", 20 * 1024, is_inline=True)

    def test_inline_gif_under_100k_is_noise(self):
        assert is_noise_attachment("animated.gif", "image/gif", 80 * 1024, is_inline=True)

    def test_large_inline_image_is_not_noise(self):
        assert not is_noise_attachment("scan.png", "image/png", 500 * 1024, is_inline=True)

    def test_unknown_size_skips_size_rules(self):
        assert not is_noise_attachment("factura_A123.pdf", "application/pdf", None)

    def test_regular_invoice_is_not_noise(self):
        assert not is_noise_attachment("factura_A123.pdf", "application/pdf", 80 * 1024)
