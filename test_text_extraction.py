"""
Fallback text extraction tests.

Runs the regex rules over the text layer of a Facturama printed
representation and checks gating, defaults and confidence scoring.
"""

from decimal import Decimal

import fitz
import pytest

from conftest import build_cfdi_text
from core.config import PipelineConfig
from core.errors import NotAnInvoice
from extraction import text_rules as rules
from extraction.text_extractor import (
    NOT_A_CFDI_REASON,
    CfdiTextExtractor,
    decode_text,
    score_confidence,
)
from models.cfdi import ExtractionSource


@pytest.fixture
def extractor():
    return CfdiTextExtractor(PipelineConfig())


class TestTextExtractor:

    def test_extracts_receptor(self, extractor):
        doc = extractor.extract_text(build_cfdi_text(), "factura_1234.pdf")

        cp = doc.counterparty
        assert cp.tax_id == "CAL980512QW3"
        assert cp.name == "COMERCIALIZADORA ALVAREZ SA DE CV"
        assert cp.postal_code == "64000"
        assert cp.fiscal_regime == "601 - General de Ley Personas Morales"
        assert cp.cfdi_usage == "G03 - Gastos en general"
        assert cp.address == "AV REFORMA 100 CENTRO, MONTERREY, NUEVO LEON"
        assert cp.city == "MONTERREY"
        assert cp.state == "NUEVO LEON"
        assert cp.country == "México"
        assert cp.source == ExtractionSource.TEXT

    def test_extracts_header_and_totals(self, extractor):
        doc = extractor.extract_text(build_cfdi_text(), "factura_1234.pdf")

        assert doc.fiscal_uuid == "5fb2822e-396d-4725-8521-cdc4bdd20ccf"
        assert doc.invoice_number == "1234"
        assert doc.issue_date == "15/03/2025"
        assert doc.subtotal == Decimal("1000.00")
        assert doc.tax == Decimal("160.00")
        assert doc.total == Decimal("1160.00")
        assert doc.payment_method == "PUE"
        assert doc.payment_form == "03"
        assert doc.voucher_type == "I"
        assert doc.export_status == "01"
        assert doc.operation_reference == "NAVI-0001234"

    def test_extracts_issuer(self, extractor):
        doc = extractor.extract_text(build_cfdi_text(), "factura_1234.pdf")
        assert doc.issuer.tax_id == "TGO190101AB1"
        assert doc.issuer.name == "TRANSPORTES DEL GOLFO SA DE CV"

    def test_extracts_line_items(self, extractor):
        doc = extractor.extract_text(build_cfdi_text(), "factura_1234.pdf")

        assert len(doc.line_items) == 1
        item = doc.line_items[0]
        assert item.product_code == "78101803"
        assert item.quantity == Decimal("1.00")
        assert item.unit_code == "E48"
        assert item.unit_price == Decimal("1000.00")
        assert item.amount == Decimal("1000.00")
        assert item.description == "Flete NAVI-0001234"

    def test_full_confidence_when_all_fields_found(self, extractor):
        doc = extractor.extract_text(build_cfdi_text(), "factura_1234.pdf")
        assert doc.confidence == 100
        assert doc.counterparty.confidence == 100

    def test_currency_defaults_to_mxn(self, extractor):
        doc = extractor.extract_text(build_cfdi_text(currency=None), "factura_1234.pdf")
        assert doc.currency == "MXN"

    def test_currency_from_text(self, extractor):
        doc = extractor.extract_text(build_cfdi_text(currency="USD"), "factura_1234.pdf")
        assert doc.currency == "USD"

    def test_extract_decodes_utf8_bytes(self, extractor):
        doc = extractor.extract(build_cfdi_text().encode("utf-8"), "factura_1234.txt")
        assert doc.counterparty.tax_id == "CAL980512QW3"


class TestTextGating:

    def test_two_markers_rejected(self, extractor):
        text = "Factura CFDI emitida ante el SAT por servicios de transporte. " * 5
        with pytest.raises(NotAnInvoice) as exc_info:
            extractor.extract_text(text, "factura_1234.pdf")
        assert exc_info.value.reason == NOT_A_CFDI_REASON
        assert exc_info.value.reason == "not a Facturama/CFDI invoice"

    def test_short_text_with_markers_rejected(self, extractor):
        text = "CFDI Folio Fiscal Emisor: Receptor: SAT"
        with pytest.raises(NotAnInvoice) as exc_info:
            extractor.extract_text(text, "factura_1234.pdf")
        assert exc_info.value.reason == "insufficient text"

    def test_short_text_with_few_markers_reports_markers(self, extractor):
        with pytest.raises(NotAnInvoice) as exc_info:
            extractor.extract_text("CFDI SAT", "factura_1234.pdf")
        assert exc_info.value.reason == NOT_A_CFDI_REASON

    def test_receptor_without_rfc_rejected(self, extractor):
        text = build_cfdi_text().replace("CAL980512QW3", "sin rfc")
        with pytest.raises(NotAnInvoice) as exc_info:
            extractor.extract_text(text, "factura_1234.pdf")
        assert exc_info.value.reason == "could not extract receptor"

    def test_marker_threshold_is_configurable(self):
        strict = CfdiTextExtractor(PipelineConfig(min_marker_count=8))
        with pytest.raises(NotAnInvoice):
            strict.extract_text(build_cfdi_text(), "factura_1234.pdf")

    def test_broken_pdf_yields_no_text(self):
        assert decode_text(b"%PDF-1.4 this is not really a pdf") == ""

    def test_broken_pdf_is_not_an_invoice(self, extractor):
        with pytest.raises(NotAnInvoice):
            extractor.extract(b"%PDF-1.4 this is not really a pdf", "factura_1234.pdf")


def build_pdf(text):
    """A one-page PDF whose text layer is ``text``."""
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((36, 48), text, fontsize=8)
    data = doc.tobytes()
    doc.close()
    return data


class TestPdfTextLayer:

    def test_decode_text_reads_pdf_text_layer(self):
        text = decode_text(build_pdf(build_cfdi_text()))
        assert "CAL980512QW3" in text
        assert "5fb2822e-396d-4725-8521-cdc4bdd20ccf" in text

    def test_extracts_invoice_from_pdf(self, extractor):
        doc = extractor.extract(build_pdf(build_cfdi_text()), "factura_1234.pdf")

        assert doc.source == ExtractionSource.TEXT
        assert doc.counterparty.tax_id == "CAL980512QW3"
        assert doc.fiscal_uuid == "5fb2822e-396d-4725-8521-cdc4bdd20ccf"
        assert doc.total == Decimal("1160.00")

    def test_pdf_without_text_layer_is_not_an_invoice(self, extractor):
        doc = fitz.open()
        doc.new_page()
        data = doc.tobytes()
        doc.close()

        with pytest.raises(NotAnInvoice):
            extractor.extract(data, "factura_1234.pdf")


class TestConfidenceScoring:

    def test_base_score(self):
        assert score_confidence("not-an-rfc", None, None, None) == 70

    def test_strict_rfc_bonus(self):
        assert score_confidence("CAL980512QW3", None, None, None) == 85

    def test_field_bonuses(self):
        assert score_confidence("CAL980512QW3", "CENTRO", "64000", None) == 95

    def test_score_is_capped(self):
        config = PipelineConfig(text_base_confidence=95)
        assert score_confidence("CAL980512QW3", "CENTRO", "64000", "601", config) == 100


class TestTextRules:

    def test_count_markers_is_case_insensitive(self):
        assert rules.count_cfdi_markers("cfdi folio fiscal emisor: receptor:") == 4

    def test_is_valid_rfc(self):
        assert rules.is_valid_rfc("XAXX010101000")
        assert rules.is_valid_rfc("CAL980512QW3")
        assert not rules.is_valid_rfc("XAXX010101000 extra")
        assert not rules.is_valid_rfc("")

    def test_total_does_not_match_subtotal(self):
        text = "Subtotal: $1,000.00\nIVA 16%: $160.00\nTotal: $1,160.00"
        assert rules.extract_subtotal(text) == Decimal("1000.00")
        assert rules.extract_total(text) == Decimal("1160.00")

    def test_address_stays_on_its_line(self):
        text = (
            "Receptor:\n"
            "COMERCIALIZADORA ALVAREZ SA DE CV\n"
            "CAL980512QW3\n"
            "CALLE 5 LOCAL 3, GUADALAJARA, JALISCO\n"
            "Código postal: 44100\n"
        )
        address = rules.extract_address(text)
        assert address == "CALLE 5 LOCAL 3, GUADALAJARA, JALISCO"
        assert rules.extract_city_state(address) == ("GUADALAJARA", "JALISCO")

    def test_city_state_does_not_cross_lines(self):
        assert rules.extract_city_state("AV JUAREZ 10 CENTRO, PUEBLA,\nCódigo postal") == (None, None)

    def test_split_labels_are_tolerated(self):
        assert rules.extract_payment_method("Méto do de P ago: PPD") == "PPD"
        assert rules.extract_voucher_type("Efec to del c o m pr o bante: E - Egreso") == "E"

    def test_parse_amount(self):
        assert rules.parse_amount("12,345.60") == Decimal("12345.60")
        assert rules.parse_amount("") is None

    def test_clean_item_description_defaults(self):
        assert rules.clean_item_description(" - Unidad de servicio ") == "Servicio"
