"""
Structured CFDI XML parser tests.
"""

from decimal import Decimal

import pytest

from conftest import build_cfdi_xml
from core.errors import MalformedStructuredDocument
from extraction.cfdi_xml import CfdiXmlParser
from models.cfdi import ExtractionSource


@pytest.fixture
def parser():
    return CfdiXmlParser()


class TestCfdiXmlParser:

    def test_parses_receptor(self, parser):
        doc = parser.extract(build_cfdi_xml(), "factura_A123.xml")

        assert doc.counterparty.tax_id == "XAXX010101000"
        assert doc.counterparty.name == "PUBLICO GENERAL"
        assert doc.counterparty.postal_code == "64000"
        assert doc.counterparty.fiscal_regime == "616"
        assert doc.counterparty.cfdi_usage == "S01"
        assert doc.counterparty.source == ExtractionSource.STRUCTURED
        assert doc.source == ExtractionSource.STRUCTURED

    def test_structured_confidence_is_100(self, parser):
        doc = parser.extract(build_cfdi_xml(), "factura_A123.xml")
        assert doc.confidence == 100
        assert doc.counterparty.confidence == 100
        assert doc.is_valid_invoice

    def test_parses_header(self, parser):
        doc = parser.extract(build_cfdi_xml(), "factura_A123.xml")

        assert doc.fiscal_uuid == "5fb2822e-396d-4725-8521-cdc4bdd20ccf"
        assert doc.invoice_number == "A123"
        assert doc.issue_date == "2025-03-15T10:22:11"
        assert doc.currency == "MXN"
        assert doc.payment_method == "PUE"
        assert doc.payment_form == "03"
        assert doc.voucher_type == "I"
        assert doc.export_status == "01"

    def test_parses_issuer(self, parser):
        doc = parser.extract(build_cfdi_xml(), "factura_A123.xml")
        assert doc.issuer is not None
        assert doc.issuer.tax_id == "TGO190101AB1"
        assert doc.issuer.name == "TRANSPORTES DEL GOLFO"
        assert doc.issuer.fiscal_regime == "601"
        assert doc.issuer.place_of_issue == "64000"

    def test_tax_is_total_minus_subtotal(self, parser):
        doc = parser.extract(build_cfdi_xml(subtotal="1000.00", total="1160.00"), "factura_A123.xml")
        assert doc.subtotal == Decimal("1000.00")
        assert doc.total == Decimal("1160.00")
        assert doc.tax == Decimal("160.00")

    def test_tax_without_tax_totals_node(self, parser):
        xml = build_cfdi_xml(subtotal="1000.00", total="1160.00", with_tax_node=False)
        doc = parser.extract(xml, "factura_A123.xml")
        assert doc.tax == Decimal("160.00")
        assert doc.total - doc.subtotal == doc.tax

    def test_tax_from_tax_totals_node_without_subtotal(self, parser):
        doc = parser.extract(build_cfdi_xml(with_subtotal=False), "factura_A123.xml")
        assert doc.subtotal is None
        assert doc.total == Decimal("580.00")
        assert doc.tax == Decimal("80.00")

    def test_no_subtotal_and_no_tax_totals_node(self, parser):
        xml = build_cfdi_xml(with_subtotal=False, with_tax_node=False)
        doc = parser.extract(xml, "factura_A123.xml")
        assert doc.total == Decimal("580.00")
        assert doc.tax is None

    def test_parses_line_items(self, parser):
        doc = parser.extract(build_cfdi_xml(), "factura_A123.xml")

        assert len(doc.line_items) == 1
        item = doc.line_items[0]
        assert item.product_code == "78101803"
        assert item.unit_code == "E48"
        assert item.quantity == Decimal("1")
        assert item.unit_price == Decimal("500.00")
        assert item.amount == Decimal("500.00")
        assert item.tax_object == "02"
        assert item.identification == "FL-01"
        assert item.tax_rate == Decimal("0.160000")
        assert item.tax_amount == Decimal("80.00")
        assert doc.concepts == ["Servicio de flete NAVI-0001234"]

    def test_operation_reference_prefers_filename(self, parser):
        doc = parser.extract(build_cfdi_xml(), "factura_navi-0009999.xml")
        assert doc.operation_reference == "navi-0009999"

    def test_operation_reference_from_concepts(self, parser):
        doc = parser.extract(build_cfdi_xml(), "factura_A123.xml")
        assert doc.operation_reference == "NAVI-0001234"

    def test_missing_currency_is_not_defaulted(self, parser):
        doc = parser.extract(build_cfdi_xml(currency=None), "factura_A123.xml")
        assert doc.currency is None

    def test_missing_timbre_leaves_uuid_empty(self, parser):
        doc = parser.extract(build_cfdi_xml(fiscal_uuid=None), "factura_A123.xml")
        assert doc.fiscal_uuid is None

    def test_leading_whitespace_is_tolerated(self, parser):
        doc = parser.extract(build_cfdi_xml(leading="\n  "), "factura_A123.xml")
        assert doc.counterparty.tax_id == "XAXX010101000"

    def test_bom_then_whitespace_is_tolerated(self, parser):
        doc = parser.extract(build_cfdi_xml(leading="\ufeff  \n"), "factura_A123.xml")
        assert doc.counterparty.tax_id == "XAXX010101000"

    def test_cfdi_33_namespace(self, parser):
        data = build_cfdi_xml().replace(b"http://www.sat.gob.mx/cfd/4", b"http://www.sat.gob.mx/cfd/3")
        doc = parser.extract(data, "factura_A123.xml")
        assert doc.total == Decimal("580.00")

    def test_nested_comprobante_is_found(self, parser):
        inner = build_cfdi_xml().split(b"?>", 1)[1]
        data = b"<?xml version='1.0' encoding='UTF-8'?><Envelope>" + inner + b"</Envelope>"
        doc = parser.extract(data, "factura_A123.xml")
        assert doc.counterparty.name == "PUBLICO GENERAL"


class TestCfdiXmlRejections:

    def test_unparseable_xml(self, parser):
        with pytest.raises(MalformedStructuredDocument) as exc_info:
            parser.extract(b"<?xml version='1.0'?><cfdi:Comprobante", "factura_A123.xml")
        assert exc_info.value.reason == "not a valid CFDI"

    def test_no_comprobante(self, parser):
        with pytest.raises(MalformedStructuredDocument) as exc_info:
            parser.extract(b"<?xml version='1.0'?><Pedido Total='10'/>", "factura_A123.xml")
        assert exc_info.value.reason == "not a valid CFDI"

    def test_missing_total_is_invalid(self, parser):
        data = build_cfdi_xml().replace(b'Total="580.00"', b"")
        with pytest.raises(MalformedStructuredDocument) as exc_info:
            parser.extract(data, "factura_A123.xml")
        assert exc_info.value.reason == "not a valid CFDI"

    def test_receptor_without_name(self, parser):
        with pytest.raises(MalformedStructuredDocument) as exc_info:
            parser.extract(build_cfdi_xml(receptor_name=""), "factura_A123.xml")
        assert exc_info.value.reason == "could not extract receptor"
