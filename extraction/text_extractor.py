"""Fallback text extractor for CFDI printed representations.

Used when no structured XML is available. The attachment's text layer is
decoded (PyMuPDF for PDF buffers, UTF-8 otherwise) and the rules in
extraction.text_rules are applied. No image OCR is performed: a scanned PDF
without a text layer yields too little text and is skipped.

Unlike the structured path, defaults are applied here (voucher type "I",
export status "01", currency "MXN", country "México").
"""

from typing import Optional

import fitz

from core.config import DEFAULT_CONFIG, PipelineConfig
from core.errors import NotAnInvoice
from core.observability.logging import get_logger
from extraction import text_rules as rules
from models.cfdi import (
    Counterparty,
    ExtractedInvoiceDocument,
    ExtractionSource,
    Issuer,
)


logger = get_logger(__name__)

NOT_A_CFDI_REASON = "not a Facturama/CFDI invoice"


def decode_text(data: bytes) -> str:
    """Return the text layer of a PDF buffer, or the buffer decoded as UTF-8."""
    if data.lstrip()[:5] == b"%PDF-":
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                return "\n".join(page.get_text("text") for page in doc)
        except (fitz.FileDataError, RuntimeError, ValueError) as exc:
            logger.warning(f"Could not read PDF text layer: {exc}")
            return ""
    return data.decode("utf-8", errors="replace")


def score_confidence(
    counterparty_rfc: str,
    address: Optional[str],
    postal_code: Optional[str],
    fiscal_regime: Optional[str],
    config: PipelineConfig = DEFAULT_CONFIG,
) -> int:
    """Base score plus bonuses for a strict RFC and each located field, capped at 100."""
    confidence = config.text_base_confidence
    if counterparty_rfc and rules.is_valid_rfc(counterparty_rfc):
        confidence += config.strict_rfc_bonus
    for value in (address, postal_code, fiscal_regime):
        if value:
            confidence += config.field_presence_bonus
    return max(0, min(confidence, 100))


class CfdiTextExtractor:
    """Fallback extraction strategy over decoded text."""

    source = ExtractionSource.TEXT

    def __init__(self, config: PipelineConfig = DEFAULT_CONFIG):
        self.config = config

    def extract(self, data: bytes, filename: str) -> ExtractedInvoiceDocument:
        """Extract an invoice from a text-bearing attachment.

        Raises:
            NotAnInvoice: Too little text, too few CFDI markers, or no receptor
        """
        return self.extract_text(decode_text(data), filename)

    def extract_text(self, text: str, filename: str = "") -> ExtractedInvoiceDocument:
        """Extract an invoice from already-decoded text."""
        markers = rules.count_cfdi_markers(text)
        if markers < self.config.min_marker_count:
            logger.info(
                f"Only {markers} CFDI markers found, skipping",
                extra_fields={"markers": markers},
            )
            raise NotAnInvoice(f"{filename}: {NOT_A_CFDI_REASON}", reason=NOT_A_CFDI_REASON)

        if len(text.strip()) < self.config.min_text_length:
            raise NotAnInvoice(
                f"insufficient text in {filename or 'attachment'} ({len(text.strip())} chars)",
                reason="insufficient text",
            )

        counterparty = self._extract_counterparty(text)
        if counterparty is None:
            raise NotAnInvoice(
                f"{filename}: could not extract receptor",
                reason="could not extract receptor",
            )

        line_items = rules.extract_line_items(rules.find_products_section(text))

        document = ExtractedInvoiceDocument(
            counterparty=counterparty,
            issuer=self._extract_issuer(text),
            fiscal_uuid=rules.extract_fiscal_uuid(text),
            invoice_number=rules.extract_folio(text),
            operation_reference=rules.extract_operation_reference(filename)
            or rules.extract_operation_reference(text),
            issue_date=rules.extract_issue_date(text),
            subtotal=rules.extract_subtotal(text),
            tax=rules.extract_iva(text),
            total=rules.extract_total(text),
            currency=rules.extract_currency(text) or self.config.default_currency,
            payment_method=rules.extract_payment_method(text),
            payment_form=rules.extract_payment_form(text),
            voucher_type=rules.extract_voucher_type(text) or rules.DEFAULT_VOUCHER_TYPE,
            export_status=rules.extract_export_status(text) or rules.DEFAULT_EXPORT_STATUS,
            line_items=line_items,
            is_valid_invoice=True,
            confidence=counterparty.confidence,
        )

        logger.info(
            f"Extracted text invoice: receptor {counterparty.name} ({counterparty.tax_id})",
            extra_fields={
                "fiscal_uuid": document.fiscal_uuid,
                "confidence": document.confidence,
                "line_items": len(line_items),
            },
        )
        return document

    def _extract_counterparty(self, text: str) -> Optional[Counterparty]:
        section = rules.find_receptor_section(text)
        if section is None:
            return None

        rfc = rules.extract_rfc(section)
        if rfc is None:
            logger.warning("RFC not found in receptor section")
            return None

        address = rules.extract_address(text)
        city, state = rules.extract_city_state(address)
        postal_code = rules.extract_postal_code(text)
        fiscal_regime = rules.extract_fiscal_regime(text)

        return Counterparty(
            name=rules.extract_receptor_name(section) or rules.DEFAULT_CLIENT_NAME,
            tax_id=rfc,
            address=address,
            city=city,
            state=state,
            postal_code=postal_code,
            country=self.config.default_country,
            fiscal_regime=fiscal_regime,
            cfdi_usage=rules.extract_cfdi_usage(text),
            confidence=score_confidence(rfc, address, postal_code, fiscal_regime, self.config),
            source=ExtractionSource.TEXT,
        )

    def _extract_issuer(self, text: str) -> Optional[Issuer]:
        section = rules.find_issuer_section(text)
        if section is None:
            return None

        return Issuer(
            name=rules.extract_issuer_name(section) or rules.DEFAULT_ISSUER_NAME,
            tax_id=rules.extract_issuer_rfc(section) or "",
            fiscal_regime=rules.extract_issuer_regime(text),
            place_of_issue=rules.extract_place_of_issue(text),
        )
