"""Structured CFDI XML parser.

Deterministic attribute-tree parser for CFDI 4.0 (and 3.3) XML invoices.
Elements are matched by local name, so the `cfdi:`/`tfd:` prefixes and the
namespace URI version do not matter. Output confidence is always 100.

No defaulting is applied on this path: an attribute missing from the XML is
left as None on the extracted document.
"""

import codecs
import re
import xml.etree.ElementTree as ET
from decimal import Decimal, InvalidOperation
from typing import Iterator, List, Optional

from core.errors import MalformedStructuredDocument
from core.observability.logging import get_logger
from models.cfdi import (
    Counterparty,
    ExtractedInvoiceDocument,
    ExtractedLineItem,
    ExtractionSource,
    Issuer,
)


logger = get_logger(__name__)

OPERATION_REFERENCE_PATTERN = re.compile(r"NAVI-\d{7}", re.IGNORECASE)

STRUCTURED_CONFIDENCE = 100


# =============================================================================
# Tree helpers
# =============================================================================

def _local_name(tag: str) -> str:
    """Strip the `{namespace}` part of an ElementTree tag."""
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _children(element: ET.Element, name: str) -> Iterator[ET.Element]:
    for child in element:
        if _local_name(child.tag) == name:
            yield child


def _child(element: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if element is None:
        return None
    return next(_children(element, name), None)


def _path(element: Optional[ET.Element], *names: str) -> Optional[ET.Element]:
    for name in names:
        element = _child(element, name)
    return element


def _attr(element: Optional[ET.Element], name: str) -> Optional[str]:
    if element is None:
        return None
    value = element.attrib.get(name)
    return value if value else None


def _parse_number(value: Optional[str]) -> Optional[Decimal]:
    if not value:
        return None
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        return None


def find_comprobante(root: ET.Element) -> Optional[ET.Element]:
    """Locate the Comprobante node, either the root itself or nested below it."""
    if _local_name(root.tag) == "Comprobante":
        return root
    for element in root.iter():
        if _local_name(element.tag) == "Comprobante":
            return element
    return None


def is_valid_cfdi(comprobante: ET.Element) -> bool:
    """A CFDI must carry Version, an Emisor, a Receptor and a Total."""
    return (
        _attr(comprobante, "Version") is not None
        and _child(comprobante, "Emisor") is not None
        and _child(comprobante, "Receptor") is not None
        and _attr(comprobante, "Total") is not None
    )


# =============================================================================
# Section extractors
# =============================================================================

def extract_receptor(comprobante: ET.Element) -> Optional[Counterparty]:
    """Receptor data, or None when the RFC or name is missing."""
    node = _child(comprobante, "Receptor")
    tax_id = _attr(node, "Rfc")
    name = _attr(node, "Nombre")
    if not tax_id or not name:
        return None

    return Counterparty(
        name=name,
        tax_id=tax_id,
        postal_code=_attr(node, "DomicilioFiscalReceptor"),
        fiscal_regime=_attr(node, "RegimenFiscalReceptor"),
        cfdi_usage=_attr(node, "UsoCFDI"),
        confidence=STRUCTURED_CONFIDENCE,
        source=ExtractionSource.STRUCTURED,
    )


def extract_emisor(comprobante: ET.Element) -> Optional[Issuer]:
    """Issuer data; omitted when the RFC or name is missing."""
    node = _child(comprobante, "Emisor")
    tax_id = _attr(node, "Rfc")
    name = _attr(node, "Nombre")
    if not tax_id or not name:
        return None

    return Issuer(
        name=name,
        tax_id=tax_id,
        fiscal_regime=_attr(node, "RegimenFiscal"),
        place_of_issue=_attr(comprobante, "LugarExpedicion"),
    )


def extract_fiscal_uuid(comprobante: ET.Element) -> Optional[str]:
    """UUID from the TimbreFiscalDigital complement."""
    timbre = _path(comprobante, "Complemento", "TimbreFiscalDigital")
    return _attr(timbre, "UUID")


def extract_total_tax(comprobante: ET.Element) -> Optional[Decimal]:
    return _parse_number(_attr(_child(comprobante, "Impuestos"), "TotalImpuestosTrasladados"))


def extract_line_items(comprobante: ET.Element) -> List[ExtractedLineItem]:
    """One ExtractedLineItem per Concepto node."""
    conceptos = _child(comprobante, "Conceptos")
    if conceptos is None:
        return []

    items = []
    for concepto in _children(conceptos, "Concepto"):
        item = ExtractedLineItem(
            product_code=_attr(concepto, "ClaveProdServ") or "",
            quantity=_parse_number(_attr(concepto, "Cantidad")) or Decimal("0"),
            unit_code=_attr(concepto, "ClaveUnidad") or "",
            description=_attr(concepto, "Descripcion") or "",
            unit_price=_parse_number(_attr(concepto, "ValorUnitario")) or Decimal("0"),
            amount=_parse_number(_attr(concepto, "Importe")) or Decimal("0"),
            tax_object=_attr(concepto, "ObjetoImp"),
            identification=_attr(concepto, "NoIdentificacion"),
        )

        traslado = _path(concepto, "Impuestos", "Traslados", "Traslado")
        if traslado is not None:
            item.tax_rate = _parse_number(_attr(traslado, "TasaOCuota"))
            item.tax_amount = _parse_number(_attr(traslado, "Importe"))

        items.append(item)

    return items


def extract_operation_reference(
    filename: str,
    line_items: List[ExtractedLineItem],
) -> Optional[str]:
    """Operation code from the filename first, then from line-item descriptions."""
    match = OPERATION_REFERENCE_PATTERN.search(filename or "")
    if match:
        return match.group(0)

    for item in line_items:
        match = OPERATION_REFERENCE_PATTERN.search(item.description)
        if match:
            return match.group(0)

    return None


# =============================================================================
# Parser
# =============================================================================

class CfdiXmlParser:
    """Structured extraction strategy for CFDI XML attachments."""

    source = ExtractionSource.STRUCTURED

    def extract(self, data: bytes, filename: str) -> ExtractedInvoiceDocument:
        """Parse a CFDI XML buffer.

        Raises:
            MalformedStructuredDocument: If the XML does not parse, has no
                Comprobante, fails the CFDI validity check or lacks a usable
                Receptor
        """
        if data.startswith(codecs.BOM_UTF8):
            data = data[len(codecs.BOM_UTF8):]
        try:
            root = ET.fromstring(data.lstrip())
        except ET.ParseError as exc:
            raise MalformedStructuredDocument(
                f"unparseable XML in {filename}: {exc}",
                reason="not a valid CFDI",
            )

        comprobante = find_comprobante(root)
        if comprobante is None:
            raise MalformedStructuredDocument(
                f"no Comprobante element in {filename}",
                reason="not a valid CFDI",
            )

        if not is_valid_cfdi(comprobante):
            raise MalformedStructuredDocument(
                f"{filename} is missing mandatory CFDI nodes",
                reason="not a valid CFDI",
            )

        counterparty = extract_receptor(comprobante)
        if counterparty is None:
            raise MalformedStructuredDocument(
                f"{filename} has no receptor RFC or name",
                reason="could not extract receptor",
            )

        subtotal = _parse_number(_attr(comprobante, "SubTotal"))
        total = _parse_number(_attr(comprobante, "Total"))
        if subtotal is not None and total is not None:
            tax = total - subtotal
        else:
            tax = extract_total_tax(comprobante)

        line_items = extract_line_items(comprobante)

        document = ExtractedInvoiceDocument(
            counterparty=counterparty,
            issuer=extract_emisor(comprobante),
            fiscal_uuid=extract_fiscal_uuid(comprobante),
            invoice_number=_attr(comprobante, "Folio"),
            operation_reference=extract_operation_reference(filename, line_items),
            issue_date=_attr(comprobante, "Fecha"),
            subtotal=subtotal,
            tax=tax,
            total=total,
            currency=_attr(comprobante, "Moneda"),
            payment_method=_attr(comprobante, "MetodoPago"),
            payment_form=_attr(comprobante, "FormaPago"),
            voucher_type=_attr(comprobante, "TipoDeComprobante"),
            export_status=_attr(comprobante, "Exportacion"),
            line_items=line_items,
            is_valid_invoice=True,
            confidence=STRUCTURED_CONFIDENCE,
        )

        logger.info(
            f"Parsed CFDI XML: receptor {counterparty.name} ({counterparty.tax_id})",
            extra_fields={
                "fiscal_uuid": document.fiscal_uuid,
                "total": str(total) if total is not None else None,
                "line_items": len(line_items),
                "operation_reference": document.operation_reference,
            },
        )
        return document
