"""Regex rules for CFDI printed representations.

Every rule is a pure function from decoded invoice text (or a section of it)
to an optional field. Labels on Facturama PDFs are often split by stray
spaces in the text layer ("E m i sor", "Méto do"), which is why several
patterns tolerate whitespace inside words.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from models.cfdi import ExtractedLineItem


CFDI_MARKERS = (
    "CFDI",
    "Folio Fiscal",
    "Emisor:",
    "Receptor:",
    "Régimen Fiscal",
    "Uso del CFDI",
    "SAT",
)

RFC_PATTERN = re.compile(r"[A-ZÑ&]{3,4}\d{6}[A-Z0-9]{2,3}")
STRICT_RFC_PATTERN = re.compile(r"^[A-ZÑ&]{3,4}\d{6}[A-Z0-9]{2,3}$")
ISSUER_RFC_PATTERN = re.compile(r"[A-Z&Ñ]{3,4}\d{6}[A-Z0-9]{3}")

RECEPTOR_SECTION = re.compile(
    r"Receptor\s*:([\s\S]*?)(?:Código postal|Lugar de Expedición|Efecto del comprobante|Folio Fiscal)",
    re.IGNORECASE,
)
ISSUER_SECTION = re.compile(r"E\s*m\s*i\s*sor\s*:\s*([\s\S]*?)R\s*ec\s*epto\s*r\s*:", re.IGNORECASE)
PRODUCTS_SECTION = re.compile(
    r"Pr\s*oducto\s+Cantidad\s+Unidad\s+Concepto[\s\S]*?S\s*ubtotal\s*:",
    re.IGNORECASE,
)

# Address and city/state never span lines of the printed invoice
ADDRESS = re.compile(
    r"([A-ZÁÉÍÓÚÑ \t\d,.-]+(?:CENTRO|AREA|LOCAL|PISO)[A-ZÁÉÍÓÚÑ \t\d,.-]*)",
    re.IGNORECASE,
)
CITY_STATE = re.compile(r",[ \t]*([A-ZÁÉÍÓÚÑ \t]+),[ \t]*([A-ZÁÉÍÓÚÑ \t]+)", re.IGNORECASE)
POSTAL_CODE = re.compile(r"Código\s+postal\s*:\s*(\d{5})", re.IGNORECASE)
FISCAL_REGIME = re.compile(r"Régimen\s+Fiscal\s*:\s*(\d{3})\s*-\s*([^;\n]+)", re.IGNORECASE)
CFDI_USAGE = re.compile(r"Uso\s+del\s+CFDI\s*:\s*([A-Z]\d{2})\s*-\s*([^;\n]+)", re.IGNORECASE)

ISSUER_NAME = re.compile(r"([A-ZÁ-Ú\s\.&,]{10,})\s+[A-Z&Ñ]{3,4}\d{6}")
ISSUER_REGIME = re.compile(r"R\s*égim\s*en\s+F\s*isc\s*al\s*:\s*(\d{3}\s*-[^(]+)", re.IGNORECASE)
PLACE_OF_ISSUE = re.compile(r"Lugar\s+de\s+Expedic\s*ió\s*n\s*:\s*(\d{5})", re.IGNORECASE)

FOLIO = re.compile(r"FOLIO\s*:\s*(\d+)", re.IGNORECASE)
FISCAL_UUID = re.compile(
    r"([a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})",
    re.IGNORECASE,
)
OPERATION_REFERENCE = re.compile(r"(NAVI-\d{7})", re.IGNORECASE)
ISSUE_DATE = re.compile(
    r"Fecha[/\s]*Hora\s+de\s+Emisión\s*:\s*(\d{1,2}/\d{1,2}/\d{4})",
    re.IGNORECASE,
)
CURRENCY = re.compile(r"Moneda\s*:\s*([A-Z]{3})", re.IGNORECASE)

SUBTOTAL = re.compile(r"S\s*ubtotal\s*:\s*\$?\s*([\d,]+\.?\d{0,2})", re.IGNORECASE)
IVA = re.compile(r"IVA\s+\d+\s*%\s*:\s*\$?\s*([\d,]+\.?\d{0,2})", re.IGNORECASE)
TOTAL = re.compile(r"\bTotal\s*:\s*\$?\s*([\d,]+\.?\d{0,2})", re.IGNORECASE)

PAYMENT_METHOD = re.compile(r"Méto\s*do\s+de\s+P\s*ago\s*:\s*(PPD|PUE)", re.IGNORECASE)
PAYMENT_FORM = re.compile(r"F\s*o\s*r\s*m\s*a\s+de\s+P\s*ago\s*:\s*(\d{2})\s*-", re.IGNORECASE)
VOUCHER_TYPE = re.compile(
    r"Efec\s*to\s+del\s+c\s*o\s*m\s*pr\s*o\s*bante\s*:\s*([IETP])\s*-",
    re.IGNORECASE,
)
EXPORT_STATUS = re.compile(r"Expo\s*r\s*tac\s*io\s*n\s*:\s*(\d{2})\s*-", re.IGNORECASE)

# SAT product code, quantity, unit code, then unit price and amount
LINE_ITEM = re.compile(
    r"(\d{8})\s+(\d+(?:\.\d{2})?)\s+(E\d{2}|H\d{2}|[A-Z]\d{2})\s*-?[^$]*?\$\s*([\d,]+\.?\d{0,2})\s+\$\s*([\d,]+\.?\d{0,2})"
)
ITEM_TAX_OBJECT = re.compile(r"(\d{2})\s*-\s*(Sin|Con)\s+objeto\s+de\s+impuesto", re.IGNORECASE)
ITEM_IDENTIFICATION = re.compile(r"No\s+Identificación\s*:\s*([^\n]+)", re.IGNORECASE)
ITEM_TAX_RATE = re.compile(r"Tasa\s*:\s*(0\.\d+)", re.IGNORECASE)
ITEM_TAX_AMOUNT = re.compile(r"Importe\s*:\s*\$?\s*([\d,]+\.?\d{0,2})", re.IGNORECASE)

DESCRIPTION_BOILERPLATE = [
    re.compile(r"\s*-\s*Unidad de servicio", re.IGNORECASE),
    re.compile(r"\s*\d{2}\s*-\s*[^$\n]*", re.IGNORECASE),
    re.compile(r"No Identificación:[^\n]*", re.IGNORECASE),
    re.compile(r"Traslados:[^\n]*", re.IGNORECASE),
    re.compile(r"IVA:[^\n]*", re.IGNORECASE),
]

DEFAULT_CLIENT_NAME = "Cliente sin nombre"
DEFAULT_ISSUER_NAME = "Emisor desconocido"
DEFAULT_ITEM_DESCRIPTION = "Servicio"
DEFAULT_VOUCHER_TYPE = "I"     # Ingreso
DEFAULT_EXPORT_STATUS = "01"   # No aplica


# =============================================================================
# Helpers
# =============================================================================

def _first_group(pattern: re.Pattern, text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = pattern.search(text)
    return match.group(1) if match else None


def parse_amount(value: Optional[str]) -> Optional[Decimal]:
    """Parse a printed amount such as "1,160.00"."""
    if not value:
        return None
    try:
        return Decimal(value.replace(",", ""))
    except InvalidOperation:
        return None


def clean_text(text: str) -> str:
    """Collapse runs of whitespace into single spaces."""
    return re.sub(r"\s+", " ", text).strip()


# =============================================================================
# Document-level rules
# =============================================================================

def count_cfdi_markers(text: str) -> int:
    """Number of distinct CFDI marker phrases present (case-insensitive)."""
    lowered = text.lower()
    return sum(1 for marker in CFDI_MARKERS if marker.lower() in lowered)


def is_valid_rfc(rfc: str) -> bool:
    """Strict RFC validity: the whole string must be an RFC."""
    return bool(STRICT_RFC_PATTERN.match(rfc or ""))


def find_receptor_section(text: str) -> Optional[str]:
    return _first_group(RECEPTOR_SECTION, text)


def find_issuer_section(text: str) -> Optional[str]:
    return _first_group(ISSUER_SECTION, text)


def find_products_section(text: str) -> Optional[str]:
    match = PRODUCTS_SECTION.search(text or "")
    return match.group(0) if match else None


# =============================================================================
# Receptor rules
# =============================================================================

def extract_rfc(section: str) -> Optional[str]:
    match = RFC_PATTERN.search(section or "")
    return match.group(0) if match else None


def extract_receptor_name(section: str) -> Optional[str]:
    """First non-empty line that is not an RFC and has 4 to 99 characters."""
    for line in (section or "").split("\n"):
        line = line.strip()
        if not line:
            continue
        if not RFC_PATTERN.search(line) and 3 < len(line) < 100:
            return clean_text(line)
    return None


def extract_address(text: str) -> Optional[str]:
    address = _first_group(ADDRESS, text)
    return clean_text(address) if address else None


def extract_city_state(address: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """City and state from an address ending in ", CITY, STATE"."""
    if not address:
        return None, None
    match = CITY_STATE.search(address)
    if not match:
        return None, None
    return clean_text(match.group(1)), clean_text(match.group(2))


def extract_postal_code(text: str) -> Optional[str]:
    return _first_group(POSTAL_CODE, text)


def extract_fiscal_regime(text: str) -> Optional[str]:
    """Formatted as "601 - General de Ley Personas Morales"."""
    match = FISCAL_REGIME.search(text or "")
    if not match:
        return None
    return f"{match.group(1)} - {match.group(2).strip()}"


def extract_cfdi_usage(text: str) -> Optional[str]:
    match = CFDI_USAGE.search(text or "")
    if not match:
        return None
    return f"{match.group(1)} - {match.group(2).strip()}"


# =============================================================================
# Issuer rules
# =============================================================================

def extract_issuer_rfc(section: str) -> Optional[str]:
    match = ISSUER_RFC_PATTERN.search(section or "")
    return match.group(0) if match else None


def extract_issuer_name(section: str) -> Optional[str]:
    name = _first_group(ISSUER_NAME, section)
    return name.strip() if name else None


def extract_issuer_regime(text: str) -> Optional[str]:
    regime = _first_group(ISSUER_REGIME, text)
    return regime.strip() if regime else None


def extract_place_of_issue(text: str) -> Optional[str]:
    return _first_group(PLACE_OF_ISSUE, text)


# =============================================================================
# Header rules
# =============================================================================

def extract_folio(text: str) -> Optional[str]:
    return _first_group(FOLIO, text)


def extract_fiscal_uuid(text: str) -> Optional[str]:
    return _first_group(FISCAL_UUID, text)


def extract_operation_reference(text: str) -> Optional[str]:
    return _first_group(OPERATION_REFERENCE, text)


def extract_issue_date(text: str) -> Optional[str]:
    """Issue date as printed (dd/mm/yyyy)."""
    return _first_group(ISSUE_DATE, text)


def extract_currency(text: str) -> Optional[str]:
    currency = _first_group(CURRENCY, text)
    return currency.upper() if currency else None


def extract_subtotal(text: str) -> Optional[Decimal]:
    return parse_amount(_first_group(SUBTOTAL, text))


def extract_iva(text: str) -> Optional[Decimal]:
    return parse_amount(_first_group(IVA, text))


def extract_total(text: str) -> Optional[Decimal]:
    return parse_amount(_first_group(TOTAL, text))


def extract_payment_method(text: str) -> Optional[str]:
    method = _first_group(PAYMENT_METHOD, text)
    return method.upper() if method else None


def extract_payment_form(text: str) -> Optional[str]:
    return _first_group(PAYMENT_FORM, text)


def extract_voucher_type(text: str) -> Optional[str]:
    voucher = _first_group(VOUCHER_TYPE, text)
    return voucher.upper() if voucher else None


def extract_export_status(text: str) -> Optional[str]:
    return _first_group(EXPORT_STATUS, text)


# =============================================================================
# Line items
# =============================================================================

def clean_item_description(raw: str) -> str:
    """Strip unit-of-service suffixes, tax-code runs and tax labels."""
    description = raw
    for pattern in DESCRIPTION_BOILERPLATE:
        description = pattern.sub("", description)
    return description.strip() or DEFAULT_ITEM_DESCRIPTION


def extract_line_items(products: Optional[str]) -> List[ExtractedLineItem]:
    """Parse every line item inside a products section."""
    if not products:
        return []

    items = []
    for match in LINE_ITEM.finditer(products):
        # Item text runs from the unit code to the first price
        item_text = products[match.end(3):match.start(4)]
        dollar = item_text.find("$")
        if dollar >= 0:
            item_text = item_text[:dollar]

        items.append(ExtractedLineItem(
            product_code=match.group(1),
            quantity=Decimal(match.group(2)),
            unit_code=match.group(3),
            description=clean_item_description(item_text),
            unit_price=parse_amount(match.group(4)) or Decimal("0"),
            amount=parse_amount(match.group(5)) or Decimal("0"),
            tax_object=_first_group(ITEM_TAX_OBJECT, item_text),
            identification=(_first_group(ITEM_IDENTIFICATION, item_text) or "").strip() or None,
            tax_rate=parse_amount(_first_group(ITEM_TAX_RATE, item_text)),
            tax_amount=parse_amount(_first_group(ITEM_TAX_AMOUNT, item_text)),
        ))

    return items
