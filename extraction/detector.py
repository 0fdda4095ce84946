"""Format detection and attachment heuristics.

Decides, before any parsing runs, whether an attachment is worth looking at
and which extraction strategy applies:
- is_invoice_filename(): pre-filter on invoice-suggestive filename tokens
- detect_format(): structured (CFDI XML) vs text route
- is_invoice_candidate(): batch-sweep filename heuristic
- is_noise_attachment(): signature images, tracking pixels, inline logos
"""

import re
from typing import Optional

from core.errors import NotAnInvoice
from models.cfdi import ExtractionSource


INVOICE_FILENAME_KEYWORDS = ("factura", "invoice", "cfdi", "xml", "pdf")

CANDIDATE_FILENAME_TOKENS = ("factura", "invoice", "fact.", "fact ", "inv.")

# Number of leading bytes sniffed for an XML declaration
SNIFF_BYTES = 100

SIGNATURE_PATTERNS = [
    re.compile(r"^image\d{3,}\.(png|gif|jpg|jpeg)$", re.IGNORECASE),
    re.compile(r"^signature\.(png|gif|jpg|jpeg)$", re.IGNORECASE),
    re.compile(r"^logo\.(png|gif|jpg|jpeg)$", re.IGNORECASE),
    re.compile(r"^spacer\.(gif|png)$", re.IGNORECASE),
    re.compile(r"^pixel\.(gif|png)$", re.IGNORECASE),
    re.compile(r"^blank\.(gif|png)$", re.IGNORECASE),
    re.compile(r"^transparent\.(gif|png)$", re.IGNORECASE),
    re.compile(r"^1x1\.(gif|png)$", re.IGNORECASE),
    re.compile(r"^.*_signature_.*\.(png|gif|jpg|jpeg)$", re.IGNORECASE),
    re.compile(r"^cid:.*$", re.IGNORECASE),
]

MIN_USEFUL_FILE_SIZE = 1024
MAX_INLINE_IMAGE_SIZE = 50 * 1024
MAX_INLINE_GIF_SIZE = 100 * 1024


def is_invoice_filename(filename: str) -> bool:
    """True when the filename carries an invoice-suggestive token."""
    lowered = (filename or "").lower()
    return any(keyword in lowered for keyword in INVOICE_FILENAME_KEYWORDS)


def looks_like_xml(data: bytes) -> bool:
    """True when the buffer, ignoring leading whitespace, opens with an XML declaration."""
    head = data[:SNIFF_BYTES].decode("utf-8", errors="ignore")
    return head.lstrip("\ufeff").strip().startswith("<?xml")


def detect_format(
    data: bytes,
    filename: str,
    mime_type: Optional[str] = None,
) -> ExtractionSource:
    """Classify an attachment for routing.

    Order: `.xml` extension, declared media type containing "xml", then
    an XML declaration sniffed from the first bytes. Anything else goes to
    the text route.

    Raises:
        NotAnInvoice: If the filename fails the pre-filter
    """
    if not is_invoice_filename(filename):
        raise NotAnInvoice(
            f"filename does not look like an invoice: {filename}",
            reason="filename does not look like an invoice",
        )

    if filename.lower().endswith(".xml"):
        return ExtractionSource.STRUCTURED
    if mime_type and "xml" in mime_type.lower():
        return ExtractionSource.STRUCTURED
    if looks_like_xml(data):
        return ExtractionSource.STRUCTURED
    return ExtractionSource.TEXT


def is_invoice_candidate(filename: str, mime_type: Optional[str] = None) -> bool:
    """Batch-sweep heuristic for attachments worth running the pipeline on."""
    lowered = (filename or "").lower()
    if any(token in lowered for token in CANDIDATE_FILENAME_TOKENS):
        return True
    return lowered.endswith(".pdf") and mime_type == "application/pdf"


def is_noise_attachment(
    filename: str,
    mime_type: Optional[str] = None,
    size_bytes: Optional[int] = None,
    is_inline: bool = False,
) -> bool:
    """True for email signature images, tracking pixels and inline logos.

    Size rules apply only when the size is known.
    """
    mime = (mime_type or "").lower()

    if size_bytes is not None:
        if size_bytes < MIN_USEFUL_FILE_SIZE:
            return True
        if is_inline and mime.startswith("image/") and size_bytes < MAX_INLINE_IMAGE_SIZE:
            return True
        if is_inline and mime == "image/gif" and size_bytes < MAX_INLINE_GIF_SIZE:
            return True

    return any(pattern.match(filename or "") for pattern in SIGNATURE_PATTERNS)
