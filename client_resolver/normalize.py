"""Name Normalization Utilities.

This module provides functions to normalize client (CFDI Receptor) names
for consistent matching. The normalization process:
1. Converts to lowercase
2. Folds Spanish diacritics (á → a, ñ → n, ...)
3. Collapses whitespace

Examples:
    "Comercializadora  Álvarez"   → "comercializadora alvarez"
    "PEÑA LOGÍSTICA S.A. DE C.V." → "pena logistica s.a. de c.v."
"""

import re
from typing import Set


DIACRITIC_FOLDS = {
    "a": "áàä",
    "e": "éèë",
    "i": "íìï",
    "o": "óòö",
    "u": "úùü",
    "n": "ñ",
}

_FOLD_TABLE = str.maketrans({
    accented: plain
    for plain, accented_chars in DIACRITIC_FOLDS.items()
    for accented in accented_chars
})


def normalize_client_name(name: str) -> str:
    """Normalize a client name for matching.

    Args:
        name: Raw name from extraction or from a stored client

    Returns:
        Normalized name string

    Examples:
        >>> normalize_client_name("  Transportes  Ñandú ")
        'transportes nandu'
    """
    if not name:
        return ""

    text = name.lower().translate(_FOLD_TABLE)
    return re.sub(r"\s+", " ", text).strip()


def tokenize_name(name: str) -> Set[str]:
    """Split a normalized name into its set of words."""
    if not name:
        return set()
    return set(name.split())


def jaccard_similarity(name1: str, name2: str) -> float:
    """Jaccard similarity of the word sets of two normalized names.

    Returns:
        |intersection| / |union|, from 0.0 to 1.0
    """
    words1 = tokenize_name(name1)
    words2 = tokenize_name(name2)

    union = words1 | words2
    if not union:
        return 0.0

    return len(words1 & words2) / len(union)


def placeholder_email(identifier: str, domain: str = "cliente-temporal.mx") -> str:
    """Synthesize an email for a client created from an invoice.

    Examples:
        >>> placeholder_email("XAXX010101000")
        'xaxx010101000@cliente-temporal.mx'
    """
    sanitized = re.sub(r"[^a-z0-9]", "", (identifier or "").lower())
    return f"{sanitized}@{domain}"
