"""Client Resolver - Automatic matching of CFDI receptors to stored clients.

This package resolves the counterparty of an extracted invoice based on:
- Exact tax-id (RFC) matching (fast path)
- Fuzzy name matching with Jaccard similarity over word sets
- Creation of a new client when nothing matches

Usage:
    from client_resolver import ClientResolver

    resolver = ClientResolver(store)
    resolution = resolver.resolve_client(
        counterparty=document.counterparty,
        invoice_currency=document.currency,
        source_attachment_id=attachment.id,
    )

    if resolution.created:
        print(f"New client: {resolution.client.name}")
"""

from client_resolver.resolver import ClientResolver, ClientStore
from client_resolver.normalize import (
    jaccard_similarity,
    normalize_client_name,
    placeholder_email,
    tokenize_name,
)

__all__ = [
    # Resolver
    "ClientResolver",
    "ClientStore",
    # Normalization
    "jaccard_similarity",
    "normalize_client_name",
    "placeholder_email",
    "tokenize_name",
]
