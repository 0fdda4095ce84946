"""Client Resolver Algorithm.

This module implements the client matching algorithm that:
1. Looks up an exact tax-id (RFC) match (fast path)
2. Falls back to fuzzy name matching over a name-substring search
3. Creates a new client from the invoice counterparty when nothing matches

On a match the stored client is backfilled from the invoice: the currency
follows the invoice, every other field is only filled when currently empty.
"""

from typing import Any, Dict, List, Optional, Protocol

from core.config import DEFAULT_CONFIG, PipelineConfig
from core.observability.logging import get_logger
from client_resolver.normalize import (
    jaccard_similarity,
    normalize_client_name,
    placeholder_email,
)
from models.cfdi import Counterparty
from models.outcomes import ClientMatchResult, ClientResolution, MatchType
from models.records import ClientRecord


logger = get_logger(__name__)

# Counterparty field -> client field, filled only when the client's is empty
BACKFILL_FIELDS = (
    "tax_id",
    "address",
    "postal_code",
    "fiscal_regime",
    "city",
    "state",
)


class ClientStore(Protocol):
    """Protocol for the client side of the persistence collaborator.

    storage.db.SqliteStore implements this.
    """

    def find_client_by_tax_id(self, tax_id: str) -> Optional[ClientRecord]:
        ...

    def search_clients_by_name(self, normalized_name: str, limit: int = 5) -> List[ClientRecord]:
        """Clients whose normalized name or legal name contains the given text."""
        ...

    def get_client(self, client_id: str) -> Optional[ClientRecord]:
        ...

    def create_client(self, client: ClientRecord) -> ClientRecord:
        ...

    def update_client(self, client_id: str, updates: Dict[str, Any]) -> ClientRecord:
        ...


class ClientResolver:
    """Resolves an extracted counterparty to a stored client.

    Resolution strategy:
    1. Exact tax-id match (confidence 95)
    2. Name-substring search, then Jaccard similarity over word sets;
       the first candidate above the threshold wins
    3. Otherwise no match

    Example:
        resolver = ClientResolver(store)
        resolution = resolver.resolve_client(
            counterparty=document.counterparty,
            invoice_currency=document.currency,
            source_attachment_id="att-9",
        )
        print(resolution.client.id, resolution.match.match_type)
    """

    def __init__(self, store: ClientStore, config: PipelineConfig = DEFAULT_CONFIG):
        self.store = store
        self.config = config

    def find_matching_client(self, counterparty: Counterparty) -> ClientMatchResult:
        """Match a counterparty without writing anything.

        Args:
            counterparty: Receptor data from extraction

        Returns:
            ClientMatchResult
        """
        if counterparty.tax_id:
            client = self.store.find_client_by_tax_id(counterparty.tax_id)
            if client is not None:
                return ClientMatchResult(
                    matched=True,
                    matched_client_id=client.id,
                    match_type=MatchType.TAX_ID,
                    confidence=self.config.tax_id_match_confidence,
                )

        normalized = normalize_client_name(counterparty.name)
        if not normalized:
            return ClientMatchResult.no_match()

        candidates = self.store.search_clients_by_name(normalized, limit=self.config.name_search_limit)
        for candidate in candidates:
            similarity = jaccard_similarity(normalized, normalize_client_name(candidate.name))
            if similarity > self.config.name_match_threshold:
                return ClientMatchResult(
                    matched=True,
                    matched_client_id=candidate.id,
                    match_type=MatchType.NAME,
                    confidence=round(similarity * 100),
                )

        return ClientMatchResult.no_match()

    def resolve_client(
        self,
        counterparty: Counterparty,
        invoice_currency: Optional[str] = None,
        source_attachment_id: Optional[str] = None,
    ) -> ClientResolution:
        """Match a counterparty, backfilling the match or creating a new client.

        Args:
            counterparty: Receptor data from extraction
            invoice_currency: Currency of the invoice, if the document carries one
            source_attachment_id: Attachment the data came from

        Returns:
            ClientResolution with the linked client
        """
        match = self.find_matching_client(counterparty)

        if match.matched:
            client = self.store.get_client(match.matched_client_id)
            updates = self.backfill_updates(client, counterparty, invoice_currency)
            if updates:
                updates["source_attachment_id"] = source_attachment_id
                client = self.store.update_client(client.id, updates)
                logger.info(
                    f"Updated client {client.name} with {len(updates) - 1} field(s) from invoice",
                    extra_fields={"client_id": client.id, "fields": sorted(updates)},
                )
            logger.info(
                f"Matched existing client {client.name}",
                extra_fields={
                    "client_id": client.id,
                    "match_type": match.match_type.value,
                    "confidence": match.confidence,
                },
            )
            return ClientResolution(
                client=client,
                match=match,
                created=False,
                updated_fields=sorted(k for k in updates if k != "source_attachment_id"),
            )

        client = self.create_client_from_invoice(counterparty, invoice_currency, source_attachment_id)
        return ClientResolution(client=client, match=match, created=True)

    def backfill_updates(
        self,
        client: ClientRecord,
        counterparty: Counterparty,
        invoice_currency: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Fields to write on a matched client.

        The invoice currency overwrites a differing stored currency; every
        other field is only filled when the client has none.
        """
        updates: Dict[str, Any] = {}

        if invoice_currency:
            new_currency = invoice_currency.upper()
            current_currency = (client.currency or self.config.default_currency).upper()
            if new_currency != current_currency:
                logger.info(f"Client currency changes from {current_currency} to {new_currency}")
                updates["currency"] = new_currency

        for field_name in BACKFILL_FIELDS:
            new_value = getattr(counterparty, field_name)
            if new_value and not getattr(client, field_name):
                updates[field_name] = new_value

        return updates

    def create_client_from_invoice(
        self,
        counterparty: Counterparty,
        invoice_currency: Optional[str] = None,
        source_attachment_id: Optional[str] = None,
    ) -> ClientRecord:
        """Create a client from invoice counterparty data."""
        currency = (invoice_currency or self.config.default_currency).upper()

        client = self.store.create_client(ClientRecord(
            name=counterparty.name,
            email=placeholder_email(
                counterparty.tax_id or counterparty.name,
                domain=self.config.placeholder_email_domain,
            ),
            legal_name=counterparty.name,
            tax_id=counterparty.tax_id,
            currency=currency,
            address=counterparty.address,
            city=counterparty.city,
            state=counterparty.state,
            postal_code=counterparty.postal_code,
            country=counterparty.country or self.config.default_country,
            fiscal_regime=counterparty.fiscal_regime,
            cfdi_usage=counterparty.cfdi_usage,
            notes=f"Client created automatically from CFDI invoice (currency: {currency})",
            created_from_invoice=True,
            source_attachment_id=source_attachment_id,
        ))

        logger.info(
            f"Created client {client.name} ({client.tax_id})",
            extra_fields={"client_id": client.id, "currency": currency},
        )
        return client
