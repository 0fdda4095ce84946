"""Pipeline Outcome Models.

- ClientMatchResult: result of matching a counterparty to a stored client
- ClientResolution: the client an invoice ends up linked to
- ReconciliationResult: what the reconciler did for one fiscal UUID
- AttachmentOutcome: tagged result of the per-attachment orchestrators
- InvoiceBatchSummary / ClientBatchSummary: counters of a batch sweep
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from models.records import ClientRecord


class MatchType(str, Enum):
    """How the client was matched."""
    TAX_ID = "taxId"   # Exact RFC match
    NAME = "name"      # Fuzzy name match (Jaccard over word sets)
    NONE = "none"      # No match found


class ClientMatchResult(BaseModel):
    """Result of the Client Matcher.

    Attributes:
        matched: Whether an existing client was found
        matched_client_id: The stored client's id when matched
        match_type: Which rule produced the match
        confidence: 95 for tax-id matches, round(similarity * 100) for names
    """
    matched: bool = False
    matched_client_id: Optional[str] = None
    match_type: MatchType = MatchType.NONE
    confidence: int = Field(default=0, ge=0, le=100)

    @classmethod
    def no_match(cls) -> "ClientMatchResult":
        return cls(matched=False, match_type=MatchType.NONE, confidence=0)


class ClientResolution(BaseModel):
    """A client resolved for an invoice: matched and backfilled, or newly created."""
    client: ClientRecord
    match: ClientMatchResult
    created: bool = False
    updated_fields: List[str] = Field(default_factory=list)


class ReconciliationAction(str, Enum):
    """What the reconciler did with an extracted document."""
    CREATED = "created"                     # New invoice row
    CORRECTED = "corrected"                 # Human-entered row overwritten once
    ALREADY_INGESTED = "already_ingested"   # Auto-created row left untouched


class ReconciliationResult(BaseModel):
    """Result of reconciling one extracted document."""
    action: ReconciliationAction
    invoice_id: str
    fiscal_uuid: str
    client_id: Optional[str] = None
    client_created: bool = False
    line_items_created: int = 0


class AssignmentAction(str, Enum):
    """Orchestrator outcome tags."""
    ASSIGNED_EXISTING = "assigned-existing"
    CREATED_AND_ASSIGNED = "created-and-assigned"
    SKIPPED = "skipped"
    ERROR = "error"


class AttachmentOutcome(BaseModel):
    """Tagged outcome of processing one attachment.

    Callers always receive one of these; expected skips and failures are
    never surfaced as exceptions.
    """
    success: bool
    action: AssignmentAction
    reasoning: str = ""
    operation_id: Optional[str] = None
    attachment_id: Optional[str] = None
    client_id: Optional[str] = None
    invoice_id: Optional[str] = None
    fiscal_uuid: Optional[str] = None
    confidence: Optional[int] = None

    @classmethod
    def skipped(cls, reasoning: str, **ids) -> "AttachmentOutcome":
        return cls(success=False, action=AssignmentAction.SKIPPED, reasoning=reasoning, **ids)

    @classmethod
    def error(cls, reasoning: str, **ids) -> "AttachmentOutcome":
        return cls(success=False, action=AssignmentAction.ERROR, reasoning=reasoning, **ids)


class InvoiceBatchSummary(BaseModel):
    """Counters for the invoice-creation sweep."""
    processed: int = 0
    invoices_created: int = 0
    invoices_assigned: int = 0
    errors: int = 0
    outcomes: List[AttachmentOutcome] = Field(default_factory=list)


class ClientBatchSummary(BaseModel):
    """Counters for the client-assignment sweep."""
    processed: int = 0
    assigned: int = 0
    created: int = 0
    errors: int = 0
    outcomes: List[AttachmentOutcome] = Field(default_factory=list)
