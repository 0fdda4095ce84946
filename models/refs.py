"""Blob reference model for attachment storage and retrieval."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class BlobReference(BaseModel):
    """Reference to a stored attachment with metadata for retrieval and verification.

    Attributes:
        storage_key: Opaque key understood by the blob collaborator
        content_hash: SHA256 hash of the content for integrity verification
        content_type: MIME type (e.g., "application/pdf", "text/xml")
        size_bytes: Size of the blob in bytes
        stored_at: Timestamp when the blob was stored
    """
    storage_key: str = Field(..., description="Opaque storage key")
    content_hash: str = Field(..., description="SHA256 hash of content")
    content_type: str = Field(default="application/octet-stream", description="MIME type")
    size_bytes: int = Field(..., description="Size in bytes")
    stored_at: datetime = Field(default_factory=datetime.utcnow, description="Storage timestamp")
