"""Blob storage for attachment bytes.

The pipeline only needs "storage key in, bytes out". LocalBlobStore keeps
blobs as files under a base directory; any I/O failure surfaces as
BlobFetchFailure so the orchestrators can turn it into an error outcome.
"""

import hashlib
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Protocol, Union

from core.errors import BlobFetchFailure
from models.refs import BlobReference


class BlobStore(Protocol):
    """Protocol for the blob collaborator."""

    def get_bytes(self, storage_key: str) -> bytes:
        """Return the whole blob.

        Raises:
            BlobFetchFailure: If the blob cannot be read
        """
        ...


def _compute_sha256(data: bytes) -> str:
    """Compute SHA256 hash of bytes."""
    return hashlib.sha256(data).hexdigest()


class LocalBlobStore:
    """Blob store with a configurable base path.

    Storage keys are relative POSIX paths below the base directory.
    """

    def __init__(self, base_path: Union[str, Path]):
        """Initialize blob store.

        Args:
            base_path: Base directory for all blobs
        """
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, storage_key: str) -> Path:
        relative = PurePosixPath(storage_key)
        if relative.is_absolute() or ".." in relative.parts:
            raise BlobFetchFailure(f"Invalid storage key: {storage_key}", storage_key=storage_key)
        return self.base_path.joinpath(*relative.parts)

    def put_bytes(
        self,
        data: bytes,
        storage_key: str,
        content_type: str = "application/octet-stream",
    ) -> BlobReference:
        """Store bytes under a key and return a BlobReference."""
        path = self._resolve(storage_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

        return BlobReference(
            storage_key=storage_key,
            content_hash=_compute_sha256(data),
            content_type=content_type,
            size_bytes=len(data),
            stored_at=datetime.utcnow(),
        )

    def get_bytes(self, storage_key: str) -> bytes:
        """Retrieve a blob by key.

        Raises:
            BlobFetchFailure: If the key is invalid or the file cannot be read
        """
        path = self._resolve(storage_key)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise BlobFetchFailure(
                f"Could not read blob {storage_key}: {exc}",
                storage_key=storage_key,
            ) from exc

    def verify(self, ref: BlobReference) -> bool:
        """True when the stored bytes still match the reference hash."""
        return _compute_sha256(self.get_bytes(ref.storage_key)) == ref.content_hash
