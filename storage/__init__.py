"""Storage collaborators - attachment blobs and the SQLite record store."""

from storage.blobs import BlobStore, LocalBlobStore
from storage.db import SqliteStore

__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "SqliteStore",
]
