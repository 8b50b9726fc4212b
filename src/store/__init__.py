"""Document store gateway over the workspace collections."""

from src.store.document_store import (
    DocumentStore,
    StoreError,
    StoreReadError,
    StoreWriteError,
    utcnow,
)

__all__ = [
    "DocumentStore",
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    "utcnow",
]
