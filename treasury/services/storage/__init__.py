"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Requests live in a compare-and-set document store (in-memory here);
the activity log can be mirrored to Google Sheets.
"""

from treasury.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    DuplicateOpenRequestError,
    DuplicateReferenceError,
    NotFoundError,
    RequestStoreInterface,
    StorageError,
    VersionConflictError,
)
from treasury.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryRequestStore,
)
from treasury.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RequestStoreInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "DuplicateOpenRequestError",
    "DuplicateReferenceError",
    "NotFoundError",
    "StorageError",
    "VersionConflictError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryRequestStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
]
