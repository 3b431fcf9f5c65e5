"""
Storage Services Package

Provides abstract interfaces and concrete implementations for key and
audit storage. In-memory and Google Sheets backends are included.
"""

from keypool.services.storage.interface import (
    AuditStorageInterface,
    CredentialStorageInterface,
    DuplicateError,
    StorageConnectionError,
    StorageError,
)
from keypool.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryCredentialStorage,
)
from keypool.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsCredentialStorage,
    MalformedRowError,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "CredentialStorageInterface",
    # Exceptions
    "DuplicateError",
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryCredentialStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsCredentialStorage",
    "MalformedRowError",
]
