"""Services package."""

from keypool.services.crypto import (
    CipherError,
    DecryptionError,
    FernetCipher,
    SecretCipher,
)
from keypool.services.provider import (
    EmptyResponseError,
    GeminiProviderClient,
    ProviderClient,
    ProviderError,
    ProviderTimeoutError,
)
from keypool.services.storage import (
    AuditStorageInterface,
    CredentialStorageInterface,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsCredentialStorage,
    InMemoryAuditStorage,
    InMemoryCredentialStorage,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    # Crypto
    "CipherError",
    "DecryptionError",
    "FernetCipher",
    "SecretCipher",
    # Provider
    "EmptyResponseError",
    "GeminiProviderClient",
    "ProviderClient",
    "ProviderError",
    "ProviderTimeoutError",
    # Storage services
    "AuditStorageInterface",
    "CredentialStorageInterface",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsCredentialStorage",
    "InMemoryAuditStorage",
    "InMemoryCredentialStorage",
    "StorageConnectionError",
    "StorageError",
]
