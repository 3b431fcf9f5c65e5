"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a document database later
2. Use in-memory storage for testing
3. Keep the failover engine decoupled from storage implementation

Writes are targeted partial updates (update_fields), never whole-record
replacement, so two executors touching different fields of the same key
do not overwrite each other.

Secret material is encrypted on write by the injected SecretCipher and
only decrypted through decrypt_secret.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from keypool.models.audit import AuditEvent
from keypool.models.credential import Credential
from keypool.services.crypto import SecretCipher


# Fields that update_fields may touch. id, secret_material, ownership and
# created_at are fixed once a key is stored.
UPDATABLE_FIELDS = frozenset({
    "label",
    "is_active",
    "status",
    "usage_count",
    "last_used_at",
    "error_count",
    "last_error",
    "reset_at",
    "leased_until",
})

INCREMENTABLE_FIELDS = frozenset({"usage_count", "error_count"})


class CredentialStorageInterface(ABC):
    """
    Abstract interface for provider key storage.

    Any storage implementation (Google Sheets, MongoDB, etc.)
    must implement these methods.
    """

    def __init__(self, cipher: SecretCipher):
        self._cipher = cipher

    def encrypt_secret(self, plaintext: str) -> str:
        return self._cipher.encrypt(plaintext)

    def decrypt_secret(self, credential: Credential) -> str:
        """
        Return the plaintext secret for a stored key.

        This is the only place plaintext leaves the store. Call it at
        the moment of a provider request and do not keep the result.
        """
        return self._cipher.decrypt(credential.secret_material)

    def _encrypted_copy(self, credential: Credential) -> Credential:
        return credential.model_copy(
            update={"secret_material": self.encrypt_secret(credential.secret_material)},
            deep=True,
        )

    @staticmethod
    def _check_changes(
        changes: dict[str, Any],
        increments: Optional[dict[str, int]],
    ) -> None:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        if increments:
            bad = set(increments) - INCREMENTABLE_FIELDS
            if bad:
                raise ValueError(f"Fields cannot be incremented: {sorted(bad)}")
            if any(delta < 0 for delta in increments.values()):
                raise ValueError("Counters can only be incremented")
            overlap = set(increments) & set(changes)
            if overlap:
                raise ValueError(f"Fields both set and incremented: {sorted(overlap)}")

    @abstractmethod
    async def save(self, credential: Credential) -> Credential:
        """
        Persist a new key.

        Args:
            credential: The key, with secret_material in PLAINTEXT

        Returns:
            The stored record (secret_material is ciphertext)

        Raises:
            DuplicateError: If a key with the same id exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def find_by_id(self, credential_id: UUID) -> Optional[Credential]:
        """Retrieve a key by its ID, or None."""
        pass

    @abstractmethod
    async def find_owned_active(self, owner_id: str) -> list[Credential]:
        """
        Keys owned by owner_id with status=active and is_active=True.

        Order is unspecified; selection ordering is the caller's job.
        """
        pass

    @abstractmethod
    async def find_shared_active(self) -> list[Credential]:
        """
        Shared keys (is_global, or no owner) with status=active and is_active=True.
        """
        pass

    @abstractmethod
    async def find_visible(
        self,
        owner_id: str,
        include_shared: bool,
    ) -> list[Credential]:
        """
        Keys owned by owner_id, plus shared and ownerless keys if include_shared.

        Any status. Newest first.
        """
        pass

    @abstractmethod
    async def find_recoverable(self, now: datetime) -> list[Credential]:
        """
        Keys in quota_exceeded or rate_limited whose reset_at is at or before now.
        """
        pass

    @abstractmethod
    async def update_fields(
        self,
        credential_id: UUID,
        changes: dict[str, Any],
        increments: Optional[dict[str, int]] = None,
    ) -> bool:
        """
        Apply a targeted partial update.

        Args:
            credential_id: Key to update
            changes: Field values to set
            increments: Counter deltas to add (usage_count, error_count)

        Returns:
            True if the key existed and was updated, False if absent

        Raises:
            ValueError: If a field is not updatable
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, credential_id: UUID) -> bool:
        """Delete a key by ID. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def try_acquire_lease(
        self,
        credential_id: UUID,
        lease_seconds: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Conditionally check a key out for a short period.

        Succeeds only if the key has no lease or its lease has expired.
        """
        pass

    @abstractmethod
    async def release_lease(self, credential_id: UUID) -> None:
        """Clear a lease taken with try_acquire_lease."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one generate call, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """All events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
