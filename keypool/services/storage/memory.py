"""
In-Memory Storage Implementation

Used by tests and by single-process deployments. All mutations run under
one asyncio.Lock, so increments and lease checkouts are atomic here.
Records are copied on the way in and out; callers never hold a reference
to stored state.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from keypool.models.audit import AuditEvent
from keypool.models.credential import Credential, CredentialStatus, utc_now
from keypool.services.crypto import SecretCipher
from keypool.services.storage.interface import (
    AuditStorageInterface,
    CredentialStorageInterface,
    DuplicateError,
)


RECOVERABLE_STATUSES = (CredentialStatus.QUOTA_EXCEEDED, CredentialStatus.RATE_LIMITED)


class InMemoryCredentialStorage(CredentialStorageInterface):
    """Dict-backed key storage."""

    def __init__(self, cipher: SecretCipher):
        super().__init__(cipher)
        self._records: dict[UUID, Credential] = {}
        self._lock = asyncio.Lock()

    async def save(self, credential: Credential) -> Credential:
        stored = self._encrypted_copy(credential)
        async with self._lock:
            if stored.id in self._records:
                raise DuplicateError(f"Key already exists: {stored.id}")
            self._records[stored.id] = stored
        return stored.model_copy(deep=True)

    async def find_by_id(self, credential_id: UUID) -> Optional[Credential]:
        record = self._records.get(credential_id)
        return record.model_copy(deep=True) if record else None

    async def find_owned_active(self, owner_id: str) -> list[Credential]:
        return [
            record.model_copy(deep=True)
            for record in self._records.values()
            if record.is_owned_by(owner_id) and record.is_selectable
        ]

    async def find_shared_active(self) -> list[Credential]:
        return [
            record.model_copy(deep=True)
            for record in self._records.values()
            if record.is_shared and record.is_selectable
        ]

    async def find_visible(
        self,
        owner_id: str,
        include_shared: bool,
    ) -> list[Credential]:
        visible = [
            record.model_copy(deep=True)
            for record in self._records.values()
            if record.is_owned_by(owner_id) or (include_shared and record.is_shared)
        ]
        visible.sort(key=lambda c: c.created_at, reverse=True)
        return visible

    async def find_recoverable(self, now: datetime) -> list[Credential]:
        return [
            record.model_copy(deep=True)
            for record in self._records.values()
            if record.status in RECOVERABLE_STATUSES
            and record.reset_at is not None
            and record.reset_at <= now
        ]

    async def update_fields(
        self,
        credential_id: UUID,
        changes: dict[str, Any],
        increments: Optional[dict[str, int]] = None,
    ) -> bool:
        self._check_changes(changes, increments)
        async with self._lock:
            current = self._records.get(credential_id)
            if current is None:
                return False
            data = current.model_dump()
            data.update(changes)
            for field, delta in (increments or {}).items():
                data[field] = data[field] + delta
            data["updated_at"] = utc_now()
            # Re-validate so invariants (revoked => inactive) hold
            self._records[credential_id] = Credential.model_validate(data)
        return True

    async def delete(self, credential_id: UUID) -> bool:
        async with self._lock:
            return self._records.pop(credential_id, None) is not None

    async def try_acquire_lease(
        self,
        credential_id: UUID,
        lease_seconds: int,
        now: Optional[datetime] = None,
    ) -> bool:
        now = now or utc_now()
        async with self._lock:
            current = self._records.get(credential_id)
            if current is None:
                return False
            if current.leased_until is not None and current.leased_until > now:
                return False
            self._records[credential_id] = current.model_copy(
                update={"leased_until": now + timedelta(seconds=lease_seconds)}
            )
        return True

    async def release_lease(self, credential_id: UUID) -> None:
        async with self._lock:
            current = self._records.get(credential_id)
            if current is not None and current.leased_until is not None:
                self._records[credential_id] = current.model_copy(
                    update={"leased_until": None}
                )


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed append-only audit log."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
