"""
Key Lifecycle Management

Administrative surface over the key pool: add, list, remove, reset.

Authorization is enforced here, not by whatever transport calls in:
- add: any requester; the global flag is honored only for privileged ones
- list: privileged -> shared, own and legacy ownerless keys; others -> own
- remove / reset: owner or privileged only

State machine:
    testing --(probe passes)--> active --(quota / auth error)--> quota_exceeded | revoked
    quota_exceeded | revoked --(reset)--> active

The engine never deletes a key on its own; remove is the only way out.
"""

from typing import Optional
from uuid import UUID

from keypool.audit import AuditLogger
from keypool.models.credential import (
    LABEL_MAX_LENGTH,
    Credential,
    CredentialStatus,
    CredentialView,
)
from keypool.pool.errors import InvalidCredentialError, NotFoundError, UnauthorizedError
from keypool.services.storage import CredentialStorageInterface
from keypool.validation import AdmissionValidator


class CredentialLifecycle:
    """
    Add, list, remove and reset provider keys.

    Never returns secret material.
    """

    def __init__(
        self,
        storage: CredentialStorageInterface,
        validator: AdmissionValidator,
        audit_logger: Optional[AuditLogger] = None,
        supported_providers: tuple[str, ...] = ("google",),
        default_provider: str = "google",
    ):
        self._storage = storage
        self._validator = validator
        self._audit_logger = audit_logger
        self._supported_providers = supported_providers
        self._default_provider = default_provider

    async def add(
        self,
        secret: str,
        label: str,
        requester_id: str,
        provider: Optional[str] = None,
        make_global: bool = False,
        is_privileged: bool = False,
    ) -> CredentialView:
        """
        Validate a key with a live probe and admit it to the pool.

        Raises:
            InvalidCredentialError: Missing fields, unsupported provider,
                or the probe rejected the key. Nothing is persisted.
        """
        secret = (secret or "").strip()
        label = (label or "").strip()
        provider = (provider or self._default_provider).strip().lower()

        if not secret or not label:
            raise InvalidCredentialError("Key and Label are required")
        if len(label) > LABEL_MAX_LENGTH:
            raise InvalidCredentialError(f"Label must be at most {LABEL_MAX_LENGTH} characters")
        if provider not in self._supported_providers:
            raise InvalidCredentialError(f"Unsupported provider: {provider}")

        result = await self._validator.validate(secret)
        if not result.ok:
            if self._audit_logger:
                await self._audit_logger.log_credential_rejected(
                    label=label,
                    reason=result.reason or "validation failed",
                    actor_id=requester_id,
                )
            raise InvalidCredentialError(result.reason or "validation failed")

        is_global = bool(make_global and is_privileged)
        stored = await self._storage.save(Credential(
            secret_material=secret,
            label=label,
            provider=provider,
            owner_id=requester_id,
            is_global=is_global,
            is_active=True,
            status=CredentialStatus.ACTIVE,
        ))

        if self._audit_logger:
            await self._audit_logger.log_credential_added(
                credential_id=stored.id,
                label=stored.label,
                actor_id=requester_id,
                is_global=is_global,
            )
        return stored.to_view()

    async def list_credentials(
        self,
        requester_id: str,
        is_privileged: bool = False,
    ) -> list[CredentialView]:
        """Keys visible to the requester, newest first."""
        records = await self._storage.find_visible(requester_id, include_shared=is_privileged)
        return [record.to_view() for record in records]

    async def remove(
        self,
        credential_id: UUID,
        requester_id: str,
        is_privileged: bool = False,
    ) -> None:
        """
        Delete a key.

        Raises:
            NotFoundError: Key does not exist
            UnauthorizedError: Requester is neither owner nor privileged
        """
        credential = await self._get_authorized(credential_id, requester_id, is_privileged, "delete")
        deleted = await self._storage.delete(credential.id)
        if not deleted:
            raise NotFoundError("Key not found")

        if self._audit_logger:
            await self._audit_logger.log_credential_removed(
                credential_id=credential.id,
                actor_id=requester_id,
            )

    async def reset(
        self,
        credential_id: UUID,
        requester_id: str,
        is_privileged: bool = False,
    ) -> CredentialView:
        """
        Put a key back into service.

        Sets status=active, is_active=True and error_count=0. last_error
        and usage_count are kept as history. Idempotent.

        Raises:
            NotFoundError: Key does not exist
            UnauthorizedError: Requester is neither owner nor privileged
        """
        credential = await self._get_authorized(credential_id, requester_id, is_privileged, "reset")
        updated = await self._storage.update_fields(
            credential.id,
            {
                "status": CredentialStatus.ACTIVE,
                "is_active": True,
                "error_count": 0,
            },
        )
        if not updated:
            raise NotFoundError("Key not found")

        if self._audit_logger:
            await self._audit_logger.log_credential_reset(
                credential_id=credential.id,
                previous_status=credential.status.value,
                actor_id=requester_id,
            )

        refreshed = await self._storage.find_by_id(credential.id)
        if refreshed is None:
            raise NotFoundError("Key not found")
        return refreshed.to_view()

    async def _get_authorized(
        self,
        credential_id: UUID,
        requester_id: str,
        is_privileged: bool,
        action: str,
    ) -> Credential:
        credential = await self._storage.find_by_id(credential_id)
        if credential is None:
            raise NotFoundError("Key not found")

        if not (is_privileged or credential.is_owned_by(requester_id)):
            if self._audit_logger:
                await self._audit_logger.log_access_denied(
                    credential_id=credential.id,
                    action=action,
                    actor_id=requester_id,
                )
            raise UnauthorizedError(f"Not authorized to {action} this key")

        return credential
