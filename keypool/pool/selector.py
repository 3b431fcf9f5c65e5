"""
Pool Selection

Orders the keys a requester may use:
1. Their own active keys, least recently used first
2. Shared active keys (global or legacy ownerless), same ordering

Personal quota is spent before shared quota, and load spreads across
keys LRU-first. When the pool is empty an environment fallback key may
be offered as a single ephemeral candidate that is never persisted.
"""

from datetime import datetime
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from keypool.audit import AuditLogger
from keypool.models.credential import Credential, CredentialStatus, utc_now
from keypool.services.storage import CredentialStorageInterface


logger = structlog.get_logger(__name__)

FALLBACK_LABEL = "Env Fallback"


class Candidate(BaseModel):
    """
    One entry of an ordered selection.

    Exactly one of credential / fallback_secret is set.
    """

    credential: Optional[Credential] = None
    fallback_secret: Optional[str] = Field(default=None, repr=False)

    @property
    def is_ephemeral(self) -> bool:
        return self.credential is None

    @property
    def label(self) -> str:
        return self.credential.label if self.credential else FALLBACK_LABEL


def lru_key(credential: Credential) -> tuple[bool, datetime]:
    """Sort key: never-used keys first, then oldest last_used_at."""
    return (credential.last_used_at is not None, credential.last_used_at or datetime.min)


class PoolSelector:
    """Produces the ordered candidate list for a requester."""

    def __init__(
        self,
        storage: CredentialStorageInterface,
        fallback_secret: Optional[str] = None,
        auto_recover: bool = False,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """
        Args:
            storage: Key storage
            fallback_secret: Plaintext env key offered only when the pool is empty
            auto_recover: Promote quota-limited keys whose reset_at has passed
            audit_logger: Optional audit sink for recoveries
        """
        self._storage = storage
        self._fallback_secret = fallback_secret.strip() if fallback_secret else None
        self._auto_recover = auto_recover
        self._audit_logger = audit_logger

    async def select_candidates(self, requester_id: Optional[str]) -> list[Candidate]:
        if self._auto_recover:
            await self.recover_expired()

        owned: list[Credential] = []
        if requester_id:
            owned = sorted(await self._storage.find_owned_active(requester_id), key=lru_key)

        owned_ids = {c.id for c in owned}
        shared = sorted(
            (c for c in await self._storage.find_shared_active() if c.id not in owned_ids),
            key=lru_key,
        )

        candidates = [Candidate(credential=c) for c in owned + shared]

        if not candidates and self._fallback_secret:
            candidates.append(Candidate(fallback_secret=self._fallback_secret))

        logger.debug(
            "candidates_selected",
            requester_id=requester_id,
            owned=len(owned),
            shared=len(shared),
            fallback=bool(candidates) and candidates[0].is_ephemeral,
        )
        return candidates

    async def recover_expired(self, now: Optional[datetime] = None) -> int:
        """
        Promote quota_exceeded / rate_limited keys whose reset_at has passed.

        Revoked keys are never touched. Returns the number promoted.
        """
        now = now or utc_now()
        promoted = 0
        for credential in await self._storage.find_recoverable(now):
            updated = await self._storage.update_fields(
                credential.id,
                {"status": CredentialStatus.ACTIVE, "reset_at": None},
            )
            if updated:
                promoted += 1
                if self._audit_logger:
                    await self._audit_logger.log_credential_recovered(
                        credential_id=credential.id,
                        previous_status=credential.status.value,
                    )
        return promoted
