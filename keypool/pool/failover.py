"""
Failover Execution

Runs one generation request against the ordered candidate list:

1. Ask the selector for candidates (fallback included). None -> fail.
2. Resolve the model through the selection strategy.
3. Try candidates strictly one at a time:
   - success: usage_count+1, last_used_at=now, status=active; return
   - failure: classify, apply the transition, move on
4. Nothing worked -> PoolExhaustedError with the last error.

| classification | status         | is_active | counters                         |
|----------------|----------------|-----------|----------------------------------|
| QUOTA          | quota_exceeded | unchanged | error_count+1, last_error        |
| AUTH_INVALID   | revoked        | False     | last_error                       |
| OTHER          | unchanged      | unchanged | error_count+1, last_error        |

The ephemeral fallback key never touches storage.

CONCURRENCY: each persisted candidate is checked out with a short lease
before its attempt. A candidate already leased by another request is
moved to the back of this request's order, not skipped, so the set of
keys tried (and therefore the outcome) is unchanged. Deferred keys are
re-read first and dropped if the other request took them out of service.
"""

import asyncio
from datetime import timedelta
from typing import Optional
from uuid import UUID

import structlog

from keypool.audit import AuditLogger, create_correlation_id
from keypool.models.credential import (
    CredentialStatus,
    ErrorClassification,
    GenerationOptions,
    GenerationResult,
    utc_now,
)
from keypool.pool.classifier import classify_provider_error, describe_error
from keypool.pool.errors import NoCredentialsAvailableError, PoolExhaustedError
from keypool.pool.selector import Candidate, PoolSelector
from keypool.pool.strategy import FirstRequestedModel, ModelSelectionStrategy
from keypool.services.provider import ProviderClient, ProviderTimeoutError
from keypool.services.storage import CredentialStorageInterface, StorageError


logger = structlog.get_logger(__name__)


class FailoverExecutor:
    """
    Executes a prompt against the key pool with sequential failover.

    Exactly one successful attempt per call; at most one attempt per
    candidate.
    """

    def __init__(
        self,
        storage: CredentialStorageInterface,
        selector: PoolSelector,
        provider: ProviderClient,
        strategy: Optional[ModelSelectionStrategy] = None,
        audit_logger: Optional[AuditLogger] = None,
        attempt_timeout_seconds: float = 30.0,
        lease_seconds: int = 15,
        quota_cooldown: Optional[timedelta] = None,
    ):
        self._storage = storage
        self._selector = selector
        self._provider = provider
        self._strategy = strategy or FirstRequestedModel()
        self._audit_logger = audit_logger
        self._attempt_timeout = attempt_timeout_seconds
        self._lease_seconds = lease_seconds
        self._quota_cooldown = quota_cooldown

    async def execute(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
        requester_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> GenerationResult:
        """
        Generate text for prompt using the first key that works.

        Raises:
            NoCredentialsAvailableError: Pool empty and no fallback configured
            PoolExhaustedError: Every candidate failed
        """
        options = options or GenerationOptions()
        correlation_id = correlation_id or create_correlation_id()

        candidates = await self._selector.select_candidates(requester_id)
        if not candidates:
            if self._audit_logger:
                await self._audit_logger.log_no_credentials(
                    actor_id=requester_id,
                    correlation_id=correlation_id,
                )
            raise NoCredentialsAvailableError()

        model = self._strategy.resolve(options)
        last_error: Optional[BaseException] = None
        attempts = 0
        deferred: list[Candidate] = []

        for candidate in candidates:
            leased = await self._checkout(candidate)
            if leased is False:
                deferred.append(candidate)
                continue
            try:
                text, error = await self._attempt(candidate, model, prompt, correlation_id)
            finally:
                if leased:
                    await self._release(candidate)

            attempts += 1
            if error is None:
                return GenerationResult(text=text, model=model, per_model_results={model: text})
            last_error = error

        # Keys another request had checked out get their turn last
        for candidate in deferred:
            candidate = await self._refresh(candidate)
            if candidate is None:
                continue
            attempts += 1
            text, error = await self._attempt(candidate, model, prompt, correlation_id)
            if error is None:
                return GenerationResult(text=text, model=model, per_model_results={model: text})
            last_error = error

        if self._audit_logger:
            await self._audit_logger.log_pool_exhausted(
                attempts=attempts,
                last_error=describe_error(last_error) if last_error else None,
                actor_id=requester_id,
                correlation_id=correlation_id,
            )
        raise PoolExhaustedError(attempts=attempts, last_error=last_error) from last_error

    async def _checkout(self, candidate: Candidate) -> Optional[bool]:
        """
        Lease a persisted candidate.

        True if leased, False if another request holds it, None if the
        candidate is ephemeral or the lease could not be recorded.
        """
        if candidate.is_ephemeral:
            return None
        try:
            return await self._storage.try_acquire_lease(
                candidate.credential.id, self._lease_seconds
            )
        except StorageError as e:
            logger.warning("lease_unavailable", key=candidate.label, error=str(e))
            return None

    async def _release(self, candidate: Candidate) -> None:
        try:
            await self._storage.release_lease(candidate.credential.id)
        except StorageError as e:
            logger.warning("lease_release_failed", key=candidate.label, error=str(e))

    async def _refresh(self, candidate: Candidate) -> Optional[Candidate]:
        """
        Re-read a deferred candidate.

        The request that held its lease may have revoked or quota-limited
        it. Returns None if the key is no longer selectable.
        """
        try:
            current = await self._storage.find_by_id(candidate.credential.id)
        except StorageError as e:
            logger.warning("deferred_refresh_failed", key=candidate.label, error=str(e))
            return None
        if current is None or not current.is_selectable:
            logger.info("deferred_key_skipped", key=candidate.label)
            return None
        return Candidate(credential=current)

    async def _report_lost_update(
        self,
        credential_id: UUID,
        error: StorageError,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_error(
                error_type="key_update_failed",
                error_message=str(error),
                details={"credential_id": str(credential_id)},
                correlation_id=correlation_id,
            )

    async def _attempt(
        self,
        candidate: Candidate,
        model: str,
        prompt: str,
        correlation_id: UUID,
    ) -> tuple[Optional[str], Optional[BaseException]]:
        """One provider call. Returns (text, None) or (None, error)."""
        logger.info("ai_request", key=candidate.label, model=model)

        try:
            if candidate.is_ephemeral:
                secret = candidate.fallback_secret
            else:
                secret = self._storage.decrypt_secret(candidate.credential)
            text = await asyncio.wait_for(
                self._provider.generate(secret, model, prompt),
                timeout=self._attempt_timeout,
            )
        except asyncio.TimeoutError:
            error = ProviderTimeoutError(
                f"No response within {self._attempt_timeout:g}s"
            )
            await self._record_failure(candidate, error, correlation_id)
            return None, error
        except Exception as e:
            await self._record_failure(candidate, e, correlation_id)
            return None, e

        await self._record_success(candidate, model, correlation_id)
        return text, None

    async def _record_success(
        self,
        candidate: Candidate,
        model: str,
        correlation_id: UUID,
    ) -> None:
        if candidate.is_ephemeral:
            if self._audit_logger:
                await self._audit_logger.log_fallback_used(model=model, correlation_id=correlation_id)
            return

        credential = candidate.credential
        try:
            await self._storage.update_fields(
                credential.id,
                {"status": CredentialStatus.ACTIVE, "last_used_at": utc_now()},
                increments={"usage_count": 1},
            )
        except StorageError as e:
            # The caller already has a result; bookkeeping loss is only reported
            logger.error("usage_update_failed", key=credential.label, error=str(e))
            await self._report_lost_update(credential.id, e, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_attempt_succeeded(
                credential_id=credential.id,
                label=credential.label,
                model=model,
                correlation_id=correlation_id,
            )

    async def _record_failure(
        self,
        candidate: Candidate,
        error: BaseException,
        correlation_id: UUID,
    ) -> None:
        message = describe_error(error)
        logger.warning("ai_key_failed", key=candidate.label, error=message)

        if candidate.is_ephemeral:
            return

        credential = candidate.credential
        classification = classify_provider_error(error)
        increments: Optional[dict[str, int]] = None

        if classification == ErrorClassification.QUOTA:
            changes = {"status": CredentialStatus.QUOTA_EXCEEDED, "last_error": message}
            if self._quota_cooldown is not None:
                changes["reset_at"] = utc_now() + self._quota_cooldown
            increments = {"error_count": 1}
        elif classification == ErrorClassification.AUTH_INVALID:
            changes = {
                "status": CredentialStatus.REVOKED,
                "is_active": False,
                "last_error": message,
            }
        else:
            changes = {"last_error": message}
            increments = {"error_count": 1}

        try:
            await self._storage.update_fields(credential.id, changes, increments=increments)
        except StorageError as e:
            logger.error("failure_update_failed", key=credential.label, error=str(e))
            await self._report_lost_update(credential.id, e, correlation_id)

        if not self._audit_logger:
            return
        if classification == ErrorClassification.QUOTA:
            await self._audit_logger.log_quota_exceeded(
                credential_id=credential.id,
                label=credential.label,
                error_message=message,
                correlation_id=correlation_id,
            )
        elif classification == ErrorClassification.AUTH_INVALID:
            await self._audit_logger.log_credential_revoked(
                credential_id=credential.id,
                label=credential.label,
                error_message=message,
                correlation_id=correlation_id,
            )
        else:
            await self._audit_logger.log_attempt_failed(
                credential_id=credential.id,
                label=credential.label,
                error_message=message,
                correlation_id=correlation_id,
            )
