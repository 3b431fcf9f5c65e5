"""
Audit Logger

DESIGN DECISION: Every key state transition and administrative action
is logged. This provides:
1. An explanation for every key that left the pool
2. Debugging capability when a request exhausts the pool
3. A history of who added, reset or removed a key

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace all attempts of one request
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from keypool.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from keypool.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit storage backend (for persistence), if configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("keypool.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # -- administrative ---------------------------------------------------

    async def log_credential_added(
        self,
        credential_id: UUID,
        label: str,
        actor_id: Optional[str],
        is_global: bool,
    ) -> None:
        await self.log(AuditEventBuilder.credential_added(
            credential_id=credential_id,
            label=label,
            actor_id=actor_id,
            is_global=is_global,
        ))

    async def log_credential_rejected(
        self,
        label: str,
        reason: str,
        actor_id: Optional[str],
    ) -> None:
        await self.log(AuditEventBuilder.credential_rejected(
            label=label,
            reason=reason,
            actor_id=actor_id,
        ))

    async def log_credential_removed(
        self,
        credential_id: UUID,
        actor_id: Optional[str],
    ) -> None:
        await self.log(AuditEventBuilder.credential_removed(
            credential_id=credential_id,
            actor_id=actor_id,
        ))

    async def log_credential_reset(
        self,
        credential_id: UUID,
        previous_status: str,
        actor_id: Optional[str],
    ) -> None:
        await self.log(AuditEventBuilder.credential_reset(
            credential_id=credential_id,
            previous_status=previous_status,
            actor_id=actor_id,
        ))

    async def log_access_denied(
        self,
        credential_id: UUID,
        action: str,
        actor_id: Optional[str],
    ) -> None:
        await self.log(AuditEventBuilder.access_denied(
            credential_id=credential_id,
            action=action,
            actor_id=actor_id,
        ))

    # -- failover ---------------------------------------------------------

    async def log_attempt_succeeded(
        self,
        credential_id: UUID,
        label: str,
        model: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.attempt_succeeded(
            credential_id=credential_id,
            label=label,
            model=model,
            correlation_id=correlation_id,
        ))

    async def log_attempt_failed(
        self,
        credential_id: UUID,
        label: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.attempt_failed(
            credential_id=credential_id,
            label=label,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_quota_exceeded(
        self,
        credential_id: UUID,
        label: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.quota_exceeded(
            credential_id=credential_id,
            label=label,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_credential_revoked(
        self,
        credential_id: UUID,
        label: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.credential_revoked(
            credential_id=credential_id,
            label=label,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_credential_recovered(
        self,
        credential_id: UUID,
        previous_status: str,
    ) -> None:
        await self.log(AuditEventBuilder.credential_recovered(
            credential_id=credential_id,
            previous_status=previous_status,
        ))

    async def log_fallback_used(
        self,
        model: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.fallback_used(
            model=model,
            correlation_id=correlation_id,
        ))

    async def log_pool_exhausted(
        self,
        attempts: int,
        last_error: Optional[str],
        actor_id: Optional[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.pool_exhausted(
            attempts=attempts,
            last_error=last_error,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_no_credentials(
        self,
        actor_id: Optional[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.no_credentials(
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a generate call; every attempt shares it.
    """
    return uuid4()
