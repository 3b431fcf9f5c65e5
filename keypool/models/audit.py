"""
Audit Models for KeyPool

Every state transition of a provider key is logged for audit purposes.
This provides:
1. Traceability of why a key left the pool
2. Debugging information when a request exhausts the pool
3. Accountability for administrative actions

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
Secret material never appears in an audit event.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Administrative
    CREDENTIAL_ADDED = "credential_added"
    CREDENTIAL_REJECTED = "credential_rejected"
    CREDENTIAL_REMOVED = "credential_removed"
    CREDENTIAL_RESET = "credential_reset"
    ACCESS_DENIED = "access_denied"

    # Failover attempts
    ATTEMPT_SUCCEEDED = "attempt_succeeded"
    ATTEMPT_FAILED = "attempt_failed"
    QUOTA_EXCEEDED = "quota_exceeded"
    CREDENTIAL_REVOKED = "credential_revoked"
    CREDENTIAL_RECOVERED = "credential_recovered"
    FALLBACK_USED = "fallback_used"

    # Request outcome
    POOL_EXHAUSTED = "pool_exhausted"
    NO_CREDENTIALS = "no_credentials"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'credential', 'request')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    actor_id: Optional[str] = Field(
        default=None,
        description="Requester that triggered the event"
    )

    # Correlation - all attempts of one generate call share an ID
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by an administrative user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "actor_id": self.actor_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            self.actor_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.credential_added(credential_id, label, actor_id)
        event = AuditEventBuilder.quota_exceeded(credential_id, label, error, correlation_id)
    """

    @staticmethod
    def credential_added(
        credential_id: UUID,
        label: str,
        actor_id: Optional[str],
        is_global: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDENTIAL_ADDED,
            entity_type="credential",
            entity_id=credential_id,
            actor_id=actor_id,
            description=f"Key added: {label}",
            details={
                "label": label,
                "is_global": is_global,
            },
            is_user_action=True,
        )

    @staticmethod
    def credential_rejected(
        label: str,
        reason: str,
        actor_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDENTIAL_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="credential",
            actor_id=actor_id,
            description=f"Key rejected at validation: {label}",
            details={"label": label},
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def credential_removed(
        credential_id: UUID,
        actor_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDENTIAL_REMOVED,
            entity_type="credential",
            entity_id=credential_id,
            actor_id=actor_id,
            description="Key removed",
            is_user_action=True,
        )

    @staticmethod
    def credential_reset(
        credential_id: UUID,
        previous_status: str,
        actor_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDENTIAL_RESET,
            entity_type="credential",
            entity_id=credential_id,
            actor_id=actor_id,
            description=f"Key reset to active (was {previous_status})",
            details={"previous_status": previous_status},
            is_user_action=True,
        )

    @staticmethod
    def access_denied(
        credential_id: UUID,
        action: str,
        actor_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type="credential",
            entity_id=credential_id,
            actor_id=actor_id,
            description=f"Not authorized to {action} this key",
            details={"action": action},
            is_user_action=True,
        )

    @staticmethod
    def attempt_succeeded(
        credential_id: UUID,
        label: str,
        model: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTEMPT_SUCCEEDED,
            entity_type="credential",
            entity_id=credential_id,
            correlation_id=correlation_id,
            description=f"Generation succeeded using {label} on {model}",
            details={"label": label, "model": model},
        )

    @staticmethod
    def attempt_failed(
        credential_id: UUID,
        label: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTEMPT_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="credential",
            entity_id=credential_id,
            correlation_id=correlation_id,
            description=f"Generation failed using {label}",
            details={"label": label},
            error_message=error_message,
        )

    @staticmethod
    def quota_exceeded(
        credential_id: UUID,
        label: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUOTA_EXCEEDED,
            severity=AuditSeverity.WARNING,
            entity_type="credential",
            entity_id=credential_id,
            correlation_id=correlation_id,
            description=f"Quota exceeded for {label}",
            details={"label": label},
            error_message=error_message,
        )

    @staticmethod
    def credential_revoked(
        credential_id: UUID,
        label: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDENTIAL_REVOKED,
            severity=AuditSeverity.ERROR,
            entity_type="credential",
            entity_id=credential_id,
            correlation_id=correlation_id,
            description=f"Key revoked after auth failure: {label}",
            details={"label": label},
            error_message=error_message,
        )

    @staticmethod
    def credential_recovered(
        credential_id: UUID,
        previous_status: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDENTIAL_RECOVERED,
            entity_type="credential",
            entity_id=credential_id,
            description=f"Key promoted back to active after reset_at (was {previous_status})",
            details={"previous_status": previous_status},
        )

    @staticmethod
    def fallback_used(
        model: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FALLBACK_USED,
            entity_type="request",
            correlation_id=correlation_id,
            description=f"Pool empty, using environment fallback key on {model}",
            details={"model": model},
        )

    @staticmethod
    def pool_exhausted(
        attempts: int,
        last_error: Optional[str],
        actor_id: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.POOL_EXHAUSTED,
            severity=AuditSeverity.ERROR,
            entity_type="request",
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Generation failed after {attempts} attempts",
            details={"attempts": attempts},
            error_message=last_error,
        )

    @staticmethod
    def no_credentials(
        actor_id: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NO_CREDENTIALS,
            severity=AuditSeverity.ERROR,
            entity_type="request",
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="No active AI keys available",
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
