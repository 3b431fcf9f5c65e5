"""
Data Models Package

This package contains all Pydantic models used in the KeyPool engine.
All data flowing through the system must conform to these schemas.
"""

from keypool.models.credential import (
    Credential,
    CredentialStatus,
    CredentialView,
    ErrorClassification,
    GenerationOptions,
    GenerationResult,
    utc_now,
)
from keypool.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Credential models
    "Credential",
    "CredentialStatus",
    "CredentialView",
    "ErrorClassification",
    "GenerationOptions",
    "GenerationResult",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
