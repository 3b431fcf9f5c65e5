"""
Core Data Models for KeyPool

These models define the schemas for provider keys and for the
generation requests/results that flow through the failover engine.

DESIGN DECISION: The stored model and the public view are separate types.
A CredentialView has no secret field at all.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class CredentialStatus(str, Enum):
    """
    Health status of a provider key.

    Only ACTIVE keys (that are also is_active) are eligible for selection.
    QUOTA_EXCEEDED and REVOKED are left only through an explicit reset.
    """
    TESTING = "testing"
    ACTIVE = "active"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    REVOKED = "revoked"


class ErrorClassification(str, Enum):
    """How a failed provider call affects the key that made it."""
    QUOTA = "quota"
    AUTH_INVALID = "auth_invalid"
    OTHER = "other"


LABEL_MAX_LENGTH = 100


def utc_now() -> datetime:
    return datetime.utcnow()


# =============================================================================
# CREDENTIAL
# =============================================================================

class Credential(BaseModel):
    """
    A single provider key plus its lifecycle state.

    secret_material always holds ciphertext once the record has been
    through a CredentialStorage. Use the store's decrypt_secret accessor
    to get the plaintext.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    secret_material: str = Field(..., min_length=1, repr=False)
    label: str = Field(..., min_length=1, max_length=LABEL_MAX_LENGTH)
    provider: str = Field(default="google", min_length=1)

    # Ownership
    owner_id: Optional[str] = Field(
        default=None,
        description="None marks a legacy ownerless key, treated as shared"
    )
    is_global: bool = False

    # Health
    is_active: bool = True
    status: CredentialStatus = CredentialStatus.TESTING

    # Usage accounting
    usage_count: int = Field(default=0, ge=0)
    last_used_at: Optional[datetime] = None
    error_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = None
    reset_at: Optional[datetime] = None

    # Checkout lease, internal to the store/executor
    leased_until: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def revoked_is_inactive(self) -> "Credential":
        if self.status == CredentialStatus.REVOKED and self.is_active:
            raise ValueError("A revoked credential cannot be active")
        return self

    @property
    def is_shared(self) -> bool:
        return self.is_global or self.owner_id is None

    @property
    def is_selectable(self) -> bool:
        return self.is_active and self.status == CredentialStatus.ACTIVE

    def is_owned_by(self, requester_id: Optional[str]) -> bool:
        return self.owner_id is not None and self.owner_id == requester_id

    def to_view(self) -> "CredentialView":
        return CredentialView(**self.model_dump(exclude={"secret_material", "leased_until"}))


class CredentialView(BaseModel):
    """Public projection of a Credential. Carries no secret material."""

    id: UUID
    label: str
    provider: str
    owner_id: Optional[str] = None
    is_global: bool = False
    is_active: bool = True
    status: CredentialStatus
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    error_count: int = 0
    last_error: Optional[str] = None
    reset_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# =============================================================================
# GENERATION REQUEST / RESULT
# =============================================================================

class GenerationOptions(BaseModel):
    """
    Caller options for a generation request.

    Only the first entry of `models` is exercised today; `model` is the
    single-model shorthand.
    """
    models: Optional[list[str]] = None
    model: Optional[str] = None

    @field_validator("models")
    @classmethod
    def drop_blank_models(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return None
        cleaned = [name.strip() for name in v if name and name.strip()]
        return cleaned or None


class GenerationResult(BaseModel):
    """
    Uniform result of a successful generation.

    Carries no information about which key answered.
    """
    text: str
    model: str
    per_model_results: dict[str, str] = Field(default_factory=dict)
