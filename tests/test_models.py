"""
Tests for KeyPool models

Test strategy:
1. Unit tests for individual components (models, selector, classifier)
2. Flow tests for failover and lifecycle (with a scripted provider)
3. No real API calls in tests (use fakes)
"""

import pytest
from datetime import datetime
from uuid import uuid4

from keypool.models.credential import (
    Credential,
    CredentialStatus,
    CredentialView,
    GenerationOptions,
    GenerationResult,
)
from keypool.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestCredentialModel:
    """Tests for the Credential model."""

    def test_defaults(self):
        """New records start in testing with zeroed counters."""
        cred = Credential(secret_material="token", label="Personal Key")
        assert cred.status == CredentialStatus.TESTING
        assert cred.provider == "google"
        assert cred.is_active is True
        assert cred.is_global is False
        assert cred.usage_count == 0
        assert cred.error_count == 0
        assert cred.last_used_at is None

    def test_label_is_stripped(self):
        cred = Credential(secret_material="token", label="  Pro Account  ")
        assert cred.label == "Pro Account"

    def test_blank_label_rejected(self):
        with pytest.raises(ValueError):
            Credential(secret_material="token", label="   ")

    def test_revoked_cannot_be_active(self):
        with pytest.raises(ValueError, match="revoked credential cannot be active"):
            Credential(
                secret_material="token",
                label="k",
                status=CredentialStatus.REVOKED,
                is_active=True,
            )

    def test_revoked_and_inactive_is_valid(self):
        cred = Credential(
            secret_material="token",
            label="k",
            status=CredentialStatus.REVOKED,
            is_active=False,
        )
        assert cred.is_selectable is False

    def test_negative_counters_rejected(self):
        with pytest.raises(ValueError):
            Credential(secret_material="token", label="k", usage_count=-1)

    def test_ownerless_key_is_shared(self):
        cred = Credential(secret_material="token", label="legacy", owner_id=None)
        assert cred.is_shared is True
        assert cred.is_owned_by(None) is False

    def test_owned_key_is_not_shared(self):
        cred = Credential(secret_material="token", label="mine", owner_id="u1")
        assert cred.is_shared is False
        assert cred.is_owned_by("u1") is True
        assert cred.is_owned_by("u2") is False

    def test_global_owned_key_is_shared(self):
        cred = Credential(secret_material="token", label="g", owner_id="admin", is_global=True)
        assert cred.is_shared is True

    def test_selectable_requires_active_status_and_flag(self):
        active = Credential(secret_material="t", label="a", status=CredentialStatus.ACTIVE)
        paused = Credential(
            secret_material="t", label="b", status=CredentialStatus.ACTIVE, is_active=False
        )
        quota = Credential(secret_material="t", label="c", status=CredentialStatus.QUOTA_EXCEEDED)
        assert active.is_selectable is True
        assert paused.is_selectable is False
        assert quota.is_selectable is False

    def test_view_has_no_secret(self):
        cred = Credential(secret_material="super-secret-token", label="k")
        view = cred.to_view()
        assert isinstance(view, CredentialView)
        dumped = view.model_dump()
        assert "secret_material" not in dumped
        assert "leased_until" not in dumped
        assert "super-secret-token" not in view.model_dump_json()
        assert view.id == cred.id

    def test_secret_hidden_from_repr(self):
        cred = Credential(secret_material="super-secret-token", label="k")
        assert "super-secret-token" not in repr(cred)


class TestGenerationModels:
    """Tests for request/result models."""

    def test_blank_models_dropped(self):
        opts = GenerationOptions(models=["  ", "gemini-pro", ""])
        assert opts.models == ["gemini-pro"]

    def test_all_blank_models_become_none(self):
        opts = GenerationOptions(models=["", " "])
        assert opts.models is None

    def test_result_shape(self):
        result = GenerationResult(text="hi", model="m", per_model_results={"m": "hi"})
        assert result.text == "hi"
        assert "credential" not in result.model_dump()


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        event = AuditEvent(
            event_type=AuditEventType.CREDENTIAL_ADDED,
            description="Key added",
        )
        assert event.event_type == AuditEventType.CREDENTIAL_ADDED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        event = AuditEvent(
            event_type=AuditEventType.QUOTA_EXCEEDED,
            description="Quota exceeded for k",
            details={"label": "k"},
            actor_id="u1",
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "quota_exceeded"
        assert log_dict["actor_id"] == "u1"
        assert log_dict["details"]["label"] == "k"

    def test_audit_event_to_sheets_row(self):
        event = AuditEvent(
            event_type=AuditEventType.CREDENTIAL_RESET,
            description="Key reset",
            is_user_action=True,
        )
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "credential_reset"
        assert row[11] == "True"

    def test_builder_credential_added(self):
        credential_id = uuid4()
        event = AuditEventBuilder.credential_added(
            credential_id=credential_id,
            label="Personal",
            actor_id="u1",
            is_global=False,
        )
        assert event.event_type == AuditEventType.CREDENTIAL_ADDED
        assert event.entity_id == credential_id
        assert event.is_user_action is True

    def test_builder_revoked_is_error(self):
        event = AuditEventBuilder.credential_revoked(
            credential_id=uuid4(),
            label="k",
            error_message="401",
            correlation_id=uuid4(),
        )
        assert event.severity == AuditSeverity.ERROR
        assert event.error_message == "401"

    def test_timestamp_defaults_to_now(self):
        before = datetime.utcnow()
        event = AuditEventBuilder.no_credentials(actor_id=None, correlation_id=uuid4())
        assert event.timestamp >= before


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
