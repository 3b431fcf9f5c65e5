"""
Tests for sequential failover.

The provider is scripted per secret; storage is the in-memory backend
with real Fernet encryption.
"""

import asyncio
import pytest
from datetime import datetime, timedelta
from uuid import uuid4

from google.api_core import exceptions as google_exceptions

from keypool.models.audit import AuditEventType
from keypool.models.credential import CredentialStatus, GenerationOptions
from keypool.pool import NoCredentialsAvailableError, PoolExhaustedError
from keypool.services.storage import InMemoryCredentialStorage, StorageError


T0 = datetime(2025, 1, 1, 12, 0, 0)


class TestSuccessPath:
    """A working key answers and only that key is touched."""

    async def test_owned_key_used_before_older_shared_key(self, add_key, storage, provider, make_executor):
        """Ownership wins over recency."""
        owned = await add_key("key-a", owner_id="u1", last_used_at=T0 + timedelta(hours=1))
        shared = await add_key("key-b", owner_id=None, last_used_at=T0)
        provider.generate_behaviour = {"key-a": "from A", "key-b": "from B"}

        result = await make_executor().execute("hello", requester_id="u1")

        assert result.text == "from A"
        assert provider.secrets_called == ["key-a"]

        owned_after = await storage.find_by_id(owned.id)
        assert owned_after.usage_count == 1
        assert owned_after.last_used_at > owned.last_used_at
        assert owned_after.status == CredentialStatus.ACTIVE

        shared_after = await storage.find_by_id(shared.id)
        assert shared_after.usage_count == 0
        assert shared_after.last_used_at == T0

    async def test_result_carries_model(self, add_key, provider, make_executor):
        await add_key("key-a")
        provider.generate_behaviour = {"key-a": "ok"}

        result = await make_executor().execute("p", requester_id="user-1")

        assert result.model == "gemini-1.5-flash"
        assert result.per_model_results == {"gemini-1.5-flash": "ok"}

    async def test_provider_receives_plaintext_secret(self, add_key, provider, make_executor):
        stored = await add_key("AIza-plain")
        provider.generate_behaviour = {"AIza-plain": "ok"}

        await make_executor().execute("prompt text", requester_id="user-1")

        assert stored.secret_material != "AIza-plain"
        assert provider.calls == [("AIza-plain", "gemini-1.5-flash", "prompt text")]

    async def test_success_clears_nothing_else(self, add_key, storage, provider, make_executor):
        cred = await add_key("key-a", error_count=3, last_error="old failure")
        provider.generate_behaviour = {"key-a": "ok"}

        await make_executor().execute("p", requester_id="user-1")

        after = await storage.find_by_id(cred.id)
        assert after.error_count == 3
        assert after.last_error == "old failure"


class TestModelSelection:
    """The first requested model is used."""

    async def test_models_list_wins(self, add_key, provider, make_executor):
        await add_key("k")
        provider.generate_behaviour = {"k": "ok"}

        await make_executor().execute(
            "p", GenerationOptions(models=["gemini-pro", "gemini-ultra"], model="ignored"),
            requester_id="user-1",
        )
        assert provider.calls[0][1] == "gemini-pro"

    async def test_single_model_used(self, add_key, provider, make_executor):
        await add_key("k")
        provider.generate_behaviour = {"k": "ok"}

        await make_executor().execute("p", GenerationOptions(model="gemini-pro"), requester_id="user-1")
        assert provider.calls[0][1] == "gemini-pro"

    async def test_configured_default(self, add_key, provider, make_executor):
        await add_key("k")
        provider.generate_behaviour = {"k": "ok"}

        await make_executor(default_models=["gemini-2.0-flash", "x"]).execute("p", requester_id="user-1")
        assert provider.calls[0][1] == "gemini-2.0-flash"


class TestFailureTransitions:
    """Each failed key records exactly one transition."""

    async def test_quota_error_exhausts_single_key_pool(self, add_key, storage, provider, make_executor):
        cred = await add_key("key-a")
        provider.generate_behaviour = {"key-a": google_exceptions.ResourceExhausted("Quota exceeded")}

        with pytest.raises(PoolExhaustedError) as exc_info:
            await make_executor().execute("p", requester_id="user-1")

        after = await storage.find_by_id(cred.id)
        assert after.status == CredentialStatus.QUOTA_EXCEEDED
        assert after.error_count == 1
        assert after.is_active is True
        assert "Quota exceeded" in after.last_error
        assert after.reset_at is None

        assert exc_info.value.attempts == 1
        assert "after checking 1 available keys" in str(exc_info.value)
        assert isinstance(exc_info.value.last_error, google_exceptions.ResourceExhausted)

    async def test_auth_error_revokes_and_moves_on(self, add_key, storage, provider, make_executor):
        key_a = await add_key("key-a", last_used_at=T0)
        key_b = await add_key("key-b", last_used_at=T0 + timedelta(minutes=1))
        provider.generate_behaviour = {
            "key-a": google_exceptions.InvalidArgument("API key not valid. Please pass a valid API key."),
            "key-b": "from B",
        }

        result = await make_executor().execute("p", requester_id="user-1")

        assert result.text == "from B"
        a_after = await storage.find_by_id(key_a.id)
        assert a_after.status == CredentialStatus.REVOKED
        assert a_after.is_active is False
        assert a_after.error_count == 0
        assert "API key not valid" in a_after.last_error

        b_after = await storage.find_by_id(key_b.id)
        assert b_after.usage_count == 1

    async def test_other_error_keeps_status(self, add_key, storage, provider, make_executor):
        cred = await add_key("key-a")
        provider.generate_behaviour = {"key-a": google_exceptions.ServiceUnavailable("backend down")}

        with pytest.raises(PoolExhaustedError):
            await make_executor().execute("p", requester_id="user-1")

        after = await storage.find_by_id(cred.id)
        assert after.status == CredentialStatus.ACTIVE
        assert after.is_active is True
        assert after.error_count == 1
        assert "backend down" in after.last_error

    async def test_every_key_tried_once_when_all_fail(self, add_key, storage, provider, make_executor):
        keys = [
            await add_key("q", last_used_at=T0),
            await add_key("a", last_used_at=T0 + timedelta(minutes=1)),
            await add_key("o", last_used_at=T0 + timedelta(minutes=2)),
        ]
        provider.generate_behaviour = {
            "q": google_exceptions.TooManyRequests("slow down"),
            "a": google_exceptions.Unauthenticated("bad key"),
            "o": RuntimeError("socket closed"),
        }

        with pytest.raises(PoolExhaustedError) as exc_info:
            await make_executor().execute("p", requester_id="user-1")

        assert provider.secrets_called == ["q", "a", "o"]
        assert exc_info.value.attempts == 3
        assert "socket closed" in str(exc_info.value)

        q, a, o = [await storage.find_by_id(k.id) for k in keys]
        assert (q.status, q.error_count) == (CredentialStatus.QUOTA_EXCEEDED, 1)
        assert (a.status, a.is_active, a.error_count) == (CredentialStatus.REVOKED, False, 0)
        assert (o.status, o.error_count) == (CredentialStatus.ACTIVE, 1)

    async def test_revoked_key_not_retried_on_next_call(self, add_key, provider, make_executor):
        await add_key("bad")
        provider.generate_behaviour = {"bad": google_exceptions.Unauthenticated("401")}
        executor = make_executor()

        with pytest.raises(PoolExhaustedError):
            await executor.execute("p", requester_id="user-1")
        with pytest.raises(NoCredentialsAvailableError):
            await executor.execute("p", requester_id="user-1")

        assert provider.secrets_called == ["bad"]

    async def test_quota_cooldown_sets_reset_at(self, add_key, storage, provider, make_executor):
        cred = await add_key("key-a")
        provider.generate_behaviour = {"key-a": google_exceptions.ResourceExhausted("quota")}
        before = datetime.utcnow()

        with pytest.raises(PoolExhaustedError):
            await make_executor(quota_cooldown=timedelta(minutes=10)).execute("p", requester_id="user-1")

        after = await storage.find_by_id(cred.id)
        assert after.reset_at >= before + timedelta(minutes=10)

    async def test_slow_provider_times_out(self, add_key, storage, provider, make_executor):
        cred = await add_key("slow")

        async def hang():
            await asyncio.sleep(5)
            return "too late"

        provider.generate_behaviour = {"slow": hang}

        with pytest.raises(PoolExhaustedError):
            await make_executor(attempt_timeout_seconds=0.05).execute("p", requester_id="user-1")

        after = await storage.find_by_id(cred.id)
        assert after.status == CredentialStatus.ACTIVE
        assert after.error_count == 1
        assert "ProviderTimeoutError" in after.last_error

    async def test_undecryptable_key_counts_as_failure(self, add_key, storage, provider, make_executor):
        broken = await add_key("broken", last_used_at=T0)
        storage._records[broken.id] = storage._records[broken.id].model_copy(
            update={"secret_material": "corrupted"}
        )
        await add_key("good", last_used_at=T0 + timedelta(minutes=1))
        provider.generate_behaviour = {"good": "ok"}

        result = await make_executor().execute("p", requester_id="user-1")

        assert result.text == "ok"
        after = await storage.find_by_id(broken.id)
        assert after.error_count == 1
        assert "DecryptionError" in after.last_error


class TestEmptyPoolAndFallback:
    """Behaviour when no stored key is usable."""

    async def test_no_keys_no_fallback(self, make_executor, audit_storage):
        correlation_id = uuid4()
        with pytest.raises(NoCredentialsAvailableError, match="No active AI keys available."):
            await make_executor().execute("p", requester_id="u1", correlation_id=correlation_id)

        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [AuditEventType.NO_CREDENTIALS]

    async def test_fallback_used_and_never_persisted(self, storage, provider, make_executor):
        provider.generate_behaviour = {"env-key": "from env"}

        result = await make_executor(fallback_secret="env-key").execute("p", requester_id="u1")

        assert result.text == "from env"
        assert await storage.find_visible("u1", include_shared=True) == []

    async def test_failed_fallback_exhausts_pool(self, provider, make_executor):
        provider.generate_behaviour = {"env-key": google_exceptions.ResourceExhausted("quota")}

        with pytest.raises(PoolExhaustedError) as exc_info:
            await make_executor(fallback_secret="env-key").execute("p", requester_id="u1")
        assert exc_info.value.attempts == 1

    async def test_fallback_ignored_when_pool_has_keys(self, add_key, provider, make_executor):
        await add_key("stored")
        provider.generate_behaviour = {"stored": google_exceptions.ResourceExhausted("quota"), "env-key": "env"}

        with pytest.raises(PoolExhaustedError):
            await make_executor(fallback_secret="env-key").execute("p", requester_id="user-1")
        assert provider.secrets_called == ["stored"]


class TestLeases:
    """Keys checked out by another request are tried last, not skipped."""

    async def test_leased_key_deferred(self, add_key, storage, provider, make_executor):
        key_a = await add_key("key-a", last_used_at=T0)
        await add_key("key-b", last_used_at=T0 + timedelta(minutes=1))
        provider.generate_behaviour = {"key-a": "A", "key-b": "B"}
        await storage.try_acquire_lease(key_a.id, 60)

        result = await make_executor().execute("p", requester_id="user-1")

        assert result.text == "B"
        assert provider.secrets_called == ["key-b"]

    async def test_leased_key_still_tried_when_others_fail(self, add_key, storage, provider, make_executor):
        key_a = await add_key("key-a", last_used_at=T0)
        await add_key("key-b", last_used_at=T0 + timedelta(minutes=1))
        provider.generate_behaviour = {
            "key-a": "A",
            "key-b": google_exceptions.ResourceExhausted("quota"),
        }
        await storage.try_acquire_lease(key_a.id, 60)

        result = await make_executor().execute("p", requester_id="user-1")

        assert result.text == "A"
        assert provider.secrets_called == ["key-b", "key-a"]

    async def test_deferred_key_revoked_meanwhile_is_skipped(self, add_key, storage, provider, make_executor):
        """A key revoked by the request holding its lease stays revoked."""
        key_a = await add_key("key-a", last_used_at=T0)
        await add_key("key-b", last_used_at=T0 + timedelta(minutes=1))
        await storage.try_acquire_lease(key_a.id, 60)

        async def other_request_revokes_a():
            await storage.update_fields(
                key_a.id,
                {"status": CredentialStatus.REVOKED, "is_active": False, "last_error": "401"},
            )
            raise google_exceptions.ResourceExhausted("quota")

        provider.generate_behaviour = {"key-a": "A", "key-b": other_request_revokes_a}

        with pytest.raises(PoolExhaustedError) as exc_info:
            await make_executor().execute("p", requester_id="user-1")

        assert provider.secrets_called == ["key-b"]
        assert exc_info.value.attempts == 1
        after = await storage.find_by_id(key_a.id)
        assert after.status == CredentialStatus.REVOKED
        assert after.is_active is False
        assert after.usage_count == 0

    async def test_deferred_key_quota_limited_meanwhile_is_skipped(self, add_key, storage, provider, make_executor):
        key_a = await add_key("key-a", last_used_at=T0)
        await add_key("key-b", last_used_at=T0 + timedelta(minutes=1))
        await storage.try_acquire_lease(key_a.id, 60)

        async def other_request_limits_a():
            await storage.update_fields(key_a.id, {"status": CredentialStatus.QUOTA_EXCEEDED})
            raise RuntimeError("socket closed")

        provider.generate_behaviour = {"key-a": "A", "key-b": other_request_limits_a}

        with pytest.raises(PoolExhaustedError):
            await make_executor().execute("p", requester_id="user-1")

        assert provider.secrets_called == ["key-b"]
        assert (await storage.find_by_id(key_a.id)).status == CredentialStatus.QUOTA_EXCEEDED

    async def test_lease_released_after_attempt(self, add_key, storage, provider, make_executor):
        cred = await add_key("key-a")
        provider.generate_behaviour = {"key-a": "ok"}

        await make_executor().execute("p", requester_id="user-1")

        assert (await storage.find_by_id(cred.id)).leased_until is None

    async def test_concurrent_requests_spread_across_keys(self, add_key, storage, provider, make_executor):
        key_a = await add_key("key-a")
        key_b = await add_key("key-b")

        async def slow_answer():
            await asyncio.sleep(0.05)
            return "ok"

        provider.generate_behaviour = {"key-a": slow_answer, "key-b": slow_answer}
        executor = make_executor()

        results = await asyncio.gather(
            executor.execute("p1", requester_id="user-1"),
            executor.execute("p2", requester_id="user-1"),
        )

        assert [r.text for r in results] == ["ok", "ok"]
        assert sorted(provider.secrets_called) == ["key-a", "key-b"]
        assert (await storage.find_by_id(key_a.id)).usage_count == 1
        assert (await storage.find_by_id(key_b.id)).usage_count == 1


class FlakyWriteStorage(InMemoryCredentialStorage):
    """Leases and updates fail; reads work."""

    async def try_acquire_lease(self, credential_id, lease_seconds, now=None):
        raise StorageError("sheet unavailable")

    async def update_fields(self, credential_id, changes, increments=None):
        raise StorageError("sheet unavailable")


class TestStorageFailures:
    """Bookkeeping failures do not hide a successful answer."""

    async def test_result_returned_when_bookkeeping_fails(self, cipher, provider, audit_logger, audit_storage):
        from keypool.models.credential import Credential
        from keypool.pool import FailoverExecutor, PoolSelector

        storage = FlakyWriteStorage(cipher)
        await storage.save(Credential(
            secret_material="key-a", label="a", owner_id="u1", status=CredentialStatus.ACTIVE
        ))
        provider.generate_behaviour = {"key-a": "still works"}
        executor = FailoverExecutor(storage, PoolSelector(storage), provider, audit_logger=audit_logger)
        correlation_id = uuid4()

        result = await executor.execute("p", requester_id="u1", correlation_id=correlation_id)

        assert result.text == "still works"
        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.SYSTEM_ERROR,
            AuditEventType.ATTEMPT_SUCCEEDED,
        ]
        assert "sheet unavailable" in events[0].error_message


class TestAuditTrail:
    """One request is traceable through its correlation id."""

    async def test_events_for_failover(self, add_key, provider, make_executor, audit_storage):
        await add_key("key-a", last_used_at=T0)
        await add_key("key-b", last_used_at=T0 + timedelta(minutes=1))
        provider.generate_behaviour = {
            "key-a": google_exceptions.Unauthenticated("API key not valid"),
            "key-b": "ok",
        }
        correlation_id = uuid4()

        await make_executor().execute("p", requester_id="user-1", correlation_id=correlation_id)

        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.CREDENTIAL_REVOKED,
            AuditEventType.ATTEMPT_SUCCEEDED,
        ]

    async def test_secret_never_in_audit(self, add_key, provider, make_executor, audit_storage):
        await add_key("AIza-very-secret")
        provider.generate_behaviour = {"AIza-very-secret": google_exceptions.ResourceExhausted("quota")}

        with pytest.raises(PoolExhaustedError):
            await make_executor().execute("p", requester_id="user-1")

        for event in await audit_storage.get_recent_events():
            assert "AIza-very-secret" not in str(event.to_log_dict())

    async def test_exhaustion_audited(self, add_key, provider, make_executor, audit_storage):
        await add_key("key-a")
        provider.generate_behaviour = {"key-a": RuntimeError("boom")}
        correlation_id = uuid4()

        with pytest.raises(PoolExhaustedError):
            await make_executor().execute("p", requester_id="user-1", correlation_id=correlation_id)

        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert events[-1].event_type == AuditEventType.POOL_EXHAUSTED
        assert events[-1].details["attempts"] == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
