"""
Shared fixtures.

No real API calls: the provider is a scripted fake. Encryption uses a
real Fernet key generated per test.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

import pytest

from keypool.audit import AuditLogger
from keypool.models.credential import Credential, CredentialStatus
from keypool.pool import FailoverExecutor, FirstRequestedModel, PoolSelector
from keypool.services.crypto import FernetCipher
from keypool.services.provider import ProviderClient
from keypool.services.storage import InMemoryAuditStorage, InMemoryCredentialStorage


Behaviour = Union[str, BaseException, Callable[[], Awaitable[str]]]


class FakeProvider(ProviderClient):
    """
    Scripted provider keyed by plaintext secret.

    generate_behaviour[secret]: text to return, exception to raise, or an
    async callable. list_models_behaviour[secret]: model list or exception.
    Unknown secrets fail with a generic error.
    """

    name = "google"

    def __init__(self):
        self.generate_behaviour: dict[str, Behaviour] = {}
        self.list_models_behaviour: dict[str, Union[list[str], BaseException]] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.probes: list[str] = []

    async def generate(self, secret: str, model: str, prompt: str) -> str:
        self.calls.append((secret, model, prompt))
        behaviour = self.generate_behaviour.get(secret, RuntimeError("unknown key"))
        if isinstance(behaviour, BaseException):
            raise behaviour
        if callable(behaviour):
            return await behaviour()
        return behaviour

    async def list_models(self, secret: str) -> list[str]:
        self.probes.append(secret)
        behaviour = self.list_models_behaviour.get(secret, RuntimeError("connection refused"))
        if isinstance(behaviour, BaseException):
            raise behaviour
        return behaviour

    @property
    def secrets_called(self) -> list[str]:
        return [secret for secret, _, _ in self.calls]


@pytest.fixture
def cipher() -> FernetCipher:
    return FernetCipher(FernetCipher.generate_key())


@pytest.fixture
def storage(cipher) -> InMemoryCredentialStorage:
    return InMemoryCredentialStorage(cipher)


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def add_key(storage):
    """Store an ACTIVE key directly, bypassing admission."""

    async def _add(
        secret: str,
        label: Optional[str] = None,
        owner_id: Optional[str] = "user-1",
        is_global: bool = False,
        status: CredentialStatus = CredentialStatus.ACTIVE,
        is_active: bool = True,
        last_used_at: Optional[datetime] = None,
        **extra,
    ) -> Credential:
        return await storage.save(Credential(
            secret_material=secret,
            label=label or secret,
            owner_id=owner_id,
            is_global=is_global,
            status=status,
            is_active=is_active,
            last_used_at=last_used_at,
            **extra,
        ))

    return _add


@pytest.fixture
def make_executor(storage, provider, audit_logger):
    """Build a FailoverExecutor over the shared storage/provider."""

    def _make(
        fallback_secret: Optional[str] = None,
        attempt_timeout_seconds: float = 5.0,
        default_models: Optional[list[str]] = None,
        **kwargs,
    ) -> FailoverExecutor:
        selector = PoolSelector(
            storage,
            fallback_secret=fallback_secret,
            audit_logger=audit_logger,
        )
        return FailoverExecutor(
            storage,
            selector,
            provider,
            strategy=FirstRequestedModel(default_models or ["gemini-1.5-flash"]),
            audit_logger=audit_logger,
            attempt_timeout_seconds=attempt_timeout_seconds,
            **kwargs,
        )

    return _make
