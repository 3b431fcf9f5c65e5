"""
Main Orchestrator for KeyPool

Ties the components together and exposes the two entry points the rest
of the productivity app uses:
1. Generation (prompt -> failover across the pool -> text)
2. Key lifecycle (add / list / remove / reset)

Response shape (plain text vs. per-model results) is decided by a thin
adapter here, so the failover engine always returns one result type.
"""

from datetime import timedelta
from typing import Any, Optional, Union
from uuid import UUID

from keypool.audit import AuditLogger, create_correlation_id
from keypool.config import get_settings
from keypool.lifecycle import CredentialLifecycle
from keypool.models.credential import GenerationOptions, GenerationResult
from keypool.pool import FailoverExecutor, FirstRequestedModel, ModelSelectionStrategy, PoolSelector
from keypool.services.crypto import FernetCipher, SecretCipher
from keypool.services.provider import GeminiProviderClient, ProviderClient
from keypool.services.storage import (
    AuditStorageInterface,
    CredentialStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsCredentialStorage,
    InMemoryCredentialStorage,
)
from keypool.validation import AdmissionValidator


OptionsLike = Union[GenerationOptions, dict[str, Any], None]


def render_response(
    result: GenerationResult,
    requested_models: list[str],
) -> Union[str, dict[str, Any]]:
    """
    Shape a result for callers.

    One requested model -> plain text.
    Several -> {"final": text, "perModelResults": {...}}.
    """
    if len(requested_models) <= 1:
        return result.text
    return {
        "final": result.text,
        "perModelResults": dict(result.per_model_results),
    }


class GenerationFlow:
    """
    Entry point for "give me generated text for this prompt".

    Callers see exactly one outcome: a result, or one of
    NoCredentialsAvailableError / PoolExhaustedError.
    """

    def __init__(
        self,
        executor: FailoverExecutor,
        strategy: ModelSelectionStrategy,
    ):
        self._executor = executor
        self._strategy = strategy

    @staticmethod
    def _coerce_options(options: OptionsLike) -> GenerationOptions:
        if options is None:
            return GenerationOptions()
        if isinstance(options, GenerationOptions):
            return options
        return GenerationOptions.model_validate(options)

    async def generate(
        self,
        prompt: str,
        options: OptionsLike = None,
        requester_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> GenerationResult:
        return await self._executor.execute(
            prompt,
            self._coerce_options(options),
            requester_id=requester_id,
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def generate_response(
        self,
        prompt: str,
        options: OptionsLike = None,
        requester_id: Optional[str] = None,
    ) -> Union[str, dict[str, Any]]:
        """generate(), then shaped by render_response."""
        opts = self._coerce_options(options)
        result = await self.generate(prompt, opts, requester_id=requester_id)
        return render_response(result, self._strategy.requested_models(opts))


def build_components(
    storage: CredentialStorageInterface,
    provider: ProviderClient,
    audit_logger: Optional[AuditLogger] = None,
    fallback_secret: Optional[str] = None,
    default_models: Optional[list[str]] = None,
    attempt_timeout_seconds: float = 30.0,
    lease_seconds: int = 15,
    auto_recover: bool = False,
    quota_cooldown_minutes: Optional[int] = None,
    validation_timeout_seconds: float = 15.0,
    default_provider: Optional[str] = None,
) -> tuple[GenerationFlow, CredentialLifecycle]:
    """
    Wire the engine from explicit parts. No settings are read here.

    Returns:
        (generation_flow, lifecycle)
    """
    audit_logger = audit_logger or AuditLogger()
    strategy = FirstRequestedModel(default_models)

    selector = PoolSelector(
        storage,
        fallback_secret=fallback_secret,
        auto_recover=auto_recover,
        audit_logger=audit_logger,
    )
    executor = FailoverExecutor(
        storage,
        selector,
        provider,
        strategy=strategy,
        audit_logger=audit_logger,
        attempt_timeout_seconds=attempt_timeout_seconds,
        lease_seconds=lease_seconds,
        quota_cooldown=(
            timedelta(minutes=quota_cooldown_minutes) if quota_cooldown_minutes else None
        ),
    )
    lifecycle = CredentialLifecycle(
        storage,
        AdmissionValidator(provider, timeout_seconds=validation_timeout_seconds),
        audit_logger=audit_logger,
        supported_providers=(provider.name,),
        default_provider=default_provider or provider.name,
    )
    return GenerationFlow(executor, strategy), lifecycle


def create_app_components(
    use_sheets: bool = False,
    cipher: Optional[SecretCipher] = None,
    provider: Optional[ProviderClient] = None,
) -> tuple[GenerationFlow, CredentialLifecycle, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components from settings.

    Args:
        use_sheets: Store keys and audit events in Google Sheets.
                    Otherwise keys live in memory and audit is local-only.
        cipher: Override the Fernet cipher built from KEYPOOL_ENCRYPTION_KEY
        provider: Override the Gemini provider client

    Returns:
        (generation_flow, lifecycle, sheets_client)
    """
    settings = get_settings()
    pool_settings = settings.pool
    gemini_settings = settings.gemini

    cipher = cipher or FernetCipher.from_settings(settings.encryption)
    provider = provider or GeminiProviderClient(gemini_settings)

    sheets_client: Optional[GoogleSheetsClient] = None
    audit_storage: Optional[AuditStorageInterface] = None
    storage: CredentialStorageInterface

    if use_sheets:
        sheets_client = GoogleSheetsClient(settings.google_sheets)
        storage = GoogleSheetsCredentialStorage(cipher, sheets_client)
        audit_storage = GoogleSheetsAuditStorage(sheets_client)
    else:
        storage = InMemoryCredentialStorage(cipher)

    generation_flow, lifecycle = build_components(
        storage,
        provider,
        audit_logger=AuditLogger(audit_storage),
        fallback_secret=gemini_settings.api_key if gemini_settings.has_fallback_key else None,
        default_models=settings.generative.default_models,
        attempt_timeout_seconds=pool_settings.attempt_timeout_seconds,
        lease_seconds=pool_settings.lease_seconds,
        auto_recover=pool_settings.auto_recover,
        quota_cooldown_minutes=pool_settings.quota_cooldown_minutes,
        validation_timeout_seconds=pool_settings.validation_timeout_seconds,
        default_provider=settings.app.default_provider,
    )
    return generation_flow, lifecycle, sheets_client
