"""
Admission Validation

A key joins the pool only after a live probe proves it works.

DESIGN DECISION: The probe lists models instead of generating content.
Listing is free, has no side effects, and still proves the key is
accepted by the provider.

Fails closed: network errors, provider errors, timeouts and an empty
model list all reject the key.
"""

import asyncio
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from keypool.pool.classifier import describe_error
from keypool.services.provider import ProviderClient


logger = structlog.get_logger(__name__)


class AdmissionResult(BaseModel):
    """Outcome of an admission probe."""

    ok: bool
    reason: Optional[str] = None
    models: list[str] = Field(default_factory=list)

    @classmethod
    def accepted(cls, models: list[str]) -> "AdmissionResult":
        return cls(ok=True, models=models)

    @classmethod
    def rejected(cls, reason: str) -> "AdmissionResult":
        return cls(ok=False, reason=reason)


class AdmissionValidator:
    """Runs the capability-listing probe for a candidate secret."""

    def __init__(
        self,
        provider: ProviderClient,
        timeout_seconds: float = 15.0,
    ):
        self._provider = provider
        self._timeout = timeout_seconds

    async def validate(self, secret: str) -> AdmissionResult:
        if not secret or not secret.strip():
            return AdmissionResult.rejected("Key is empty.")

        try:
            models = await asyncio.wait_for(
                self._provider.list_models(secret.strip()),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            reason = f"Provider did not respond within {self._timeout:g}s."
            logger.warning("key_validation_failed", reason=reason)
            return AdmissionResult.rejected(reason)
        except Exception as e:
            reason = describe_error(e)
            logger.warning("key_validation_failed", reason=reason)
            return AdmissionResult.rejected(reason)

        if not models:
            return AdmissionResult.rejected("No models found for this key.")

        return AdmissionResult.accepted(list(models))
