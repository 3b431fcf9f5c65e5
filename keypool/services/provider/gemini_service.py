"""
Generative-AI Provider Client (Google Gemini)

DESIGN DECISION: Each call builds a client bound to ONE key.
genai.configure() sets a process-wide key, which would let two concurrent
requests using different pool keys overwrite each other. The per-key
async clients come from google.ai.generativelanguage, the layer that
google.generativeai is built on.

This module only talks to the provider. It does not classify errors or
touch key state; google.api_core exceptions propagate unchanged so the
failover engine can classify them.
"""

from abc import ABC, abstractmethod
from typing import Optional

from google.ai import generativelanguage as glm

from keypool.config import GeminiSettings, get_settings


class ProviderError(Exception):
    """Base exception for provider-side failures raised by this module."""
    pass


class EmptyResponseError(ProviderError):
    """Provider answered but returned no usable text (e.g. blocked prompt)."""
    pass


class ProviderTimeoutError(ProviderError):
    """A provider call did not finish within the attempt timeout."""
    pass


class ProviderClient(ABC):
    """
    Narrow interface to a generative-AI provider.

    Implementations must be safe to call concurrently with different secrets.
    """

    name: str = "provider"

    @abstractmethod
    async def generate(self, secret: str, model: str, prompt: str) -> str:
        """
        Generate text for prompt using model, authenticated by secret.

        Raises:
            Any provider/network exception; callers classify it.
        """
        pass

    @abstractmethod
    async def list_models(self, secret: str) -> list[str]:
        """
        Cheap capability listing used as an admission probe.

        Returns:
            Model names visible to this secret (may be empty)
        """
        pass


def _model_path(model: str) -> str:
    return model if model.startswith("models/") else f"models/{model}"


class GeminiProviderClient(ProviderClient):
    """Google Gemini via the generativelanguage async clients."""

    name = "google"

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini

    async def generate(self, secret: str, model: str, prompt: str) -> str:
        client = glm.GenerativeServiceAsyncClient(
            client_options={"api_key": secret}
        )
        request = glm.GenerateContentRequest(
            model=_model_path(model),
            contents=[glm.Content(role="user", parts=[glm.Part(text=prompt)])],
            generation_config=glm.GenerationConfig(
                temperature=self._settings.temperature,
                max_output_tokens=self._settings.max_tokens,
            ),
        )
        try:
            response = await client.generate_content(request=request)
        finally:
            await client.transport.close()

        texts = []
        for candidate in response.candidates:
            for part in candidate.content.parts:
                if part.text:
                    texts.append(part.text)
            if texts:
                break

        if not texts:
            raise EmptyResponseError(
                f"Provider returned no text for model {model}"
            )
        return "".join(texts)

    async def list_models(self, secret: str) -> list[str]:
        client = glm.ModelServiceAsyncClient(
            client_options={"api_key": secret}
        )
        try:
            pager = await client.list_models(request=glm.ListModelsRequest(page_size=50))
            # First page is enough to prove the key works
            async for page in pager.pages:
                return [model.name for model in page.models]
            return []
        finally:
            await client.transport.close()
