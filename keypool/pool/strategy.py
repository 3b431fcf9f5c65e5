"""
Model Selection

Which model a request runs on is a strategy object, so multi-model
fan-out can be added later without touching the failover loop.
"""

from abc import ABC, abstractmethod
from typing import Optional

from keypool.config import DEFAULT_MODEL_NAME
from keypool.models.credential import GenerationOptions


class ModelSelectionStrategy(ABC):
    """Decides the model list and the model actually exercised."""

    @abstractmethod
    def requested_models(self, options: GenerationOptions) -> list[str]:
        """All models the caller asked for, in order. Never empty."""
        pass

    @abstractmethod
    def resolve(self, options: GenerationOptions) -> str:
        """The single model the failover loop will use."""
        pass


class FirstRequestedModel(ModelSelectionStrategy):
    """
    Use the first requested model.

    Precedence: options.models, then options.model, then the defaults.
    """

    def __init__(self, default_models: Optional[list[str]] = None):
        self._defaults = [m for m in (default_models or []) if m] or [DEFAULT_MODEL_NAME]

    def requested_models(self, options: GenerationOptions) -> list[str]:
        if options.models:
            return list(options.models)
        if options.model and options.model.strip():
            return [options.model.strip()]
        return list(self._defaults)

    def resolve(self, options: GenerationOptions) -> str:
        return self.requested_models(options)[0]
