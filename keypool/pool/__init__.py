"""Key pool: selection, error classification and failover."""

from keypool.pool.classifier import classify_provider_error, describe_error
from keypool.pool.errors import (
    InvalidCredentialError,
    KeyPoolError,
    NoCredentialsAvailableError,
    NotFoundError,
    PoolExhaustedError,
    UnauthorizedError,
)
from keypool.pool.failover import FailoverExecutor
from keypool.pool.selector import Candidate, PoolSelector
from keypool.pool.strategy import FirstRequestedModel, ModelSelectionStrategy

__all__ = [
    "Candidate",
    "FailoverExecutor",
    "FirstRequestedModel",
    "InvalidCredentialError",
    "KeyPoolError",
    "ModelSelectionStrategy",
    "NoCredentialsAvailableError",
    "NotFoundError",
    "PoolExhaustedError",
    "PoolSelector",
    "UnauthorizedError",
    "classify_provider_error",
    "describe_error",
]
