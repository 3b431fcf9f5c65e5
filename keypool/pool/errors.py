"""
Failover and lifecycle exceptions.

Per-attempt provider errors never surface as these; they are absorbed
into key state. Only the outcomes below reach callers.
"""

from typing import Optional


class KeyPoolError(Exception):
    """Base exception for the key pool."""
    pass


class InvalidCredentialError(KeyPoolError):
    """A candidate key failed admission validation. Nothing was persisted."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid API Key: {reason}")


class NoCredentialsAvailableError(KeyPoolError):
    """The pool is empty and no fallback key is configured."""

    def __init__(self, message: str = "No active AI keys available."):
        super().__init__(message)


class PoolExhaustedError(KeyPoolError):
    """Every candidate key (including any fallback) failed."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = str(last_error) if last_error is not None else "unknown"
        super().__init__(
            f"AI generation failed after checking {attempts} available keys. "
            f"Last error: {detail}"
        )


class UnauthorizedError(KeyPoolError):
    """Requester may not manage this key."""
    pass


class NotFoundError(KeyPoolError):
    """Key does not exist."""
    pass
