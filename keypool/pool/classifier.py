"""
Provider Error Classification

Maps a failed provider call onto one of three outcomes for the key that
made it. Typed google.api_core exceptions are checked first; message
matching covers errors that arrive wrapped or as plain text.
"""

from google.api_core import exceptions as google_exceptions

from keypool.models.credential import ErrorClassification


MAX_ERROR_LENGTH = 500

_QUOTA_EXCEPTIONS = (
    google_exceptions.ResourceExhausted,
    google_exceptions.TooManyRequests,
)

_QUOTA_MARKERS = ("429", "quota", "rate limit", "resource exhausted", "resource_exhausted")
_AUTH_MARKERS = ("401", "api key not valid", "api_key_invalid", "invalid api key", "unauthenticated")


def classify_provider_error(error: BaseException) -> ErrorClassification:
    """Classify a provider failure."""
    if isinstance(error, _QUOTA_EXCEPTIONS):
        return ErrorClassification.QUOTA
    if isinstance(error, google_exceptions.Unauthenticated):
        return ErrorClassification.AUTH_INVALID

    message = str(error).lower()
    if any(marker in message for marker in _QUOTA_MARKERS):
        return ErrorClassification.QUOTA
    # PermissionDenied also covers model-access problems; only an
    # api-key complaint means the key itself is bad.
    if any(marker in message for marker in _AUTH_MARKERS):
        return ErrorClassification.AUTH_INVALID
    if isinstance(error, google_exceptions.PermissionDenied) and "api key" in message:
        return ErrorClassification.AUTH_INVALID

    return ErrorClassification.OTHER


def describe_error(error: BaseException) -> str:
    """Short diagnostic string for last_error. Never includes the secret."""
    message = str(error).strip() or type(error).__name__
    if message != type(error).__name__:
        message = f"{type(error).__name__}: {message}"
    return message[:MAX_ERROR_LENGTH]
