"""Configuration package."""

from keypool.config.settings import (
    DEFAULT_MODEL_NAME,
    AppSettings,
    EncryptionSettings,
    GeminiSettings,
    GenerativeModelSettings,
    GoogleSheetsSettings,
    PoolSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "DEFAULT_MODEL_NAME",
    "AppSettings",
    "EncryptionSettings",
    "GeminiSettings",
    "GenerativeModelSettings",
    "GoogleSheetsSettings",
    "PoolSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
