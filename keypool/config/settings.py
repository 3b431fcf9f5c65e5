"""
Configuration Management for KeyPool

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The only secret this core reads from the environment is the optional
fallback provider key; everything else is tuning.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MODEL_NAME = "gemini-1.5-flash"


class GeminiSettings(BaseSettings):
    """Gemini provider configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="Fallback Gemini API key, used only when the pool is empty"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Model temperature"
    )

    @property
    def has_fallback_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


class GenerativeModelSettings(BaseSettings):
    """
    Default model selection.

    GENERATIVE_MODELS (comma-separated) wins over GENERATIVE_MODEL.
    """

    model_config = SettingsConfigDict(
        env_prefix="GENERATIVE_",
        extra="ignore"
    )

    models: str = Field(
        default="",
        description="Comma-separated list of default models"
    )
    model: str = Field(
        default=DEFAULT_MODEL_NAME,
        description="Single default model, used when GENERATIVE_MODELS is empty"
    )

    @property
    def default_models(self) -> list[str]:
        """Get the default model list, never empty."""
        parsed = [name.strip() for name in self.models.split(",") if name.strip()]
        if parsed:
            return parsed
        return [self.model.strip() or DEFAULT_MODEL_NAME]


class EncryptionSettings(BaseSettings):
    """At-rest encryption key for stored provider secrets."""

    model_config = SettingsConfigDict(
        env_prefix="KEYPOOL_",
        extra="ignore"
    )

    encryption_key: str = Field(
        ...,
        description="Fernet key (urlsafe base64, 32 bytes)"
    )


class PoolSettings(BaseSettings):
    """Failover and selection tuning."""

    model_config = SettingsConfigDict(
        env_prefix="POOL_",
        extra="ignore"
    )

    attempt_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Upper bound on a single provider call"
    )
    lease_seconds: int = Field(
        default=15,
        ge=1,
        le=600,
        description="How long a checked-out key is hidden from concurrent requests"
    )
    auto_recover: bool = Field(
        default=False,
        description="Promote quota-limited keys back to active once reset_at has passed"
    )
    quota_cooldown_minutes: Optional[int] = Field(
        default=None,
        ge=1,
        description="If set, quota errors record reset_at = now + cooldown"
    )
    validation_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=120,
        description="Upper bound on the admission probe"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    keys_sheet_name: str = Field(
        default="AIKeys",
        description="Name of the sheet for provider keys"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Reject an empty path early; existence is checked on connect."""
        if not v.strip():
            raise ValueError("credentials_path cannot be empty")
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    default_provider: str = Field(
        default="google",
        description="Provider assumed when a key is added without one"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def generative(self) -> GenerativeModelSettings:
        return GenerativeModelSettings()

    @property
    def encryption(self) -> EncryptionSettings:
        return EncryptionSettings()

    @property
    def pool(self) -> PoolSettings:
        return PoolSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus "<name>_error"
    entries describing failures. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("gemini", "generative", "encryption", "pool", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
