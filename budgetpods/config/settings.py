"""
Configuration Management for the Pod Budget Assistant

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The two toggles that matter at runtime are AI_ENABLED and OPENAI_API_KEY;
absence of either keeps the assistant on the deterministic interpreter.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AISettings(BaseSettings):
    """Feature flag and call budget for the optional model step."""

    model_config = SettingsConfigDict(
        env_prefix="AI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    enabled: bool = Field(
        default=False,
        description="Allow the orchestrator to ask the model for proposals"
    )
    debug: bool = Field(
        default=False,
        description="Log truncated previews of tool arguments"
    )
    model: str = Field(
        default="gpt-5.2",
        description="Model used for proposal generation"
    )
    timeout_ms: int = Field(
        default=10_000,
        ge=100,
        le=60_000,
        description="Per-attempt timeout for the model call"
    )
    retry_backoff_ms: int = Field(
        default=200,
        ge=0,
        le=5_000,
        description="Fixed wait before the single retry"
    )


class OpenAISettings(BaseSettings):
    """Credentials for the model endpoint."""

    model_config = SettingsConfigDict(
        env_prefix="OPENAI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key"
    )
    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the Responses API"
    )

    @field_validator('api_key')
    @classmethod
    def blank_key_is_missing(cls, v: Optional[str]) -> Optional[str]:
        """Treat an empty variable the same as an unset one."""
        if v is not None and not v.strip():
            return None
        return v


class AuthSettings(BaseSettings):
    """
    Where bearer tokens are verified.

    With AUTH_URL unset the app accepts only AUTH_DEV_TOKEN, mapped to
    AUTH_DEV_USER_ID. That mode is for local runs.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: Optional[str] = Field(
        default=None,
        description="Base URL of the auth service, e.g. https://<project>.supabase.co/auth/v1"
    )
    api_key: Optional[str] = Field(
        default=None,
        description="Project key sent as the apikey header"
    )
    timeout_ms: int = Field(default=5_000, ge=100, le=60_000)
    dev_token: Optional[str] = Field(default=None)
    dev_user_id: str = Field(default="00000000-0000-0000-0000-000000000001")


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
    api_version: str = Field(
        default="v1",
        description="Version tag echoed in every response"
    )

    # Request limits
    max_message_chars: int = Field(
        default=500,
        ge=1,
        description="Longest chat message accepted by the propose endpoint"
    )
    rate_limit_window_ms: int = Field(
        default=5 * 60_000,
        ge=1_000,
        description="Fixed window for the per-user rate limiter"
    )
    rate_limit_max: int = Field(
        default=30,
        ge=1,
        description="Requests allowed per window"
    )

    # Proposal behaviour
    observed_transfer_dedup_minutes: int = Field(
        default=10,
        ge=1,
        description="Window in which a repeated observed transfer is not re-logged"
    )
    candidate_limit: int = Field(
        default=8,
        ge=1,
        le=50,
        description="Maximum pod-name suggestions returned to the client"
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

    @property
    def ai(self) -> AISettings:
        return AISettings()

    @property
    def openai(self) -> OpenAISettings:
        return OpenAISettings()

    @property
    def auth(self) -> AuthSettings:
        return AuthSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()

    @property
    def ai_available(self) -> bool:
        """Flag and credential are both present."""
        return self.ai.enabled and self.openai.api_key is not None


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("ai", "openai", "auth", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    results["ai_available"] = settings.ai_available

    return results
