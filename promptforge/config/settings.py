"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """HTTP server configuration."""

    host: str = Field(default="127.0.0.1", description="Interface to bind the API server to")
    port: int = Field(default=8787, description="Port to bind the API server to")
    allowed_origin: str = Field(
        default="https://promptforge.pages.dev",
        description="Production frontend origin allowed by CORS. "
                    "Any http://localhost:<port> origin is always allowed.",
    )
    trust_proxy_headers: bool = Field(
        default=False,
        description="Take caller identity from cf-connecting-ip / x-forwarded-for. "
                    "Enable only when a proxy that overwrites these headers sits in front.",
    )

    model_config = SettingsConfigDict(env_prefix="SERVER_")


class ProviderSettings(BaseSettings):
    """Upstream LLM provider configuration (server-held credentials)."""

    gemini_api_key: str = Field(default="", description="Server-held Gemini API key")
    groq_api_key: str = Field(default="", description="Server-held Groq API key")
    gemini_model: str = Field(
        default="gemini/gemini-2.0-flash-exp",
        description="LiteLLM model string used for Gemini calls",
    )
    groq_model: str = Field(
        default="groq/llama-3.3-70b-versatile",
        description="LiteLLM model string used for Groq calls",
    )
    temperature: float = Field(default=0.7, description="Sampling temperature")
    max_tokens: int = Field(default=2048, description="Maximum tokens in response")
    top_p: float = Field(default=0.9, description="Nucleus sampling cutoff")
    request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds before an upstream call is abandoned and treated as failed",
    )

    model_config = SettingsConfigDict(env_prefix="PROVIDER_")


class QuotaSettings(BaseSettings):
    """Quota, rate-limit and cache configuration."""

    enabled: bool = Field(
        default=True,
        description="Enable the usage counter store. When disabled, quotas, rate "
                    "limits, usage tracking and caching are all bypassed.",
    )
    daily_free_requests: int = Field(
        default=5, ge=1, description="Free refine requests per caller per day"
    )
    rate_limit_per_hour: int = Field(
        default=100, ge=1, description="Requests per caller per window across /api/*"
    )
    rate_limit_window_seconds: int = Field(default=3600, ge=1)
    cache_ttl_seconds: int = Field(default=3600, ge=1, description="Refine result cache TTL")
    gemini_daily_ceiling: int = Field(
        default=1400,
        ge=1,
        description="Server-key Gemini calls per day before routing straight to Groq",
    )

    model_config = SettingsConfigDict(env_prefix="QUOTA_")


class StorageSettings(BaseSettings):
    """Session history storage configuration."""

    database_path: str = Field(
        default="data/promptforge.db",
        description="Path to the SQLite database holding session history",
    )

    model_config = SettingsConfigDict(env_prefix="STORAGE_")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    # Sub-configurations
    server: ServerSettings = Field(default_factory=ServerSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    quota: QuotaSettings = Field(default_factory=QuotaSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
