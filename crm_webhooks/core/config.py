"""Configuration management for the CRM webhook engine.

Provides Pydantic-based configuration classes for type-safe, validated configuration
management using environment variables.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebhookSettings(BaseSettings):
    """Outbound webhook delivery configuration."""

    timeout_seconds: float = Field(default=10.0, description="Per-attempt timeout for the outbound POST")
    max_attempts: int = Field(default=3, description="Attempts per delivery series (first try included)")
    backoff_base_seconds: float = Field(default=1.0, description="Backoff before retry N is base * 2^(N-1)")
    failure_threshold: int = Field(
        default=10, description="Consecutive failed deliveries after which a subscription is disabled"
    )
    user_agent: str = Field(default="CRM-Webhooks/1.0", description="User-Agent header for outbound requests")
    test_entity_id_prefix: str = Field(default="test-id-", description="Entity id prefix for manual test payloads")

    model_config = SettingsConfigDict(env_prefix="WEBHOOK_", case_sensitive=False)

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("WEBHOOK_TIMEOUT_SECONDS must be positive")
        return v

    @field_validator("max_attempts", "failure_threshold")
    @classmethod
    def validate_at_least_one(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("backoff_base_seconds")
    @classmethod
    def validate_backoff(cls, v):
        if v < 0:
            raise ValueError("WEBHOOK_BACKOFF_BASE_SECONDS cannot be negative")
        return v


class DatabaseSettings(BaseSettings):
    """Database configuration."""

    url: str | None = Field(default=None, description="Database connection URL")
    query_timeout: int = Field(default=30, description="Statement timeout in seconds")
    connect_timeout: int = Field(default=10, description="Connection timeout in seconds")
    pool_timeout: int = Field(default=30, description="Seconds to wait for a pooled connection")

    model_config = SettingsConfigDict(env_prefix="DATABASE_", case_sensitive=False)


class AppConfig(BaseSettings):
    """Main application configuration."""

    environment: str = Field(default="development", description="Environment: production, staging, or development")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_json: bool = Field(default=False, description="Force single-line JSON logs outside production")

    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


# Global configuration instance
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment."""
    global _config
    _config = None
