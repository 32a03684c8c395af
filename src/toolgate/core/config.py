"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "ToolGate"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Key/usage store. Authentication is disabled when unset.
    database_url: str | None = None
    database_pool_size: int = 5

    # Shared rate limit store. The in-process limiter is used when unset.
    redis_url: str | None = None

    # Rate Limiting
    rate_limit_window_seconds: int = 60
    rate_limit_fail_open: bool = True
    rate_limit_prefix: str = "toolgate:ratelimit"

    # Authentication
    toolgate_api_key: SecretStr | None = None
    auth_required: bool | None = None
    admin_token: SecretStr | None = None

    @field_validator("admin_token")
    @classmethod
    def validate_admin_token(cls, v: SecretStr | None, info) -> SecretStr | None:
        """Reject short admin tokens in production."""
        app_env = info.data.get("app_env", "development")
        if app_env == "production" and v is not None and len(v.get_secret_value()) < 32:
            raise ValueError(
                "ADMIN_TOKEN must be at least 32 characters long in production."
            )
        return v

    @field_validator("rate_limit_window_seconds")
    @classmethod
    def validate_window(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("RATE_LIMIT_WINDOW_SECONDS must be positive")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def store_configured(self) -> bool:
        """Whether a persistent key store is configured."""
        return bool(self.database_url)

    @property
    def shared_rate_limit_configured(self) -> bool:
        """Whether rate limits are shared through Redis."""
        return bool(self.redis_url)

    @property
    def fallback_api_key(self) -> str | None:
        """Process-level credential used when a request carries none."""
        if self.toolgate_api_key is None:
            return None
        return self.toolgate_api_key.get_secret_value() or None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
