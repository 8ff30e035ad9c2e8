"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from leadsync.core.resilience import RetryConfig

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Pipedrive (CRM side)
    PIPEDRIVE_API_KEY: SecretStr = SecretStr("")
    PIPEDRIVE_API_URL: str = "https://api.pipedrive.com/v1"
    PIPEDRIVE_STATUS_FIELD_ID: str = "e8a27f47529d2091399f063b834339316d7d852a"

    # Instantly (campaign tool side)
    INSTANTLY_API_KEY: SecretStr = SecretStr("")
    INSTANTLY_API_URL: str = "https://api.instantly.ai/api/v2"
    INSTANTLY_WEBHOOK_SECRET: str = ""  # Empty disables signature checks

    # Supabase (sync outcome audit trail)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")

    # Retry / circuit breaker policy
    SYNC_RETRY_BASE_DELAY_SECONDS: float = 1.0
    SYNC_RETRY_MAX_DELAY_SECONDS: float = 30.0
    SYNC_RETRY_JITTER: bool = True
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = 5
    CIRCUIT_BREAKER_COOLDOWN_SECONDS: float = 60.0
    # Upper bound on one attempt of any executor call; None disables it
    SYNC_CALL_TIMEOUT_SECONDS: float | None = 30.0

    # Per-request timeout for remote calls, independent of retry backoff
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Application Settings
    APP_ENV: Literal["development", "staging", "production"] = "development"

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    @field_validator("SUPABASE_URL", "PIPEDRIVE_API_URL", "INSTANTLY_API_URL")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that service URLs are http(s) and strip trailing slashes."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/") if v else v

    @field_validator("CIRCUIT_BREAKER_FAILURE_THRESHOLD")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        """A breaker that opens on zero failures would never allow a call."""
        if v < 1:
            raise ValueError("CIRCUIT_BREAKER_FAILURE_THRESHOLD must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def supabase_configured(self) -> bool:
        """Check if the outcome audit trail can be written to Supabase."""
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value())

    def resilience_config(self) -> RetryConfig:
        """Build the executor's retry/breaker policy from settings."""
        return RetryConfig(
            base_delay=self.SYNC_RETRY_BASE_DELAY_SECONDS,
            max_delay=self.SYNC_RETRY_MAX_DELAY_SECONDS,
            jitter=self.SYNC_RETRY_JITTER,
            failure_threshold=self.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
            cooldown=self.CIRCUIT_BREAKER_COOLDOWN_SECONDS,
            call_timeout=self.SYNC_CALL_TIMEOUT_SECONDS,
        )

    def validate_startup(self) -> None:
        """Validate that all required secrets are configured.

        Raises:
            ValueError: If any required secret is missing or empty.
        """
        required_secrets = {
            "PIPEDRIVE_API_KEY": self.PIPEDRIVE_API_KEY.get_secret_value(),
            "PIPEDRIVE_STATUS_FIELD_ID": self.PIPEDRIVE_STATUS_FIELD_ID,
            "INSTANTLY_API_KEY": self.INSTANTLY_API_KEY.get_secret_value(),
        }
        missing = [name for name, value in required_secrets.items() if not value]
        if missing:
            raise ValueError(f"Required secrets are missing or empty: {', '.join(missing)}")
        if self.is_production and not self.supabase_configured:
            raise ValueError("Supabase must be configured in production to persist sync outcomes")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Validation of secrets is deferred to application startup so that
    modules can be imported without a populated environment.

    Returns:
        Settings instance.
    """
    return Settings()
