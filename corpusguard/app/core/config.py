from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from corpusguard.app.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Shared counter store connection string. Left empty at import time so
    # tooling can load the module; the limiter refuses to start without it.
    redis_url: str = Field(
        default="",
        validation_alias=AliasChoices("KV_REDIS_URL", "REDIS_URL", "redis_url"),
    )
    redis_socket_timeout: float = 2.0  # Per-command timeout in seconds
    redis_connect_timeout: float = 2.0  # Time to establish connection
    redis_max_connections: int = 50

    # Rate limiting settings
    rate_limit_key_prefix: str = "ratelimit"
    # "preset" honours each preset's own policy, "open"/"closed" override all
    rate_limit_failure_policy: Literal["preset", "open", "closed"] = "preset"

    # Preset tuning (hourly quota / one-minute burst)
    rate_limit_expensive_hourly: int = 10
    rate_limit_expensive_burst: int = 2
    rate_limit_quota_limited_hourly: int = 20
    rate_limit_quota_limited_burst: int = 3
    rate_limit_resource_intensive_hourly: int = 15
    rate_limit_resource_intensive_burst: int = 3
    rate_limit_lightweight_hourly: int = 50

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator(
        "rate_limit_expensive_hourly",
        "rate_limit_expensive_burst",
        "rate_limit_quota_limited_hourly",
        "rate_limit_quota_limited_burst",
        "rate_limit_resource_intensive_hourly",
        "rate_limit_resource_intensive_burst",
        "rate_limit_lightweight_hourly",
        "redis_max_connections",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("redis_socket_timeout", "redis_connect_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("rate_limit_key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        v = v.strip().rstrip(":")
        if not v:
            raise ValueError("rate_limit_key_prefix must not be empty")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    def require_redis_url(self) -> str:
        """Return the store connection string or fail startup.

        Raises:
            ConfigurationError: If KV_REDIS_URL is not configured
        """
        url = self.redis_url.strip()
        if not url:
            raise ConfigurationError(
                "KV_REDIS_URL is not set. The rate limiter cannot start "
                "without a shared counter store."
            )
        return url

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
