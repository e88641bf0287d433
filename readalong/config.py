"""
ReadAlong configuration.

Settings come from environment variables (case-insensitive) or a local
.env file and are validated once at startup; get_settings() caches the
instance so every module shares it.

Besides the usual app/database/security knobs this holds the tuning of
the reading-group subsystem:
- group_write_retries: re-runs of a membership command after a
  concurrent write on the same group
- ws_auth_timeout_seconds: how long a WebSocket may stay unauthenticated
- messages_page_size_max: cap on `limit` for message and search pages

Usage:
    from readalong.config import get_settings

    settings = get_settings()
    settings.ws_auth_timeout_seconds
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings.

    SECRET_KEY is required in practice: the placeholder default fails
    validation, so a deployment without a real key does not start.
    """

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_name: str = Field(
        default="ReadAlong API",
        description="Application name displayed in docs and logs"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode (detailed errors, SQL echo)"
    )
    api_version: str = Field(
        default="v1",
        description="API version for URL routing"
    )
    host: str = Field(
        default="0.0.0.0",
        description="Host to bind the server to"
    )
    port: int = Field(
        default=8001,
        description="Port to bind the server to"
    )
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production"
    )

    # -------------------------------------------------------------------------
    # Database Settings
    # -------------------------------------------------------------------------
    database_url: str = Field(
        default="sqlite:///./readalong.db",
        description="SQLAlchemy database URL"
    )
    db_pool_size: int = Field(
        default=5,
        description="Number of permanent database connections"
    )
    db_max_overflow: int = Field(
        default=10,
        description="Maximum additional connections during high load"
    )
    group_write_retries: int = Field(
        default=3,
        ge=1,
        description="How many times a group command is re-run after a concurrent write"
    )

    # -------------------------------------------------------------------------
    # Security Settings
    # -------------------------------------------------------------------------
    secret_key: str = Field(
        default="REPLACE_WITH_YOUR_GENERATED_SECRET_KEY",
        description="Secret key used to sign access tokens"
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="Signing algorithm for access tokens"
    )
    access_token_expire_minutes: int = Field(
        default=60,
        description="Lifetime of issued access tokens"
    )
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8080",
        description="Comma-separated list of allowed CORS origins"
    )

    # -------------------------------------------------------------------------
    # Rate Limiting Settings
    # -------------------------------------------------------------------------
    rate_limit_enabled: bool = Field(
        default=True,
        description="Enable request rate limiting"
    )
    rate_limit_default: str = Field(
        default="100/minute",
        description="Default limit for read endpoints"
    )
    rate_limit_write: str = Field(
        default="30/minute",
        description="Limit for endpoints that mutate state"
    )
    rate_limit_storage_uri: str = Field(
        default="memory://",
        description="Storage backend for rate limit counters"
    )

    # -------------------------------------------------------------------------
    # Real-time Channel Settings
    # -------------------------------------------------------------------------
    ws_auth_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Grace window for a connection to authenticate after connecting"
    )

    # -------------------------------------------------------------------------
    # Pagination Settings
    # -------------------------------------------------------------------------
    messages_page_size_max: int = Field(
        default=100,
        description="Maximum page size for message and search listings"
    )

    # -------------------------------------------------------------------------
    # Logging Settings
    # -------------------------------------------------------------------------
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {sorted(valid_levels)}")
        return v.upper()

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        """Reject placeholder and short keys."""
        placeholders = ("replace_with", "change-me", "your-secret", "generate-with")
        if any(p in v.lower() for p in placeholders):
            raise ValueError(
                "SECRET_KEY contains a placeholder value. "
                "Generate a key with: openssl rand -hex 32"
            )
        if len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = {"development", "staging", "production"}
        if v.lower() not in valid_envs:
            raise ValueError(f"environment must be one of {sorted(valid_envs)}")
        return v.lower()


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, created on first call."""
    return Settings()
