from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AnyHttpUrl, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables with validation."""

    model_config = SettingsConfigDict(
        env_file=(str(Path(__file__).resolve().parents[1] / ".env"), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    app_name: str = Field(default="Copyflow Workflow Engine", alias="APP_NAME")
    app_env: Literal["development", "staging", "production", "test"] = Field(
        default="production",
        alias="APP_ENV",
    )
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(
        default="sqlite:///./copyflow.db",
        alias="DATABASE_URL",
    )
    db_pool_size: int = Field(default=10, ge=1, le=100, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, ge=0, le=200, alias="DB_MAX_OVERFLOW")

    # Task manager (source records and field write-back)
    clickup_api_token: SecretStr | None = Field(default=None, alias="CLICKUP_API_TOKEN")
    clickup_api_base: AnyHttpUrl = Field(
        default="https://api.clickup.com/api/v2",
        alias="CLICKUP_API_BASE",
    )
    clickup_webhook_secret: SecretStr | None = Field(default=None, alias="CLICKUP_WEBHOOK_SECRET")

    # Transcript provider
    shade_api_key: SecretStr | None = Field(default=None, alias="SHADE_API_KEY")
    shade_api_base: AnyHttpUrl = Field(default="https://api.shade.inc", alias="SHADE_API_BASE")
    shade_drive_id: str | None = Field(default=None, alias="SHADE_DRIVE_ID")

    # Internal content generation service
    content_generation_url: AnyHttpUrl = Field(
        default="http://localhost:8001/generate-social-copy",
        alias="CONTENT_GENERATION_URL",
    )
    content_generation_token: SecretStr | None = Field(default=None, alias="CONTENT_GENERATION_TOKEN")

    # Internal endpoints (drain / sweep / enqueue)
    service_token: SecretStr | None = Field(default=None, alias="SERVICE_TOKEN")
    public_base_url: AnyHttpUrl = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")
    self_invoke_timeout_seconds: float = Field(default=5.0, gt=0, alias="SELF_INVOKE_TIMEOUT_SECONDS")

    webhook_mode: Literal["sync", "queue"] = Field(default="sync", alias="WEBHOOK_MODE")
    continuation_mode: Literal["scheduler", "http", "off"] = Field(
        default="scheduler",
        alias="CONTINUATION_MODE",
    )

    drain_batch_size: int = Field(default=10, ge=1, le=500, alias="DRAIN_BATCH_SIZE")
    drain_item_delay_seconds: float = Field(default=3.0, ge=0, le=300, alias="DRAIN_ITEM_DELAY_SECONDS")
    http_retries: int = Field(default=3, ge=1, le=10, alias="HTTP_RETRIES")
    http_timeout_seconds: float = Field(default=30.0, gt=0, le=300, alias="HTTP_TIMEOUT_SECONDS")
    http_retry_network_errors: bool = Field(default=False, alias="HTTP_RETRY_NETWORK_ERRORS")
    run_lease_seconds: int = Field(default=900, ge=30, alias="RUN_LEASE_SECONDS")
    sweep_interval_seconds: int = Field(default=60, ge=1, alias="SWEEP_INTERVAL_SECONDS")

    @field_validator("api_v1_prefix")
    @classmethod
    def validate_api_prefix(cls, value: str) -> str:
        """Ensure the API prefix starts with a slash and has no trailing slash."""
        normalized = value.strip()
        if not normalized.startswith("/"):
            raise ValueError("API_V1_PREFIX must start with '/'.")
        if len(normalized) > 1 and normalized.endswith("/"):
            normalized = normalized.rstrip("/")
        return normalized

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name.")
        return normalized

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, value: str) -> str:
        """Validate database URL is a PostgreSQL or SQLite SQLAlchemy connection string."""
        lowered = value.lower()
        if not (
            lowered.startswith("postgresql://")
            or lowered.startswith("postgresql+psycopg2://")
            or lowered.startswith("sqlite://")
        ):
            raise ValueError("DATABASE_URL must start with postgresql://, postgresql+psycopg2:// or sqlite://")
        return value

    @field_validator("shade_drive_id", mode="before")
    @classmethod
    def blank_drive_id(cls, value: str | None) -> str | None:
        if isinstance(value, str) and not value.strip():
            return None
        return value


@dataclass(frozen=True)
class EngineOptions:
    """Tunables handed explicitly to the gateway, pipeline, runner and drainer."""

    workflow_name: str = "generate-copy"
    batch_size: int = 10
    item_delay_seconds: float = 3.0
    retries: int = 3
    http_timeout_seconds: float = 30.0
    retry_network_errors: bool = False
    lease_seconds: int = 900

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineOptions":
        return cls(
            batch_size=settings.drain_batch_size,
            item_delay_seconds=settings.drain_item_delay_seconds,
            retries=settings.http_retries,
            http_timeout_seconds=settings.http_timeout_seconds,
            retry_network_errors=settings.http_retry_network_errors,
            lease_seconds=settings.run_lease_seconds,
        )


def secret_value(secret: SecretStr | None) -> str | None:
    """Return the plain value of an optional secret, treating blanks as unset."""
    if secret is None:
        return None
    value = secret.get_secret_value().strip()
    return value or None


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()


settings: Settings = get_settings()
