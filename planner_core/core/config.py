"""Application configuration using Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Service configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    environment: Literal["local", "development", "test", "staging", "production"] = Field(
        default="local",
        validation_alias=AliasChoices("APP_ENV", "NODE_ENV", "environment"),
    )
    service_name: str = Field(default="event-planner-core")
    database_url: str = Field(default="sqlite:///./data/planner.db")
    db_pool_size: int = Field(default=10)
    db_pool_timeout: float = Field(default=5.0)
    db_pool_recycle: int = Field(default=30)
    db_statement_timeout_ms: int = Field(default=10_000)
    sql_echo: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    webhook_secret: str | None = Field(default=None)
    payment_webhook_secret: str | None = Field(default=None)
    internal_service_token: str | None = Field(default=None)
    public_base_url: str = Field(default="http://localhost:8000")

    ticket_generator_url: str | None = Field(default=None)
    ticket_generator_api_key: str | None = Field(default=None)
    ticket_generator_queue_url: str | None = Field(default=None)
    payment_service_url: str | None = Field(default=None)
    auth_service_url: str | None = Field(default=None)
    notification_service_url: str | None = Field(default=None)
    scan_validation_service_url: str | None = Field(default=None)

    http_timeout_seconds: float = Field(default=10.0)
    request_timeout_seconds: float = Field(default=30.0)

    dispatch_max_attempts: int = Field(default=5, ge=1)
    dispatch_backoff_base: float = Field(default=1.0)
    dispatch_backoff_factor: float = Field(default=2.0)
    dispatch_backoff_cap: float = Field(default=60.0)
    dispatch_backoff_jitter: float = Field(default=0.2, ge=0.0, lt=1.0)

    permission_cache_ttl: int = Field(default=300)
    redis_url: str | None = Field(default=None)
    redis_token: str | None = Field(default=None)
    redis_cache_prefix: str = Field(default="planner")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator(
        "webhook_secret",
        "payment_webhook_secret",
        "internal_service_token",
        "ticket_generator_url",
        "ticket_generator_api_key",
        "ticket_generator_queue_url",
        "payment_service_url",
        "auth_service_url",
        "notification_service_url",
        "scan_validation_service_url",
        "redis_url",
        "redis_token",
        mode="before",
    )
    @classmethod
    def empty_string_to_none(cls, value: str | None) -> str | None:
        if value == "":
            return None
        return value

    @field_validator("permission_cache_ttl", mode="before")
    @classmethod
    def ensure_int_ttl(cls, value: int | str | None) -> int | str | None:
        if value in (None, ""):
            return 300
        return value

    @property
    def ticket_webhook_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/api/internal/ticket-generation-webhook"


@lru_cache
def get_settings() -> AppSettings:
    """Return cached application settings instance."""

    return AppSettings()
