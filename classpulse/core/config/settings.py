# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for ClassPulse.
Settings are loaded from environment variables with sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A cached instance is provided via get_settings() for dependency injection.

Example:
    >>> from classpulse.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> settings.batch.stuck_job_timeout_minutes
    30
"""

from datetime import time
from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational store configuration.

    The database holds tenants, batch jobs, cached activity analyses
    and LMS credentials.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        url_override: Full connection URL, takes precedence over components.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        extra="ignore",
    )

    user: str = "classpulse"
    password: SecretStr = SecretStr("classpulse_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "classpulse"
    url_override: str | None = Field(
        default=None,
        validation_alias="DATABASE_URL",
    )
    pool_size: int = 10
    max_overflow: int = 20

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        if self.url_override:
            return self.url_override
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class RedisSettings(BaseSettings):
    """Redis configuration for the task broker and run lease.

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
        max_connections: Maximum connection pool size.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 6379
    password: SecretStr | None = None
    database: int = 0
    max_connections: int = 20

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        if self.password is not None and self.password.get_secret_value():
            pwd = self.password.get_secret_value()
            return f"redis://:{pwd}@{self.host}:{self.port}/{self.database}"
        return f"redis://{self.host}:{self.port}/{self.database}"


class LLMSettings(BaseSettings):
    """Summarization model configuration using LiteLLM.

    LiteLLM routes the request to the provider implied by the model name.

    Attributes:
        model: Model identifier in LiteLLM format.
        openai_api_key: OpenAI API key.
        api_base: Optional custom endpoint (proxy or self-hosted gateway).
        request_timeout: Per-call timeout in seconds.
        max_retries: Retry attempts performed by LiteLLM itself.
    """

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        extra="ignore",
    )

    model: str = "gpt-5-mini"
    openai_api_key: SecretStr | None = Field(
        default=None,
        validation_alias="OPENAI_API_KEY",
    )
    api_base: str | None = None
    request_timeout: float = 120.0
    max_retries: int = 0


class LMSSettings(BaseSettings):
    """External LMS (Moodle web services) configuration.

    Attributes:
        api_path: Path of the REST endpoint relative to a tenant base URL.
        timeout: Per-request timeout in seconds.
        service_tokens: Fallback service tokens keyed by tenant id.
        service_principal: Owner of the service tokens.
        service_name: Web service the service tokens are issued for.
        batch_principal: Principal whose personal token batch runs try first.
        token_encryption_key: Secret personal tokens are encrypted with at rest.
    """

    model_config = SettingsConfigDict(
        env_prefix="LMS_",
        extra="ignore",
    )

    api_path: str = "/webservice/rest/server.php"
    timeout: float = 30.0
    service_tokens: dict[str, SecretStr] = Field(default_factory=dict)
    service_principal: str = "t_assistant"
    service_name: str = "WS t_dash"
    batch_principal: str | None = None
    token_encryption_key: SecretStr | None = None


class BatchSettings(BaseSettings):
    """Batch pipeline configuration.

    Attributes:
        stuck_job_timeout_minutes: Age after which a RUNNING job is reclaimed.
        dedup_window_minutes: Window in which a recent job blocks a new run.
        tenant_delay_seconds: Pause between tenants.
        run_timeout_seconds: Hard limit for a single run.
        show_all_tenants: Comma-separated tenants analyzed regardless of dates.
        trigger_secret: Shared secret required by the trigger endpoints.
        lease_backend: Run lease implementation.
        lease_ttl_seconds: Expiry of a Redis lease.
        job_priority: Priority recorded on new jobs.
    """

    model_config = SettingsConfigDict(
        env_prefix="BATCH_",
        extra="ignore",
    )

    stuck_job_timeout_minutes: int = 30
    dedup_window_minutes: int = 10
    tenant_delay_seconds: float = 3.0
    run_timeout_seconds: float = 1680.0
    show_all_tenants: str = ""
    trigger_secret: SecretStr | None = None
    lease_backend: Literal["local", "redis"] = "local"
    lease_ttl_seconds: int = 1800
    job_priority: int = 5

    @property
    def show_all_tenants_list(self) -> list[str]:
        """Parse the show-all allow-list into tenant ids."""
        return [t.strip() for t in self.show_all_tenants.split(",") if t.strip()]


class AnalysisSettings(BaseSettings):
    """Analysis generation and caching configuration.

    Attributes:
        ttl_hours: Default lifetime of a cached analysis.
        max_tokens: Completion budget per activity.
        max_context_items: Maximum discussions, posts or submissions sent.
        language: Language of the generated analysis.
    """

    model_config = SettingsConfigDict(
        env_prefix="ANALYSIS_",
        extra="ignore",
    )

    ttl_hours: float = 6.0
    max_tokens: int = 4000
    max_context_items: int = 200
    language: str = "es"


class SchedulerSettings(BaseSettings):
    """Scheduled run configuration.

    Attributes:
        enabled: Whether the in-process scheduler registers run jobs.
        run_times: Comma-separated HH:MM wall-clock times.
        timezone: IANA timezone of run_times.
        tolerance_minutes: Jitter tolerated around each run time.
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        extra="ignore",
    )

    enabled: bool = True
    run_times: str = "08:00,16:00"
    timezone: str = "America/Mexico_City"
    tolerance_minutes: int = 2

    @field_validator("run_times")
    @classmethod
    def validate_run_times(cls, value: str) -> str:
        """Reject malformed HH:MM entries early."""
        for item in value.split(","):
            if item.strip():
                time.fromisoformat(item.strip())
        return value

    @property
    def run_times_list(self) -> list[time]:
        """Parse run_times into sorted time objects."""
        return sorted(
            time.fromisoformat(item.strip())
            for item in self.run_times.split(",")
            if item.strip()
        )


class APISettings(BaseSettings):
    """API server configuration.

    Attributes:
        host: Host to bind to.
        port: Port to listen on.
        workers: Number of worker processes.
        reload: Whether to enable auto-reload.
        cors_origins: Comma-separated allowed origins.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1
    reload: bool = False
    cors_origins: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


class WorkerSettings(BaseSettings):
    """Background worker configuration.

    Attributes:
        processes: Number of worker processes.
        threads: Number of threads per process.
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKER_",
        extra="ignore",
    )

    processes: int = 1
    threads: int = 2


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        database: Relational store settings.
        redis: Redis settings.
        llm: Summarization model settings.
        lms: External LMS settings.
        batch: Batch pipeline settings.
        analysis: Analysis cache settings.
        scheduler: Scheduled run settings.
        api: API server settings.
        worker: Background worker settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Subsettings - loaded with their own env prefixes
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    lms: LMSSettings = Field(default_factory=LMSSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    api: APISettings = Field(default_factory=APISettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production without a trigger secret
                or without a token encryption key.
        """
        if self.environment == "production":
            secret = self.batch.trigger_secret
            if secret is None or not secret.get_secret_value():
                raise ValueError(
                    "Batch trigger secret must be set in production. "
                    "Set BATCH_TRIGGER_SECRET environment variable."
                )
            key = self.lms.token_encryption_key
            if key is None or not key.get_secret_value():
                raise ValueError(
                    "Token encryption key must be set in production. "
                    "Set LMS_TOKEN_ENCRYPTION_KEY environment variable."
                )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
