"""Application settings and configuration.

This module defines all configuration options for the Newsletter Stage service.
Settings are loaded from environment variables with sensible defaults.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PublishMode(str, Enum):
    """How an accepted newsletter issue reaches subscribers.

    ``queued`` writes one delivery task per confirmed subscriber and lets the
    background workers send; ``direct`` sends inline while the request waits.
    """

    QUEUED = "queued"
    DIRECT = "direct"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Newsletter Stage", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Database configuration
    database_url: str = Field(default="sqlite:///./newsletter.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Email delivery API (Postmark-compatible)
    email_base_url: str = Field(default="http://localhost:8025", alias="EMAIL_BASE_URL")
    email_sender: str = Field(default="newsletter@example.com", alias="EMAIL_SENDER")
    email_authorization_token: str = Field(default="", alias="EMAIL_AUTHORIZATION_TOKEN")
    email_timeout_milliseconds: int = Field(default=10_000, alias="EMAIL_TIMEOUT_MILLISECONDS")

    # Issue publishing
    publish_mode: PublishMode = Field(default=PublishMode.QUEUED, alias="PUBLISH_MODE")
    idempotency_poll_interval_seconds: float = Field(
        default=0.05,
        alias="IDEMPOTENCY_POLL_INTERVAL_SECONDS",
    )
    idempotency_poll_attempts: int = Field(default=20, alias="IDEMPOTENCY_POLL_ATTEMPTS")

    # Delivery workers
    delivery_worker_enabled: bool = Field(default=False, alias="DELIVERY_WORKER_ENABLED")
    delivery_worker_concurrency: int = Field(default=1, alias="DELIVERY_WORKER_CONCURRENCY")
    delivery_idle_backoff_seconds: float = Field(
        default=10.0,
        alias="DELIVERY_IDLE_BACKOFF_SECONDS",
    )
    delivery_error_backoff_seconds: float = Field(
        default=1.0,
        alias="DELIVERY_ERROR_BACKOFF_SECONDS",
    )
    delivery_max_attempts: int = Field(default=3, alias="DELIVERY_MAX_ATTEMPTS")
    delivery_retry_base_seconds: float = Field(
        default=30.0,
        alias="DELIVERY_RETRY_BASE_SECONDS",
    )
    delivery_retry_max_seconds: float = Field(
        default=900.0,
        alias="DELIVERY_RETRY_MAX_SECONDS",
    )
    # Only used on stores without FOR UPDATE SKIP LOCKED.
    delivery_lease_seconds: int = Field(default=300, alias="DELIVERY_LEASE_SECONDS")

    # CORS configuration for the admin frontend
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def email_timeout_seconds(self) -> float:
        return self.email_timeout_milliseconds / 1000


settings = Settings()  # type: ignore[call-arg]
