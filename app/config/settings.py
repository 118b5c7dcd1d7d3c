from typing import Optional
from urllib.parse import quote_plus

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """Database configuration"""

    host: str = "localhost"
    port: int = 5432
    username: str = "postgres"
    password: SecretStr = Field(default=SecretStr("postgres"))
    database: str = "medcast_scripts"
    db_schema: Optional[str] = None
    serverless: bool = Field(
        default=True,
        description="If true, disable connection pooling so serverless DBs can pause.",
    )
    url_override: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy URL; takes precedence over the discrete fields.",
    )

    @property
    def url(self) -> str:
        """Get database URL"""
        if self.url_override:
            return self.url_override
        username = quote_plus(self.username)
        password = quote_plus(self.password.get_secret_value())
        return (
            "postgresql+asyncpg://"
            f"{username}:{password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class StageServiceConfig(BaseSettings):
    """Endpoints of the four content-generation stages."""

    base_url: str = "http://localhost:54321/functions/v1"
    service_token: SecretStr | None = None
    timeout_seconds: float = Field(default=120.0, gt=0)
    overview_path: str = "/document-overview"
    content_mapping_path: str = "/content-mapping"
    outline_path: str = "/comprehensive-outline"
    finalization_path: str = "/script-finalizer"

    model_config = SettingsConfigDict(
        env_prefix="STAGE_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class RetryConfig(BaseSettings):
    """Backoff schedule applied to stage calls and queue enqueues."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_delay_seconds: float = Field(default=10.0, ge=0.0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    retryable_statuses: list[int] = [429, 502, 503]

    model_config = SettingsConfigDict(
        env_prefix="STAGE_RETRY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class IndexProviderConfig(BaseSettings):
    """Retrieval index (vector store) provider configuration."""

    enabled: bool = True
    base_url: str = "https://api.openai.com/v1"
    api_key: SecretStr | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    retention_days: int = Field(default=7, ge=1, le=365)

    model_config = SettingsConfigDict(
        env_prefix="INDEX_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class QueueConfig(BaseSettings):
    """Render queue settings."""

    name: str = "podcast_audio"
    baseline_wait_seconds: int = Field(default=300, ge=0)
    per_job_seconds: int = Field(default=300, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="QUEUE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class RateLimitConfig(BaseSettings):
    """Per-owner submission throttling."""

    submissions_per_window: int = Field(default=5, ge=1)
    window_seconds: int = Field(default=3600, ge=1)
    max_tracked_owners: int = Field(default=10_000, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class SecurityConfig(BaseSettings):
    """JWT verification settings."""

    jwt_secret_key: SecretStr = Field(
        default=SecretStr("change-me"),
        validation_alias="JWT_SECRET",
    )
    jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
    access_token_expires_minutes: int = Field(
        default=60,
        validation_alias="JWT_EXPIRATION_MINUTES",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Application settings"""

    app_name: str = "Medical Script Orchestrator"
    app_version: str = "1.0.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_file: str = "logs/app.log"
    pipeline_log_file: str = "logs/script_pipeline.log"

    # Database
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Stage services
    stages: StageServiceConfig = Field(default_factory=StageServiceConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    # Retrieval index provider
    index_provider: IndexProviderConfig = Field(default_factory=IndexProviderConfig)

    # Render queue
    queue: QueueConfig = Field(default_factory=QueueConfig)

    # Submission throttling
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)

    # Security
    security: SecurityConfig = Field(default_factory=SecurityConfig)

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
