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
    database: str = "presentation_review"
    url_override: Optional[str] = Field(
        default=None,
        validation_alias="DB_URL",
        description="Full SQLAlchemy URL; takes precedence over the discrete fields.",
    )
    serverless: bool = Field(
        default=True,
        description="If true, disable connection pooling so serverless DBs can pause.",
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


class S3Config(BaseSettings):
    """S3 configuration"""

    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    region: str = "ap-southeast-1"
    bucket_name: str = "presentation-review-assets"
    presign_urls: bool = Field(
        default=False,
        description="Hand workers presigned URLs instead of plain object URLs.",
    )
    presign_expiration_seconds: int = Field(default=6 * 3600, ge=60)

    model_config = SettingsConfigDict(
        env_prefix="S3_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class QueueConfig(BaseSettings):
    """Outbound worker channels.

    An empty address leaves the channel unconfigured; jobs routed to it fail
    at dispatch time.
    """

    backend: str = Field(default="sqs", pattern="^(sqs|rabbitmq)$")
    region: str = "ap-southeast-1"
    asr_url: Optional[str] = None
    analysis_url: Optional[str] = None
    report_url: Optional[str] = None
    slides_url: Optional[str] = None

    rabbitmq_host: str = "localhost"
    rabbitmq_port: int = 5672
    rabbitmq_username: str = "guest"
    rabbitmq_password: SecretStr = Field(default=SecretStr("guest"))

    model_config = SettingsConfigDict(
        env_prefix="QUEUE_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )

    def channels(self) -> dict[str, Optional[str]]:
        """Return the channel address for every job type."""

        return {
            "asr": self.asr_url or None,
            "analysis": self.analysis_url or None,
            "report": self.report_url or None,
            "slides": self.slides_url or None,
        }


class WebhookConfig(BaseSettings):
    """Shared secret expected from worker callbacks."""

    secret: SecretStr | None = Field(default=None)

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class PipelineConfig(BaseSettings):
    """Retry, liveness and retention policy for pipeline jobs."""

    max_retry: int = Field(default=3, ge=0)
    stuck_after_hours: float = Field(default=2, gt=0)
    cleanup_after_days: int = Field(default=30, ge=1)
    default_language: str = "vi"
    sweep_enabled: bool = False
    sweep_interval_seconds: int = Field(default=900, ge=10)

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class SecurityConfig(BaseSettings):
    """JWT verification for end-user endpoints."""

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

    app_name: str = "Presentation Review Pipeline"
    app_version: str = "1.0.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_file: str = "logs/app.log"
    pipeline_log_file: str = "logs/pipeline.log"
    webhook_log_file: str = "logs/webhooks.log"

    # Database
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Queues
    queue: QueueConfig = Field(default_factory=QueueConfig)

    # S3
    s3: S3Config = Field(default_factory=S3Config)

    # Webhooks
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)

    # Pipeline policy
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

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
