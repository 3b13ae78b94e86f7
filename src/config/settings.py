"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="dhyana", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment name"
    )

    # Authentication (tokens are issued by the identity service)
    auth_secret_key: str = Field(
        default="dev-jwt-secret-key-change-in-production-32chars!",
        description="JWT verification key (min 32 chars)",
    )
    auth_algorithm: str = Field(default="HS256", description="JWT algorithm")

    # Redis (lesson event fan-out)
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    redis_max_connections: int = Field(default=10, description="Max Redis connections")
    redis_socket_timeout: float = Field(default=5.0, description="Redis socket timeout")
    redis_socket_connect_timeout: float = Field(
        default=5.0, description="Redis connect timeout"
    )
    redis_retry_on_timeout: bool = Field(default=True, description="Retry on timeout")
    redis_health_check_interval: int = Field(
        default=30, description="Health check interval"
    )
    lesson_events_channel_prefix: str = Field(
        default="lesson_events", description="Pub/Sub channel prefix for lesson events"
    )

    # Cassandra
    cassandra_hosts: list[str] = Field(
        default=["localhost"], description="Cassandra hosts"
    )
    cassandra_port: int = Field(default=9042, description="Cassandra port")
    cassandra_keyspace: str = Field(default="dhyana", description="Cassandra keyspace")
    cassandra_username: str | None = Field(default=None, description="Cassandra user")
    cassandra_password: str | None = Field(
        default=None, description="Cassandra password"
    )
    cassandra_protocol_version: int = Field(default=4, description="Protocol version")
    cassandra_connect_timeout: float = Field(
        default=10.0, description="Connect timeout"
    )
    cassandra_request_timeout: float = Field(
        default=10.0, description="Per-statement timeout, conditional writes included"
    )
    cassandra_local_dc: str | None = Field(
        default=None,
        description="Local datacenter for LOCAL_QUORUM and LOCAL_SERIAL routing",
    )
    cassandra_replication_factor: int = Field(
        default=3, ge=1, description="Replicas per datacenter outside development"
    )

    # Playback policy defaults (admin-tunable per deployment)
    playback_max_default_pauses: int = Field(
        default=3, ge=0, description="Pauses allowed when a lesson sets no limit"
    )
    playback_auto_skip_on_max_pauses: bool = Field(
        default=True,
        description="Force-complete a lesson once its pause budget is exhausted",
    )
    playback_auto_skip_delay_seconds: int = Field(
        default=30, ge=0, description="Countdown before an auto-skip is honoured"
    )

    # Access codes
    access_code_length: int = Field(
        default=6, ge=4, le=12, description="Digits in generated access codes"
    )

    # Attendance
    attendance_timezone: str = Field(
        default="Asia/Kolkata",
        description="IANA timezone used to decide which sessions are 'today'",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="DEBUG", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Log format"
    )
    log_include_caller_info: bool = Field(
        default=True, description="Include caller info"
    )
    log_dir: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024, description="Max size per log file (10MB default)"
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )
    log_requests: bool = Field(
        default=True, description="Log HTTP request start/finish"
    )
    log_exclude_paths: list[str] = Field(
        default=["/health", "/health/live", "/health/ready"],
        description="Paths to exclude from request logging",
    )

    # CORS
    cors_origins: list[str] = Field(default=["*"], description="CORS origins")
    cors_allow_credentials: bool = Field(default=True, description="Allow credentials")
    cors_allow_methods: list[str] = Field(default=["*"], description="Allowed methods")
    cors_allow_headers: list[str] = Field(default=["*"], description="Allowed headers")
    cors_max_age: int = Field(default=600, description="CORS max age")

    @field_validator("attendance_timezone")
    @classmethod
    def validate_attendance_timezone(cls, value: str) -> str:
        """Reject unknown IANA names at startup instead of on first gate check."""
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            msg = f"Unknown timezone: {value}"
            raise ValueError(msg) from e
        return value

    @model_validator(mode="after")
    def validate_production_secret(self) -> "Settings":
        min_secret_length = 32
        if self.is_production and (
            len(self.auth_secret_key) < min_secret_length
            or self.auth_secret_key.startswith("dev-")
        ):
            msg = "auth_secret_key must be a real secret of at least 32 chars"
            raise ValueError(msg)
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == "testing"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
