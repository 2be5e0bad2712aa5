"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Digiflazz Configuration
    digiflazz_username: str = Field(..., description="Digiflazz buyer username")
    digiflazz_api_key: str = Field(..., description="Digiflazz API key (dev-... or production key)")
    digiflazz_base_url: str = Field(
        default="https://api.digiflazz.com", description="Digiflazz API base URL"
    )
    digiflazz_testing: bool = Field(
        default=False, description="Send testing=true with purchase requests"
    )
    digiflazz_timeout_seconds: float = Field(
        default=30.0, description="HTTP timeout for gateway calls (seconds)"
    )
    digiflazz_webhook_secret: str = Field(
        default="", description="Secret used to verify X-Digiflazz-Signature"
    )
    digiflazz_retry_attempts: int = Field(
        default=3, description="Attempts for idempotent gateway reads (status, balance, price list)"
    )
    digiflazz_retry_base_delay: float = Field(
        default=0.5, description="Base delay for retry backoff (seconds)"
    )
    transaction_prefix: str = Field(default="PPOB", description="Prefix for generated ref_ids")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./ppob.db", description="Database connection URL"
    )
    database_pool_size: int = Field(default=10, description="Database connection pool size")
    database_max_overflow: int = Field(default=20, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="ppob-payments", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=True, description="Render logs as JSON")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="CORS allowed origins (comma-separated)",
    )

    # Reconciliation
    reconciliation_interval_seconds: float = Field(
        default=60.0, description="Seconds between reconciliation cycles"
    )
    reconciliation_batch_limit: int = Field(
        default=100, description="Pending transactions read per page within a cycle"
    )
    reconciliation_concurrency: int = Field(
        default=5, description="Concurrent status checks within one cycle"
    )

    # Balance
    balance_check_interval_seconds: float = Field(
        default=60.0, description="Seconds between balance checks"
    )

    # Scheduler
    scheduler_enabled: bool = Field(
        default=True, description="Start periodic jobs with the API process"
    )
    shutdown_timeout_seconds: float = Field(
        default=10.0, description="Grace period for in-flight jobs on shutdown"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator(
        "reconciliation_concurrency", "reconciliation_batch_limit", "digiflazz_retry_attempts"
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Batch sizing must be at least one."""
        if v < 1:
            raise ValueError("Must be at least 1")
        return v

    @field_validator("digiflazz_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
