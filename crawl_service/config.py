"""
Configuration for the crawl queue service.

Supports multiple environments (development, staging, production) with
appropriate defaults and validation. Environment variables override defaults.
"""

from enum import Enum
from typing import Any

from dotenv import load_dotenv
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog

from crawl_service.core.queue import QueueConfig

load_dotenv()


class Environment(str, Enum):
    """Application environment types."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Application settings with environment-specific defaults.

    Uses Pydantic for validation and type safety.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT, description="Application environment"
    )

    # API Configuration
    api_title: str = Field(default="URL Crawler API", description="API title for OpenAPI docs")
    api_version: str = Field(default="1.0.0", description="API version")
    debug: bool = Field(default=True, description="Enable debug mode")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, ge=1, le=65535, description="Server port")
    cors_origins: str = Field(
        default="*", description="Allowed CORS origins (comma-separated)"
    )

    # Queue Configuration
    queue_workers: int = Field(default=3, ge=1, le=100, description="Concurrent crawl workers")
    queue_buffer_size: int = Field(
        default=100, ge=1, description="Maximum number of buffered crawl tasks"
    )
    queue_max_retries: int = Field(
        default=0, ge=0, le=10, description="Automatic retries after a failed crawl"
    )
    queue_retry_delay_seconds: float = Field(
        default=5.0, ge=0.0, description="Delay between crawl retries"
    )

    # Crawler Configuration
    crawler_timeout_seconds: float = Field(default=30.0, gt=0, description="Page fetch timeout")
    crawler_user_agent: str = Field(default="URL-Crawler-Bot/1.0", description="User-Agent header")
    crawler_max_redirects: int = Field(default=10, ge=0, description="Redirects followed per fetch")
    crawler_max_links_check: int = Field(
        default=10, ge=0, description="Links checked for broken targets per page"
    )
    crawler_max_content_size: int = Field(
        default=10 * 1024 * 1024, ge=1, description="Largest page body accepted, in bytes"
    )

    # Storage Configuration
    repository_type: str = Field(default="duckdb", description="Result storage: duckdb or memory")
    duckdb_path: str = Field(default="data/crawls.duckdb", description="DuckDB database file")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="Enable JSON logging for production")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator("debug")
    @classmethod
    def disable_debug_in_production(cls, v: bool, info: ValidationInfo) -> bool:
        """Automatically disable debug in production."""
        if info.data.get("environment") == Environment.PRODUCTION:
            return False
        return v

    def get_environment_display(self) -> str:
        """Get human-readable environment name."""
        return self.environment.value.title()

    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    def get_cors_origins(self) -> list[str]:
        """Parse CORS origins from the comma-separated setting."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def queue_config(self) -> QueueConfig:
        """Build the immutable queue configuration."""
        return QueueConfig(
            workers=self.queue_workers,
            buffer_size=self.queue_buffer_size,
            max_retries=self.queue_max_retries,
            retry_delay=self.queue_retry_delay_seconds,
        )


# Global settings instance
settings = Settings()


def configure_structlog(log_level: str | None = None, log_json: bool | None = None) -> None:
    """Initialize structlog with readable console output or JSON lines."""
    import logging
    import sys

    level = getattr(logging, (log_level or settings.log_level).upper())
    use_json = settings.log_json if log_json is None else log_json

    logging.basicConfig(
        level=level,
        stream=sys.stdout,
        force=True,
        format="%(message)s",  # Only show the structured message, not the Python logging prefix
    )

    renderer: Any
    if use_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True, pad_event=20)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso" if use_json else "%H:%M:%S"),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
