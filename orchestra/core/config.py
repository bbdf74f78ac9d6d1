"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./orchestra.db",
        description="SQLAlchemy async connection URL for the task store",
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log",
    )

    # Orchestra Configuration
    orchestra_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    orchestra_log_dir: str = Field(
        default="logs",
        description="Directory for rotating log files",
    )
    orchestra_debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    orchestra_max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Maximum automatic retries per failed task",
    )
    orchestra_max_parallel_tasks: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum number of tasks executed concurrently within a phase",
    )
    orchestra_task_timeout: int = Field(
        default=1800,
        ge=1,
        description="Per-task execution timeout in seconds",
    )
    orchestra_auto_retry: bool = Field(
        default=True,
        description="Automatically retry failures whose first recovery action is auto-executable",
    )

    @property
    def is_sqlite(self) -> bool:
        """Check whether the configured store is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment.

    Example:
        >>> settings = get_settings()
        >>> settings.orchestra_max_retries
        3
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
