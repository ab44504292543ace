"""Configuration management for Forge."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logging_utils import LogProfile, configure_logging


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="FORGE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Agent CLI
    cli_binary: str = Field(default="claude", description="Agent CLI executable name or path")
    default_model: str | None = Field(default=None, description="Model used when a turn does not pick one")

    # Streaming
    channel_capacity: int = Field(default=100, ge=1, description="Frames buffered between reader and aggregator")
    max_line_bytes: int = Field(default=8 * 1024 * 1024, ge=1024, description="Longest accepted protocol line")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_profile: LogProfile = Field(default="default", description="Log profile (default or chat)")


def get_settings(**overrides: object) -> Settings:
    """Get application settings and configure logging for them.

    Args:
        **overrides: Explicit values that win over the environment.

    Returns:
        Settings instance
    """
    settings = Settings(**overrides)  # type: ignore[arg-type]
    configure_logging(profile=settings.log_profile, level=settings.log_level)
    return settings
