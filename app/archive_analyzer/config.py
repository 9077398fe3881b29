"""
Application configuration using Pydantic Settings.

Automatically loads environment variables from .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Inference endpoint (any OpenAI-compatible vision API)
    openai_api_key: str | None = None
    inference_base_url: str | None = None
    inference_model: str = "gpt-4.1"
    inference_timeout_seconds: float = 60.0
    analysis_max_attempts: int = 3

    # Database (required - must be set in .env or environment)
    database_url: str

    # Cache
    cache_max_size: int = 1000
    cache_ttl_seconds: int = 3600
    cache_sweep_interval_seconds: float = 300.0

    # Files
    max_file_size_bytes: int = 50 * 1024 * 1024
    pdf_dpi: int = 300

    # Debug flags
    sql_debug: bool = False
    debug: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        # Load from .env file in the package directory
        env_file=Path(__file__).parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        # Case insensitive environment variable names
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application configuration loaded from environment.
    """
    return Settings()
