"""
Configuration settings for the LinguaSpark lesson pipeline.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Extraction sessions
    # ========================================
    extraction_max_retries: int = Field(
        default=3,
        ge=0,
        description="Maximum retry attempts per extraction session",
    )
    extraction_session_timeout_hours: float = Field(
        default=24.0,
        gt=0,
        description="Sessions older than this are removed by the cleanup sweep",
    )
    extraction_max_history_entries: int = Field(
        default=50,
        ge=1,
        description="Rolling history capacity",
    )
    extraction_max_event_entries: int = Field(
        default=100,
        ge=1,
        description="Rolling interaction event capacity",
    )
    extraction_store_dir: Path = Field(
        default=Path.home() / ".linguaspark" / "extraction",
        description="Directory for the JSON file session store",
    )

    # ========================================
    # Lesson generation API
    # ========================================
    generation_api_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the lesson generation service",
    )
    generation_api_token: str = Field(
        default="",
        description="Optional bearer token sent with generation requests",
    )
    generation_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Abandon a generation run after this many seconds",
    )
    generation_connect_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts to open the generation stream before giving up",
    )
    support_contact: str = Field(
        default="support@linguaspark.com",
        description="Contact shown on quota and unknown errors",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    @property
    def session_timeout_seconds(self) -> float:
        return self.extraction_session_timeout_hours * 3600


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
