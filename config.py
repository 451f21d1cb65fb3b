"""
Configuration settings for dck.

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
    # Storage
    # ========================================
    dck_home: Path = Field(
        default=Path.home() / ".dck",
        description="Directory for user-level state (preferences)",
    )
    preferences_file: str = Field(
        default="preferences.json",
        description="Preferences file name inside dck_home",
    )
    sidecar_suffix: str = Field(
        default=".flashcard",
        description="Suffix of the per-document card file written next to each document",
    )
    sessions_dir_name: str = Field(
        default=".sessions",
        description="Folder (inside the study folder) that archives session transcripts",
    )

    # ========================================
    # Scheduling (FSRS)
    # ========================================
    fsrs_request_retention: float = Field(
        default=0.9,
        description="Target probability of recall when a card comes due",
    )
    fsrs_maximum_interval: int = Field(
        default=36500,
        description="Upper bound on scheduled intervals in days",
    )

    # ========================================
    # Sessions
    # ========================================
    default_session_mode: Literal["review", "study"] = Field(
        default="review",
        description="review = due and new cards only, study = every card",
    )
    default_session_order: Literal["random", "sequential", "hardest", "easiest"] = Field(
        default="random",
        description="Queue ordering applied when a session starts",
    )

    # ========================================
    # AI Evaluation
    # ========================================
    anthropic_api_key: str | None = Field(
        default=None,
        description="Anthropic API key for the claude evaluation provider",
    )
    ai_provider: str = Field(
        default="claude",
        description="Registered provider id used for answer evaluation",
    )
    ai_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Model name sent to the evaluation provider",
    )
    ai_max_tokens: int = Field(
        default=2000,
        description="Maximum tokens requested for one evaluation",
    )
    ai_timeout_seconds: float = Field(
        default=60.0,
        description="HTTP timeout for evaluation requests",
    )
    ai_retry_attempts: int = Field(
        default=3,
        description="Attempts on timeouts and 5xx responses",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging level for the stderr sink",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path",
    )

    @property
    def preferences_path(self) -> Path:
        return Path(self.dck_home).expanduser() / self.preferences_file

    def has_ai_configured(self) -> bool:
        """Check if an AI provider key is available."""
        return bool(self.anthropic_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
