"""
Idea Forge - Configuration
==========================

All application settings loaded from environment variables.
Uses pydantic-settings for validation and type conversion.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "Idea Forge"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"

    # ==========================================================================
    # API
    # ==========================================================================
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ==========================================================================
    # Database (supports SQLite and PostgreSQL + pgvector)
    # ==========================================================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./ideaforge.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    # ==========================================================================
    # Authentication
    # ==========================================================================
    SECRET_KEY: str = "CHANGE-ME-IN-PRODUCTION-USE-LONG-RANDOM-STRING"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # ==========================================================================
    # AI Providers
    # ==========================================================================
    LLM_PROVIDER: Literal["claude", "gemini", "openai"] = "claude"
    LLM_MODEL: str | None = None
    ANTHROPIC_API_KEY: str | None = None
    GEMINI_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSIONS: int = 1536

    # ==========================================================================
    # Generation
    # ==========================================================================
    CONFIGS_DIR: Path = BACKEND_DIR / "configs"
    DEFAULT_PROFILE_FOLDER: str = "default"
    DEFAULT_TEMPERATURE: float = 1.0
    DEFAULT_MAX_TOKENS: int = 16384
    PROMPT_SAMPLE_SIZE: int = 5
    DUPLICATE_SIMILARITY_THRESHOLD: float = 0.85
    DUPLICATE_NEIGHBOR_LIMIT: int = 10

    # ==========================================================================
    # Slots & Scheduler
    # ==========================================================================
    MAX_GENERATION_SLOTS: int = 10
    DEFAULT_SLOT_COUNT: int = 3
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TICK_SECONDS: float = 30.0
    MIN_AUTO_INTERVAL_MINUTES: int = 1
    MAX_AUTO_INTERVAL_MINUTES: int = 1440

    # ==========================================================================
    # Streaming
    # ==========================================================================
    STREAM_POLL_INTERVAL_SECONDS: float = 0.5
    STREAM_SESSION_WAIT_SECONDS: float = 300.0

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @computed_field  # type: ignore[misc]
    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @computed_field  # type: ignore[misc]
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
