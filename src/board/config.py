"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Deal Store (REST backend)
    DEAL_STORE_URL: str = "http://localhost:8000/api/v1"
    DEAL_STORE_TOKEN: str = ""
    DEAL_STORE_TIMEOUT_READ: float = 10.0
    DEAL_STORE_TIMEOUT_MUTATE: float = 30.0

    # Board
    BOARD_COLUMN_CAP: int = 8  # Cards surfaced per stage before "N more below"
    DEFAULT_PIPELINE_ID: str = ""  # Empty -> the store's default pipeline
    CURRENT_USER_ID: str = ""  # Used by the "mine" quick filter
    CLOSING_WINDOW_DAYS: int = 30


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
