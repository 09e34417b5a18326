"""Configuration settings for tasksync."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = "sqlite:///./tasks.sqlite3"

    # Remote authority
    api_base_url: str = "http://localhost:8000/api"
    request_timeout: float = Field(default=5.0, gt=0)

    # Reconciliation
    sync_batch_size: int = Field(default=50, ge=1)
    sync_max_retries: int = Field(default=3, ge=1)

    # App
    log_level: str = "INFO"
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
