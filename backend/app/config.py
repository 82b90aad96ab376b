"""Configuration settings for the tasksync backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Storage
    database_path: str = "./data/tasks.sqlite3"

    # Sync (client role: where POST /api/sync pushes to)
    api_base_url: str = "http://localhost:3000/api"
    sync_batch_size: int = 50
    sync_max_retries: int = 3
    probe_timeout: float = 5.0  # seconds
    batch_timeout: float = 30.0  # seconds

    # App
    debug: bool = False
    # CORS: Allowed origins for cross-origin requests
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
