"""
Application configuration loaded from environment variables.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Coworking portal server configuration."""

    model_config = SettingsConfigDict(env_prefix="CW_", env_file=".env", extra="ignore")

    # Storage backend, chosen once at startup
    storage_backend: Literal["memory", "file", "local", "database", "mirrored"] = "file"
    data_dir: str = "data"
    database_url: str = "sqlite:///./data/coworking_portal.db"
    seed_default_tasks: bool = True

    # Redis (arq worker)
    redis_url: str = "redis://localhost:6379/0"

    # Logging
    log_level: str = "info"
    log_format: Literal["json", "text"] = "text"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]


@lru_cache
def get_settings() -> Settings:
    return Settings()
