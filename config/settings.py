"""Configuration management using pydantic-settings."""
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Tenant whose data this instance reads (cache keys are scoped by it)
    tenant_id: str = "YAZAMI"

    # Room-settings backend
    backend_base_url: str = "http://127.0.0.1:4000"
    backend_timeout_seconds: float = 30.0
    backend_retry_attempts: int = 3

    # Cache settings
    cache_enabled: bool = True
    cache_db_path: Path = Path("./cache/frigo_cache.db")
    cache_namespace: str = "frigo-cache:"
    cache_ttl_seconds: float = 300.0
    cache_background_refresh: bool = True
    cache_coalesce: bool = True

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
