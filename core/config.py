"""
core/config.py
Environment-based configuration using pydantic-settings.
Loads from .env file automatically.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # --- Database ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./challenge.db"

    # --- Challenge evaluation ---
    # IANA zone that defines "today" for the daily loss / consistency rules.
    CHALLENGE_TIMEZONE: str = "UTC"
    DEFAULT_START_BALANCE: float = 10_000.0

    # --- Audit ---
    AUDIT_ENABLED: bool = True

    # --- Logging ---
    LOG_LEVEL: str = "INFO"

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Singleton access to application settings."""
    return Settings()
