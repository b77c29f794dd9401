"""
Application configuration using pydantic-settings.

Loads settings from environment variables (and optional .env file) with sensible defaults.

Fields loaded (env var names in parentheses):
- app_env (APP_ENV)
- log_level (LOG_LEVEL)
- db_url (DB_URL or DATABASE_URL)
- sqlalchemy_echo (SQLALCHEMY_ECHO)
- conflict_retries (CONFLICT_RETRIES)

Usage:
    from versioned_policy.core.config import get_settings
    settings = get_settings()
    print(settings.db_url)
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment / logging
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database URL (accept DB_URL or DATABASE_URL)
    db_url: str = Field(
        default="sqlite:///./versioned_policy.db",
        validation_alias=AliasChoices("DB_URL", "DATABASE_URL"),
    )
    sqlalchemy_echo: bool = Field(default=False, alias="SQLALCHEMY_ECHO")

    # Upper bound on how many times a command handler may re-run after losing a supersede race
    conflict_retries: int = Field(default=1, alias="CONFLICT_RETRIES", ge=0, le=5)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return a cached Settings instance.
    """
    return Settings()  # type: ignore[call-arg]


__all__ = ["Settings", "get_settings"]
