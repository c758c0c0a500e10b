"""Application settings, read from the environment."""
from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="COMPLIANCE_", extra="ignore")

    # PostgreSQL in production (DATABASE_URL), SQLite locally
    database_url: str = Field(
        "sqlite:///./compliance.db",
        validation_alias=AliasChoices("COMPLIANCE_DATABASE_URL", "DATABASE_URL"),
    )
    log_level: str = "INFO"

    # Days between a task's anchor date and its due date for auto-scheduled successors
    due_grace_days: int = Field(7, ge=0)

    # Request throttle (per actor)
    rate_limit_window_seconds: int = Field(60, gt=0)
    rate_limit_general: int = Field(100, gt=0)
    rate_limit_relaxed: int = Field(200, gt=0)


@lru_cache
def get_settings() -> Settings:
    return Settings()
