"""Runtime configuration, read from DRILLFORGE_* env vars and a .env file."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DRILLFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # None means an in-memory duckdb
    database_path: str | None = None
    # extra catalogs layered on top of the built-in ones
    catalog_dir: Path | None = None

    # campaign status windows, in days since the last day with spend
    active_window_days: int = 3
    paused_window_days: int = 30


@lru_cache
def get_settings() -> Settings:
    return Settings()
