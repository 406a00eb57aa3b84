"""
Configuration settings for the work-unit history store.

Uses Pydantic Settings to load environment variables for the database file,
upgrade behaviour, logging, and stress-test defaults.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from wuhistory.domain.models import BonusCalculation


class Settings(BaseSettings):
    # Database
    db_path: str = Field("WuHistory.db3", alias="HISTORY_DB_PATH")
    db_timeout_seconds: float = Field(30.0, alias="HISTORY_DB_TIMEOUT_SECONDS")
    journal_mode: str = Field("WAL", alias="HISTORY_JOURNAL_MODE")
    backup_on_upgrade: bool = Field(True, alias="HISTORY_BACKUP_ON_UPGRADE")

    # Queries / production view
    queries_path: str = Field("WuHistoryQuery.json", alias="HISTORY_QUERIES_PATH")
    proteins_path: Optional[str] = Field(None, alias="HISTORY_PROTEINS_PATH")
    bonus_calculation: BonusCalculation = Field(
        BonusCalculation.DOWNLOAD_TIME, alias="HISTORY_BONUS_CALCULATION"
    )

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Stress defaults
    stress_events: int = Field(100, alias="STRESS_EVENTS")
    stress_threads: int = Field(8, alias="STRESS_THREADS")
    results_dir: str = Field("results", alias="RESULTS_DIR")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
