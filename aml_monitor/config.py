"""
Configuration settings for the AML velocity monitor.

Uses Pydantic Settings to load environment variables for database connections,
table names, scheduling, logging, and velocity detection thresholds.
"""
from __future__ import annotations

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("aml_data", alias="DB_NAME")
    db_schema: str = Field("public", alias="DB_SCHEMA")
    pool_min_size: int = Field(1, alias="POOL_MIN_SIZE")
    pool_max_size: int = Field(5, alias="POOL_MAX_SIZE")

    # Tables
    transactions_table: str = Field("credit_card_transactions", alias="TRANSACTIONS_TABLE")
    alerts_table: str = Field("aml_alerts_level1", alias="ALERTS_TABLE")
    checkpoint_table: str = Field("processing_metadata", alias="CHECKPOINT_TABLE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    json_logs: bool = Field(False, alias="JSON_LOGS")

    # Processing
    process_name: str = Field("aml_processing", alias="PROCESS_NAME")
    fetch_batch_size: int = Field(10_000, alias="FETCH_BATCH_SIZE")
    stale_processing_after_seconds: int = Field(3600, alias="STALE_PROCESSING_AFTER_SECONDS")

    # Monitor
    monitor_interval_seconds: float = Field(30.0, alias="MONITOR_INTERVAL_SECONDS")
    summary_every_ticks: int = Field(10, alias="SUMMARY_EVERY_TICKS")

    # Velocity detection
    rapid_window_minutes: int = Field(5, alias="RAPID_WINDOW_MINUTES")
    min_rapid_count: int = Field(5, alias="MIN_RAPID_COUNT")
    lookback_hours: int = Field(24, alias="LOOKBACK_HOURS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
