from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    db_path: Path = Field(default=Path("data/spinner.db"), validation_alias="DB_PATH")
    reference_path: Path = Field(
        default=Path("data/reference.yaml"), validation_alias="REFERENCE_PATH"
    )

    user_agent: str = Field(default="spinner-archive/0.1", validation_alias="USER_AGENT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    spin_index_url: str = Field(
        default="https://spin3.sos112.si/api/javno/ODRSS/true",
        validation_alias="SPIN_INDEX_URL",
    )
    spin_event_url: str = Field(
        default="https://spin3.sos112.si/api/javno/lokacija/{id}",
        validation_alias="SPIN_EVENT_URL",
    )
    spin_large_events_url: str = Field(
        default="https://spin3.sos112.si/javno/assets/data/vecjiObseg.json",
        validation_alias="SPIN_LARGE_EVENTS_URL",
    )
    upstream_timezone: str = Field(
        default="Europe/Ljubljana", validation_alias="UPSTREAM_TIMEZONE"
    )

    scheduler_enabled: bool = Field(default=True, validation_alias="SCHEDULER_ENABLED")
    scrape_latest_seconds: int = Field(default=10, validation_alias="SCRAPE_LATEST_SECONDS")
    update_ongoing_seconds: int = Field(
        default=60, validation_alias="UPDATE_ONGOING_SECONDS"
    )
    close_stale_seconds: int = Field(
        default=24 * 60 * 60, validation_alias="CLOSE_STALE_SECONDS"
    )
    scrape_large_seconds: int = Field(default=60, validation_alias="SCRAPE_LARGE_SECONDS")
    stale_after_days: int = Field(default=2, validation_alias="STALE_AFTER_DAYS")
    max_concurrent_fetches: int = Field(
        default=16, validation_alias="MAX_CONCURRENT_FETCHES"
    )

    fcm_url: str | None = Field(default=None, validation_alias="FCM_URL")
    fcm_token: str | None = Field(default=None, validation_alias="FCM_TOKEN")
    notification_title: str = Field(
        default="Nov dogodek", validation_alias="NOTIFICATION_TITLE"
    )
