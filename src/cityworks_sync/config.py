"""
config.py
---------
Settings for a sync run, read from the environment (and a .env file if present).
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigError

# ------------------------------
# ENV / CONFIG defaults
# ------------------------------
DEFAULT_DB_PATH = "data.db"

# ArcGIS item ids published by the municipality
REQUESTS_DATASET_ID = "d2b7dd138adb468293183926a1a7a81c"
FIELDS_DATASET_ID = "81703e2cda974ffb8d4ba1f313d18429"

ARCGIS_ITEMS_URL = "https://www.arcgis.com/sharing/rest/content/items"
ARCGIS_DOWNLOAD_URL = "https://hub.arcgis.com/api/download/v1/items"

EXPORT_DEADLINE_SECONDS = 10 * 60
EXPORT_POLL_INTERVAL_SECONDS = 10
HTTP_TIMEOUT_SECONDS = 60
PROGRESS_EVERY = 10000


def _env_number(name: str, default, cast=float):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    """Everything a run needs to know that is not a row of data."""

    db_path: str = DEFAULT_DB_PATH
    database_url: Optional[str] = None
    requests_dataset_id: str = REQUESTS_DATASET_ID
    fields_dataset_id: str = FIELDS_DATASET_ID
    items_url: str = ARCGIS_ITEMS_URL
    download_url: str = ARCGIS_DOWNLOAD_URL
    export_deadline: float = EXPORT_DEADLINE_SECONDS
    poll_interval: float = EXPORT_POLL_INTERVAL_SECONDS
    http_timeout: float = HTTP_TIMEOUT_SECONDS
    progress_every: int = PROGRESS_EVERY
    requests_file: Optional[str] = None
    fields_file: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            db_path=os.getenv("SYNC_DB_PATH", DEFAULT_DB_PATH),
            database_url=os.getenv("DATABASE_URL") or None,
            requests_dataset_id=os.getenv("REQUESTS_DATASET_ID", REQUESTS_DATASET_ID),
            fields_dataset_id=os.getenv("FIELDS_DATASET_ID", FIELDS_DATASET_ID),
            items_url=os.getenv("ARCGIS_ITEMS_URL", ARCGIS_ITEMS_URL).rstrip("/"),
            download_url=os.getenv("ARCGIS_DOWNLOAD_URL", ARCGIS_DOWNLOAD_URL).rstrip("/"),
            export_deadline=_env_number("EXPORT_DEADLINE_SECONDS", EXPORT_DEADLINE_SECONDS),
            poll_interval=_env_number("EXPORT_POLL_INTERVAL_SECONDS", EXPORT_POLL_INTERVAL_SECONDS),
            http_timeout=_env_number("HTTP_TIMEOUT_SECONDS", HTTP_TIMEOUT_SECONDS),
            progress_every=_env_number("PROGRESS_EVERY", PROGRESS_EVERY, cast=int),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def with_overrides(self, **overrides) -> "Settings":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
