"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_optional(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    identity_access_key: Optional[str]
    recurrence_max_occurrences: int
    utilization_window_days: int
    bookable_hours_per_day: float
    recent_bookings_limit: int
    seed_demo_data: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read settings once per process; tests clear the cache explicitly."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Campus Resource Booking"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(
            os.getenv("DATABASE_PATH", str(PROJECT_ROOT / "data" / "bookings.db"))
        ),
        identity_access_key=_env_optional("IDENTITY_ACCESS_KEY"),
        recurrence_max_occurrences=int(os.getenv("RECURRENCE_MAX_OCCURRENCES", "366")),
        utilization_window_days=int(os.getenv("UTILIZATION_WINDOW_DAYS", "7")),
        bookable_hours_per_day=float(os.getenv("BOOKABLE_HOURS_PER_DAY", "10")),
        recent_bookings_limit=int(os.getenv("RECENT_BOOKINGS_LIMIT", "5")),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
    )
