"""Runtime settings resolved once per process."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str = "Slot Planner"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    database_path: Path = PROJECT_ROOT / "data" / "slotplanner.db"
    timezone: str = "UTC"
    api_time_regex: str = r"^([01]\d|2[0-3]):[0-5]\d$"

    history_max_entries: int = 1000
    history_state_items: int = 50

    analytics_popular_slot_limit: int = 6

    scoring_neutral_score: float = 0.5
    scoring_supplement_history_slots: bool = False

    allocation_max_passes: int = 500
    plan_default_period_days: int = 6


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings from defaults plus ``SLOTPLANNER_*`` environment overrides."""
    defaults = Settings()
    return Settings(
        app_name=os.getenv("SLOTPLANNER_APP_NAME", defaults.app_name),
        app_version=os.getenv("SLOTPLANNER_APP_VERSION", defaults.app_version),
        log_level=os.getenv("SLOTPLANNER_LOG_LEVEL", defaults.log_level),
        database_path=Path(
            os.getenv("SLOTPLANNER_DATABASE_PATH", str(defaults.database_path))
        ),
        timezone=os.getenv("SLOTPLANNER_TIMEZONE", defaults.timezone),
        history_max_entries=_env_int(
            "SLOTPLANNER_HISTORY_MAX_ENTRIES", defaults.history_max_entries
        ),
        history_state_items=_env_int(
            "SLOTPLANNER_HISTORY_STATE_ITEMS", defaults.history_state_items
        ),
        analytics_popular_slot_limit=_env_int(
            "SLOTPLANNER_POPULAR_SLOT_LIMIT", defaults.analytics_popular_slot_limit
        ),
        scoring_neutral_score=_env_float(
            "SLOTPLANNER_NEUTRAL_SCORE", defaults.scoring_neutral_score
        ),
        scoring_supplement_history_slots=_env_bool(
            "SLOTPLANNER_SUPPLEMENT_HISTORY_SLOTS",
            defaults.scoring_supplement_history_slots,
        ),
        allocation_max_passes=_env_int(
            "SLOTPLANNER_MAX_PASSES", defaults.allocation_max_passes
        ),
        plan_default_period_days=_env_int(
            "SLOTPLANNER_PERIOD_DAYS", defaults.plan_default_period_days
        ),
    )
