"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_timeout_seconds: float
    admin_token: str | None

    # Bookings
    booking_code_prefix: str
    booking_min_visitors: int
    booking_max_visitors: int
    booking_code_max_attempts: int
    booking_page_size_limit: int
    checkout_comment_max_length: int

    # Crowd simulation baseline
    simulation_open_hour: int
    simulation_close_hour: int
    simulation_baseline_ratio: float
    simulation_peak_multiplier: int
    simulation_peak_windows: tuple[tuple[int, int, str], ...]
    simulation_queue_area_ratio: float
    simulation_area_coordinate_offset: float
    simulation_default_weather: str
    simulation_default_temperature: float

    # Synthetic occupancy
    synthetic_random_seed: int
    synthetic_noise_sd: float
    synthetic_area_split: float

    # Real-time broadcast
    broadcast_queue_size: int
    broadcast_keepalive_seconds: float

    # Demo seed
    seed_days_ahead: int
    seed_slot_price_min: int
    seed_slot_price_max: int

    analytics_default_period: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    admin_token = os.getenv("ADMIN_TOKEN")
    return Settings(
        app_name=_env_str("APP_NAME", "Temple Visit Capacity Service"),
        app_version=_env_str("APP_VERSION", "1.0.0"),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        database_path=Path(
            _env_str("DATABASE_PATH", str(PROJECT_ROOT / "data" / "temple_visits.db"))
        ),
        database_timeout_seconds=_env_float("DATABASE_TIMEOUT_SECONDS", 5.0),
        admin_token=admin_token.strip() if admin_token and admin_token.strip() else None,
        booking_code_prefix=_env_str("BOOKING_CODE_PREFIX", "TCM"),
        booking_min_visitors=1,
        booking_max_visitors=10,
        booking_code_max_attempts=_env_int("BOOKING_CODE_MAX_ATTEMPTS", 3),
        booking_page_size_limit=_env_int("BOOKING_PAGE_SIZE_LIMIT", 100),
        checkout_comment_max_length=500,
        simulation_open_hour=_env_int("SIMULATION_OPEN_HOUR", 6),
        simulation_close_hour=_env_int("SIMULATION_CLOSE_HOUR", 22),
        simulation_baseline_ratio=_env_float("SIMULATION_BASELINE_RATIO", 0.3),
        simulation_peak_multiplier=_env_int("SIMULATION_PEAK_MULTIPLIER", 2),
        simulation_peak_windows=(
            (8, 10, "Morning prayers"),
            (18, 20, "Evening aarti"),
        ),
        simulation_queue_area_ratio=0.5,
        simulation_area_coordinate_offset=0.001,
        simulation_default_weather="sunny",
        simulation_default_temperature=25.0,
        synthetic_random_seed=_env_int("SYNTHETIC_RANDOM_SEED", 42),
        synthetic_noise_sd=_env_float("SYNTHETIC_NOISE_SD", 0.25),
        synthetic_area_split=0.7,
        broadcast_queue_size=_env_int("BROADCAST_QUEUE_SIZE", 100),
        broadcast_keepalive_seconds=_env_float("BROADCAST_KEEPALIVE_SECONDS", 15.0),
        seed_days_ahead=_env_int("SEED_DAYS_AHEAD", 7),
        seed_slot_price_min=10,
        seed_slot_price_max=60,
        analytics_default_period="month",
    )
