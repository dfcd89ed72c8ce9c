from __future__ import annotations
import os


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockrun.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockrun.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # bcrypt cost factor for password hashing
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if origin.strip()
    ]

    # Location tracking cadence (seconds). Freshness matches the capture interval.
    TRACKING_ENABLED = _env_bool("TRACKING_ENABLED", True)
    LOCATION_CAPTURE_INTERVAL_SECONDS = _env_float("LOCATION_CAPTURE_INTERVAL_SECONDS", 300.0)
    LOCATION_FRESHNESS_SECONDS = _env_float("LOCATION_FRESHNESS_SECONDS", 300.0)
    DASHBOARD_POLL_SECONDS = _env_float("DASHBOARD_POLL_SECONDS", 30.0)
    TRACKING_AUTOSTART_DELAY_SECONDS = _env_float("TRACKING_AUTOSTART_DELAY_SECONDS", 2.0)

    # Position acquisition options passed to the positioning provider
    POSITION_TIMEOUT_MS = _env_int("POSITION_TIMEOUT_MS", 15_000)
    POSITION_MAX_AGE_MS = _env_int("POSITION_MAX_AGE_MS", 300_000)
    POSITION_HIGH_ACCURACY = _env_bool("POSITION_HIGH_ACCURACY", True)

    # Distribution centre used as the reference point for distances and directions
    DEPOT_LATITUDE = _env_float("DEPOT_LATITUDE", 9.384489)
    DEPOT_LONGITUDE = _env_float("DEPOT_LONGITUDE", 80.408737)
    MAPS_BASE_URL = os.environ.get("MAPS_BASE_URL", "https://www.google.com/maps")

    # Bounded retries when the store rejects a batch of allocations as duplicates
    ALLOCATION_INSERT_ATTEMPTS = _env_int("ALLOCATION_INSERT_ATTEMPTS", 3)

