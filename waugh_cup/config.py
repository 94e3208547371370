"""Environment-driven settings for the tournament site."""

from __future__ import annotations

import os
import secrets


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw and raw.strip().lstrip("-").isdigit():
        return int(raw)
    return default


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


DEFAULT_SQLITE_PATH = "sqlite:///./waugh_cup.db"

TOURNAMENT_NAME = os.getenv("TOURNAMENT_NAME", "Waugh Cup Water Polo")
TOURNAMENT_SLUG = os.getenv("TOURNAMENT_SLUG", "waugh-cup")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Squad limits for registration; caps run 1-15.
MIN_SQUAD_SIZE = _env_int("MIN_SQUAD_SIZE", 10)
MAX_SQUAD_SIZE = _env_int("MAX_SQUAD_SIZE", 13)
MIN_CAP_NUMBER = 1
MAX_CAP_NUMBER = 15

SESSION_COOKIE_NAME = os.getenv("ADMIN_SESSION_COOKIE", "waugh_admin_session")
SESSION_SECRET = os.getenv("ADMIN_SESSION_SECRET") or os.getenv("SECRET_KEY") or secrets.token_hex(32)
SESSION_MAX_AGE = _env_int("ADMIN_SESSION_MAX_AGE", 43200)  # 12 hours default
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "waugh-cup")
ADMIN_COOKIE_SECURE = _env_flag("ADMIN_COOKIE_SECURE", "true")

GCS_LOGO_BUCKET = os.getenv("GCS_LOGO_BUCKET")
GCS_LOGO_BASE_URL = os.getenv("GCS_LOGO_BASE_URL")
GCS_LOGO_CACHE_CONTROL = os.getenv("GCS_LOGO_CACHE_CONTROL", "public, max-age=86400")


def database_url() -> str:
    """Return the configured database URL or fall back to SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_SQLITE_PATH)
