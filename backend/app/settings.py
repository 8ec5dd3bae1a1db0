import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _read_int_env(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning("Out of range %s=%r; using %s", name, raw, default)
        return default
    return value


def _read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Out of range %s=%r; using %s", name, raw, default)
        return default
    return value


DEFAULT_DB_PATH = str(Path(__file__).resolve().parents[1] / "data" / "schedule.sqlite3")

SCHEDULE_DB_PATH = os.getenv("SCHEDULE_DB_PATH", DEFAULT_DB_PATH)
SCHEDULE_DB_TIMEOUT_SECONDS = _read_float_env("SCHEDULE_DB_TIMEOUT_SECONDS", 5.0)
SCHEDULE_DB_READ_RETRIES = _read_int_env("SCHEDULE_DB_READ_RETRIES", 2, minimum=0)
SCHEDULE_SEED_DEMO = _read_bool_env("SCHEDULE_SEED_DEMO", False)

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo").strip() or "America/Sao_Paulo"
DEFAULT_SLOT_INTERVAL = _read_int_env("DEFAULT_SLOT_INTERVAL", 30)
MAX_DAILY_MINUTES = _read_int_env("MAX_DAILY_MINUTES", 600)

RANKING_MAX_WORKERS = _read_int_env("RANKING_MAX_WORKERS", 8)
RANKING_PROVIDER_TIMEOUT_SECONDS = _read_float_env("RANKING_PROVIDER_TIMEOUT_SECONDS", 5.0)
RANKING_MAX_DISTANCE_KM = _read_float_env("RANKING_MAX_DISTANCE_KM", 50.0)

SIDE_EFFECT_WORKERS = _read_int_env("SIDE_EFFECT_WORKERS", 2)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
ADMIN_USER_IDS = set(_parse_csv_env("ADMIN_USER_IDS", ""))

CORS_ORIGINS = _parse_csv_env("CORS_ORIGINS", "*")
TRUSTED_HOSTS = _parse_csv_env("TRUSTED_HOSTS", "*")
