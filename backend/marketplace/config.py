import os
from datetime import time
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the backend root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _bool_env(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


def _time_env(name: str, default: str) -> time:
    try:
        return time.fromisoformat(os.getenv(name, default).strip())
    except ValueError:
        return time.fromisoformat(default)


def parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# Storage
DB_PATH = os.getenv("MARKETPLACE_DB_PATH", str(Path(__file__).resolve().parents[1] / "data" / "marketplace.sqlite3"))
SQLITE_BUSY_TIMEOUT_SECONDS = _int_env("SQLITE_BUSY_TIMEOUT_SECONDS", 10)
SEED_DEMO_DATA = _bool_env("SEED_DEMO_DATA", "true")

# Scheduling defaults (single implicit timezone, naive datetimes)
WORKDAY_START = _time_env("WORKDAY_START", "09:00")
WORKDAY_END = _time_env("WORKDAY_END", "17:00")
SLOT_STEP_MINUTES = _int_env("SLOT_STEP_MINUTES", 30)
MAX_SERVICE_DURATION_MINUTES = _int_env("MAX_SERVICE_DURATION_MINUTES", 480)

# Subscriptions
FREE_TIER_SERVICE_LIMIT = _int_env("FREE_TIER_SERVICE_LIMIT", 1)
ACTIVE_SERVICE_LIMIT = _int_env("ACTIVE_SERVICE_LIMIT", 5)
ADMIN_USER_IDS = set(parse_csv_env("ADMIN_USER_IDS", "admin_1"))
# Collects subscription fees; must be an explicit user, never "first admin with a QR code".
PAYMENT_COLLECTOR_USER_ID = os.getenv("PAYMENT_COLLECTOR_USER_ID", "admin_1").strip() or None

# Auth
AUTH_TOKEN_TTL_HOURS = _int_env("AUTH_TOKEN_TTL_HOURS", 24)
AUTH_REQUIRED = _bool_env("AUTH_REQUIRED", "false")
AUTH_SECRET = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")
DEMO_PASSWORD = os.getenv("DEMO_PASSWORD", "marketplace-demo")

# HTTP
CORS_ORIGINS = parse_csv_env("CORS_ORIGINS", "*")
TRUSTED_HOSTS = parse_csv_env("TRUSTED_HOSTS", "*")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
