"""Runtime configuration read from the environment (and .env when present)."""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Order watcher
ORDER_WATCHER_ENABLED = _env_bool("ORDER_WATCHER_ENABLED")
ORDER_WATCH_WINDOW_HOURS = float(os.getenv("ORDER_WATCH_WINDOW_HOURS", 24))
ORDER_WATCH_RECENT_LIMIT = int(os.getenv("ORDER_WATCH_RECENT_LIMIT", 100))
ORDER_WATCH_CACHE_LIMIT = int(os.getenv("ORDER_WATCH_CACHE_LIMIT", 5000))
SYNTHESIS_MAX_IN_FLIGHT = int(os.getenv("SYNTHESIS_MAX_IN_FLIGHT", 16))

# Invoicing
DEFAULT_COMMISSION_PERCENT = float(os.getenv("DEFAULT_COMMISSION_PERCENT", 10))
INVOICE_DUE_DAYS = int(os.getenv("INVOICE_DUE_DAYS", 30))
