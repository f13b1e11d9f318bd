from __future__ import annotations
import os
from dateutil import tz

DATA_DIR = os.getenv("DATA_DIR", "./data")
os.makedirs(DATA_DIR, exist_ok=True)

# Buckets are UTC calendar days only.
UTC = tz.UTC

BOT_DB_PATH = os.getenv("BOT_DB_PATH", os.path.join(DATA_DIR, "presence.sqlite3"))
DB_PATH = BOT_DB_PATH

COMMAND_PREFIX = os.getenv("COMMAND_PREFIX", "!")
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "en").strip().lower() or "en"
SUPPORTED_LANGUAGES = ("en", "tr")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


BOT_OWNER_ID = _int_env("BOT_OWNER_ID", 0)
MAX_WINDOW_DAYS = _int_env("MAX_WINDOW_DAYS", 90)
SESSION_RETRY_SECONDS = _int_env("SESSION_RETRY_SECONDS", 60)
KEEP_ALIVE_PORT = _int_env("KEEP_ALIVE_PORT", 0)

# Statuses that keep an activity session open.
ACTIVE_STATUSES = frozenset({"online", "idle", "dnd"})
