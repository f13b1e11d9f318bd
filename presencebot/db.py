from __future__ import annotations

import os
import sqlite3
import logging

from . import config

log = logging.getLogger("presencebot.db")


# ----------------------------
# Path resolution
# ----------------------------
def _resolved_db_path() -> str:
    env = os.environ.get("BOT_DB_PATH")
    if env:
        return os.path.abspath(env)
    return os.path.abspath(config.BOT_DB_PATH)


# ----------------------------
# Helpers
# ----------------------------
def _table_exists(con: sqlite3.Connection, name: str) -> bool:
    cur = con.cursor()
    row = cur.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=? LIMIT 1", (name,)
    ).fetchone()
    return bool(row)


def _columns(con: sqlite3.Connection, table: str) -> list[str]:
    cur = con.cursor()
    try:
        return [r[1] for r in cur.execute(f"PRAGMA table_info({table})").fetchall()]
    except sqlite3.Error:
        return []


def _ensure_column(con: sqlite3.Connection, table: str, column: str, ddl: str) -> None:
    if not _table_exists(con, table):
        return
    cols = _columns(con, table)
    if column not in cols:
        con.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")


# ----------------------------
# Freshness guard
# ----------------------------
def _any_rows(con: sqlite3.Connection, table: str) -> bool:
    if not _table_exists(con, table):
        return False
    cur = con.cursor()
    try:
        n = cur.execute(f"SELECT 1 FROM {table} LIMIT 1").fetchone()
        return bool(n)
    except sqlite3.Error:
        return False


def _is_fresh_db(path: str) -> bool:
    if not os.path.exists(path):
        return True
    try:
        con = sqlite3.connect(path, timeout=5)
        try:
            return not _any_rows(con, "aggregate_buckets")
        finally:
            con.close()
    except sqlite3.Error:
        return True


# ----------------------------
# Public: connect() / ensure_db()
# ----------------------------
def connect() -> sqlite3.Connection:
    path = _resolved_db_path()
    if os.getenv("DB_REQUIRE_PERSISTENCE") == "1" and _is_fresh_db(path):
        raise RuntimeError(
            f"Refusing to start on fresh DB: {path}. "
            "Set BOT_DB_PATH to a persistent location (e.g. a Docker volume) "
            "or unset DB_REQUIRE_PERSISTENCE."
        )

    con = sqlite3.connect(path, timeout=5)
    con.execute("PRAGMA journal_mode=WAL")
    con.execute("PRAGMA synchronous=NORMAL")
    con.execute("PRAGMA busy_timeout=3000")
    return con


def ensure_db() -> None:
    """
    Idempotently create/upgrade every table the engine and the monitor
    feature read or write.
    """
    path = _resolved_db_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with sqlite3.connect(path, timeout=5) as con:
        cur = con.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        journal = cur.execute("PRAGMA journal_mode").fetchone()[0]
        cur.execute("PRAGMA synchronous=NORMAL")
        cur.execute("PRAGMA busy_timeout=3000")

        try:
            size = os.stat(path).st_size
        except FileNotFoundError:
            size = 0
        log.info("db.open path=%s size=%d journal=%s", path, size, journal)

        # ========== open_sessions (durable mirror of in-memory sessions) ==========
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS open_sessions (
                kind       TEXT    NOT NULL,
                guild_id   INTEGER NOT NULL,
                user_id    INTEGER NOT NULL,
                start_ms   INTEGER,
                dimension  INTEGER,
                PRIMARY KEY (kind, guild_id, user_id)
            )
            """
        )

        # ========== aggregate_buckets ==========
        # dimension 0 = no sub-dimension
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS aggregate_buckets (
                metric     TEXT    NOT NULL,
                guild_id   INTEGER NOT NULL,
                user_id    INTEGER NOT NULL,
                day        TEXT    NOT NULL,
                dimension  INTEGER NOT NULL DEFAULT 0,
                value      INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (metric, guild_id, user_id, day, dimension)
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_buckets_guild_day ON aggregate_buckets (metric, guild_id, day)"
        )

        # ========== monitor_config ==========
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS monitor_config (
                guild_id              INTEGER PRIMARY KEY,
                user_id               INTEGER NOT NULL,
                channel_id            INTEGER,
                session_start         INTEGER,
                last_status           TEXT,
                last_status_at        INTEGER,
                last_activity         TEXT,
                last_activity_at      INTEGER,
                last_custom_status    TEXT,
                last_custom_status_at INTEGER,
                language              TEXT
            )
            """
        )
        _ensure_column(con, "monitor_config", "last_custom_status", "TEXT")
        _ensure_column(con, "monitor_config", "last_custom_status_at", "INTEGER")
        _ensure_column(con, "monitor_config", "language", "TEXT")

        # ========== monitor_logs ==========
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS monitor_logs (
                id        INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id   INTEGER NOT NULL,
                timestamp INTEGER NOT NULL,
                message   TEXT    NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_monitor_logs_user ON monitor_logs (user_id, id)"
        )

        # ========== guild_settings ==========
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS guild_settings (
                guild_id INTEGER PRIMARY KEY,
                language TEXT
            )
            """
        )

        con.commit()
