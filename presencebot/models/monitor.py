from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import List, Optional, Tuple

from ..db import connect

log = logging.getLogger(__name__)

LOG_LIMIT = 200

# Sentinel for "leave this column alone" in update_presence().
_KEEP = object()


@dataclass
class MonitorConfig:
    guild_id: int
    user_id: int
    channel_id: Optional[int] = None
    session_start: Optional[int] = None
    last_status: Optional[str] = "offline"
    last_status_at: Optional[int] = None
    last_activity: Optional[str] = None
    last_activity_at: Optional[int] = None
    last_custom_status: Optional[str] = None
    last_custom_status_at: Optional[int] = None
    language: Optional[str] = None


_COLUMNS = tuple(f.name for f in fields(MonitorConfig))


def get(guild_id: int) -> Optional[MonitorConfig]:
    with connect() as con:
        row = con.execute(
            f"SELECT {', '.join(_COLUMNS)} FROM monitor_config WHERE guild_id=?",
            (guild_id,),
        ).fetchone()
    return MonitorConfig(*row) if row else None


def all_configs() -> List[MonitorConfig]:
    with connect() as con:
        rows = con.execute(f"SELECT {', '.join(_COLUMNS)} FROM monitor_config").fetchall()
    return [MonitorConfig(*row) for row in rows]


def save(cfg: MonitorConfig) -> None:
    values = asdict(cfg)
    updates = ", ".join(f"{c}=excluded.{c}" for c in _COLUMNS if c != "guild_id")
    with connect() as con:
        con.execute(
            f"""
            INSERT INTO monitor_config ({', '.join(_COLUMNS)})
            VALUES ({', '.join('?' for _ in _COLUMNS)})
            ON CONFLICT(guild_id) DO UPDATE SET {updates}
            """,
            tuple(values[c] for c in _COLUMNS),
        )
        con.commit()


def delete(guild_id: int) -> bool:
    with connect() as con:
        cur = con.execute("DELETE FROM monitor_config WHERE guild_id=?", (guild_id,))
        con.commit()
        return cur.rowcount > 0


def update_presence(
    guild_id: int,
    *,
    session_start=_KEEP,
    last_status=_KEEP,
    last_status_at=_KEEP,
) -> None:
    """The only presence fields the session engine is allowed to touch."""
    sets: List[str] = []
    params: list = []
    for column, value in (
        ("session_start", session_start),
        ("last_status", last_status),
        ("last_status_at", last_status_at),
    ):
        if value is not _KEEP:
            sets.append(f"{column}=?")
            params.append(value)
    if not sets:
        return
    with connect() as con:
        con.execute(
            f"UPDATE monitor_config SET {', '.join(sets)} WHERE guild_id=?",
            (*params, guild_id),
        )
        con.commit()


def update_fields(guild_id: int, /, **values) -> None:
    """Targeted column update so concurrent listeners never clobber each other."""
    unknown = set(values) - (set(_COLUMNS) - {"guild_id"})
    if unknown:
        raise ValueError(f"unknown monitor_config columns: {sorted(unknown)}")
    if not values:
        return
    sets = ", ".join(f"{column}=?" for column in values)
    with connect() as con:
        con.execute(
            f"UPDATE monitor_config SET {sets} WHERE guild_id=?",
            (*values.values(), guild_id),
        )
        con.commit()


# ---- narrative log (last LOG_LIMIT entries per user) ----

def append_log(user_id: int, timestamp: int, message: str) -> None:
    with connect() as con:
        con.execute(
            "INSERT INTO monitor_logs (user_id, timestamp, message) VALUES (?, ?, ?)",
            (user_id, timestamp, message),
        )
        con.execute(
            """
            DELETE FROM monitor_logs
            WHERE user_id=? AND id NOT IN (
              SELECT id FROM monitor_logs WHERE user_id=? ORDER BY id DESC LIMIT ?
            )
            """,
            (user_id, user_id, LOG_LIMIT),
        )
        con.commit()


def recent_logs(user_id: int, limit: int = 10) -> List[Tuple[int, str]]:
    """[(timestamp_ms, message)] newest first."""
    with connect() as con:
        return con.execute(
            """
            SELECT timestamp, message FROM monitor_logs
            WHERE user_id=?
            ORDER BY id DESC
            LIMIT ?
            """,
            (user_id, limit),
        ).fetchall()


__all__ = [
    "LOG_LIMIT",
    "MonitorConfig",
    "all_configs",
    "append_log",
    "delete",
    "get",
    "recent_logs",
    "save",
    "update_fields",
    "update_presence",
]
