from __future__ import annotations

import logging
import math
import sqlite3
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..db import connect

log = logging.getLogger(__name__)

METRIC_ACTIVITY = "activity"
METRIC_VOICE = "voice"
METRIC_MESSAGES = "messages"
METRICS = (METRIC_ACTIVITY, METRIC_VOICE, METRIC_MESSAGES)

# (user_id, day, dimension)
BucketKey = Tuple[int, str, int]


def as_number(value) -> int | float:
    """Coerce a stored bucket value; anything unusable reads as zero."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(num) or num < 0:
        return 0
    return int(num) if num.is_integer() else num


def _valid_delta(delta) -> bool:
    try:
        num = float(delta)
    except (TypeError, ValueError):
        return False
    return math.isfinite(num) and num > 0


def _upsert_bucket(
    con: sqlite3.Connection,
    metric: str,
    guild_id: int,
    user_id: int,
    day: str,
    delta: int | float,
    dimension: int,
) -> None:
    cur = con.cursor()
    cur.execute(
        """
        INSERT INTO aggregate_buckets (metric, guild_id, user_id, day, dimension, value)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(metric, guild_id, user_id, day, dimension) DO UPDATE SET
          value = value + excluded.value
        """,
        (metric, guild_id, user_id, day, int(dimension or 0), delta),
    )


def add_segments(
    con: sqlite3.Connection,
    metric: str,
    guild_id: int,
    user_id: int,
    segments: Iterable[Tuple[str, int | float]],
    dimension: Optional[int] = None,
) -> int:
    """Stage (day, delta) increments on an open connection; caller commits."""
    applied = 0
    for day, delta in segments:
        if not _valid_delta(delta):
            continue
        _upsert_bucket(con, metric, guild_id, user_id, day, delta, dimension or 0)
        applied += 1
    return applied


def increment(
    metric: str,
    guild_id: int,
    user_id: int,
    day: str,
    delta: int | float,
    dimension: Optional[int] = None,
) -> bool:
    """
    Add `delta` to one bucket, creating it if absent. Zero, negative and
    non-finite deltas are ignored. The write is committed before returning;
    storage errors propagate to the caller.
    """
    if not _valid_delta(delta):
        return False
    with connect() as con:
        _upsert_bucket(con, metric, guild_id, user_id, day, delta, dimension or 0)
        con.commit()
    return True


def _day_filter(days: Optional[Sequence[str]]) -> Tuple[str, list]:
    if days is None:
        return "", []
    placeholders = ",".join("?" for _ in days)
    return f" AND day IN ({placeholders})", list(days)


def sum_range(
    metric: str,
    guild_id: int,
    user_id: int,
    days: Optional[Sequence[str]] = None,
    dimension: Optional[int] = None,
) -> int | float:
    """Sum a subject's buckets over `days` (whole history when None)."""
    if days is not None and not days:
        return 0
    where, params = _day_filter(days)
    if dimension is not None:
        where += " AND dimension=?"
        params.append(int(dimension))
    try:
        with connect() as con:
            rows = con.execute(
                f"""
                SELECT value FROM aggregate_buckets
                WHERE metric=? AND guild_id=? AND user_id=?{where}
                """,
                (metric, guild_id, user_id, *params),
            ).fetchall()
    except sqlite3.Error:
        log.exception("buckets.sum_failed", extra={"guild_id": guild_id, "user_id": user_id, "metric": metric})
        return 0
    return sum(as_number(v) for (v,) in rows)


def read_all(
    metric: str, guild_id: int, days: Optional[Sequence[str]] = None
) -> Dict[BucketKey, int | float]:
    """Every bucket under metric+guild, keyed by (user_id, day, dimension)."""
    if days is not None and not days:
        return {}
    where, params = _day_filter(days)
    try:
        with connect() as con:
            rows = con.execute(
                f"""
                SELECT user_id, day, dimension, value FROM aggregate_buckets
                WHERE metric=? AND guild_id=?{where}
                """,
                (metric, guild_id, *params),
            ).fetchall()
    except sqlite3.Error:
        log.exception("buckets.read_failed", extra={"guild_id": guild_id, "metric": metric})
        return {}
    out: Dict[BucketKey, int | float] = {}
    for uid, day, dim, value in rows:
        try:
            key = (int(uid), str(day), int(dim or 0))
        except (TypeError, ValueError):
            continue
        out[key] = as_number(value)
    return out


def series(
    metric: str, guild_id: int, user_id: int, days: Sequence[str]
) -> List[Tuple[str, int | float]]:
    """[(day, value)] aligned to `days`; missing days are zero."""
    totals: Dict[str, int | float] = {day: 0 for day in days}
    for (uid, day, _dim), value in read_all(metric, guild_id, days).items():
        if uid == user_id and day in totals:
            totals[day] += value
    return [(day, totals[day]) for day in days]


def reset(guild_id: int, metric: Optional[str] = None) -> int:
    """Administrative reset; the only path that removes buckets."""
    with connect() as con:
        if metric is None:
            cur = con.execute("DELETE FROM aggregate_buckets WHERE guild_id=?", (guild_id,))
        else:
            cur = con.execute(
                "DELETE FROM aggregate_buckets WHERE guild_id=? AND metric=?",
                (guild_id, metric),
            )
        con.commit()
        return cur.rowcount


__all__ = [
    "METRICS",
    "METRIC_ACTIVITY",
    "METRIC_MESSAGES",
    "METRIC_VOICE",
    "add_segments",
    "as_number",
    "increment",
    "read_all",
    "reset",
    "series",
    "sum_range",
]
