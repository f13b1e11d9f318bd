from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from dateutil import parser as date_parser

from ..config import MAX_WINDOW_DAYS, UTC

DAY_MS = 86_400_000
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def now_ms() -> int:
    return int(time.time() * 1000)


def to_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


def from_ms(ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=ms)


def day_key(ms: int) -> str:
    """UTC calendar day ('YYYY-MM-DD') containing the epoch-millisecond instant."""
    return (_EPOCH + timedelta(days=ms // DAY_MS)).strftime("%Y-%m-%d")


def split_by_utc_day(start_ms: int, end_ms: int) -> List[Tuple[str, int]]:
    """
    Split the half-open interval [start_ms, end_ms) at UTC midnights.

    Returns (day, duration_ms) segments in chronological order. They are
    contiguous and sum to end_ms - start_ms. An empty or inverted interval
    yields no segments.
    """
    segments: List[Tuple[str, int]] = []
    if end_ms <= start_ms:
        return segments
    cursor = start_ms
    while cursor < end_ms:
        next_midnight = (cursor // DAY_MS + 1) * DAY_MS
        stop = min(end_ms, next_midnight)
        segments.append((day_key(cursor), stop - cursor))
        cursor = stop
    return segments


def clamp_window(days: int) -> int:
    return max(1, min(int(days), MAX_WINDOW_DAYS))


def date_keys(days: int, end_ms: Optional[int] = None) -> List[str]:
    """Last `days` UTC day keys ending on the day of end_ms (oldest first)."""
    n = clamp_window(days)
    end_day = (end_ms if end_ms is not None else now_ms()) // DAY_MS
    return [day_key((end_day - offset) * DAY_MS) for offset in range(n - 1, -1, -1)]


def parse_day(value: str) -> Optional[int]:
    """Start of the UTC day named by a user-supplied date, in epoch ms."""
    try:
        dt = date_parser.isoparse(value.strip())
    except (ValueError, OverflowError):
        return None
    return to_ms(dt) // DAY_MS * DAY_MS


__all__ = [
    "DAY_MS",
    "clamp_window",
    "date_keys",
    "day_key",
    "from_ms",
    "now_ms",
    "parse_day",
    "split_by_utc_day",
    "to_ms",
]
