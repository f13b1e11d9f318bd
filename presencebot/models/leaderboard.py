from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from . import buckets


def _rank(acc: Dict[int, int | float], limit: int) -> List[Tuple[int, int | float]]:
    rows = [(uid, total) for uid, total in acc.items() if total > 0]
    rows.sort(key=lambda kv: (-kv[1], kv[0]))
    return rows[: max(0, int(limit))]


def top_n(
    metric: str,
    guild_id: int,
    days: Sequence[str],
    limit: int,
    dimension: Optional[int] = None,
) -> List[Tuple[int, int | float]]:
    """
    [(user_id, total)] over exactly `days`, highest first. Users with a zero
    total are left out; equal totals are ordered by user id.
    """
    wanted = set(days)
    acc: Dict[int, int | float] = defaultdict(int)
    for (uid, day, dim), value in buckets.read_all(metric, guild_id, list(days)).items():
        if day not in wanted:
            continue
        if dimension is not None and dim != dimension:
            continue
        acc[uid] += value
    return _rank(acc, limit)


def dimension_totals(metric: str, guild_id: int, days: Sequence[str]) -> Dict[int, int | float]:
    totals: Dict[int, int | float] = defaultdict(int)
    for (_uid, _day, dim), value in buckets.read_all(metric, guild_id, list(days)).items():
        if dim:
            totals[dim] += value
    return dict(totals)


def busiest_dimension(metric: str, guild_id: int, days: Sequence[str]) -> Optional[int]:
    """Sub-dimension (e.g. channel) with the largest total over the window."""
    totals = dimension_totals(metric, guild_id, days)
    best = _rank(totals, 1)
    return best[0][0] if best else None


def top_n_messages(
    guild_id: int,
    days: Sequence[str],
    limit: int,
    channel_id: Optional[int] = None,
) -> Tuple[Optional[int], List[Tuple[int, int | float]]]:
    """Message leaderboard inside one channel; the busiest one when not given."""
    if channel_id is None:
        channel_id = busiest_dimension(buckets.METRIC_MESSAGES, guild_id, days)
        if channel_id is None:
            return None, []
    return channel_id, top_n(buckets.METRIC_MESSAGES, guild_id, days, limit, dimension=channel_id)


__all__ = ["busiest_dimension", "dimension_totals", "top_n", "top_n_messages"]
