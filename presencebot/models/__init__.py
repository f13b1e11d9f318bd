"""Modular database access layer for presencebot."""

from . import buckets
from . import leaderboard
from . import monitor
from . import open_sessions
from . import settings

__all__ = [
    "buckets",
    "leaderboard",
    "monitor",
    "open_sessions",
    "settings",
]
