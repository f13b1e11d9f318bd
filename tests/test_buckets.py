import math
import sqlite3

from presencebot.models import buckets
from presencebot.models.buckets import METRIC_ACTIVITY, METRIC_MESSAGES, METRIC_VOICE

GID = 1
UID = 10


def test_increment_creates_and_accumulates(db):
    assert buckets.increment(METRIC_ACTIVITY, GID, UID, "2024-03-01", 1000)
    assert buckets.increment(METRIC_ACTIVITY, GID, UID, "2024-03-01", 500)
    assert buckets.sum_range(METRIC_ACTIVITY, GID, UID, ["2024-03-01"]) == 1500


def test_non_positive_increments_are_ignored(db):
    for delta in (0, -5, math.nan, math.inf, "abc"):
        assert buckets.increment(METRIC_ACTIVITY, GID, UID, "2024-03-01", delta) is False
    assert buckets.read_all(METRIC_ACTIVITY, GID) == {}


def test_buckets_are_isolated_by_metric_guild_and_dimension(db):
    buckets.increment(METRIC_MESSAGES, GID, UID, "2024-03-01", 2, dimension=100)
    buckets.increment(METRIC_MESSAGES, GID, UID, "2024-03-01", 3, dimension=200)
    buckets.increment(METRIC_MESSAGES, 2, UID, "2024-03-01", 7, dimension=100)
    buckets.increment(METRIC_VOICE, GID, UID, "2024-03-01", 9)

    assert buckets.sum_range(METRIC_MESSAGES, GID, UID) == 5
    assert buckets.sum_range(METRIC_MESSAGES, GID, UID, dimension=100) == 2
    assert buckets.sum_range(METRIC_MESSAGES, 2, UID) == 7
    assert buckets.sum_range(METRIC_VOICE, GID, UID) == 9


def test_malformed_stored_value_reads_as_zero(db):
    buckets.increment(METRIC_ACTIVITY, GID, UID, "2024-03-01", 1000)
    with sqlite3.connect(db) as con:
        con.execute(
            "INSERT INTO aggregate_buckets (metric, guild_id, user_id, day, dimension, value)"
            " VALUES (?, ?, ?, ?, 0, ?)",
            (METRIC_ACTIVITY, GID, UID, "2024-03-02", "garbage"),
        )
        con.commit()
    assert buckets.sum_range(METRIC_ACTIVITY, GID, UID) == 1000
    assert buckets.read_all(METRIC_ACTIVITY, GID)[(UID, "2024-03-02", 0)] == 0


def test_as_number():
    assert buckets.as_number(None) == 0
    assert buckets.as_number("12") == 12
    assert buckets.as_number(1.5) == 1.5
    assert buckets.as_number(-3) == 0
    assert buckets.as_number("nope") == 0
    assert buckets.as_number(math.inf) == 0
    assert buckets.as_number(True) == 0


def test_series_fills_missing_days_with_zero(db):
    buckets.increment(METRIC_ACTIVITY, GID, UID, "2024-03-02", 60_000)
    days = ["2024-03-01", "2024-03-02", "2024-03-03"]
    assert buckets.series(METRIC_ACTIVITY, GID, UID, days) == [
        ("2024-03-01", 0),
        ("2024-03-02", 60_000),
        ("2024-03-03", 0),
    ]


def test_sum_over_empty_window_is_zero(db):
    buckets.increment(METRIC_ACTIVITY, GID, UID, "2024-03-02", 60_000)
    assert buckets.sum_range(METRIC_ACTIVITY, GID, UID, []) == 0


def test_reset_by_metric_and_all(db):
    buckets.increment(METRIC_ACTIVITY, GID, UID, "2024-03-01", 1)
    buckets.increment(METRIC_VOICE, GID, UID, "2024-03-01", 1)
    buckets.increment(METRIC_VOICE, 2, UID, "2024-03-01", 1)

    assert buckets.reset(GID, METRIC_VOICE) == 1
    assert buckets.sum_range(METRIC_ACTIVITY, GID, UID) == 1
    assert buckets.reset(GID) == 1
    assert buckets.sum_range(METRIC_VOICE, 2, UID) == 1
