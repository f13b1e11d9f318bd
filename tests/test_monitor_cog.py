import asyncio
import sqlite3
from datetime import datetime, timezone
from types import SimpleNamespace

import discord
import pytest

from presencebot.cogs import monitor as monitor_cog
from presencebot.cogs.monitor import MonitorCog
from presencebot.models import buckets, monitor
from presencebot.models.buckets import METRIC_ACTIVITY
from presencebot.models.open_sessions import KIND_ACTIVITY, KIND_VOICE, OpenSession
from presencebot.reconcile import LiveState, OrphanSession, member_probe
from presencebot.sessions import SessionTracker
from presencebot.utils.time import to_ms

GID = 1
UID = 10
MINUTE = 60_000


def _ms(*args) -> int:
    return to_ms(datetime(*args, tzinfo=timezone.utc))


class Owner:
    def __init__(self):
        self.sent = []

    async def send(self, content):
        self.sent.append(content)


class FakeBot:
    def __init__(self, guild=None):
        self.owner = Owner()
        self.guild = guild
        self.activity_sessions = SessionTracker(KIND_ACTIVITY, METRIC_ACTIVITY)

    async def application_info(self):
        return SimpleNamespace(owner=self.owner)

    def get_user(self, _user_id):
        return None

    def get_guild(self, guild_id):
        if self.guild is not None and self.guild.id == guild_id:
            return self.guild
        return None


def watched(status="online"):
    return SimpleNamespace(
        id=UID,
        display_name="Ada",
        status=status,
        guild=SimpleNamespace(id=GID),
    )


@pytest.fixture
def cog(db, monkeypatch):
    monkeypatch.setattr(monitor_cog, "BOT_OWNER_ID", 0)
    monitor.save(monitor.MonitorConfig(guild_id=GID, user_id=UID, channel_id=5))
    cog = MonitorCog(FakeBot())
    asyncio.run(cog.cog_load())
    return cog


def test_going_offline_reports_session_and_total(cog):
    t0 = _ms(2024, 3, 1, 10, 0)
    buckets.increment(METRIC_ACTIVITY, GID, UID, "2024-02-28", 60 * MINUTE)
    buckets.increment(METRIC_ACTIVITY, GID, UID, "2024-03-01", 30 * MINUTE)

    asyncio.run(cog.on_presence_status_change(watched("offline"), "online", "offline", 30 * MINUTE, t0))

    assert cog.bot.owner.sent == [
        "📴 **Ada** went **OFFLINE**.\nActive for 30m this session. Total active time: 1h 30m."
    ]
    cfg = monitor.get(GID)
    assert (cfg.last_status, cfg.last_status_at) == ("offline", t0)
    assert cfg.last_activity == cog.bot.owner.sent[0]
    assert monitor.recent_logs(UID) == [(t0, cog.bot.owner.sent[0])]


def test_coming_online_reports_new_status(cog):
    t0 = _ms(2024, 3, 1, 10, 0)
    asyncio.run(cog.on_presence_status_change(watched("dnd"), "offline", "dnd", None, t0))

    assert cog.bot.owner.sent == ["🔔 **Ada** is now **DO NOT DISTURB**."]
    assert monitor.get(GID).last_status == "dnd"


def test_unwatched_member_is_ignored(cog):
    other = SimpleNamespace(id=99, display_name="Bob", status="online", guild=SimpleNamespace(id=GID))
    asyncio.run(cog.on_presence_status_change(other, "offline", "online", None, 0))
    assert cog.bot.owner.sent == []
    assert monitor.recent_logs(99) == []


def test_custom_status_compares_against_stored_value(cog):
    t0 = _ms(2024, 3, 1, 10, 0)
    monitor.update_fields(GID, last_custom_status="🌙 sleeping", last_custom_status_at=t0)

    async def run():
        # First event after a restart has no previous text of its own.
        await cog.on_custom_status_update(watched(), None, "🌙 sleeping", t0 + MINUTE)
        assert cog.bot.owner.sent == []

        await cog.on_custom_status_update(watched(), None, "☕ coffee", t0 + 2 * MINUTE)
        await cog.on_custom_status_update(watched(), "☕ coffee", None, t0 + 3 * MINUTE)

    asyncio.run(run())
    assert cog.bot.owner.sent == [
        f"💬 <@{UID}> changed status: ‘🌙 sleeping’ → ‘☕ coffee’.",
        f"💬 <@{UID}> changed status: ‘☕ coffee’ → ‘None’.",
    ]
    cfg = monitor.get(GID)
    assert (cfg.last_custom_status, cfg.last_custom_status_at) == (None, None)


def test_session_start_follows_activity_sessions(cog):
    t0 = _ms(2024, 3, 1, 10, 0)
    session = OpenSession(KIND_ACTIVITY, GID, UID, t0)

    async def run():
        await cog.on_session_open(KIND_ACTIVITY, session)
        assert monitor.get(GID).session_start == t0

        # voice sessions never touch the monitored activity session
        await cog.on_session_close(KIND_VOICE, OpenSession(KIND_VOICE, GID, UID, t0, 100), t0 + MINUTE, MINUTE)
        assert monitor.get(GID).session_start == t0

        await cog.on_session_close(KIND_ACTIVITY, session, t0 + MINUTE, MINUTE)
        assert monitor.get(GID).session_start is None

    asyncio.run(run())


def test_reconciled_event_records_running_session(cog):
    t0 = _ms(2024, 3, 1, 10, 0)
    cog.bot.guild = SimpleNamespace(id=GID, get_member=lambda _uid: watched("idle"))
    cog.bot.activity_sessions.open(GID, UID, at=t0)

    asyncio.run(cog.on_sessions_reconciled(SimpleNamespace(adopted=1)))

    cfg = monitor.get(GID)
    assert cfg.last_status == "idle"
    assert cfg.session_start == t0


def test_presence_store_failure_still_delivers_log(cog, monkeypatch):
    def locked(*_args, **_kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(monitor, "update_presence", locked)
    t0 = _ms(2024, 3, 1, 10, 0)

    async def run():
        await cog.on_session_open(KIND_ACTIVITY, OpenSession(KIND_ACTIVITY, GID, UID, t0))
        await cog.on_presence_status_change(watched("online"), "offline", "online", None, t0)

    asyncio.run(run())
    assert cog.bot.owner.sent == ["🔔 **Ada** is now **ONLINE**."]


# -------- live-state lookup used by reconciliation --------

def _guild(member=None, fetched=None):
    async def fetch_member(_uid):
        if isinstance(fetched, Exception):
            raise fetched
        return fetched

    return SimpleNamespace(id=GID, get_member=lambda _uid: member, fetch_member=fetch_member)


def _lookup(guild, session):
    return asyncio.run(member_probe(FakeBot(guild))(session))


def test_lookup_missing_guild_is_orphan():
    with pytest.raises(OrphanSession):
        _lookup(None, OpenSession(KIND_ACTIVITY, GID, UID, 0))


def test_lookup_member_gone_is_orphan():
    gone = discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown Member")
    with pytest.raises(OrphanSession):
        _lookup(_guild(fetched=gone), OpenSession(KIND_ACTIVITY, GID, UID, 0))


def test_lookup_falls_back_to_fetch():
    state = _lookup(_guild(fetched=watched("idle")), OpenSession(KIND_ACTIVITY, GID, UID, 0))
    assert state == LiveState(True)


def test_lookup_maps_statuses():
    session = OpenSession(KIND_ACTIVITY, GID, UID, 0)
    assert _lookup(_guild(watched("dnd")), session) == LiveState(True)
    assert _lookup(_guild(watched("offline")), session) == LiveState(False)


def test_lookup_reports_voice_channel():
    session = OpenSession(KIND_VOICE, GID, UID, 0, 100)
    in_voice = SimpleNamespace(voice=SimpleNamespace(channel=SimpleNamespace(id=200)), status="online")
    assert _lookup(_guild(in_voice), session) == LiveState(True, 200)

    left = SimpleNamespace(voice=None, status="online")
    assert _lookup(_guild(left), session) == LiveState(False, None)
