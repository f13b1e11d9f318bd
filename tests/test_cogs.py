import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import discord

from presencebot.cogs import presence as presence_cog
from presencebot.cogs import voice as voice_cog
from presencebot.cogs.presence import PresenceCog
from presencebot.cogs.stats import StatsCog
from presencebot.cogs.voice import VoiceCog
from presencebot.models import buckets
from presencebot.models.buckets import METRIC_ACTIVITY, METRIC_MESSAGES, METRIC_VOICE
from presencebot.models.open_sessions import KIND_ACTIVITY, KIND_VOICE
from presencebot.sessions import SessionTracker
from presencebot.utils.time import day_key, now_ms

GID = 1
UID = 10
MINUTE = 60_000


class FakeBot:
    def __init__(self):
        self.dispatched = []
        self.guilds = []
        self.activity_sessions = SessionTracker(KIND_ACTIVITY, METRIC_ACTIVITY, notify=self.dispatch)
        self.voice_sessions = SessionTracker(KIND_VOICE, METRIC_VOICE, notify=self.dispatch)
        self.sessions_ready = asyncio.Event()
        self.sessions_ready.set()

    def dispatch(self, event, *args):
        self.dispatched.append((event, args))

    def events(self):
        return [name for name, _ in self.dispatched]

    async def wait_until_ready(self):
        return None


def member(status="offline", activities=(), voice_channel=None):
    return SimpleNamespace(
        bot=False,
        id=UID,
        guild=SimpleNamespace(id=GID),
        status=status,
        activities=list(activities),
        voice=SimpleNamespace(channel=voice_channel) if voice_channel else None,
    )


def voice_state(channel_id=None):
    return SimpleNamespace(channel=SimpleNamespace(id=channel_id) if channel_id else None)


def game(name):
    return SimpleNamespace(type=discord.ActivityType.playing, name=name, details=None, state=None, application_id=None)


def test_presence_update_opens_and_closes_sessions(db):
    async def run():
        bot = FakeBot()
        cog = PresenceCog(bot)
        try:
            await cog.on_presence_update(member("offline"), member("online", [game("Chess")]))
            assert bot.activity_sessions.is_open(GID, UID)
            assert "presence_status_change" in bot.events()
            assert "activity_start" in bot.events()

            bot.dispatched.clear()
            await cog.on_presence_update(member("online", [game("Chess")]), member("idle", [game("Chess")]))
            assert bot.activity_sessions.is_open(GID, UID)
            assert "activity_start" not in bot.events()

            await cog.on_presence_update(member("idle", [game("Chess")]), member("offline"))
            assert not bot.activity_sessions.is_open(GID, UID)
            assert "session_close" in bot.events()
            assert "activity_stop" in bot.events()
        finally:
            cog.cog_unload()

    asyncio.run(run())


def test_bot_members_are_ignored(db):
    async def run():
        bot = FakeBot()
        cog = PresenceCog(bot)
        try:
            robot = member("online")
            robot.bot = True
            await cog.on_presence_update(member("offline"), robot)
            assert bot.dispatched == []
        finally:
            cog.cog_unload()

    asyncio.run(run())


def test_voice_join_move_leave(db):
    async def run():
        bot = FakeBot()
        cog = VoiceCog(bot)
        try:
            m = member()
            await cog.on_voice_state_update(m, voice_state(None), voice_state(100))
            assert bot.voice_sessions.get(GID, UID).dimension == 100

            # mute/deafen keeps the same channel
            await cog.on_voice_state_update(m, voice_state(100), voice_state(100))
            assert bot.voice_sessions.get(GID, UID).dimension == 100

            await cog.on_voice_state_update(m, voice_state(100), voice_state(200))
            assert bot.voice_sessions.get(GID, UID).dimension == 200

            await cog.on_voice_state_update(m, voice_state(200), voice_state(None))
            assert not bot.voice_sessions.is_open(GID, UID)
        finally:
            cog.cog_unload()

    asyncio.run(run())
    dims = {dim for (_uid, _day, dim) in buckets.read_all(METRIC_VOICE, GID)}
    assert dims <= {100, 200}


def test_reconciled_event_primes_active_members(db):
    async def run():
        bot = FakeBot()
        online = member("online", voice_channel=SimpleNamespace(id=300))
        bot.guilds = [SimpleNamespace(id=GID, members=[online])]
        presence, voice = PresenceCog(bot), VoiceCog(bot)
        try:
            await presence.on_sessions_reconciled(SimpleNamespace(adopted=0))
            await voice.on_sessions_reconciled(SimpleNamespace(adopted=0))
        finally:
            presence.cog_unload()
            voice.cog_unload()
        assert bot.activity_sessions.is_open(GID, UID)
        assert bot.voice_sessions.get(GID, UID).dimension == 300

    asyncio.run(run())


def _stamp_before_ready(monkeypatch, module, handler):
    """Deliver an event while reconciliation is still running; return the instant it arrived."""
    clock = {"now": 1_700_000_000_000}
    monkeypatch.setattr(module, "now_ms", lambda: clock["now"])
    arrived = clock["now"]

    async def run():
        bot = FakeBot()
        bot.sessions_ready.clear()
        task = asyncio.create_task(handler(bot))
        await asyncio.sleep(0)
        clock["now"] += 5 * MINUTE
        bot.sessions_ready.set()
        return await task

    return arrived, asyncio.run(run())


def test_presence_event_keeps_arrival_time_across_reconcile(db, monkeypatch):
    async def handler(bot):
        cog = PresenceCog(bot)
        try:
            await cog.on_presence_update(member("offline"), member("online"))
        finally:
            cog.cog_unload()
        return bot

    arrived, bot = _stamp_before_ready(monkeypatch, presence_cog, handler)
    assert bot.activity_sessions.get(GID, UID).start_ms == arrived
    (args,) = [args for name, args in bot.dispatched if name == "presence_status_change"]
    assert args[-1] == arrived


def test_voice_event_keeps_arrival_time_across_reconcile(db, monkeypatch):
    async def handler(bot):
        cog = VoiceCog(bot)
        try:
            await cog.on_voice_state_update(member(), voice_state(None), voice_state(100))
        finally:
            cog.cog_unload()
        return bot

    arrived, bot = _stamp_before_ready(monkeypatch, voice_cog, handler)
    assert bot.voice_sessions.get(GID, UID).start_ms == arrived


def test_message_counted_on_its_creation_day(db):
    sent = datetime(2024, 3, 1, 23, 59, 30, tzinfo=timezone.utc)
    message = SimpleNamespace(
        author=SimpleNamespace(bot=False, id=UID),
        guild=SimpleNamespace(id=GID),
        channel=SimpleNamespace(id=500),
        created_at=sent,
    )
    asyncio.run(StatsCog(FakeBot()).on_message(message))
    assert buckets.read_all(METRIC_MESSAGES, GID) == {(UID, "2024-03-01", 500): 1}


def test_top_accepts_channel_without_days(db):
    today = day_key(now_ms())
    buckets.increment(METRIC_VOICE, GID, UID, today, 10 * MINUTE, dimension=100)
    buckets.increment(METRIC_VOICE, GID, 11, today, 20 * MINUTE, dimension=200)

    replies = []

    async def send(*_args, **kwargs):
        replies.append(kwargs.get("embed"))

    guild = SimpleNamespace(
        id=GID,
        get_member=lambda _uid: None,
        get_channel=lambda _cid: SimpleNamespace(name="lounge"),
    )
    ctx = SimpleNamespace(guild=guild, send=send)
    cog = StatsCog(FakeBot())
    asyncio.run(StatsCog.top.callback(cog, ctx, "voice", None, SimpleNamespace(id=100)))

    (embed,) = replies
    assert "last 7 day(s)" in embed.title
    assert embed.description == f"1. <@{UID}> - **10m**"
    assert embed.footer.text == "Channel: #lounge"
