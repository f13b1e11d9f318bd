from __future__ import annotations

import logging

import discord
from discord.ext import commands, tasks

from ..config import ACTIVE_STATUSES, SESSION_RETRY_SECONDS
from ..reconcile import ReconcileReport
from ..sessions import SessionTracker
from ..utils.activity import custom_status_text, diff_activities
from ..utils.time import now_ms

log = logging.getLogger(__name__)


def _status(member: discord.Member) -> str:
    return str(getattr(member, "status", None) or "offline")


class PresenceCog(commands.Cog):
    """
    Presence updates -> activity sessions (online/idle/dnd vs offline) plus
    activity start/stop and custom status events for downstream listeners.
    """

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.tracker: SessionTracker = bot.activity_sessions  # type: ignore[attr-defined]
        self._retry_pending.start()

    def cog_unload(self):
        self._retry_pending.cancel()

    @commands.Cog.listener()
    async def on_sessions_reconciled(self, report: ReconcileReport):
        """Open sessions for members already active that have no record."""
        now = now_ms()
        primed = 0
        for guild in self.bot.guilds:
            for member in guild.members:
                if member.bot or _status(member) not in ACTIVE_STATUSES:
                    continue
                if self.tracker.open(guild.id, member.id, at=now):
                    primed += 1
        log.info("Activity sessions primed: %d new, %d resumed.", primed, report.adopted)

    @commands.Cog.listener()
    async def on_presence_update(self, before: discord.Member, after: discord.Member):
        if after.bot or not after.guild:
            return
        # Stamp on arrival; events queued behind reconciliation keep their own instant.
        at = now_ms()
        await self.bot.sessions_ready.wait()  # type: ignore[attr-defined]

        gid, uid = after.guild.id, after.id

        old_status, new_status = _status(before), _status(after)
        if old_status != new_status:
            elapsed = None
            if new_status in ACTIVE_STATUSES:
                self.tracker.open(gid, uid, at=at)
            else:
                elapsed = self.tracker.close(gid, uid, at=at)
            self.bot.dispatch("presence_status_change", after, old_status, new_status, elapsed, at)

        started, stopped = diff_activities(before.activities, after.activities)
        for activity in started:
            self.bot.dispatch("activity_start", after, activity, at)
        for activity in stopped:
            self.bot.dispatch("activity_stop", after, activity, at)

        old_text = custom_status_text(before.activities)
        new_text = custom_status_text(after.activities)
        # With no previous text the listener compares against its stored value.
        if old_text != new_text or old_text is None:
            self.bot.dispatch("custom_status_update", after, old_text, new_text, at)

    @tasks.loop(seconds=SESSION_RETRY_SECONDS)
    async def _retry_pending(self):
        if not self.tracker.pending():
            return
        flushed = self.tracker.retry_pending()
        log.info("Retried activity flushes: %d succeeded, %d pending.", flushed, len(self.tracker.pending()))

    @_retry_pending.before_loop
    async def _before_retry_pending(self):
        await self.bot.wait_until_ready()


async def setup(bot: commands.Bot):
    await bot.add_cog(PresenceCog(bot))
