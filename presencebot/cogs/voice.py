from __future__ import annotations

import logging
from typing import Optional

import discord
from discord.ext import commands, tasks

from ..config import SESSION_RETRY_SECONDS
from ..reconcile import ReconcileReport
from ..sessions import SessionTracker
from ..utils.time import now_ms

log = logging.getLogger(__name__)


def _channel_id(state: Optional[discord.VoiceState]) -> Optional[int]:
    channel = getattr(state, "channel", None)
    return channel.id if channel else None


class VoiceCog(commands.Cog):
    """
    Voice channel sessions. A move between channels closes the old session
    and opens a new one, so every millisecond lands on exactly one channel.
    """

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.tracker: SessionTracker = bot.voice_sessions  # type: ignore[attr-defined]
        self._retry_pending.start()

    def cog_unload(self):
        self._retry_pending.cancel()

    @commands.Cog.listener()
    async def on_sessions_reconciled(self, report: ReconcileReport):
        """Opens sessions for users already in voice that have no record."""
        now = now_ms()
        primed = 0
        for guild in self.bot.guilds:
            for member in guild.members:
                channel_id = _channel_id(getattr(member, "voice", None))
                if member.bot or channel_id is None:
                    continue
                if self.tracker.open(guild.id, member.id, channel_id, at=now):
                    primed += 1
        log.info("Voice sessions primed: %d new.", primed)

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ):
        if member.bot or not member.guild:
            return
        before_id, after_id = _channel_id(before), _channel_id(after)
        if before_id == after_id:
            return  # mute/deafen/stream toggles
        at = now_ms()
        await self.bot.sessions_ready.wait()  # type: ignore[attr-defined]

        gid, uid = member.guild.id, member.id

        if before_id is not None and after_id is not None:
            self.tracker.move(gid, uid, after_id, at=at)
        elif after_id is not None:
            self.tracker.open(gid, uid, after_id, at=at)
        else:
            self.tracker.close(gid, uid, fallback_dimension=before_id, at=at)

    @tasks.loop(seconds=SESSION_RETRY_SECONDS)
    async def _retry_pending(self):
        if not self.tracker.pending():
            return
        flushed = self.tracker.retry_pending()
        log.info("Retried voice flushes: %d succeeded, %d pending.", flushed, len(self.tracker.pending()))

    @_retry_pending.before_loop
    async def _before_retry_pending(self):
        await self.bot.wait_until_ready()


async def setup(bot: commands.Bot):
    await bot.add_cog(VoiceCog(bot))
