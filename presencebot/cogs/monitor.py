from __future__ import annotations

import logging
import sqlite3
from typing import Dict, Optional

import discord
from discord.ext import commands

from ..config import ACTIVE_STATUSES, BOT_OWNER_ID, COMMAND_PREFIX, SUPPORTED_LANGUAGES
from ..models import buckets, monitor, settings
from ..models.open_sessions import KIND_ACTIVITY, OpenSession
from ..reconcile import ReconcileReport
from ..strings import S, activity_verb, format_duration, status_label
from ..ui.monitor import build_help_embed, build_status_embed
from ..utils.activity import custom_status_change
from ..utils.time import now_ms

log = logging.getLogger(__name__)


class MonitorCog(commands.Cog):
    """
    Follows one member per guild and relays a narrative of their presence
    (status, activities, custom status) to the bot owner by DM.

    Everything here reacts to events published by the presence cog and the
    session trackers; nothing in this cog writes activity totals.
    """

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self._targets: Dict[int, int] = {}  # guild_id -> monitored user_id
        self._owner: Optional[discord.abc.User] = None

    async def cog_load(self):
        self._refresh_targets()

    def _refresh_targets(self) -> None:
        self._targets = {cfg.guild_id: cfg.user_id for cfg in monitor.all_configs()}

    def _watching(self, guild_id: int, user_id: int) -> bool:
        return self._targets.get(guild_id) == user_id

    # -------- owner DM --------
    async def _owner_user(self) -> Optional[discord.abc.User]:
        if self._owner is not None:
            return self._owner
        try:
            if BOT_OWNER_ID:
                self._owner = self.bot.get_user(BOT_OWNER_ID) or await self.bot.fetch_user(BOT_OWNER_ID)
            else:
                self._owner = (await self.bot.application_info()).owner
        except discord.HTTPException:
            log.exception("monitor.owner_lookup_failed", extra={"owner_id": BOT_OWNER_ID})
            return None
        return self._owner

    async def _dm_owner(self, content: str) -> None:
        owner = await self._owner_user()
        if owner is None:
            log.warning("monitor.no_owner: dropping log line")
            return
        try:
            await owner.send(content)
        except discord.HTTPException:
            log.exception("monitor.dm_failed")

    async def _narrate(self, guild_id: int, user_id: int, at: int, text: str) -> None:
        """Store a log line, remember it as the last activity, and DM it."""
        try:
            monitor.append_log(user_id, at, text)
            monitor.update_fields(guild_id, last_activity=text, last_activity_at=at)
        except sqlite3.Error:
            log.exception("monitor.log_failed", extra={"guild_id": guild_id, "user_id": user_id})
        await self._dm_owner(text)

    def _session_start(self, guild_id: int, user_id: int, at: int) -> Optional[int]:
        """Start of the running activity session, or None while offline."""
        tracker = self.bot.activity_sessions  # type: ignore[attr-defined]
        if not tracker.is_open(guild_id, user_id):
            return None
        return at - tracker.elapsed(guild_id, user_id, now=at)

    def _store_presence(self, guild_id: int, **values) -> None:
        try:
            monitor.update_presence(guild_id, **values)
        except sqlite3.Error:
            log.exception("monitor.update_failed", extra={"guild_id": guild_id, "fields": sorted(values)})

    # -------- session engine events --------
    @commands.Cog.listener()
    async def on_sessions_reconciled(self, report: ReconcileReport):
        self._refresh_targets()
        at = now_ms()
        for guild_id, user_id in self._targets.items():
            guild = self.bot.get_guild(guild_id)
            member = guild.get_member(user_id) if guild else None
            if member is None:
                continue
            self._store_presence(
                guild_id,
                last_status=str(member.status),
                last_status_at=at,
                session_start=self._session_start(guild_id, user_id, at),
            )

    @commands.Cog.listener()
    async def on_session_open(self, kind: str, session: OpenSession):
        if kind == KIND_ACTIVITY and self._watching(session.guild_id, session.user_id):
            self._store_presence(session.guild_id, session_start=session.start_ms)

    @commands.Cog.listener()
    async def on_session_close(self, kind: str, session: OpenSession, at: int, elapsed: int):
        if kind == KIND_ACTIVITY and self._watching(session.guild_id, session.user_id):
            self._store_presence(session.guild_id, session_start=None)

    # -------- presence events --------
    @commands.Cog.listener()
    async def on_presence_status_change(
        self,
        member: discord.Member,
        old_status: str,
        new_status: str,
        elapsed: Optional[int],
        at: int,
    ):
        gid = member.guild.id
        if not self._watching(gid, member.id):
            return
        lang = settings.get_language(gid)
        self._store_presence(gid, last_status=new_status, last_status_at=at)

        if new_status in ACTIVE_STATUSES:
            text = S("logs.status_now", lang, user=member.display_name, status=status_label(new_status, lang))
        else:
            total = buckets.sum_range(buckets.METRIC_ACTIVITY, gid, member.id)
            text = "\n".join(
                (
                    S("logs.status_offline", lang, user=member.display_name, status=status_label(new_status, lang)),
                    S(
                        "logs.session_summary",
                        lang,
                        session=format_duration(elapsed or 0, lang),
                        total=format_duration(total, lang),
                    ),
                )
            )
        await self._narrate(gid, member.id, at, text)

    @commands.Cog.listener()
    async def on_activity_start(self, member: discord.Member, activity: discord.BaseActivity, at: int):
        await self._activity_line(member, activity, at, "start")

    @commands.Cog.listener()
    async def on_activity_stop(self, member: discord.Member, activity: discord.BaseActivity, at: int):
        await self._activity_line(member, activity, at, "stop")

    async def _activity_line(self, member: discord.Member, activity, at: int, phase: str) -> None:
        gid = member.guild.id
        if not self._watching(gid, member.id):
            return
        lang = settings.get_language(gid)
        text = S(
            f"logs.activity_{phase}",
            lang,
            user=member.display_name,
            verb=activity_verb(getattr(activity, "type", None), phase, lang),
            activity=getattr(activity, "name", None) or "?",
        )
        await self._narrate(gid, member.id, at, text)

    @commands.Cog.listener()
    async def on_custom_status_update(
        self,
        member: discord.Member,
        old_text: Optional[str],
        new_text: Optional[str],
        at: int,
    ):
        gid = member.guild.id
        if not self._watching(gid, member.id):
            return
        try:
            cfg = monitor.get(gid)
        except sqlite3.Error:
            log.exception("monitor.read_failed", extra={"guild_id": gid})
            return
        if cfg is None:
            return
        change = custom_status_change(old_text, cfg.last_custom_status, new_text)
        if change is None:
            return
        old, new = change
        try:
            monitor.update_fields(gid, last_custom_status=new, last_custom_status_at=at if new else None)
        except sqlite3.Error:
            log.exception("monitor.update_failed", extra={"guild_id": gid, "fields": ["last_custom_status"]})
        lang = settings.get_language(gid)
        none = S("custom_status.none", lang)
        text = S("logs.custom_status", lang, user_id=member.id, old=old or none, new=new or none)
        await self._narrate(gid, member.id, at, text)

    # -------- commands --------
    @commands.command(name="help")
    async def help_command(self, ctx: commands.Context):
        lang = settings.get_language(ctx.guild.id if ctx.guild else None)
        await ctx.reply(embed=build_help_embed(COMMAND_PREFIX, lang))

    @commands.command(name="monitor")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def monitor_command(self, ctx: commands.Context, target: Optional[discord.Member] = None):
        gid = ctx.guild.id
        lang = settings.get_language(gid)
        if target is None:
            return await ctx.reply(S("general.mention_required", lang, prefix=COMMAND_PREFIX))

        at = now_ms()
        monitor.save(
            monitor.MonitorConfig(
                guild_id=gid,
                user_id=target.id,
                channel_id=ctx.channel.id,
                session_start=self._session_start(gid, target.id, at),
                last_status=str(target.status),
                last_status_at=at,
                language=lang,
            )
        )
        self._targets[gid] = target.id
        log.info("monitor.started", extra={"guild_id": gid, "user_id": target.id})
        await ctx.reply(S("monitor.success", lang, user_id=target.id))

    @commands.command(name="stopmonitor")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def stopmonitor(self, ctx: commands.Context):
        gid = ctx.guild.id
        lang = settings.get_language(gid)
        if not monitor.delete(gid):
            return await ctx.reply(S("general.monitoring_not_configured", lang))
        self._targets.pop(gid, None)
        log.info("monitor.stopped", extra={"guild_id": gid})
        await ctx.reply(S("stopmonitor.success", lang))

    @commands.command(name="status")
    @commands.guild_only()
    async def status(self, ctx: commands.Context):
        gid = ctx.guild.id
        lang = settings.get_language(gid)
        cfg = monitor.get(gid)
        if cfg is None:
            return await ctx.reply(S("general.nothing_monitored", lang))

        total = buckets.sum_range(buckets.METRIC_ACTIVITY, gid, cfg.user_id)
        current = 0
        if cfg.last_status in ACTIVE_STATUSES:
            current = self.bot.activity_sessions.elapsed(gid, cfg.user_id)  # type: ignore[attr-defined]
        await ctx.reply(embed=build_status_embed(cfg, total_ms=total, current_ms=current, lang=lang))

    @commands.command(name="setlang")
    @commands.guild_only()
    async def setlang(self, ctx: commands.Context, code: Optional[str] = None):
        gid = ctx.guild.id
        lang = settings.get_language(gid)
        if not ctx.author.guild_permissions.manage_guild:
            return await ctx.reply(S("general.manage_required_lang", lang))
        code = (code or "").strip().lower()
        if not code:
            return await ctx.reply(S("general.language_missing", lang))
        if code not in SUPPORTED_LANGUAGES:
            return await ctx.reply(S("language.invalid", lang, languages=", ".join(SUPPORTED_LANGUAGES)))
        if code == lang:
            return await ctx.reply(
                S("general.language_already_set", lang, language=S(f"language.name.{code}", lang))
            )

        settings.set_language(gid, code)
        if monitor.get(gid) is not None:
            monitor.update_fields(gid, language=code)
        await ctx.reply(S(f"language.updated.{code}", code))

    async def cog_command_error(self, ctx: commands.Context, error: commands.CommandError):
        lang = settings.get_language(ctx.guild.id if ctx.guild else None)
        if isinstance(error, commands.MissingPermissions):
            await ctx.reply(S("general.manage_required", lang))
        elif isinstance(error, commands.BadArgument):
            await ctx.reply(S("general.mention_required", lang, prefix=COMMAND_PREFIX))
        elif isinstance(error, commands.NoPrivateMessage):
            return
        else:
            log.error("monitor.command_failed", exc_info=error)
            await ctx.reply(S("general.error", lang))


async def setup(bot: commands.Bot):
    await bot.add_cog(MonitorCog(bot))
