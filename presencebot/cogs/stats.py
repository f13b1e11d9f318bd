from __future__ import annotations

import logging
import sqlite3
from typing import Optional

import discord
from discord.ext import commands

from ..config import COMMAND_PREFIX
from ..models import buckets, leaderboard, settings
from ..strings import S
from ..ui.stats import build_daily_embed, build_leaderboard_embed
from ..utils.time import clamp_window, date_keys, day_key, now_ms, parse_day, to_ms

log = logging.getLogger(__name__)

TOP_LIMIT = 10


class StatsCog(commands.Cog):
    """Message counting plus leaderboards over the daily buckets."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    # -------- listeners --------
    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot or not message.guild:
            return
        try:
            buckets.increment(
                buckets.METRIC_MESSAGES,
                message.guild.id,
                message.author.id,
                day_key(to_ms(message.created_at)),
                1,
                dimension=message.channel.id,
            )
        except sqlite3.Error:
            log.exception(
                "stats.message_increment_failed",
                extra={"guild_id": message.guild.id, "user_id": message.author.id},
            )

    # -------- commands --------
    @commands.command(name="top")
    @commands.guild_only()
    async def top(
        self,
        ctx: commands.Context,
        metric: str = buckets.METRIC_ACTIVITY,
        days: Optional[int] = None,
        channel: Optional[discord.abc.GuildChannel] = None,
    ):
        lang = settings.get_language(ctx.guild.id)
        metric = metric.lower()
        if metric not in buckets.METRICS:
            return await ctx.send(S("stats.bad_metric", lang, metrics=", ".join(buckets.METRICS)))

        days = clamp_window(days or 7)
        keys = date_keys(days)
        channel_id = channel.id if channel else None
        if metric == buckets.METRIC_MESSAGES:
            channel_id, rows = leaderboard.top_n_messages(ctx.guild.id, keys, TOP_LIMIT, channel_id)
        else:
            rows = leaderboard.top_n(metric, ctx.guild.id, keys, TOP_LIMIT, dimension=channel_id)

        embed = build_leaderboard_embed(
            guild=ctx.guild,
            metric=metric,
            days=days,
            rows=rows,
            lang=lang,
            channel_id=channel_id,
        )
        await ctx.send(embed=embed)

    @commands.command(name="daily")
    @commands.guild_only()
    async def daily(
        self,
        ctx: commands.Context,
        member: Optional[discord.Member] = None,
        days: int = 7,
        end: Optional[str] = None,
    ):
        lang = settings.get_language(ctx.guild.id)
        member = member or ctx.author
        end_ms = now_ms()
        if end:
            parsed = parse_day(end)
            if parsed is None:
                return await ctx.send(S("stats.bad_date", lang))
            end_ms = parsed

        keys = date_keys(days, end_ms)
        series = buckets.series(buckets.METRIC_ACTIVITY, ctx.guild.id, member.id, keys)
        counting = self.bot.activity_sessions.elapsed(ctx.guild.id, member.id)  # type: ignore[attr-defined]
        embed = build_daily_embed(
            user_label=member.display_name,
            series=series,
            counting_ms=counting,
            lang=lang,
        )
        await ctx.send(embed=embed)

    @commands.command(name="resetstats")
    @commands.guild_only()
    @commands.has_permissions(manage_guild=True)
    async def resetstats(self, ctx: commands.Context, metric: Optional[str] = None):
        lang = settings.get_language(ctx.guild.id)
        if metric is not None:
            metric = metric.lower()
            if metric not in buckets.METRICS:
                return await ctx.send(S("stats.bad_metric", lang, metrics=", ".join(buckets.METRICS)))
        rows = buckets.reset(ctx.guild.id, metric)
        label = S(f"stats.metric.{metric}", lang) if metric else "*"
        log.info("stats.reset", extra={"guild_id": ctx.guild.id, "metric": metric, "rows": rows})
        await ctx.send(S("stats.reset.ok", lang, metric=label, rows=rows))

    async def cog_command_error(self, ctx: commands.Context, error: commands.CommandError):
        lang = settings.get_language(ctx.guild.id if ctx.guild else None)
        if isinstance(error, commands.MissingPermissions):
            await ctx.send(S("general.manage_required", lang))
        elif isinstance(error, commands.BadArgument):
            await ctx.send(S("help.description", lang, prefix=COMMAND_PREFIX))
        elif isinstance(error, commands.NoPrivateMessage):
            return
        else:
            log.error("stats.command_failed", exc_info=error)
            await ctx.send(S("general.error", lang))


async def setup(bot: commands.Bot):
    await bot.add_cog(StatsCog(bot))
