from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import discord

from ..models.buckets import METRIC_MESSAGES
from ..strings import S, format_duration


def format_value(metric: str, value: float, lang: Optional[str] = None) -> str:
    if metric == METRIC_MESSAGES:
        return str(int(value))
    return format_duration(value, lang)


def format_rows(
    guild: discord.Guild, metric: str, rows: Sequence[Tuple[int, float]], lang: Optional[str] = None
) -> str:
    lines: List[str] = []
    for i, (uid, total) in enumerate(rows, start=1):
        member = guild.get_member(uid)
        name = member.mention if member else f"<@{uid}>"
        lines.append(f"{i}. {name} - **{format_value(metric, total, lang)}**")
    return "\n".join(lines) if lines else S("stats.empty", lang)


def build_leaderboard_embed(
    *,
    guild: discord.Guild,
    metric: str,
    days: int,
    rows: Sequence[Tuple[int, float]],
    lang: Optional[str] = None,
    channel_id: Optional[int] = None,
) -> discord.Embed:
    embed = discord.Embed(
        title=S("stats.top.title", lang, metric=S(f"stats.metric.{metric}", lang), days=days),
        description=format_rows(guild, metric, rows, lang),
        color=discord.Color.blurple(),
    )
    if channel_id:
        embed.set_footer(text=S("stats.top.channel", lang, channel=f"#{getattr(guild.get_channel(channel_id), 'name', channel_id)}"))
    return embed


def format_hours(ms: float) -> str:
    return f"{ms / 3_600_000:.2f}h"


def build_daily_embed(
    *,
    user_label: str,
    series: Sequence[Tuple[str, float]],
    counting_ms: int = 0,
    lang: Optional[str] = None,
) -> discord.Embed:
    peak = max((v for _, v in series), default=0) or 1
    lines = []
    for day, value in series:
        bar = "█" * int(round(10 * value / peak))
        lines.append(f"`{day}` {format_hours(value):>7} {bar}")
    embed = discord.Embed(
        title=S("stats.daily.title", lang, user=user_label),
        description="\n".join(lines) or S("stats.empty", lang),
        color=discord.Color.purple(),
    )
    if counting_ms > 0:
        embed.set_footer(text=S("stats.daily.counting", lang, duration=format_duration(counting_ms, lang)))
    return embed
