from __future__ import annotations

from typing import Optional

import discord

from ..models.monitor import MonitorConfig
from ..strings import S, format_duration, status_label

EMBED_COLOR = 0x5865F2


def build_help_embed(prefix: str, lang: Optional[str] = None) -> discord.Embed:
    embed = discord.Embed(
        title=S("help.title", lang),
        description=S("help.description", lang, prefix=prefix),
        color=EMBED_COLOR,
        timestamp=discord.utils.utcnow(),
    )
    for usage, key in (
        ("monitor @user", "help.monitor"),
        ("stopmonitor", "help.stopmonitor"),
        ("status", "help.status"),
        ("setlang <code>", "help.setlang"),
        ("top [activity|voice|messages] [days] [#channel]", "help.top"),
        ("daily [@user] [days] [YYYY-MM-DD]", "help.daily"),
        ("help", "help.help"),
    ):
        embed.add_field(name=f"{prefix}{usage}", value=S(key, lang, prefix=prefix), inline=False)
    embed.set_footer(text=S("general.footer", lang))
    return embed


def build_status_embed(
    cfg: MonitorConfig,
    *,
    total_ms: float,
    current_ms: int,
    lang: Optional[str] = None,
) -> discord.Embed:
    embed = discord.Embed(
        title=S("status.title", lang),
        color=EMBED_COLOR,
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(name=S("status.monitored_user", lang), value=f"<@{cfg.user_id}>", inline=True)
    embed.add_field(name=S("status.last_status", lang), value=status_label(cfg.last_status, lang), inline=True)
    embed.add_field(name=S("status.total_active", lang), value=format_duration(total_ms, lang), inline=True)
    if current_ms > 0:
        embed.add_field(
            name=S("status.current_session", lang),
            value=S("status.current_session_value", lang, duration=format_duration(current_ms, lang)),
            inline=True,
        )
    custom = f"‘{cfg.last_custom_status}’" if cfg.last_custom_status else S("status.no_custom_status", lang)
    embed.add_field(name=S("status.last_custom_status", lang), value=custom, inline=False)
    embed.add_field(
        name=S("status.last_activity", lang),
        value=cfg.last_activity or S("general.no_activity_logged", lang),
        inline=False,
    )
    return embed
