from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

import discord

from .config import ACTIVE_STATUSES
from .models import open_sessions
from .models.open_sessions import KIND_VOICE, OpenSession
from .sessions import SessionTracker
from .utils.time import now_ms

log = logging.getLogger(__name__)


class OrphanSession(LookupError):
    """The record's guild or member can no longer be resolved."""


@dataclass
class LiveState:
    active: bool
    dimension: Optional[int] = None


@dataclass
class ReconcileReport:
    adopted: int = 0
    closed: int = 0
    orphaned: int = 0
    malformed: int = 0
    failed: int = 0


Probe = Callable[[OpenSession], Awaitable[LiveState]]


def still_open(session: OpenSession, state: LiveState) -> bool:
    if not state.active:
        return False
    if session.dimension is None:
        return True
    return state.dimension == session.dimension


def _discard(kind: str, guild_id: int, user_id: int) -> None:
    try:
        open_sessions.discard(kind, guild_id, user_id)
    except Exception:
        log.exception("reconcile.discard_failed", extra={"kind": kind, "guild_id": guild_id, "user_id": user_id})


async def reconcile(
    trackers: Iterable[SessionTracker], probe: Probe, *, now: Optional[int] = None
) -> ReconcileReport:
    """
    Resume or close every durable open session left by a previous process.

    Still-consistent sessions are adopted with their original start so the
    outage keeps accruing. Stale ones are closed at `now`: the real
    disconnect instant during the outage is unknown, so this is an
    approximation. Records whose guild/member is gone are dropped unflushed.
    """
    report = ReconcileReport()
    at = now_ms() if now is None else now

    for tracker in trackers:
        try:
            sessions, malformed = open_sessions.load_all(tracker.kind)
        except Exception:
            log.exception("reconcile.load_failed", extra={"kind": tracker.kind})
            continue

        for kind, gid, uid in malformed:
            log.warning("reconcile: dropping %s session for %s in guild %s with no start", kind, uid, gid)
            _discard(kind, gid, uid)
            report.malformed += 1

        for session in sessions:
            try:
                state = await probe(session)
            except OrphanSession:
                log.warning(
                    "reconcile: orphaned %s session for user %s in guild %s discarded",
                    session.kind,
                    session.user_id,
                    session.guild_id,
                )
                _discard(session.kind, session.guild_id, session.user_id)
                report.orphaned += 1
                continue
            except Exception:
                # Live state unknown: keep the session so the next event decides.
                log.exception("reconcile.probe_failed", extra={"kind": session.kind, "user_id": session.user_id})
                tracker.adopt(session)
                report.adopted += 1
                continue

            tracker.adopt(session)
            if still_open(session, state):
                report.adopted += 1
                continue
            if tracker.close(session.guild_id, session.user_id, at=at) is None:
                report.failed += 1
            else:
                report.closed += 1

    log.info(
        "reconcile: adopted=%d closed=%d orphaned=%d malformed=%d failed=%d",
        report.adopted,
        report.closed,
        report.orphaned,
        report.malformed,
        report.failed,
    )
    return report


def member_probe(bot: discord.Client) -> Probe:
    """Live-state lookup against the gateway cache (falls back to a fetch)."""

    async def probe(session: OpenSession) -> LiveState:
        guild = bot.get_guild(session.guild_id)
        if guild is None:
            raise OrphanSession(f"guild {session.guild_id} unavailable")
        member = guild.get_member(session.user_id)
        if member is None:
            try:
                member = await guild.fetch_member(session.user_id)
            except discord.NotFound as e:
                raise OrphanSession(f"member {session.user_id} left guild {session.guild_id}") from e
        if session.kind == KIND_VOICE:
            channel = getattr(getattr(member, "voice", None), "channel", None)
            return LiveState(channel is not None, channel.id if channel else None)
        return LiveState(str(member.status) in ACTIVE_STATUSES)

    return probe


__all__ = ["LiveState", "OrphanSession", "ReconcileReport", "member_probe", "reconcile", "still_open"]
