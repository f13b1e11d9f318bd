from __future__ import annotations

import os
import sys
import asyncio
import logging
import signal
from contextlib import suppress
from typing import Iterable, Optional, Sequence

import discord
from discord.ext import commands

from .config import COMMAND_PREFIX, KEEP_ALIVE_PORT
from .db import ensure_db
from .keepalive import KeepAlive
from .models.buckets import METRIC_ACTIVITY, METRIC_VOICE
from .models.open_sessions import KIND_ACTIVITY, KIND_VOICE
from .reconcile import ReconcileReport, member_probe, reconcile
from .sessions import SessionTracker

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stdout,
)
log = logging.getLogger("presencebot")


# -----------------------------------------------------------------------------
# Intents
# -----------------------------------------------------------------------------
def build_intents() -> discord.Intents:
    """Privileged intents must also be enabled in the Developer Portal."""
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True  # privileged
    intents.presences = True  # privileged
    intents.message_content = True  # privileged
    intents.voice_states = True
    intents.guild_messages = True
    return intents


INTENTS = build_intents()

EXTENSIONS: Sequence[str] = (
    "presencebot.cogs.presence",
    "presencebot.cogs.voice",
    "presencebot.cogs.stats",
    "presencebot.cogs.monitor",
)


# -----------------------------------------------------------------------------
# Bot
# -----------------------------------------------------------------------------
class PresenceBot(commands.Bot):
    def __init__(self) -> None:
        super().__init__(command_prefix=COMMAND_PREFIX, intents=INTENTS, help_command=None)
        self._shutdown_signal: str | None = None  # SIGINT/SIGTERM set by runner
        self._reconciling = False
        self.keepalive: Optional[KeepAlive] = None

        # One tracker per session kind; both publish through bot.dispatch.
        self.activity_sessions = SessionTracker(KIND_ACTIVITY, METRIC_ACTIVITY, notify=self.dispatch)
        self.voice_sessions = SessionTracker(KIND_VOICE, METRIC_VOICE, notify=self.dispatch)
        # Live presence/voice handlers wait on this until reconciliation ran.
        self.sessions_ready = asyncio.Event()

    @property
    def trackers(self) -> tuple[SessionTracker, SessionTracker]:
        return (self.activity_sessions, self.voice_sessions)

    # ---- lifecycle ----
    async def setup_hook(self) -> None:
        ensure_db()
        log.info("Database ensured/connected.")

        await self._load_extensions(EXTENSIONS)

        if KEEP_ALIVE_PORT:
            self.keepalive = KeepAlive(KEEP_ALIVE_PORT)
            try:
                await self.keepalive.start()
            except OSError:
                log.exception("Keep-alive server failed to start on port %s", KEEP_ALIVE_PORT)
                self.keepalive = None

    async def _load_extensions(self, names: Iterable[str]) -> None:
        for ext in names:
            try:
                await self.load_extension(ext)
                log.info("Loaded extension: %s", ext)
            except Exception:
                log.exception("Failed to load extension: %s", ext)

    async def on_ready(self) -> None:
        if self.user:
            log.info("Logged in as %s (%s)", self.user, self.user.id)
        if self.sessions_ready.is_set() or self._reconciling:
            return
        self._reconciling = True
        try:
            report = await reconcile(self.trackers, member_probe(self))
        except Exception:
            log.exception("Session reconciliation crashed; continuing with empty state")
            report = ReconcileReport()
        finally:
            self._reconciling = False
        self.dispatch("sessions_reconciled", report)
        self.sessions_ready.set()

    async def close(self) -> None:
        log.info("Shutdown initiated (%s): flushing pending sessions and closing bot.", self._shutdown_signal)

        # Open sessions stay on disk; the next start reconciles them.
        for tracker in self.trackers:
            with suppress(Exception):
                tracker.retry_pending()

        if self.keepalive is not None:
            with suppress(Exception):
                await self.keepalive.stop()

        await super().close()


# -----------------------------------------------------------------------------
# Runner
# -----------------------------------------------------------------------------
async def _run_bot() -> None:
    token = os.getenv("DISCORD_TOKEN") or os.getenv("BOT_TOKEN")
    if not token:
        log.error("Set DISCORD_TOKEN env var.")
        raise SystemExit(1)

    bot = PresenceBot()
    stop_event = asyncio.Event()

    def _signal_handler(signame: str) -> None:
        bot._shutdown_signal = signame
        log.warning("Received %s, requesting shutdown", signame)
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, _signal_handler, sig.name)

    async def _start():
        try:
            await bot.start(token)
        except Exception:
            log.exception("Bot.start crashed")
        finally:
            stop_event.set()

    start_task = asyncio.create_task(_start())

    await stop_event.wait()

    with suppress(Exception):
        await bot.close()

    with suppress(asyncio.CancelledError):
        if not start_task.done():
            start_task.cancel()
        await start_task

    log.info("Shutdown complete.")


def main() -> None:
    try:
        asyncio.run(_run_bot())
    except KeyboardInterrupt:
        log.warning("KeyboardInterrupt, exiting.")
    except SystemExit:
        raise
    except Exception:
        log.exception("Fatal error in main()")
        raise


if __name__ == "__main__":
    main()
