from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from .db import connect
from .models import buckets, open_sessions
from .models.open_sessions import OpenSession
from .utils.time import now_ms, split_by_utc_day

log = logging.getLogger(__name__)

# (guild_id, user_id)
SessionKey = Tuple[int, int]
Notifier = Callable[..., None]

_OPEN = "open"
_CLOSE = "close"

# (op, instant, dimension); for closes the dimension is the fallback one
Transition = Tuple[str, int, Optional[int]]


class SessionTracker:
    """
    Open/closed session state for one tracker kind (presence activity or
    voice), mirrored into the open_sessions table.

    Closing a session splits its duration at UTC midnights and adds each
    segment to the aggregate buckets in the same transaction that deletes
    the durable record, so a failed flush leaves both the in-memory and the
    on-disk session untouched.

    While a failed close is waiting for its retry the subject counts as
    closed at that instant. Later opens and closes for the same subject are
    queued with their own instants and replayed in order once the flush
    lands, so a re-activation or a channel move during a storage outage
    never stretches the old session.

    Transitions are published through `notify(event_name, *args)`; the bot
    passes its own `dispatch`, which turns them into `on_session_open` /
    `on_session_close` listener calls.
    """

    def __init__(self, kind: str, metric: str, *, notify: Optional[Notifier] = None) -> None:
        self.kind = kind
        self.metric = metric
        self._notify = notify
        self._sessions: Dict[SessionKey, OpenSession] = {}
        # key -> (close instant, fallback dimension) for flushes that failed
        self._pending: Dict[SessionKey, Tuple[int, Optional[int]]] = {}
        # key -> transitions that arrived after the pending close
        self._deferred: Dict[SessionKey, List[Transition]] = {}

    def set_notifier(self, notify: Optional[Notifier]) -> None:
        self._notify = notify

    def _emit(self, event: str, *args) -> None:
        if self._notify is None:
            return
        try:
            self._notify(event, *args)
        except Exception:
            log.exception("sessions.notify_failed", extra={"event": event, "kind": self.kind})

    # ---------- reads ----------
    def get(self, guild_id: int, user_id: int) -> Optional[OpenSession]:
        """The in-memory session, including one retained by a failed close."""
        return self._sessions.get((guild_id, user_id))

    def _queued_open(self, key: SessionKey) -> Optional[Transition]:
        queued = self._deferred.get(key)
        if queued and queued[-1][0] == _OPEN:
            return queued[-1]
        return None

    def is_open(self, guild_id: int, user_id: int) -> bool:
        key = (guild_id, user_id)
        if key in self._pending:
            return self._queued_open(key) is not None
        return key in self._sessions

    def sessions(self) -> List[OpenSession]:
        return list(self._sessions.values())

    def pending(self) -> List[SessionKey]:
        return list(self._pending)

    def deferred(self, guild_id: int, user_id: int) -> List[Transition]:
        return list(self._deferred.get((guild_id, user_id), ()))

    def elapsed(self, guild_id: int, user_id: int, now: Optional[int] = None) -> int:
        """Milliseconds the current session has run so far; 0 when closed."""
        key = (guild_id, user_id)
        if key in self._pending:
            queued = self._queued_open(key)
            start = queued[1] if queued else None
        else:
            session = self._sessions.get(key)
            start = session.start_ms if session else None
        if start is None:
            return 0
        return max(0, (now_ms() if now is None else now) - start)

    # ---------- transitions ----------
    def open(
        self,
        guild_id: int,
        user_id: int,
        dimension: Optional[int] = None,
        at: Optional[int] = None,
    ) -> bool:
        key = (guild_id, user_id)
        at = now_ms() if at is None else at
        if key in self._pending:
            self._retry(key)
        if key in self._pending:
            if self._queued_open(key) is not None:
                return False
            self._deferred.setdefault(key, []).append((_OPEN, at, dimension))
            return True
        return self._open(key, dimension, at)

    def close(
        self,
        guild_id: int,
        user_id: int,
        fallback_dimension: Optional[int] = None,
        at: Optional[int] = None,
    ) -> Optional[int]:
        """Flush and close; returns elapsed ms, or None when nothing was closed."""
        key = (guild_id, user_id)
        at = now_ms() if at is None else at
        if key in self._pending:
            self._retry(key)
        if key in self._pending:
            queued = self._queued_open(key)
            if queued is None:
                return None
            self._deferred[key].append((_CLOSE, at, fallback_dimension))
            return max(0, at - queued[1])
        return self._close(key, fallback_dimension, at)

    def move(self, guild_id: int, user_id: int, dimension: Optional[int], at: Optional[int] = None) -> None:
        """Dimension change while staying active: close the old one, open the new one."""
        at = now_ms() if at is None else at
        self.close(guild_id, user_id, at=at)
        if dimension is not None:
            self.open(guild_id, user_id, dimension, at=at)

    def adopt(self, session: OpenSession) -> bool:
        """Take over a durable record (reconciliation) keeping its original start."""
        if session.key in self._sessions:
            return False
        self._sessions[session.key] = session
        return True

    def retry_pending(self) -> int:
        """Re-attempt failed flushes; returns how many succeeded."""
        flushed = 0
        for key in list(self._pending):
            if self._retry(key):
                flushed += 1
        return flushed

    # ---------- internals ----------
    def _open(self, key: SessionKey, dimension: Optional[int], at: int) -> bool:
        if key in self._sessions:
            return False

        session = OpenSession(self.kind, key[0], key[1], at, dimension)
        self._sessions[key] = session
        try:
            open_sessions.save(session)
        except Exception:
            log.exception(
                "sessions.open_persist_failed",
                extra={"kind": self.kind, "guild_id": key[0], "user_id": key[1]},
            )
        self._emit("session_open", self.kind, session)
        return True

    def _close(self, key: SessionKey, fallback_dimension: Optional[int], at: int) -> Optional[int]:
        session = self._sessions.get(key)
        if session is None:
            return None
        return self._flush(session, at, fallback_dimension)

    def _retry(self, key: SessionKey) -> bool:
        at, fallback = self._pending[key]
        session = self._sessions.get(key)
        if session is None:
            self._pending.pop(key, None)
        elif self._flush(session, at, fallback) is None:
            return False
        self._replay(key)
        return True

    def _replay(self, key: SessionKey) -> None:
        # A replayed close that fails becomes the new pending close and the
        # rest of the queue waits behind it again.
        for op, at, dimension in self._deferred.pop(key, []):
            if key in self._pending:
                self._deferred.setdefault(key, []).append((op, at, dimension))
            elif op == _OPEN:
                self._open(key, dimension, at)
            else:
                self._close(key, dimension, at)

    def _flush(self, session: OpenSession, at: int, fallback_dimension: Optional[int]) -> Optional[int]:
        key = session.key
        elapsed = at - session.start_ms
        dimension = session.dimension if session.dimension is not None else fallback_dimension
        try:
            with connect() as con:
                if elapsed > 0:
                    buckets.add_segments(
                        con,
                        self.metric,
                        session.guild_id,
                        session.user_id,
                        split_by_utc_day(session.start_ms, at),
                        dimension,
                    )
                open_sessions.remove(con, self.kind, session.guild_id, session.user_id)
                con.commit()
        except Exception:
            self._pending[key] = (at, fallback_dimension)
            log.exception(
                "sessions.close_failed",
                extra={"kind": self.kind, "guild_id": session.guild_id, "user_id": session.user_id},
            )
            return None

        self._pending.pop(key, None)
        self._sessions.pop(key, None)
        elapsed = max(0, elapsed)
        self._emit("session_close", self.kind, session, at, elapsed)
        return elapsed


__all__ = ["SessionTracker", "SessionKey", "Transition"]
