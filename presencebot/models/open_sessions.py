from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from ..db import connect

log = logging.getLogger(__name__)

KIND_ACTIVITY = "activity"
KIND_VOICE = "voice"


@dataclass
class OpenSession:
    kind: str
    guild_id: int
    user_id: int
    start_ms: int
    dimension: Optional[int] = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.guild_id, self.user_id)


def save(session: OpenSession) -> None:
    """Mirror an in-memory session; an existing record keeps its start."""
    with connect() as con:
        con.execute(
            """
            INSERT INTO open_sessions (kind, guild_id, user_id, start_ms, dimension)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(kind, guild_id, user_id) DO NOTHING
            """,
            (session.kind, session.guild_id, session.user_id, session.start_ms, session.dimension),
        )
        con.commit()


def remove(con: sqlite3.Connection, kind: str, guild_id: int, user_id: int) -> None:
    """Stage deletion of a durable record on an open connection; caller commits."""
    con.execute(
        "DELETE FROM open_sessions WHERE kind=? AND guild_id=? AND user_id=?",
        (kind, guild_id, user_id),
    )


def discard(kind: str, guild_id: int, user_id: int) -> None:
    with connect() as con:
        remove(con, kind, guild_id, user_id)
        con.commit()


def _row_to_session(row) -> Optional[OpenSession]:
    kind, gid, uid, start, dim = row
    try:
        start_ms = int(start)
    except (TypeError, ValueError):
        return None
    try:
        dimension = int(dim) if dim is not None else None
    except (TypeError, ValueError):
        dimension = None
    return OpenSession(str(kind), int(gid), int(uid), start_ms, dimension)


def load_all(kind: Optional[str] = None) -> tuple[List[OpenSession], List[tuple[str, int, int]]]:
    """
    Returns (sessions, malformed) where malformed lists (kind, guild_id,
    user_id) of records whose start cannot be read.
    """
    with connect() as con:
        if kind is None:
            rows = con.execute(
                "SELECT kind, guild_id, user_id, start_ms, dimension FROM open_sessions"
            ).fetchall()
        else:
            rows = con.execute(
                "SELECT kind, guild_id, user_id, start_ms, dimension FROM open_sessions WHERE kind=?",
                (kind,),
            ).fetchall()
    sessions: List[OpenSession] = []
    malformed: List[tuple[str, int, int]] = []
    for row in rows:
        session = _row_to_session(row)
        if session is None:
            malformed.append((str(row[0]), int(row[1]), int(row[2])))
        else:
            sessions.append(session)
    return sessions, malformed
