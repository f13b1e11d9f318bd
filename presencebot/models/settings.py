from __future__ import annotations

from typing import Optional

from ..config import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES
from ..db import connect


def safe_language(lang: Optional[str]) -> str:
    lang = (lang or "").strip().lower()
    return lang if lang in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def set_language(guild_id: int, lang: str) -> None:
    with connect() as con:
        cur = con.cursor()
        cur.execute(
            """
            INSERT INTO guild_settings (guild_id, language)
            VALUES (?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET language=excluded.language
            """,
            (guild_id, safe_language(lang)),
        )
        con.commit()


def get_language(guild_id: Optional[int]) -> str:
    if not guild_id:
        return safe_language(None)
    with connect() as con:
        cur = con.cursor()
        row = cur.execute(
            "SELECT language FROM guild_settings WHERE guild_id=?",
            (guild_id,),
        ).fetchone()
        return safe_language(row[0] if row else None)
