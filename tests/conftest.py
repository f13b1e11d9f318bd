import pytest

from presencebot.db import ensure_db


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Fresh SQLite file per test."""
    path = tmp_path / "presence.sqlite3"
    monkeypatch.setenv("BOT_DB_PATH", str(path))
    monkeypatch.delenv("DB_REQUIRE_PERSISTENCE", raising=False)
    ensure_db()
    return path
