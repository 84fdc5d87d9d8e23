"""
Engine and session factory wiring.
"""
import pytest
from unittest.mock import patch
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate import database
from hookgate.config import Settings


@pytest.fixture
def sqlite_settings(monkeypatch):
    monkeypatch.setattr(database, "_engine", None)
    monkeypatch.setattr(database, "_async_session_factory", None)
    settings = Settings(_env_file=None, database_url="sqlite+aiosqlite:///:memory:")
    with patch("hookgate.config.get_settings", return_value=settings):
        yield settings
    if database._engine is not None:
        database._engine.sync_engine.dispose()


class TestSessionFactory:
    def test_factory_is_shared(self, sqlite_settings):
        factory = database.get_session_factory()
        assert database.get_session_factory() is factory
        assert factory.kw["expire_on_commit"] is False

    async def test_get_db_yields_session(self, sqlite_settings):
        sessions = database.get_db()
        session = await sessions.__anext__()
        assert isinstance(session, AsyncSession)
        await sessions.aclose()
