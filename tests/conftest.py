"""
Shared pytest fixtures for NoteRelay tests.

Uses a file-backed SQLite database (aiosqlite) so concurrent sessions
see one another, and fakeredis for the Redis-backed services.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ADMIN_TOKEN", "test-token")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import timedelta

from fakeredis import aioredis as fake_aioredis
import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from noterelay.models.base import Base, utcnow
from noterelay.models.note import Note, NoteAttempt  # noqa: F401
from noterelay.services.note_store import NoteStore


ADMIN_HEADERS = {"Authorization": "Bearer test-token"}


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Provide a fresh database with all tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'notes.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db):
    return NoteStore(db)


@pytest.fixture
def fake_redis():
    return fake_aioredis.FakeRedis()


@pytest.fixture
def make_note(store):
    """
    Factory creating pending notes.

    release_in is relative to now; negative values make the note due.
    """
    async def _make(
        title: str = "Hello",
        body: str = "World",
        release_in: timedelta = timedelta(seconds=-1),
        webhook_url: str = "https://hooks.example.com/notes",
    ) -> Note:
        return await store.create_note(
            title=title,
            body=body,
            release_at=utcnow() + release_in,
            webhook_url=webhook_url,
        )
    return _make


def mock_client(handler) -> httpx.AsyncClient:
    """httpx client whose requests are answered by handler(request)."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
