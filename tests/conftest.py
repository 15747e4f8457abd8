"""
Shared test fixtures — storage backends, SQLite-backed hosted store, FastAPI test client.
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine

from bookmark_analytics.database import Base
from bookmark_analytics.main import app
from bookmark_analytics.storage import FileBackend, HostedBackend, MemoryBackend


# ── Test Database (SQLite in-memory) ────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture()
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def bare_engine():
    """In-memory SQLite with no tables — tests create their own (drifted) schema."""
    engine = create_async_engine(TEST_DB_URL, echo=False)
    yield engine
    await engine.dispose()


# ── Backends ────────────────────────────────────────────

@pytest.fixture
def memory_backend():
    return MemoryBackend()


@pytest.fixture
def file_backend(tmp_path):
    return FileBackend(tmp_path / "data" / "bookmark-analytics.json")


@pytest.fixture
def hosted_backend(db_engine):
    return HostedBackend(db_engine)


@pytest.fixture(params=["memory", "file", "hosted"])
def backend(request):
    """Every backend, for contract tests."""
    return request.getfixturevalue(f"{request.param}_backend")


# ── API client ──────────────────────────────────────────

@pytest_asyncio.fixture()
async def client(memory_backend):
    """FastAPI test client with an in-memory backend injected."""
    app.state.backend = memory_backend

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    del app.state.backend
