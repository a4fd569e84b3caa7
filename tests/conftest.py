"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import typing as typ

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from giteamirror.storage import init_storage
from tests.helpers.fakes import FakeClientFactory, FakeDestination, FakeSource

if typ.TYPE_CHECKING:
    from pathlib import Path


async def _setup_sqlite(tmp_path: Path) -> AsyncEngine:
    """Create a SQLite engine and initialise every table."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'giteamirror_test.db'}"
    )
    try:
        await init_storage(engine)
    except Exception:
        await engine.dispose()
        raise
    return engine


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a fresh async session factory backed by sqlite."""
    engine = await _setup_sqlite(tmp_path)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def source() -> FakeSource:
    """Return an empty fake GitHub client."""
    return FakeSource()


@pytest.fixture
def destination() -> FakeDestination:
    """Return an empty fake Gitea client owned by ``mirror-bot``."""
    return FakeDestination()


@pytest.fixture
def client_factory(source: FakeSource, destination: FakeDestination) -> FakeClientFactory:
    """Return a factory handing out contexts over the fake clients."""
    return FakeClientFactory(source, destination)
