import datetime as dt
from contextlib import asynccontextmanager

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from api.app import models  # noqa: F401
from api.app.config import Settings
from api.app.db import Base

NOW = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


@asynccontextmanager
async def _sqlite_sessionmaker():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    finally:
        await engine.dispose()


@pytest.fixture
def sqlite_sessionmaker():
    """Async context manager yielding a sessionmaker bound to a fresh in-memory DB."""
    return _sqlite_sessionmaker


@pytest.fixture
def settings():
    return Settings(fetch_timeout=2.0, store_timeout=2.0, run_timeout=30.0, concurrency=4)


@pytest.fixture
def now():
    return NOW
