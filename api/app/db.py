from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import get_settings

Base = declarative_base()


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    return create_async_engine(get_settings().database_url, pool_pre_ping=True)


@lru_cache(maxsize=1)
def get_sessionmaker() -> async_sessionmaker:
    # snapshots read out of a session stay usable after commit
    return async_sessionmaker(get_engine(), expire_on_commit=False, autoflush=False)


def SessionLocal():
    return get_sessionmaker()()


async def ensure_schema(engine: AsyncEngine | None = None) -> None:
    from . import models  # noqa: F401  (registers tables on Base.metadata)

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
