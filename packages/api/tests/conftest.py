# This project was developed with assistance from AI tools.
"""Shared fixtures: an in-memory SQLite database with the full schema.

SQLite carries the same append-only triggers and ON CONFLICT upsert as
PostgreSQL, so service tests exercise real storage behavior without a
container. PostgreSQL-specific behavior lives under ``integration/``.
"""

import pytest
from db import Base, enable_sqlite_savepoints
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(eng)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
