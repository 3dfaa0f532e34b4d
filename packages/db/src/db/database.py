# This project was developed with assistance from AI tools.
"""Async engine, session factory and FastAPI session dependencies."""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from .config import db_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _engine_kwargs() -> dict:
    """Return dialect-specific engine options for SQLite vs PostgreSQL."""
    kwargs: dict = {"echo": db_settings.SQL_ECHO}
    if db_settings.is_sqlite:
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_pre_ping"] = True
    return kwargs


def enable_sqlite_savepoints(async_engine: AsyncEngine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on the sqlite driver."""

    @event.listens_for(async_engine.sync_engine, "connect")
    def _connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = create_async_engine(db_settings.DATABASE_URL, **_engine_kwargs())
if db_settings.is_sqlite:
    enable_sqlite_savepoints(engine)

SessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class DatabaseService:
    """Thin wrapper around the engine for health checks and schema bootstrap."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def health_check(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            logger.error("Database health check failed: %s", exc)
            return False

    async def create_all(self) -> None:
        """Create every table (and its storage guards) for local SQLite databases."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


db_service = DatabaseService(engine=engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with SessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db_service() -> DatabaseService:
    return db_service


def dialect_name(session: AsyncSession) -> str:
    """Name of the dialect behind ``session`` ('' when unbound)."""
    dialect = getattr(session.bind, "dialect", None)
    name = getattr(dialect, "name", "")
    return name if isinstance(name, str) else ""
