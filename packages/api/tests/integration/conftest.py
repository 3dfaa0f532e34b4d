# This project was developed with assistance from AI tools.
"""Integration test fixtures -- real PostgreSQL, no mocks.

A session-scoped container runs ``alembic upgrade head`` once. Function-scoped
fixtures give each test an isolated session with savepoint rollback; tests
that need independent connections (concurrency) use ``committed_sessions``
and truncate afterwards.
"""

import os

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from testcontainers.postgres import PostgresContainer

pytestmark = pytest.mark.integration

DB_DIR = os.path.join(os.path.dirname(__file__), "..", "..", "..", "db")

TABLES = (
    "user_roles",
    "loan_applications",
    "loan_application_status_history",
    "admin_application_assignments",
    "audit_logs",
    "rate_limit_windows",
    "notification_preferences",
    "notifications",
    "external_notification_webhooks",
    "existing_loans",
    "bank_accounts",
)


# ---------------------------------------------------------------------------
# Session-scoped: container + migrations + engine
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_container():
    with PostgresContainer(image="postgres:16", username="test", password="test", dbname="test") as pg:
        yield pg


@pytest.fixture(scope="session")
def db_url(pg_container):
    """Async DB URL for asyncpg."""
    host = pg_container.get_container_host_ip()
    port = pg_container.get_exposed_port(5432)
    return f"postgresql+asyncpg://test:test@{host}:{port}/test"


@pytest.fixture(scope="session")
def sync_db_url(pg_container):
    """Sync DB URL for Alembic (psycopg2)."""
    host = pg_container.get_container_host_ip()
    port = pg_container.get_exposed_port(5432)
    return f"postgresql://test:test@{host}:{port}/test"


@pytest.fixture(scope="session", autouse=True)
def _run_migrations(sync_db_url):
    """Create the portal role, then run alembic upgrade head."""
    import psycopg2

    # The append-only migration revokes UPDATE/DELETE from this role
    conn = psycopg2.connect(sync_db_url)
    conn.autocommit = True
    with conn.cursor() as cur:
        cur.execute(
            "DO $$ BEGIN CREATE ROLE loanflow_app; "
            "EXCEPTION WHEN duplicate_object THEN NULL; END $$"
        )
    conn.close()

    os.environ["DATABASE_URL"] = sync_db_url
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(os.path.join(DB_DIR, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(DB_DIR, "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", sync_db_url)
    command.upgrade(alembic_cfg, "head")


@pytest.fixture(scope="session")
def async_engine(db_url, _run_migrations):
    engine = create_async_engine(db_url, echo=False, poolclass=NullPool)
    yield engine


# ---------------------------------------------------------------------------
# Function-scoped sessions
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_session(async_engine):
    """Per-test DB session with savepoint rollback."""
    conn = await async_engine.connect()
    txn = await conn.begin()
    session = AsyncSession(bind=conn, join_transaction_mode="create_savepoint")
    yield session
    await session.close()
    await txn.rollback()
    await conn.close()


@pytest_asyncio.fixture
async def committed_sessions(async_engine):
    """Session factory on independent connections; every table is truncated afterwards."""
    yield async_sessionmaker(async_engine, expire_on_commit=False, autoflush=False)
    async with async_engine.begin() as conn:
        await conn.execute(text(f"TRUNCATE TABLE {', '.join(TABLES)} RESTART IDENTITY CASCADE"))


@pytest.fixture
def client_factory(db_session, async_engine):
    """Factory returning an async httpx client bound to the per-test session."""
    from db import DatabaseService, get_db, get_db_service

    from loanflow.main import app
    from loanflow.middleware.auth import get_current_user, get_optional_user

    service = DatabaseService(engine=async_engine)

    def _make(user):
        async def _get_db():
            yield db_session

        async def _get_current_user():
            return user

        async def _get_db_service():
            return service

        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_current_user] = _get_current_user
        app.dependency_overrides[get_optional_user] = _get_current_user
        app.dependency_overrides[get_db_service] = _get_db_service
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        return httpx.AsyncClient(transport=transport, base_url="http://test")

    yield _make

    app.dependency_overrides.clear()
