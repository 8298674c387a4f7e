"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from httpx import AsyncClient, ASGITransport

from helpdesk.main import app
from helpdesk.models.base import Base
from helpdesk.db.session import get_db
from helpdesk.core.config import settings
from helpdesk.core.exceptions import AuthorizationError
from helpdesk.services import notification_service
from helpdesk.services.notification_service import InMemoryNotificationDispatcher


def _enable_sqlite_savepoints(engine) -> None:
    """
    Let SQLite honour SAVEPOINT the way PostgreSQL does.

    WHY: pysqlite/aiosqlite begin transactions lazily, which breaks
    session.begin_nested(). Audit writes and escalation actions rely on
    savepoints, so the driver's own transaction handling is switched off
    and SQLAlchemy emits BEGIN itself.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        # WAL lets the sweep's sessions read while a test session is open
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """
    Create a test database engine.

    WHY: A file database per test (rather than :memory:) so the sweep and
    the HTTP client can open their own sessions and still see committed
    rows. Function scope keeps tests isolated.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'helpdesk_test.db'}",
        echo=False,
    )
    _enable_sqlite_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine (same options as production)."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a test database session.

    Yields:
        AsyncSession: Database session for the test
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test HTTP client.

    WHY: Each request gets its own session, committed or rolled back the way
    get_db does it, including keeping denial audit facts on 403/404.

    Yields:
        AsyncClient: HTTP client for making test requests
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except AuthorizationError:
                await session.commit()
                raise
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def notifications():
    """
    Capture notification intents for all tests.

    WHY: Escalation actions emit intents through the process-wide
    dispatcher. Tests assert on what would have been delivered.
    """
    dispatcher = InMemoryNotificationDispatcher()
    notification_service.set_notification_dispatcher(dispatcher)
    yield dispatcher
    notification_service.set_notification_dispatcher(None)


@pytest.fixture(autouse=True)
def disable_background_sweep(monkeypatch):
    """Never start the APScheduler sweep from tests."""
    monkeypatch.setattr(settings, "ESCALATION_SWEEP_ENABLED", False)

