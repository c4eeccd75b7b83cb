"""Shared test fixtures for the nummercheck test suite."""

from collections.abc import AsyncIterator, Iterator
from unittest.mock import patch

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from nummercheck.config.settings import Settings
from nummercheck.db.models import Base

WEBHOOK_SECRET = "test-webhook-secret"

SETTINGS_TARGETS = (
    "nummercheck.api.webhooks.get_settings",
    "nummercheck.api.lookups.get_settings",
    "nummercheck.api.dev.get_settings",
)


@pytest.fixture
def settings() -> Settings:
    """Provide test settings with safe defaults.

    Returns:
        Settings with a webhook secret and no status retry delays.
    """
    return Settings(
        environment="test",
        elevenlabs_webhook_secret=WEBHOOK_SECRET,
        elevenlabs_agent_id="agent_test",
        status_initial_delay_seconds=0.0,
        status_retry_interval_seconds=0.0,
        status_max_retries=2,
    )


@pytest.fixture
def patched_settings(settings: Settings) -> Iterator[Settings]:
    """Route every API module's get_settings() to the test settings.

    Yields:
        The settings the routes will see.
    """
    patchers = [patch(target, return_value=settings) for target in SETTINGS_TARGETS]
    for patcher in patchers:
        patcher.start()
    yield settings
    for patcher in patchers:
        patcher.stop()


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """In-memory SQLite engine with the schema created.

    SQLite's driver manages BEGIN itself by default, which breaks
    SAVEPOINTs; the listeners hand transaction control to SQLAlchemy.

    Yields:
        AsyncEngine shared by every session of the test.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Create a session against the in-memory database.

    Yields:
        AsyncSession for direct CRUD calls.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(session_factory: async_sessionmaker[AsyncSession], patched_settings: Settings):
    """Create a test FastAPI app backed by the in-memory database."""
    from nummercheck.api.app import create_app
    from nummercheck.db.session import get_async_session

    application = create_app()

    async def _session_override() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_async_session] = _session_override
    return application
