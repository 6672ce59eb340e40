"""Pytest fixtures aligned with the live Postgres stack.

Every service opens its own ``async with db.begin()`` block, so tests use
real commits against a schema rebuilt for each test instead of a wrapping
transaction.
"""

import os
from datetime import timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from httpx import AsyncClient, ASGITransport
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from podcore.models.podcasts import PodcastCreate
from podcore.schemas.podcasts import Podcast
from podcore.services.itunes_client import ITunesClient
from podcore.services.podcast_service import create_podcast
from podcore.services.storage_client import StorageClient
from podcore.services.task_registry import TaskRegistry
from tests.fakes import InstantGate, RecordingDeployTrigger


def _load_database_url() -> str:
    """Resolve the database URL for tests, enforcing an explicit opt-in."""
    test_db_url = os.getenv("TEST_DATABASE_URL")
    pytest_allow_db = int(os.getenv("PYTEST_ALLOW_DB", "0"))
    if not test_db_url:
        pytest.skip("No TEST_DATABASE_URL is configured for tests.")
    if pytest_allow_db != 1:
        raise RuntimeError(
            "Running integration tests requires setting PYTEST_ALLOW_DB=1 to"
            " confirm the configured database is safe to mutate."
        )
    # mypy: test_db_url is str after the guard above
    return test_db_url  # type: ignore[return-value]


@pytest.fixture(scope="session")
def database_url() -> str:
    """Return the Postgres URL the test suite should target."""
    return _load_database_url()


@pytest_asyncio.fixture()
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Yield an engine bound to a freshly created schema."""
    from podcore.utils.db_async import import_models, prepare_asyncpg_connection

    import_models()
    url, connect_args = prepare_asyncpg_connection(database_url)
    engine = create_async_engine(url, echo=False, pool_pre_ping=True, connect_args=connect_args)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    try:
        yield engine
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.drop_all)
        await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessions configured like ``podcore.utils.db_async.SessionLocal``."""
    return async_sessionmaker(async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture()
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A session with no transaction in progress, as services expect."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def registry() -> TaskRegistry:
    return TaskRegistry(timedelta(hours=1))


@pytest.fixture
def apple_gate() -> InstantGate:
    return InstantGate()


@pytest_asyncio.fixture()
async def podcast(db_session: AsyncSession) -> Podcast:
    return await create_podcast(
        db_session,
        PodcastCreate(
            slug="weekly-show",
            title="Weekly Show",
            apple_podcasts_id="1500000001",
            apple_podcasts_auto_fetch=True,
            spotify_show_id="show123",
            spotify_auto_fetch=True,
        ),
    )


@pytest_asyncio.fixture()
async def app_client(
    session_factory: async_sessionmaker[AsyncSession],
    storage: StorageClient,
    deploy: RecordingDeployTrigger,
    registry: TaskRegistry,
    apple_gate: InstantGate,
) -> AsyncGenerator[AsyncClient, None]:
    """Provide an HTTP client with the application wired to the test database."""
    try:
        from podcore.main import app
    except ValidationError as exc:  # pragma: no cover - guard for misconfigured env
        pytest.skip(f"App configuration failed: {exc}")

    from podcore.services.deploy_service import get_deploy_trigger
    from podcore.services.itunes_client import get_itunes_client
    from podcore.services.spotify_client import get_spotify_client
    from podcore.services.storage_client import get_storage
    from podcore.services.task_registry import get_task_registry
    from podcore.utils.db_async import get_session

    async def _get_session_override() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    overrides = {
        get_session: _get_session_override,
        get_storage: lambda: storage,
        get_deploy_trigger: lambda: deploy,
        get_task_registry: lambda: registry,
        get_itunes_client: lambda: ITunesClient(gate=apple_gate),
        get_spotify_client: lambda: None,
    }
    app.dependency_overrides.update(overrides)
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)
