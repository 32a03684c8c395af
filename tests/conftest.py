"""Test configuration and fixtures."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fakes import (
    FailingRedisMock,
    FakeClock,
    StatefulRedisMock,
    exploding_executor,
    failing_executor,
    make_executor,
)
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from toolgate.api.main import create_app
from toolgate.core.config import Settings
from toolgate.gateway.invoker import ToolRegistry
from toolgate.gateway.key_client import KeyStoreClient
from toolgate.gateway.rate_limiter import InMemoryRateLimiter
from toolgate.gateway.service import Gateway
from toolgate.models.base import Base
from toolgate.store.sql import SQLKeyStore

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
ADMIN_TOKEN = "test-admin-token-0123456789abcdef"
TOOL_NAMES = ("parse", "validate", "grammar", "render_html", "render_svg", "render")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture(scope="function")
async def redis_client() -> StatefulRedisMock:
    """Create a stateful Redis mock for testing."""
    return StatefulRedisMock()


@pytest_asyncio.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def store(engine: AsyncEngine) -> SQLKeyStore:
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return SQLKeyStore(session_factory)


@pytest_asyncio.fixture(scope="function")
async def key_client(store: SQLKeyStore) -> KeyStoreClient:
    return KeyStoreClient(store)


@pytest.fixture
def registry() -> ToolRegistry:
    """Registry with every tiered tool plus a crashing and a failing tool."""
    registry = ToolRegistry()
    for name in TOOL_NAMES:
        registry.register(name, make_executor(name))
    registry.register("explode", exploding_executor)
    registry.register("broken_parse", failing_executor)
    return registry


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        redis_url=None,
        admin_token=ADMIN_TOKEN,
        toolgate_api_key=None,
        auth_required=None,
    )


@pytest_asyncio.fixture(scope="function")
async def gateway(
    settings: Settings,
    store: SQLKeyStore,
    registry: ToolRegistry,
    clock: FakeClock,
) -> AsyncGenerator[Gateway, None]:
    """Gateway over the SQLite store with an in-memory limiter on a fake clock."""
    gateway = Gateway.build(
        settings,
        store=store,
        rate_limiter=InMemoryRateLimiter(clock=clock),
        registry=registry,
    )
    yield gateway
    if gateway.recorder is not None:
        await gateway.recorder.drain()


@pytest_asyncio.fixture(scope="function")
async def client(gateway: Gateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to an app serving the test gateway."""
    app = create_app(gateway=gateway)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture
def failing_redis() -> FailingRedisMock:
    """Redis mock whose every transaction fails."""
    return FailingRedisMock()
