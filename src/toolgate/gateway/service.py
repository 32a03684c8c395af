"""Gateway service container.

Builds every gateway service from :class:`Settings` and tears them down in
reverse order. There are no module-level clients; whoever starts a
:class:`Gateway` owns it.
"""

from dataclasses import dataclass

import structlog
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine

from toolgate.core.config import Settings
from toolgate.core.database import create_engine, create_session_factory
from toolgate.core.redis import close_redis, create_redis
from toolgate.gateway.gate import AuthGate
from toolgate.gateway.invoker import ToolInvoker, ToolRegistry
from toolgate.gateway.key_client import KeyStoreClient
from toolgate.gateway.rate_limiter import RateLimiter, create_rate_limiter
from toolgate.gateway.usage import UsageRecorder
from toolgate.store.base import KeyStore
from toolgate.store.sql import SQLKeyStore

logger = structlog.get_logger(__name__)


@dataclass
class Gateway:
    """All services of one running gateway."""

    settings: Settings
    key_client: KeyStoreClient | None
    rate_limiter: RateLimiter
    recorder: UsageRecorder | None
    gate: AuthGate
    invoker: ToolInvoker
    registry: ToolRegistry
    engine: AsyncEngine | None = None
    redis: Redis | None = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        store: KeyStore | None = None,
        rate_limiter: RateLimiter | None = None,
        registry: ToolRegistry | None = None,
        engine: AsyncEngine | None = None,
        redis_client: Redis | None = None,
    ) -> "Gateway":
        """Wire services around an existing store and limiter."""
        registry = registry or ToolRegistry()
        key_client = KeyStoreClient(store) if store is not None else None
        recorder = UsageRecorder(store) if store is not None else None
        limiter = rate_limiter or create_rate_limiter(settings, redis_client)
        gate = AuthGate(key_client, limiter, fallback_api_key=settings.fallback_api_key)
        return cls(
            settings=settings,
            key_client=key_client,
            rate_limiter=limiter,
            recorder=recorder,
            gate=gate,
            invoker=ToolInvoker(gate, recorder, registry),
            registry=registry,
            engine=engine,
            redis=redis_client,
        )

    @classmethod
    async def start(cls, settings: Settings, registry: ToolRegistry | None = None) -> "Gateway":
        """
        Construct the gateway from settings.

        Without ``database_url`` authentication is disabled. Without
        ``redis_url`` rate limits are kept in process memory.
        """
        engine: AsyncEngine | None = None
        store: KeyStore | None = None
        if settings.database_url:
            engine = create_engine(
                settings.database_url,
                echo=settings.debug,
                pool_size=settings.database_pool_size,
            )
            store = SQLKeyStore(create_session_factory(engine))

        redis_client = create_redis(settings.redis_url) if settings.redis_url else None

        gateway = cls.build(
            settings,
            store=store,
            registry=registry,
            engine=engine,
            redis_client=redis_client,
        )
        logger.info(
            "gateway_started",
            auth_enabled=store is not None,
            rate_limiter=gateway.rate_limiter.strategy,
            fail_open=settings.rate_limit_fail_open,
            tools=gateway.registry.names,
        )
        return gateway

    @property
    def auth_required(self) -> bool | None:
        return self.settings.auth_required

    async def aclose(self) -> None:
        """Flush pending usage recordings and release connections."""
        if self.recorder is not None:
            await self.recorder.drain()
        if self.key_client is not None:
            await self.key_client.store.close()
        await close_redis(self.redis)
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("gateway_stopped")
