"""FastAPI application factory and main entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from toolgate import __version__
from toolgate.api.middleware.exception_handler import setup_exception_handlers
from toolgate.api.middleware.logging import LoggingMiddleware
from toolgate.api.middleware.metrics import MetricsMiddleware
from toolgate.api.routes import api_keys, health, tiers, tools
from toolgate.core.config import Settings, get_settings
from toolgate.core.logging import configure_logging, get_logger
from toolgate.gateway.invoker import ToolRegistry
from toolgate.gateway.service import Gateway

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    gateway: Gateway | None = None,
    registry: ToolRegistry | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings, read from the environment when omitted.
        gateway: An already started gateway. The application then neither
            starts nor closes it.
        registry: Tools to serve when the application starts its own gateway.
    """
    settings = settings or (gateway.settings if gateway is not None else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("application_startup", app_name=settings.app_name, env=settings.app_env)
        owned = getattr(app.state, "gateway", None) is None
        if owned:
            app.state.gateway = await Gateway.start(settings, registry=registry)
        try:
            yield
        finally:
            logger.info("application_shutdown")
            if owned:
                await app.state.gateway.aclose()
                app.state.gateway = None

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="Access-control gateway for tool calls",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )
    if gateway is not None:
        app.state.gateway = gateway

    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(tools.router)
    app.include_router(tiers.router)
    app.include_router(api_keys.router)

    return app


def create_app_from_env() -> FastAPI:
    """Entry point for ASGI servers (``uvicorn --factory``)."""
    settings = get_settings()
    configure_logging(
        json_logs=settings.is_production,
        log_level="DEBUG" if settings.debug else settings.log_level,
    )
    return create_app(settings)
