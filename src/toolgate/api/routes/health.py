"""Health check endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from toolgate import __version__
from toolgate.api.dependencies.gateway import get_gateway
from toolgate.core.database import check_database_connection
from toolgate.core.redis import check_redis_connection
from toolgate.gateway.service import Gateway

router = APIRouter()


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness check response with dependency status.

    ``None`` means the dependency is not configured.
    """

    status: str
    database: bool | None
    redis: bool | None
    rate_limiter: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        status.HTTP_503_SERVICE_UNAVAILABLE: {
            "description": "Service not ready",
        }
    },
)
async def readiness_check(
    gateway: Annotated[Gateway, Depends(get_gateway)],
    response: Response,
) -> ReadinessResponse:
    """Readiness check that verifies configured dependencies."""
    db_ok = await check_database_connection(gateway.engine) if gateway.engine is not None else None
    redis_ok = await check_redis_connection(gateway.redis) if gateway.redis is not None else None

    all_ok = db_ok is not False and redis_ok is not False
    if not all_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(
        status="ready" if all_ok else "degraded",
        database=db_ok,
        redis=redis_ok,
        rate_limiter=gateway.rate_limiter.strategy,
    )


@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in the text exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
