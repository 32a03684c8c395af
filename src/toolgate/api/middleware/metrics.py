"""Metrics middleware for automatic request tracking."""

from time import perf_counter

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from toolgate.core.metrics import (
    request_latency_seconds,
    request_total,
    track_request_end,
    track_request_start,
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collects latency, request count and in-flight gauge for HTTP requests.

    Metrics and health endpoints are excluded.
    """

    EXCLUDED_PATHS = {"/metrics", "/health", "/health/ready"}

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        method = request.method
        track_request_start()
        start_time = perf_counter()
        status = "500"

        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            endpoint = self._get_endpoint(request)
            request_latency_seconds.labels(endpoint=endpoint, method=method).observe(
                perf_counter() - start_time
            )
            request_total.labels(endpoint=endpoint, method=method, status=status).inc()
            track_request_end()

    def _get_endpoint(self, request: Request) -> str:
        """Route pattern of the request (``/tools/{tool_name}``), else the raw path."""
        route = request.scope.get("route")
        if route is not None:
            return route.path
        return request.url.path
