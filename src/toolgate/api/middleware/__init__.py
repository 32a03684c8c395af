"""FastAPI middleware components."""

from toolgate.api.middleware.exception_handler import setup_exception_handlers
from toolgate.api.middleware.logging import LoggingMiddleware
from toolgate.api.middleware.metrics import MetricsMiddleware

__all__ = [
    "LoggingMiddleware",
    "MetricsMiddleware",
    "setup_exception_handlers",
]
