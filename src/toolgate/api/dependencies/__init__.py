"""FastAPI dependencies."""

from toolgate.api.dependencies.gateway import (
    credentials_from_request,
    get_gateway,
    get_key_client,
    request_info,
    require_admin,
)

__all__ = [
    "credentials_from_request",
    "get_gateway",
    "get_key_client",
    "request_info",
    "require_admin",
]
