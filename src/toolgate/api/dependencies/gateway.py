"""Gateway dependencies for route handlers."""

import secrets
from typing import Annotated

import structlog
from fastapi import Depends, Header, Request

from toolgate.api.middleware.logging import get_client_ip
from toolgate.core.exceptions import ConfigurationError, PermissionDeniedError
from toolgate.gateway.gate import Credentials, RequestInfo
from toolgate.gateway.key_client import KeyStoreClient
from toolgate.gateway.service import Gateway

logger = structlog.get_logger(__name__)


def get_gateway(request: Request) -> Gateway:
    """Return the gateway started by the application lifespan."""
    gateway: Gateway | None = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise ConfigurationError("Gateway is not started")
    return gateway


def get_key_client(gateway: Annotated[Gateway, Depends(get_gateway)]) -> KeyStoreClient:
    """
    Return the key store client.

    Raises:
        ConfigurationError: If no key store is configured.
    """
    if gateway.key_client is None:
        raise ConfigurationError("Key store is not configured")
    return gateway.key_client


def credentials_from_request(request: Request) -> Credentials:
    """Collect the credential carriers of an HTTP request."""
    return Credentials(
        headers=dict(request.headers),
        query=dict(request.query_params),
    )


def request_info(request: Request) -> RequestInfo:
    return RequestInfo(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


async def require_admin(
    gateway: Annotated[Gateway, Depends(get_gateway)],
    x_admin_token: Annotated[str | None, Header()] = None,
) -> None:
    """
    Guard administrative routes with the ``X-Admin-Token`` header.

    Raises:
        ConfigurationError: If no admin token is configured.
        PermissionDeniedError: If the header is missing or wrong.
    """
    admin_token = gateway.settings.admin_token
    if admin_token is None or not admin_token.get_secret_value():
        raise ConfigurationError("Administration is disabled: ADMIN_TOKEN is not set")

    if not x_admin_token or not secrets.compare_digest(
        x_admin_token.encode("utf-8"),
        admin_token.get_secret_value().encode("utf-8"),
    ):
        logger.warning("admin_token_rejected")
        raise PermissionDeniedError("Invalid admin token")
