"""Tool call routes.

Every call passes through the gateway: the gate decides, the executor runs,
usage is recorded in the background after the result is ready.
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Body, Depends, Request

from toolgate.api.dependencies.gateway import credentials_from_request, get_gateway, request_info
from toolgate.core.exceptions import GatewayDeniedError, ToolNotFoundError
from toolgate.gateway.service import Gateway
from toolgate.gateway.tiers import KNOWN_TOOLS, TIER_ORDER, is_tool_allowed
from toolgate.schemas.base import BaseResponse, ErrorResponse
from toolgate.schemas.tools import ToolCallResponse, ToolDescription

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/tools", tags=["tools"])


@router.get("", response_model=BaseResponse[list[ToolDescription]])
async def list_tools(
    gateway: Annotated[Gateway, Depends(get_gateway)],
) -> BaseResponse[list[ToolDescription]]:
    """List registered tools and the tiers allowed to call each."""
    tools = [
        ToolDescription(
            name=name,
            tiers=[
                tier.value
                for tier in TIER_ORDER
                if name not in KNOWN_TOOLS or is_tool_allowed(tier, name)
            ],
        )
        for name in gateway.registry.names
    ]
    return BaseResponse(data=tools, message=f"{len(tools)} tools available")


@router.post(
    "/{tool_name}",
    response_model=BaseResponse[ToolCallResponse],
    responses={
        401: {"model": ErrorResponse, "description": "Missing, invalid, expired or revoked key"},
        403: {"model": ErrorResponse, "description": "Tier may not call this tool"},
        404: {"model": ErrorResponse, "description": "Tool not registered"},
        429: {"model": ErrorResponse, "description": "Rate limit, daily limit or monthly quota exceeded"},
    },
)
async def call_tool(
    tool_name: str,
    request: Request,
    gateway: Annotated[Gateway, Depends(get_gateway)],
    arguments: Annotated[dict[str, Any] | None, Body()] = None,
) -> BaseResponse[ToolCallResponse]:
    """
    Call a tool.

    Credentials are read from ``X-API-Key``, ``Authorization: Bearer`` or the
    ``api_key`` query parameter. Denials map to 401, 403, 429 or 503.

    The gate runs before the registry lookup, so a bad key gets 401 whether
    or not the tool exists. A call to an unregistered tool with a valid key
    therefore counts against the caller's rate limit before the 404.
    """
    auth = await gateway.invoker.authorize(
        tool_name,
        credentials=credentials_from_request(request),
        request=request_info(request),
        required=gateway.auth_required,
    )
    if not auth.success:
        assert auth.error is not None
        raise GatewayDeniedError(auth.error.code, auth.error.message, details=auth.error.details)

    if tool_name not in gateway.registry:
        logger.info("unknown_tool_requested", tool_name=tool_name)
        raise ToolNotFoundError(tool_name, gateway.registry.names)

    result = await gateway.invoker.run(auth.context, tool_name, arguments or {})
    return BaseResponse(
        data=ToolCallResponse(tool_name=tool_name, is_error=result.is_error, content=result.content),
    )
