"""API key administration routes.

All routes require the ``X-Admin-Token`` header. Store failures surface as
``KeyStoreError`` and are rendered by the exception handlers.
"""

from datetime import UTC, datetime, timedelta
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from toolgate.api.dependencies.gateway import get_key_client, require_admin
from toolgate.core.exceptions import KeyNotFoundError, ValidationError
from toolgate.gateway.key_client import KeyStoreClient, RevokeOutcome
from toolgate.schemas.api_key import (
    APIKeyCreate,
    APIKeyCreatedResponse,
    APIKeyDetailResponse,
    APIKeyResponse,
    KeyStatsResponse,
    RevokeResponse,
    UsageSummaryResponse,
)
from toolgate.schemas.base import BaseResponse

router = APIRouter(
    prefix="/api-keys",
    tags=["api-keys"],
    dependencies=[Depends(require_admin)],
)


@router.post(
    "",
    response_model=BaseResponse[APIKeyCreatedResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_api_key(
    key_data: APIKeyCreate,
    key_client: Annotated[KeyStoreClient, Depends(get_key_client)],
) -> BaseResponse[APIKeyCreatedResponse]:
    """
    Issue a new API key.

    The plain API key is returned only once and should be stored securely.
    """
    expires_at = key_data.expires_at
    if key_data.expires_in_days is not None:
        expires_at = datetime.now(UTC) + timedelta(days=key_data.expires_in_days)

    try:
        api_key, plain_key = await key_client.create_key(
            name=key_data.name,
            tier=key_data.tier,
            owner_id=key_data.owner_id,
            expires_at=expires_at,
            metadata=key_data.metadata,
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e

    return BaseResponse(
        data=APIKeyCreatedResponse(
            api_key=plain_key,
            key_info=APIKeyResponse.model_validate(api_key),
        ),
        message="API key created successfully",
    )


@router.get(
    "",
    response_model=BaseResponse[list[APIKeyResponse]],
)
async def list_api_keys(
    key_client: Annotated[KeyStoreClient, Depends(get_key_client)],
    owner_id: Annotated[str, Query(min_length=1, max_length=255)],
) -> BaseResponse[list[APIKeyResponse]]:
    """List an owner's keys, newest first. Never returns key secrets."""
    api_keys = await key_client.list_by_owner(owner_id)
    return BaseResponse(
        data=[APIKeyResponse.model_validate(key) for key in api_keys],
        message=f"Retrieved {len(api_keys)} API keys",
    )


@router.get(
    "/{key_id}",
    response_model=BaseResponse[APIKeyDetailResponse],
)
async def get_api_key(
    key_id: UUID,
    key_client: Annotated[KeyStoreClient, Depends(get_key_client)],
) -> BaseResponse[APIKeyDetailResponse]:
    """Key metadata with today's and this month's usage."""
    api_key = await key_client.get_by_id(key_id)
    if api_key is None:
        raise KeyNotFoundError(str(key_id))

    stats = await key_client.get_key_stats(key_id)
    summary = await key_client.get_usage_summary(key_id)

    return BaseResponse(
        data=APIKeyDetailResponse(
            key_info=APIKeyResponse.model_validate(api_key),
            stats=KeyStatsResponse(
                daily_usage=stats.daily_usage,
                monthly_usage=stats.monthly_usage,
                last_used_at=stats.last_used_at,
            ),
            usage=UsageSummaryResponse(**summary.to_dict()),
        ),
    )


@router.delete(
    "/{key_id}",
    response_model=BaseResponse[RevokeResponse],
)
async def revoke_api_key(
    key_id: UUID,
    key_client: Annotated[KeyStoreClient, Depends(get_key_client)],
) -> BaseResponse[RevokeResponse]:
    """
    Revoke an API key.

    The key can no longer be used for authentication. Revoking an already
    revoked key succeeds without changes.
    """
    outcome = await key_client.revoke(key_id)
    if outcome is RevokeOutcome.NOT_FOUND:
        raise KeyNotFoundError(str(key_id))

    message = (
        "API key revoked successfully"
        if outcome is RevokeOutcome.REVOKED
        else "API key was already revoked"
    )
    return BaseResponse(
        data=RevokeResponse(key_id=key_id, outcome=outcome.value),
        message=message,
    )
