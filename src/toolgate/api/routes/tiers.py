"""Public tier information routes."""

from fastapi import APIRouter

from toolgate.gateway.tiers import tier_info
from toolgate.models.api_key import Tier
from toolgate.schemas.api_key import TierInfoResponse
from toolgate.schemas.base import BaseResponse

router = APIRouter(prefix="/tiers", tags=["tiers"])


@router.get("", response_model=BaseResponse[list[TierInfoResponse]])
async def list_tiers() -> BaseResponse[list[TierInfoResponse]]:
    """Describe every tier, from least to most privileged."""
    tiers = [TierInfoResponse(**info) for info in tier_info()["tiers"]]
    return BaseResponse(data=tiers)


@router.get("/{tier}", response_model=BaseResponse[TierInfoResponse])
async def get_tier(tier: Tier) -> BaseResponse[TierInfoResponse]:
    return BaseResponse(data=TierInfoResponse(**tier_info(tier)))
