"""Pydantic schemas for API requests and responses."""

from toolgate.schemas.api_key import (
    APIKeyCreate,
    APIKeyCreatedResponse,
    APIKeyDetailResponse,
    APIKeyResponse,
    KeyStatsResponse,
    RevokeResponse,
    TierInfoResponse,
    UsageSummaryResponse,
)
from toolgate.schemas.base import BaseResponse, ErrorDetail, ErrorResponse
from toolgate.schemas.tools import ToolCallResponse, ToolDescription

__all__ = [
    "APIKeyCreate",
    "APIKeyCreatedResponse",
    "APIKeyDetailResponse",
    "APIKeyResponse",
    "BaseResponse",
    "ErrorDetail",
    "ErrorResponse",
    "KeyStatsResponse",
    "RevokeResponse",
    "TierInfoResponse",
    "ToolCallResponse",
    "ToolDescription",
    "UsageSummaryResponse",
]
