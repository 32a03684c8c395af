"""Base schemas for standardized API responses.

Successful responses wrap their payload in :class:`BaseResponse`; errors
follow :class:`ErrorResponse`.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ResponseMetadata(BaseModel):
    """Metadata included in all API responses."""

    model_config = ConfigDict(extra="forbid")

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Response timestamp in UTC",
    )
    correlation_id: str | None = Field(
        default=None,
        description="Correlation ID for request tracing",
    )


class ErrorDetail(BaseModel):
    """Detailed error information."""

    model_config = ConfigDict(extra="forbid")

    code: str = Field(
        ...,
        description="Machine-readable error code (e.g., RATE_LIMIT_EXCEEDED)",
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
    )
    details: dict[str, Any] | None = Field(
        default=None,
        description="Additional error context",
    )


class ErrorResponse(BaseModel):
    """Standardized error response schema."""

    model_config = ConfigDict(extra="forbid")

    success: bool = Field(
        default=False,
        description="Always false for error responses",
    )
    error: ErrorDetail = Field(
        ...,
        description="Error details",
    )
    correlation_id: str | None = Field(
        default=None,
        description="Correlation ID for request tracing",
    )


class BaseResponse(BaseModel, Generic[T]):
    """Base response schema for all successful API responses."""

    model_config = ConfigDict(extra="forbid")

    success: bool = Field(
        default=True,
        description="Indicates successful response",
    )
    data: T = Field(
        ...,
        description="Response payload",
    )
    message: str | None = Field(
        default=None,
        description="Optional human-readable message",
    )
    meta: ResponseMetadata = Field(
        default_factory=ResponseMetadata,
        description="Response metadata",
    )

