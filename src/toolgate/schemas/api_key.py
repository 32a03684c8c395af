"""API key and tier schemas for requests and responses."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from toolgate.models.api_key import KeyStatus, Tier


class APIKeyCreate(BaseModel):
    """Schema for creating a new API key."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Descriptive name for the API key",
    )
    tier: Tier = Field(
        default=Tier.FREE,
        description="Subscription tier for the key",
    )
    owner_id: str | None = Field(
        default=None,
        max_length=255,
        description="Optional owner the key belongs to",
    )
    expires_at: datetime | None = Field(
        default=None,
        description="Optional expiration datetime",
    )
    expires_in_days: int | None = Field(
        default=None,
        ge=1,
        le=3650,
        description="Days until the key expires (alternative to expires_at)",
    )
    metadata: dict[str, Any] | None = Field(
        default=None,
        description="Free-form metadata stored with the key",
    )

    @model_validator(mode="after")
    def check_expiry(self) -> "APIKeyCreate":
        if self.expires_at is not None and self.expires_in_days is not None:
            raise ValueError("Provide either expires_at or expires_in_days, not both")
        return self


class APIKeyResponse(BaseModel):
    """API key metadata. Never includes the secret."""

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: UUID = Field(
        ...,
        description="API key ID",
    )
    key_prefix: str = Field(
        ...,
        description="First characters of the key, for display",
    )
    name: str = Field(
        ...,
        description="Descriptive name for the key",
    )
    owner_id: str | None = Field(
        default=None,
        description="Owner of the key",
    )
    tier: Tier = Field(
        ...,
        description="Subscription tier",
    )
    status: KeyStatus = Field(
        ...,
        description="Lifecycle status",
    )
    rate_limit_per_minute: int = Field(
        ...,
        description="Requests allowed per minute",
    )
    rate_limit_per_day: int = Field(
        ...,
        description="Requests allowed per day",
    )
    monthly_quota: int | None = Field(
        default=None,
        description="Requests allowed per month, null for unlimited",
    )
    expires_at: datetime | None = Field(
        default=None,
        description="Expiration datetime",
    )
    last_used_at: datetime | None = Field(
        default=None,
        description="Last usage timestamp",
    )
    created_at: datetime = Field(
        ...,
        description="Creation timestamp",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("key_metadata", "metadata"),
        description="Free-form metadata",
    )


class APIKeyCreatedResponse(BaseModel):
    """Schema for newly created API key with plain key."""

    model_config = ConfigDict(extra="forbid")

    api_key: str = Field(
        ...,
        description="The plain API key (shown only once)",
    )
    key_info: APIKeyResponse = Field(
        ...,
        description="API key metadata",
    )
    message: str = Field(
        default="API key created successfully. Store this key securely as it will not be shown again.",
        description="Warning message",
    )


class KeyStatsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    daily_usage: int = 0
    monthly_usage: int = 0
    last_used_at: datetime | None = None


class UsageSummaryResponse(BaseModel):
    """Today's and this month's usage of a key."""

    model_config = ConfigDict(extra="forbid")

    today: dict[str, int]
    this_month: dict[str, int]
    top_tools: list[dict[str, Any]]


class APIKeyDetailResponse(BaseModel):
    """Key metadata with live usage."""

    model_config = ConfigDict(extra="forbid")

    key_info: APIKeyResponse
    stats: KeyStatsResponse
    usage: UsageSummaryResponse


class RevokeResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key_id: UUID
    outcome: str = Field(
        ...,
        description="revoked or already_revoked",
    )


class TierInfoResponse(BaseModel):
    """Public description of one tier."""

    model_config = ConfigDict(extra="forbid")

    tier: Tier
    rate_limit_per_minute: int
    rate_limit_per_day: int
    monthly_quota: int | str = Field(
        ...,
        description='Monthly request quota, or "unlimited"',
    )
    allowed_tools: list[str]
