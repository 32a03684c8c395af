"""Contract of the persistent key/usage store.

The gateway never talks to a database directly. Everything it needs from
persistence goes through :class:`KeyStore`: one atomic validation call per
request, key CRUD for administration, and the usage counters.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any
from uuid import UUID

from toolgate.models.api_key import APIKey
from toolgate.models.usage import DailyUsage, MonthlyUsage


class ValidationFailure(str, enum.Enum):
    """Structured reason returned with an invalid validation row."""

    EXPIRED = "expired"
    REVOKED = "revoked"
    INVALID = "invalid"
    DAILY_LIMIT = "daily_limit"
    MONTHLY_QUOTA = "monthly_quota"


@dataclass(frozen=True)
class KeyValidationRow:
    """Result of the store's atomic validation of one key fingerprint."""

    is_valid: bool
    api_key_id: UUID | None = None
    tier: str | None = None
    rate_limit_per_minute: int | None = None
    rate_limit_per_day: int | None = None
    monthly_quota: int | None = None
    daily_usage: int = 0
    monthly_usage: int = 0
    error_message: str | None = None
    reason: ValidationFailure | None = None


@dataclass(frozen=True)
class UsageLogRecord:
    """Row to append to the usage log."""

    api_key_id: UUID
    tool_name: str
    success: bool
    request_size: int | None = None
    response_size: int | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class KeyStore(ABC):
    """Remote persistent store for API keys and usage aggregates."""

    @abstractmethod
    async def validate_api_key(self, key_hash: str) -> KeyValidationRow | None:
        """Validate a key fingerprint atomically.

        Enforces status, expiry, daily limit and monthly quota in one
        transaction and touches ``last_used_at`` on success.

        Returns:
            The validation row, or ``None`` when no key has this fingerprint.
        """

    @abstractmethod
    async def insert_api_key(
        self,
        *,
        key_hash: str,
        key_prefix: str,
        name: str,
        tier: str,
        rate_limit_per_minute: int,
        rate_limit_per_day: int,
        monthly_quota: int | None,
        owner_id: str | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> APIKey: ...

    @abstractmethod
    async def get_api_key(self, key_id: UUID) -> APIKey | None: ...

    @abstractmethod
    async def list_api_keys(self, owner_id: str) -> list[APIKey]:
        """List keys of one owner, newest first."""

    @abstractmethod
    async def update_api_key_status(self, key_id: UUID, status: str) -> APIKey | None:
        """Set a key's status. Returns the updated record, ``None`` if missing."""

    @abstractmethod
    async def insert_usage_log(self, record: UsageLogRecord) -> None: ...

    @abstractmethod
    async def increment_daily_usage(
        self,
        api_key_id: UUID,
        tool_name: str,
        request_size: int,
        response_size: int,
        duration_ms: int,
        success: bool,
    ) -> None: ...

    @abstractmethod
    async def increment_monthly_usage(self, api_key_id: UUID, success: bool) -> None: ...

    @abstractmethod
    async def get_daily_usage(self, api_key_id: UUID, day: date) -> DailyUsage | None: ...

    @abstractmethod
    async def get_monthly_usage(self, api_key_id: UUID, year_month: str) -> MonthlyUsage | None: ...

    async def close(self) -> None:
        """Release resources held by the store."""
