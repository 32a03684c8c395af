"""SQLAlchemy implementation of the key store.

Each operation runs in its own session and transaction. Validation and the
usage counters lock the rows they read (``SELECT ... FOR UPDATE`` on
PostgreSQL) so concurrent requests for the same key do not lose updates.
"""

from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from toolgate.models.api_key import APIKey, KeyStatus
from toolgate.models.base import as_utc
from toolgate.models.usage import DailyUsage, MonthlyUsage, UsageLog
from toolgate.store.base import (
    KeyStore,
    KeyValidationRow,
    UsageLogRecord,
    ValidationFailure,
)

logger = structlog.get_logger(__name__)

REVOKED_MESSAGE = "API key has been revoked"
EXPIRED_MESSAGE = "API key has expired"
INACTIVE_MESSAGE = "API key is not active"
DAILY_LIMIT_MESSAGE = "Daily request limit exceeded"
MONTHLY_QUOTA_MESSAGE = "Monthly quota exceeded"

# Attempts for upserts that can race on the first insert of a period
_UPSERT_ATTEMPTS = 2


def year_month_of(day: date) -> str:
    """Format the monthly aggregate key (``YYYY-MM``)."""
    return f"{day.year:04d}-{day.month:02d}"


class SQLKeyStore(KeyStore):
    """Key store backed by a relational database through SQLAlchemy async."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(UTC))

    async def validate_api_key(self, key_hash: str) -> KeyValidationRow | None:
        now = self._clock()
        today = now.date()

        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                select(APIKey).where(APIKey.key_hash == key_hash).with_for_update()
            )
            api_key = result.scalar_one_or_none()
            if api_key is None:
                return None

            if api_key.status == KeyStatus.REVOKED.value:
                return self._invalid(api_key, REVOKED_MESSAGE, ValidationFailure.REVOKED)

            expires_at = as_utc(api_key.expires_at)
            if api_key.status == KeyStatus.EXPIRED.value:
                return self._invalid(api_key, EXPIRED_MESSAGE, ValidationFailure.EXPIRED)
            if expires_at is not None and expires_at <= now:
                api_key.status = KeyStatus.EXPIRED.value
                logger.info("api_key_expired", key_id=str(api_key.id), expired_at=expires_at.isoformat())
                return self._invalid(api_key, EXPIRED_MESSAGE, ValidationFailure.EXPIRED)

            if api_key.status != KeyStatus.ACTIVE.value:
                return self._invalid(api_key, INACTIVE_MESSAGE, ValidationFailure.INVALID)

            daily = await session.get(DailyUsage, (api_key.id, today))
            monthly = await session.get(MonthlyUsage, (api_key.id, year_month_of(today)))
            daily_usage = daily.request_count if daily is not None else 0
            monthly_usage = monthly.request_count if monthly is not None else 0

            if daily_usage >= api_key.rate_limit_per_day:
                return self._invalid(
                    api_key,
                    DAILY_LIMIT_MESSAGE,
                    ValidationFailure.DAILY_LIMIT,
                    daily_usage=daily_usage,
                    monthly_usage=monthly_usage,
                )
            if api_key.monthly_quota is not None and monthly_usage >= api_key.monthly_quota:
                return self._invalid(
                    api_key,
                    MONTHLY_QUOTA_MESSAGE,
                    ValidationFailure.MONTHLY_QUOTA,
                    daily_usage=daily_usage,
                    monthly_usage=monthly_usage,
                )

            api_key.last_used_at = now
            return KeyValidationRow(
                is_valid=True,
                api_key_id=api_key.id,
                tier=api_key.tier,
                rate_limit_per_minute=api_key.rate_limit_per_minute,
                rate_limit_per_day=api_key.rate_limit_per_day,
                monthly_quota=api_key.monthly_quota,
                daily_usage=daily_usage,
                monthly_usage=monthly_usage,
            )

    @staticmethod
    def _invalid(
        api_key: APIKey,
        message: str,
        reason: ValidationFailure,
        *,
        daily_usage: int = 0,
        monthly_usage: int = 0,
    ) -> KeyValidationRow:
        return KeyValidationRow(
            is_valid=False,
            api_key_id=api_key.id,
            tier=api_key.tier,
            rate_limit_per_minute=api_key.rate_limit_per_minute,
            rate_limit_per_day=api_key.rate_limit_per_day,
            monthly_quota=api_key.monthly_quota,
            daily_usage=daily_usage,
            monthly_usage=monthly_usage,
            error_message=message,
            reason=reason,
        )

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
    ) -> APIKey:
        api_key = APIKey(
            key_hash=key_hash,
            key_prefix=key_prefix,
            name=name,
            owner_id=owner_id,
            tier=tier,
            rate_limit_per_minute=rate_limit_per_minute,
            rate_limit_per_day=rate_limit_per_day,
            monthly_quota=monthly_quota,
            status=KeyStatus.ACTIVE.value,
            expires_at=expires_at,
            key_metadata=metadata or {},
        )
        async with self._session_factory() as session, session.begin():
            session.add(api_key)
            await session.flush()
        return api_key

    async def get_api_key(self, key_id: UUID) -> APIKey | None:
        async with self._session_factory() as session:
            return await session.get(APIKey, key_id)

    async def list_api_keys(self, owner_id: str) -> list[APIKey]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(APIKey)
                .where(APIKey.owner_id == owner_id)
                .order_by(APIKey.created_at.desc())
            )
            return list(result.scalars().all())

    async def update_api_key_status(self, key_id: UUID, status: str) -> APIKey | None:
        async with self._session_factory() as session, session.begin():
            api_key = await session.get(APIKey, key_id, with_for_update=True)
            if api_key is None:
                return None
            api_key.status = status
            api_key.updated_at = self._clock()
        return api_key

    async def insert_usage_log(self, record: UsageLogRecord) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(
                UsageLog(
                    api_key_id=record.api_key_id,
                    tool_name=record.tool_name,
                    request_size=record.request_size,
                    response_size=record.response_size,
                    duration_ms=record.duration_ms,
                    success=record.success,
                    error_message=record.error_message,
                    ip_address=record.ip_address,
                    user_agent=record.user_agent,
                    created_at=self._clock(),
                )
            )

    async def increment_daily_usage(
        self,
        api_key_id: UUID,
        tool_name: str,
        request_size: int,
        response_size: int,
        duration_ms: int,
        success: bool,
    ) -> None:
        today = self._clock().date()
        for attempt in range(1, _UPSERT_ATTEMPTS + 1):
            try:
                async with self._session_factory() as session, session.begin():
                    row = await session.get(DailyUsage, (api_key_id, today), with_for_update=True)
                    if row is None:
                        row = DailyUsage(
                            api_key_id=api_key_id,
                            day=today,
                            request_count=0,
                            success_count=0,
                            error_count=0,
                            total_request_bytes=0,
                            total_response_bytes=0,
                            total_duration_ms=0,
                            tool_counts={},
                        )
                        session.add(row)
                    row.request_count += 1
                    if success:
                        row.success_count += 1
                    else:
                        row.error_count += 1
                    row.total_request_bytes += request_size
                    row.total_response_bytes += response_size
                    row.total_duration_ms += duration_ms
                    # Reassign so the JSON column is flagged as modified
                    tool_counts = dict(row.tool_counts or {})
                    tool_counts[tool_name] = int(tool_counts.get(tool_name, 0)) + 1
                    row.tool_counts = tool_counts
                return
            except IntegrityError:
                if attempt == _UPSERT_ATTEMPTS:
                    raise
                logger.debug("daily_usage_insert_race", api_key_id=str(api_key_id))

    async def increment_monthly_usage(self, api_key_id: UUID, success: bool) -> None:
        year_month = year_month_of(self._clock().date())
        for attempt in range(1, _UPSERT_ATTEMPTS + 1):
            try:
                async with self._session_factory() as session, session.begin():
                    row = await session.get(
                        MonthlyUsage, (api_key_id, year_month), with_for_update=True
                    )
                    if row is None:
                        row = MonthlyUsage(
                            api_key_id=api_key_id,
                            year_month=year_month,
                            request_count=0,
                            success_count=0,
                            error_count=0,
                        )
                        session.add(row)
                    row.request_count += 1
                    if success:
                        row.success_count += 1
                    else:
                        row.error_count += 1
                return
            except IntegrityError:
                if attempt == _UPSERT_ATTEMPTS:
                    raise
                logger.debug("monthly_usage_insert_race", api_key_id=str(api_key_id))

    async def get_daily_usage(self, api_key_id: UUID, day: date) -> DailyUsage | None:
        async with self._session_factory() as session:
            return await session.get(DailyUsage, (api_key_id, day))

    async def get_monthly_usage(self, api_key_id: UUID, year_month: str) -> MonthlyUsage | None:
        async with self._session_factory() as session:
            return await session.get(MonthlyUsage, (api_key_id, year_month))
