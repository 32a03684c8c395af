"""Key store client: API key issuance, lookup, validation and revocation."""

import base64
import enum
import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from toolgate.core.exceptions import KeyStoreError
from toolgate.gateway.tiers import limits_for
from toolgate.models.api_key import APIKey, KeyStatus, Tier
from toolgate.models.base import as_utc
from toolgate.store.base import KeyStore, ValidationFailure
from toolgate.store.sql import year_month_of

logger = structlog.get_logger(__name__)

API_KEY_PREFIX = "tg_"
DISPLAY_PREFIX_LENGTH = 12
INVALID_KEY_MESSAGE = "Invalid API key"
TOP_TOOLS_LIMIT = 5

# Errors treated as "the store could not be reached or failed the call"
STORE_ERRORS: tuple[type[BaseException], ...] = (SQLAlchemyError, OSError, TimeoutError)


def hash_api_key(plaintext: str) -> str:
    """Return the sha256 hex fingerprint of a key secret."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def generate_api_key(tier: Tier | str = Tier.FREE) -> tuple[str, str, str]:
    """
    Generate a new key secret for ``tier``.

    Returns:
        Tuple of (plaintext, fingerprint, display_prefix). The plaintext has
        the form ``tg_<tier>_<random>`` where the random part is 24 bytes of
        URL-safe base64 without padding.
    """
    tier_value = Tier(tier).value
    random_part = base64.urlsafe_b64encode(secrets.token_bytes(24)).rstrip(b"=").decode("ascii")
    plaintext = f"{API_KEY_PREFIX}{tier_value}_{random_part}"
    return plaintext, hash_api_key(plaintext), plaintext[:DISPLAY_PREFIX_LENGTH]


@dataclass(frozen=True)
class KeyValidation:
    """Outcome of validating one plaintext key."""

    valid: bool
    key_id: UUID | None = None
    tier: Tier | None = None
    per_minute_limit: int | None = None
    per_day_limit: int | None = None
    monthly_quota: int | None = None
    daily_usage: int = 0
    monthly_usage: int = 0
    error_reason: str | None = None
    reason_code: ValidationFailure | None = None


class RevokeOutcome(str, enum.Enum):
    REVOKED = "revoked"
    ALREADY_REVOKED = "already_revoked"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class KeyStats:
    daily_usage: int = 0
    monthly_usage: int = 0
    last_used_at: datetime | None = None


@dataclass(frozen=True)
class UsageSummary:
    """Today's and this month's usage of one key, plus its most used tools."""

    today: dict[str, int] = field(
        default_factory=lambda: {"requests": 0, "successes": 0, "errors": 0, "avg_duration_ms": 0}
    )
    this_month: dict[str, int] = field(
        default_factory=lambda: {"requests": 0, "successes": 0, "errors": 0}
    )
    top_tools: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "today": dict(self.today),
            "this_month": dict(self.this_month),
            "top_tools": list(self.top_tools),
        }


class KeyStoreClient:
    """
    Client of the persistent key store.

    Validation and key administration raise :class:`KeyStoreError` when the
    store fails. The reporting reads (:meth:`get_key_stats`,
    :meth:`get_usage_summary`) are informational and degrade to zeros.
    """

    def __init__(self, store: KeyStore) -> None:
        self._store = store

    @property
    def store(self) -> KeyStore:
        return self._store

    async def validate_key(self, plaintext: str) -> KeyValidation:
        """
        Validate a plaintext API key.

        Args:
            plaintext: The key secret presented by the caller.

        Returns:
            The validation outcome. An unknown key is invalid with reason
            ``"Invalid API key"``.

        Raises:
            KeyStoreError: If the store could not be reached.
        """
        if not plaintext:
            return KeyValidation(valid=False, error_reason=INVALID_KEY_MESSAGE, reason_code=ValidationFailure.INVALID)

        try:
            row = await self._store.validate_api_key(hash_api_key(plaintext))
        except STORE_ERRORS as e:
            logger.error("api_key_validation_failed", error=str(e))
            raise KeyStoreError(f"Failed to validate API key: {e}", operation="validate_api_key") from e

        if row is None:
            return KeyValidation(valid=False, error_reason=INVALID_KEY_MESSAGE, reason_code=ValidationFailure.INVALID)

        if not row.is_valid:
            logger.info(
                "api_key_rejected",
                key_id=str(row.api_key_id) if row.api_key_id else None,
                reason=row.reason.value if row.reason else None,
            )
            return KeyValidation(
                valid=False,
                key_id=row.api_key_id,
                tier=Tier(row.tier) if row.tier else None,
                daily_usage=row.daily_usage,
                monthly_usage=row.monthly_usage,
                error_reason=row.error_message or INVALID_KEY_MESSAGE,
                reason_code=row.reason,
            )

        return KeyValidation(
            valid=True,
            key_id=row.api_key_id,
            tier=Tier(row.tier),
            per_minute_limit=row.rate_limit_per_minute,
            per_day_limit=row.rate_limit_per_day,
            monthly_quota=row.monthly_quota,
            daily_usage=row.daily_usage,
            monthly_usage=row.monthly_usage,
        )

    async def create_key(
        self,
        name: str,
        tier: Tier | str = Tier.FREE,
        owner_id: str | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[APIKey, str]:
        """
        Issue a new API key.

        Args:
            name: Descriptive name for the key.
            tier: Subscription tier; limits are copied from its policy.
            owner_id: Optional owner the key belongs to.
            expires_at: Optional expiry instant.
            metadata: Free-form metadata stored with the key.

        Returns:
            Tuple of (record, plaintext). The plaintext is never stored and
            must be shown to the caller exactly once.

        Raises:
            ValueError: If ``name`` is empty or ``tier`` is unknown.
            KeyStoreError: If the store rejected the insert.
        """
        if not name or not name.strip():
            raise ValueError("API key name cannot be empty")

        policy = limits_for(tier)
        plaintext, key_hash, key_prefix = generate_api_key(policy.tier)
        if expires_at is not None:
            expires_at = as_utc(expires_at).astimezone(UTC)

        try:
            api_key = await self._store.insert_api_key(
                key_hash=key_hash,
                key_prefix=key_prefix,
                name=name.strip(),
                tier=policy.tier.value,
                rate_limit_per_minute=policy.per_minute,
                rate_limit_per_day=policy.per_day,
                monthly_quota=policy.monthly_quota,
                owner_id=owner_id,
                expires_at=expires_at,
                metadata=metadata,
            )
        except STORE_ERRORS as e:
            raise KeyStoreError(f"Failed to create API key: {e}", operation="insert_api_key") from e

        logger.info(
            "api_key_created",
            key_id=str(api_key.id),
            key_prefix=key_prefix,
            owner_id=owner_id,
            tier=policy.tier.value,
        )
        return api_key, plaintext

    async def get_by_id(self, key_id: UUID) -> APIKey | None:
        try:
            return await self._store.get_api_key(key_id)
        except STORE_ERRORS as e:
            raise KeyStoreError(f"Failed to get API key: {e}", operation="get_api_key") from e

    async def list_by_owner(self, owner_id: str) -> list[APIKey]:
        """List an owner's keys, newest first."""
        try:
            return await self._store.list_api_keys(owner_id)
        except STORE_ERRORS as e:
            raise KeyStoreError(f"Failed to get API keys: {e}", operation="list_api_keys") from e

    async def revoke(self, key_id: UUID) -> RevokeOutcome:
        """
        Revoke a key. Revoking an already revoked key is a no-op.

        Raises:
            KeyStoreError: If the store could not be reached.
        """
        try:
            api_key = await self._store.get_api_key(key_id)
            if api_key is None:
                return RevokeOutcome.NOT_FOUND
            if api_key.status == KeyStatus.REVOKED.value:
                logger.info("api_key_already_revoked", key_id=str(key_id))
                return RevokeOutcome.ALREADY_REVOKED
            await self._store.update_api_key_status(key_id, KeyStatus.REVOKED.value)
        except STORE_ERRORS as e:
            raise KeyStoreError(f"Failed to revoke API key: {e}", operation="update_api_key_status") from e

        logger.info("api_key_revoked", key_id=str(key_id), key_prefix=api_key.key_prefix)
        return RevokeOutcome.REVOKED

    async def get_key_stats(self, key_id: UUID) -> KeyStats:
        """Current day and month request counts plus the last-used time."""
        today = datetime.now(UTC).date()
        try:
            api_key = await self._store.get_api_key(key_id)
            daily = await self._store.get_daily_usage(key_id, today)
            monthly = await self._store.get_monthly_usage(key_id, year_month_of(today))
        except STORE_ERRORS as e:
            logger.warning("api_key_stats_unavailable", key_id=str(key_id), error=str(e))
            return KeyStats()

        return KeyStats(
            daily_usage=daily.request_count if daily is not None else 0,
            monthly_usage=monthly.request_count if monthly is not None else 0,
            last_used_at=as_utc(api_key.last_used_at) if api_key is not None else None,
        )

    async def get_usage_summary(self, key_id: UUID) -> UsageSummary:
        """Summarize today's and this month's usage of a key."""
        today = datetime.now(UTC).date()
        try:
            daily = await self._store.get_daily_usage(key_id, today)
            monthly = await self._store.get_monthly_usage(key_id, year_month_of(today))
        except STORE_ERRORS as e:
            logger.warning("usage_summary_unavailable", key_id=str(key_id), error=str(e))
            return UsageSummary()

        summary = UsageSummary()
        if daily is not None:
            avg_duration = (
                round(daily.total_duration_ms / daily.request_count) if daily.request_count > 0 else 0
            )
            summary.today.update(
                requests=daily.request_count,
                successes=daily.success_count,
                errors=daily.error_count,
                avg_duration_ms=avg_duration,
            )
            tool_counts = daily.tool_counts or {}
            ranked = sorted(tool_counts.items(), key=lambda item: item[1], reverse=True)
            summary.top_tools.extend(
                {"name": name, "count": int(count)} for name, count in ranked[:TOP_TOOLS_LIMIT]
            )
        if monthly is not None:
            summary.this_month.update(
                requests=monthly.request_count,
                successes=monthly.success_count,
                errors=monthly.error_count,
            )
        return summary
