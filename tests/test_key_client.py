"""Tests for API key issuance, validation and revocation."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from toolgate.core.exceptions import KeyStoreError
from toolgate.gateway.key_client import (
    KeyStoreClient,
    RevokeOutcome,
    UsageSummary,
    generate_api_key,
    hash_api_key,
)
from toolgate.models.api_key import KeyStatus, Tier
from toolgate.models.usage import DailyUsage, MonthlyUsage
from toolgate.store.base import KeyStore, UsageLogRecord, ValidationFailure
from toolgate.store.sql import SQLKeyStore, year_month_of


class TestKeyGeneration:
    """Tests for key secret generation."""

    def test_format(self) -> None:
        """Test the plaintext format and derived fields."""
        plaintext, key_hash, prefix = generate_api_key(Tier.PRO)

        assert plaintext.startswith("tg_pro_")
        assert len(plaintext) == len("tg_pro_") + 32
        assert "=" not in plaintext
        assert key_hash == hash_api_key(plaintext)
        assert len(key_hash) == 64
        assert prefix == plaintext[:12]

    def test_keys_are_unique(self) -> None:
        """Test two generated keys differ."""
        assert generate_api_key()[0] != generate_api_key()[0]

    def test_hash_is_deterministic(self) -> None:
        """Test the fingerprint only depends on the secret."""
        assert hash_api_key("tg_free_abc") == hash_api_key("tg_free_abc")
        assert hash_api_key("tg_free_abc") != hash_api_key("tg_free_abd")


@pytest.mark.asyncio
class TestKeyStoreClient:
    """Tests for the key store client over SQLite."""

    async def test_create_key(self, key_client: KeyStoreClient) -> None:
        """Test key creation copies the tier limits."""
        api_key, plaintext = await key_client.create_key(
            name="  CI key  ",
            tier=Tier.BASIC,
            owner_id="owner-1",
            metadata={"team": "docs"},
        )

        assert plaintext.startswith("tg_basic_")
        assert api_key.key_hash == hash_api_key(plaintext)
        assert api_key.key_prefix == plaintext[:12]
        assert api_key.name == "CI key"
        assert api_key.tier == "basic"
        assert api_key.rate_limit_per_minute == 30
        assert api_key.rate_limit_per_day == 500
        assert api_key.monthly_quota == 10_000
        assert api_key.status == KeyStatus.ACTIVE.value
        assert api_key.key_metadata == {"team": "docs"}

    async def test_create_key_empty_name(self, key_client: KeyStoreClient) -> None:
        """Test an empty name is rejected."""
        with pytest.raises(ValueError, match="name cannot be empty"):
            await key_client.create_key(name="   ")

    async def test_create_key_unknown_tier(self, key_client: KeyStoreClient) -> None:
        """Test an unknown tier is rejected."""
        with pytest.raises(ValueError):
            await key_client.create_key(name="key", tier="platinum")

    async def test_enterprise_key_has_no_quota(self, key_client: KeyStoreClient) -> None:
        """Test enterprise keys are created without a monthly quota."""
        api_key, _ = await key_client.create_key(name="big", tier=Tier.ENTERPRISE)

        assert api_key.monthly_quota is None

    async def test_validate_key(self, key_client: KeyStoreClient) -> None:
        """Test a fresh key validates with its limits."""
        api_key, plaintext = await key_client.create_key(name="key", tier=Tier.FREE)

        validation = await key_client.validate_key(plaintext)

        assert validation.valid is True
        assert validation.key_id == api_key.id
        assert validation.tier == Tier.FREE
        assert validation.per_minute_limit == 10
        assert validation.per_day_limit == 100
        assert validation.monthly_quota == 1_000
        assert validation.daily_usage == 0
        assert validation.error_reason is None

    async def test_validate_touches_last_used(self, key_client: KeyStoreClient) -> None:
        """Test successful validation records the last use."""
        api_key, plaintext = await key_client.create_key(name="key")

        await key_client.validate_key(plaintext)
        stored = await key_client.get_by_id(api_key.id)

        assert stored is not None
        assert stored.last_used_at is not None

    async def test_validate_unknown_key(self, key_client: KeyStoreClient) -> None:
        """Test an unknown key is invalid."""
        validation = await key_client.validate_key("tg_free_doesnotexist")

        assert validation.valid is False
        assert validation.error_reason == "Invalid API key"
        assert validation.reason_code == ValidationFailure.INVALID

    async def test_validate_empty_key(self, key_client: KeyStoreClient) -> None:
        """Test an empty key is invalid without touching the store."""
        validation = await key_client.validate_key("")

        assert validation.valid is False
        assert validation.error_reason == "Invalid API key"

    async def test_validate_revoked_key(self, key_client: KeyStoreClient) -> None:
        """Test a revoked key is rejected."""
        api_key, plaintext = await key_client.create_key(name="key")
        await key_client.revoke(api_key.id)

        validation = await key_client.validate_key(plaintext)

        assert validation.valid is False
        assert validation.reason_code == ValidationFailure.REVOKED
        assert validation.error_reason == "API key has been revoked"

    async def test_validate_expired_key(self, key_client: KeyStoreClient) -> None:
        """Test a key past its expiry is rejected and marked expired."""
        api_key, plaintext = await key_client.create_key(
            name="key",
            expires_at=datetime.now(UTC) - timedelta(minutes=1),
        )

        validation = await key_client.validate_key(plaintext)
        stored = await key_client.get_by_id(api_key.id)

        assert validation.valid is False
        assert validation.reason_code == ValidationFailure.EXPIRED
        assert validation.error_reason == "API key has expired"
        assert stored is not None
        assert stored.status == KeyStatus.EXPIRED.value

    async def test_validate_future_expiry(self, key_client: KeyStoreClient) -> None:
        """Test a key with a future expiry is still valid."""
        _, plaintext = await key_client.create_key(
            name="key",
            expires_at=datetime.now(UTC) + timedelta(days=30),
        )

        assert (await key_client.validate_key(plaintext)).valid is True

    async def test_validate_daily_limit(self, key_client: KeyStoreClient, engine: AsyncEngine) -> None:
        """Test a key at its daily request limit is rejected."""
        api_key, plaintext = await key_client.create_key(name="key", tier=Tier.FREE)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as session, session.begin():
            session.add(
                DailyUsage(
                    api_key_id=api_key.id,
                    day=datetime.now(UTC).date(),
                    request_count=100,
                    success_count=100,
                    error_count=0,
                    total_request_bytes=0,
                    total_response_bytes=0,
                    total_duration_ms=0,
                    tool_counts={},
                )
            )

        validation = await key_client.validate_key(plaintext)

        assert validation.valid is False
        assert validation.reason_code == ValidationFailure.DAILY_LIMIT
        assert validation.daily_usage == 100

    async def test_validate_monthly_quota(self, key_client: KeyStoreClient, engine: AsyncEngine) -> None:
        """Test a key at its monthly quota is rejected."""
        api_key, plaintext = await key_client.create_key(name="key", tier=Tier.FREE)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as session, session.begin():
            session.add(
                MonthlyUsage(
                    api_key_id=api_key.id,
                    year_month=year_month_of(datetime.now(UTC).date()),
                    request_count=1_000,
                    success_count=1_000,
                    error_count=0,
                )
            )

        validation = await key_client.validate_key(plaintext)

        assert validation.valid is False
        assert validation.reason_code == ValidationFailure.MONTHLY_QUOTA
        assert validation.monthly_usage == 1_000

    async def test_revoke(self, key_client: KeyStoreClient) -> None:
        """Test revocation and its idempotence."""
        api_key, _ = await key_client.create_key(name="key")

        assert await key_client.revoke(api_key.id) == RevokeOutcome.REVOKED
        assert await key_client.revoke(api_key.id) == RevokeOutcome.ALREADY_REVOKED

        stored = await key_client.get_by_id(api_key.id)
        assert stored is not None
        assert stored.status == KeyStatus.REVOKED.value

    async def test_revoke_unknown_key(self, key_client: KeyStoreClient) -> None:
        """Test revoking a missing key reports it."""
        assert await key_client.revoke(uuid4()) == RevokeOutcome.NOT_FOUND

    async def test_list_by_owner(self, key_client: KeyStoreClient) -> None:
        """Test listing returns only the owner's keys, newest first."""
        first, _ = await key_client.create_key(name="first", owner_id="owner-1")
        second, _ = await key_client.create_key(name="second", owner_id="owner-1")
        await key_client.create_key(name="other", owner_id="owner-2")

        keys = await key_client.list_by_owner("owner-1")

        assert {k.id for k in keys} == {first.id, second.id}
        assert keys[0].created_at >= keys[1].created_at

    async def test_get_unknown_key(self, key_client: KeyStoreClient) -> None:
        """Test looking up a missing key returns None."""
        assert await key_client.get_by_id(uuid4()) is None

    async def test_stats_and_summary(self, key_client: KeyStoreClient, store: SQLKeyStore) -> None:
        """Test usage reads after recording calls."""
        api_key, _ = await key_client.create_key(name="key", tier=Tier.PRO)
        calls = [("parse", True, 10), ("parse", True, 20), ("render", False, 30)]
        for tool_name, success, duration in calls:
            await store.insert_usage_log(
                UsageLogRecord(api_key_id=api_key.id, tool_name=tool_name, success=success)
            )
            await store.increment_daily_usage(api_key.id, tool_name, 100, 200, duration, success)
            await store.increment_monthly_usage(api_key.id, success)

        stats = await key_client.get_key_stats(api_key.id)
        summary = await key_client.get_usage_summary(api_key.id)

        assert stats.daily_usage == 3
        assert stats.monthly_usage == 3
        assert summary.today == {"requests": 3, "successes": 2, "errors": 1, "avg_duration_ms": 20}
        assert summary.this_month == {"requests": 3, "successes": 2, "errors": 1}
        assert summary.top_tools == [{"name": "parse", "count": 2}, {"name": "render", "count": 1}]

    async def test_summary_without_usage(self, key_client: KeyStoreClient) -> None:
        """Test a key without usage summarizes to zeros."""
        api_key, _ = await key_client.create_key(name="key")

        summary = await key_client.get_usage_summary(api_key.id)

        assert summary.to_dict() == UsageSummary().to_dict()


@pytest.mark.asyncio
class TestKeyStoreClientFailures:
    """Tests for store failures."""

    @pytest.fixture
    def failing_store(self) -> MagicMock:
        store = MagicMock(spec=KeyStore)
        error = ConnectionError("database unreachable")
        store.validate_api_key = AsyncMock(side_effect=error)
        store.get_api_key = AsyncMock(side_effect=error)
        store.get_daily_usage = AsyncMock(side_effect=error)
        store.get_monthly_usage = AsyncMock(side_effect=error)
        store.update_api_key_status = AsyncMock(side_effect=error)
        return store

    async def test_validate_raises_store_error(self, failing_store: MagicMock) -> None:
        """Test validation surfaces store outages."""
        client = KeyStoreClient(failing_store)

        with pytest.raises(KeyStoreError) as exc_info:
            await client.validate_key("tg_free_abc")

        assert exc_info.value.details["operation"] == "validate_api_key"

    async def test_revoke_raises_store_error(self, failing_store: MagicMock) -> None:
        """Test revocation surfaces store outages."""
        with pytest.raises(KeyStoreError):
            await KeyStoreClient(failing_store).revoke(uuid4())

    async def test_reads_degrade_to_zero(self, failing_store: MagicMock) -> None:
        """Test reporting reads never raise."""
        client = KeyStoreClient(failing_store)

        stats = await client.get_key_stats(uuid4())
        summary = await client.get_usage_summary(uuid4())

        assert stats.daily_usage == 0
        assert stats.last_used_at is None
        assert summary.today["requests"] == 0
        assert summary.top_tools == []
