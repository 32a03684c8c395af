"""Tests for usage recording and the tool invocation pipeline."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from toolgate.core.exceptions import ErrorCode
from toolgate.gateway.gate import Credentials, RequestInfo
from toolgate.gateway.invoker import ToolRegistry, ToolResult
from toolgate.gateway.key_client import KeyStoreClient
from toolgate.gateway.service import Gateway
from toolgate.gateway.usage import UsageLogEntry, UsageRecorder
from toolgate.models.api_key import Tier
from toolgate.models.usage import UsageLog
from toolgate.store.base import KeyStore
from toolgate.store.sql import SQLKeyStore, year_month_of


async def _usage_logs(engine: AsyncEngine) -> list[UsageLog]:
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        result = await session.execute(select(UsageLog).order_by(UsageLog.id))
        return list(result.scalars().all())


@pytest.mark.asyncio
class TestUsageRecorder:
    """Tests for writing usage rows and counters."""

    async def test_record(self, key_client: KeyStoreClient, store: SQLKeyStore, engine: AsyncEngine) -> None:
        """Test one record updates the log and both aggregates."""
        api_key, _ = await key_client.create_key(name="key")
        recorder = UsageRecorder(store)

        await recorder.record(
            UsageLogEntry(
                api_key_id=api_key.id,
                tool_name="parse",
                success=True,
                request_size=12,
                response_size=34,
                duration_ms=5,
                ip_address="10.0.0.1",
                user_agent="pytest",
            )
        )

        today = datetime.now(UTC).date()
        daily = await store.get_daily_usage(api_key.id, today)
        monthly = await store.get_monthly_usage(api_key.id, year_month_of(today))
        logs = await _usage_logs(engine)

        assert daily is not None
        assert daily.request_count == 1
        assert daily.success_count == 1
        assert daily.total_request_bytes == 12
        assert daily.total_response_bytes == 34
        assert daily.tool_counts == {"parse": 1}
        assert monthly is not None
        assert monthly.request_count == 1
        assert len(logs) == 1
        assert logs[0].ip_address == "10.0.0.1"

    async def test_record_accumulates(self, key_client: KeyStoreClient, store: SQLKeyStore) -> None:
        """Test successive records add up per tool."""
        api_key, _ = await key_client.create_key(name="key")
        recorder = UsageRecorder(store)

        for tool_name, success in [("parse", True), ("parse", False), ("grammar", True)]:
            await recorder.record(UsageLogEntry(api_key_id=api_key.id, tool_name=tool_name, success=success))

        daily = await store.get_daily_usage(api_key.id, datetime.now(UTC).date())

        assert daily is not None
        assert daily.request_count == 3
        assert daily.success_count == 2
        assert daily.error_count == 1
        assert daily.tool_counts == {"parse": 2, "grammar": 1}

    async def test_failures_are_swallowed(self) -> None:
        """Test every store failure is contained and the other writes still run."""
        store = MagicMock(spec=KeyStore)
        store.insert_usage_log = AsyncMock(side_effect=ConnectionError("down"))
        store.increment_daily_usage = AsyncMock(side_effect=RuntimeError("deadlock"))
        store.increment_monthly_usage = AsyncMock()
        recorder = UsageRecorder(store)
        entry = UsageLogEntry(api_key_id=MagicMock(), tool_name="parse", success=True)

        await recorder.record(entry)

        store.increment_daily_usage.assert_awaited_once()
        store.increment_monthly_usage.assert_awaited_once_with(entry.api_key_id, True)

    async def test_background_and_drain(self, key_client: KeyStoreClient, store: SQLKeyStore) -> None:
        """Test background recordings complete on drain."""
        api_key, _ = await key_client.create_key(name="key")
        recorder = UsageRecorder(store)

        recorder.record_in_background(UsageLogEntry(api_key_id=api_key.id, tool_name="parse", success=True))
        await recorder.drain()

        assert recorder.pending == 0
        assert (await key_client.get_key_stats(api_key.id)).daily_usage == 1


class TestToolRegistry:
    """Tests for the tool registry."""

    def test_duplicate_registration(self) -> None:
        """Test a name can only be registered once."""
        registry = ToolRegistry()

        async def parse(arguments: dict) -> ToolResult:
            return ToolResult(content={})

        registry.register("parse", parse)

        with pytest.raises(ValueError, match="already registered"):
            registry.register("parse", parse)

    def test_names_sorted(self, registry: ToolRegistry) -> None:
        """Test names are listed alphabetically."""
        assert registry.names == sorted(registry.names)
        assert "parse" in registry
        assert "missing" not in registry

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry: ToolRegistry) -> None:
        """Test executing a missing tool returns an error result."""
        result = await registry.execute("missing", {})

        assert result.is_error is True
        assert result.content["error"] == "UNKNOWN_TOOL"
        assert "parse" in result.content["available_tools"]


@pytest.mark.asyncio
class TestToolInvoker:
    """Tests for the gate, executor and recorder pipeline."""

    async def test_invoke_records_usage(self, gateway: Gateway, key_client: KeyStoreClient) -> None:
        """Test a successful call returns the result and records usage."""
        api_key, plaintext = await gateway.key_client.create_key(name="key", tier=Tier.PRO)

        result = await gateway.invoker.invoke(
            "render",
            {"source": "a -> b"},
            Credentials(api_key=plaintext),
            RequestInfo(ip_address="10.0.0.3"),
        )
        await gateway.recorder.drain()

        assert result.is_error is False
        assert result.content == {"tool": "render", "arguments": {"source": "a -> b"}}
        summary = await key_client.get_usage_summary(api_key.id)
        assert summary.today["requests"] == 1
        assert summary.today["successes"] == 1
        assert summary.top_tools == [{"name": "render", "count": 1}]

    async def test_invoke_denied(self, gateway: Gateway) -> None:
        """Test a denial becomes an error result and records nothing."""
        result = await gateway.invoker.invoke("parse", {}, Credentials())

        assert result.is_error is True
        assert result.content == {"error": ErrorCode.MISSING_API_KEY.value, "message": "API key is required"}
        assert gateway.recorder.pending == 0

    async def test_invoke_tier_denied(self, gateway: Gateway) -> None:
        """Test a tier denial names the tier and tool."""
        _, plaintext = await gateway.key_client.create_key(name="key", tier=Tier.FREE)

        result = await gateway.invoker.invoke("render_svg", {}, Credentials(api_key=plaintext))

        assert result.is_error is True
        assert result.content["error"] == "TIER_NOT_ALLOWED"
        assert result.content["tier"] == "free"
        assert result.content["tool_name"] == "render_svg"

    async def test_error_result_recorded_as_failure(self, gateway: Gateway, engine: AsyncEngine) -> None:
        """Test an error result counts as a failed call."""
        api_key, plaintext = await gateway.key_client.create_key(name="key")

        result = await gateway.invoker.invoke("broken_parse", {"source": "{"}, Credentials(api_key=plaintext))
        await gateway.recorder.drain()

        assert result.is_error is True
        logs = await _usage_logs(engine)
        assert len(logs) == 1
        assert logs[0].success is False
        assert logs[0].error_message == "Unexpected token"
        stats = await gateway.key_client.get_key_stats(api_key.id)
        assert stats.daily_usage == 1

    async def test_executor_exception_recorded_and_raised(self, gateway: Gateway, engine: AsyncEngine) -> None:
        """Test an executor crash is recorded before it propagates."""
        _, plaintext = await gateway.key_client.create_key(name="key")

        with pytest.raises(RuntimeError, match="renderer crashed"):
            await gateway.invoker.invoke("explode", {}, Credentials(api_key=plaintext))
        await gateway.recorder.drain()

        logs = await _usage_logs(engine)
        assert len(logs) == 1
        assert logs[0].success is False
        assert logs[0].error_message == "renderer crashed"

    async def test_unauthenticated_call_not_recorded(
        self,
        gateway: Gateway,
        engine: AsyncEngine,
    ) -> None:
        """Test calls admitted without a key leave no usage."""
        result = await gateway.invoker.invoke("parse", {}, Credentials(), required=False)
        await gateway.recorder.drain()

        assert result.is_error is False
        assert await _usage_logs(engine) == []

    async def test_usage_store_outage_does_not_affect_result(
        self,
        gateway: Gateway,
        store: SQLKeyStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a call succeeds unchanged when every usage write fails."""
        _, plaintext = await gateway.key_client.create_key(name="key", tier=Tier.PRO)
        failing_writes = {
            name: AsyncMock(side_effect=ConnectionError("usage store down"))
            for name in ("insert_usage_log", "increment_daily_usage", "increment_monthly_usage")
        }
        for name, mock in failing_writes.items():
            monkeypatch.setattr(store, name, mock)

        result = await gateway.invoker.invoke("render", {"source": "a -> b"}, Credentials(api_key=plaintext))
        await gateway.recorder.drain()

        assert result == ToolResult(content={"tool": "render", "arguments": {"source": "a -> b"}})
        assert gateway.recorder.pending == 0
        for mock in failing_writes.values():
            mock.assert_awaited_once()
