"""Usage recording for completed tool calls.

Recording is best effort. The log row, the daily aggregate and the monthly
aggregate are written independently; a failure in one is logged, counted and
swallowed so accounting never changes the outcome of a call that already
completed.
"""

import asyncio
from dataclasses import dataclass
from uuid import UUID

import structlog

from toolgate.core.metrics import track_usage_failure
from toolgate.store.base import KeyStore, UsageLogRecord

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UsageLogEntry:
    """Outcome of one completed tool call."""

    api_key_id: UUID
    tool_name: str
    success: bool
    request_size: int | None = None
    response_size: int | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class UsageRecorder:
    """
    Writes usage log rows and aggregate counters to the key store.

    :meth:`record_in_background` schedules recording as a task and returns
    immediately, keeping a strong reference to the task until it finishes.
    """

    def __init__(self, store: KeyStore) -> None:
        self._store = store
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of recordings still in flight."""
        return len(self._pending)

    async def record(self, entry: UsageLogEntry) -> None:
        """Record one call. Never raises on store failures."""
        key_id = str(entry.api_key_id)

        try:
            await self._store.insert_usage_log(
                UsageLogRecord(
                    api_key_id=entry.api_key_id,
                    tool_name=entry.tool_name,
                    success=entry.success,
                    request_size=entry.request_size,
                    response_size=entry.response_size,
                    duration_ms=entry.duration_ms,
                    error_message=entry.error_message,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                )
            )
        except Exception as e:
            logger.warning("usage_log_insert_failed", key_id=key_id, tool_name=entry.tool_name, error=str(e))
            track_usage_failure("log")

        try:
            await self._store.increment_daily_usage(
                entry.api_key_id,
                entry.tool_name,
                entry.request_size or 0,
                entry.response_size or 0,
                entry.duration_ms or 0,
                entry.success,
            )
        except Exception as e:
            logger.warning("daily_usage_update_failed", key_id=key_id, error=str(e))
            track_usage_failure("daily")

        try:
            await self._store.increment_monthly_usage(entry.api_key_id, entry.success)
        except Exception as e:
            logger.warning("monthly_usage_update_failed", key_id=key_id, error=str(e))
            track_usage_failure("monthly")

        logger.debug(
            "usage_recorded",
            key_id=key_id,
            tool_name=entry.tool_name,
            success=entry.success,
            duration_ms=entry.duration_ms,
        )

    def record_in_background(self, entry: UsageLogEntry) -> asyncio.Task[None]:
        """Schedule :meth:`record` without waiting for it."""
        task = asyncio.create_task(self.record(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled recording to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
