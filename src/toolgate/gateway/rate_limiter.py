"""Per-tier rate limiting.

Two strategies share the :class:`RateLimiter` contract:

- :class:`RedisRateLimiter`: sliding-window log in a Redis sorted set, shared
  across gateway processes.
- :class:`InMemoryRateLimiter`: fixed window per identity, local to one
  process. Used when no Redis is configured.

The strategy is picked once at startup by :func:`create_rate_limiter`.
"""

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from toolgate.core.config import Settings
from toolgate.core.metrics import rate_limit_store_errors_total, track_rate_limit_check
from toolgate.gateway.tiers import TIER_ORDER, limits_for
from toolgate.models.api_key import Tier

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one rate-limit check."""

    allowed: bool
    current: int
    limit: int
    remaining: int
    reset_in_ms: int
    reset_at: datetime
    degraded: bool = False


def _reset_at(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, UTC)


class RateLimiter(ABC):
    """Per-minute rate limit keyed by (tier, identity)."""

    strategy: str = "abstract"

    @abstractmethod
    async def check(self, identity: str, tier: Tier | str) -> RateLimitResult:
        """Count one request for ``identity`` and decide whether it may proceed."""

    @abstractmethod
    async def reset(self, identity: str, tier: Tier | str) -> None:
        """Forget all requests counted for ``identity`` in ``tier``."""


# ============================================================================
# In-process fixed window
# ============================================================================


@dataclass
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimiter(RateLimiter):
    """
    Fixed-window counter per (tier, identity), held in process memory.

    Windows expire lazily: a window whose reset time has passed is discarded
    on the next check for that key. Once per window length, a sweep also drops
    every expired window together with its lock, so identities that stop
    calling do not stay in memory. Each key has its own lock, so concurrent
    checks for one identity never lose an increment while different
    identities do not contend.
    """

    strategy = "memory"

    def __init__(self, window_seconds: int = 60, clock: Clock = time.time) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._sweep_lock = threading.Lock()
        self._next_sweep = clock() + window_seconds
        logger.warning(
            "in_memory_rate_limiter_enabled",
            detail="rate limits are not shared between processes",
            window_seconds=window_seconds,
        )

    @staticmethod
    def _key(identity: str, tier: Tier | str) -> str:
        return f"{Tier(tier).value}:{identity}"

    @property
    def tracked_keys(self) -> int:
        """Number of (tier, identity) keys currently held."""
        return len(self._locks)

    def _sweep(self, now: float) -> int:
        """Drop expired windows and their locks. Returns the number dropped."""
        dropped = 0
        with self._sweep_lock:
            if now < self._next_sweep:
                return 0
            self._next_sweep = now + self.window_seconds
            for key, lock in list(self._locks.items()):
                window = self._windows.get(key)
                if window is not None and window.reset_at > now:
                    continue
                # A held lock belongs to a check in progress.
                if not lock.acquire(blocking=False):
                    continue
                try:
                    self._windows.pop(key, None)
                    del self._locks[key]
                    dropped += 1
                finally:
                    lock.release()
        if dropped:
            logger.debug("rate_limit_windows_swept", dropped=dropped, remaining=len(self._locks))
        return dropped

    async def check(self, identity: str, tier: Tier | str) -> RateLimitResult:
        limit = limits_for(tier).per_minute
        key = self._key(identity, tier)
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)

        while True:
            lock = self._locks.setdefault(key, threading.Lock())
            with lock:
                # The sweep may have retired this lock while we waited on it.
                if self._locks.get(key) is not lock:
                    continue

                now = self._clock()
                window = self._windows.get(key)
                if window is not None and window.reset_at <= now:
                    del self._windows[key]
                    window = None

                if window is None:
                    window = _Window(count=0, reset_at=now + self.window_seconds)
                    self._windows[key] = window

                allowed = window.count < limit
                if allowed:
                    window.count += 1
                current = window.count
                reset_at = window.reset_at
                break

        track_rate_limit_check(self.strategy, allowed=allowed)
        if not allowed:
            logger.info("rate_limit_exceeded", identity=identity, tier=Tier(tier).value, limit=limit)

        return RateLimitResult(
            allowed=allowed,
            current=current,
            limit=limit,
            remaining=max(0, limit - current),
            reset_in_ms=max(0, int(round((reset_at - now) * 1000))),
            reset_at=_reset_at(reset_at),
        )

    async def reset(self, identity: str, tier: Tier | str) -> None:
        key = self._key(identity, tier)
        with self._locks.setdefault(key, threading.Lock()):
            self._windows.pop(key, None)
        logger.info("rate_limit_reset", identity=identity, tier=Tier(tier).value)


# ============================================================================
# Redis sliding window
# ============================================================================


@dataclass(frozen=True)
class SlidingWindow:
    """Sliding-window parameters of one tier."""

    tier: Tier
    limit: int
    window_ms: int
    prefix: str

    def key(self, identity: str) -> str:
        return f"{self.prefix}:{self.tier.value}:{identity}"


class RedisRateLimiter(RateLimiter):
    """
    Sliding-window log rate limiter backed by Redis sorted sets.

    Each request adds one member scored by its timestamp in milliseconds.
    Members older than the window are trimmed on every check, so the set's
    cardinality is the number of requests in the trailing window. A request
    that overshoots the limit is removed again and therefore not counted.

    On a Redis error the configured policy decides: fail open (admit) or
    fail closed (deny). Either way the result is marked ``degraded``.
    """

    strategy = "redis"

    def __init__(
        self,
        redis_client: Redis,
        *,
        window_seconds: int = 60,
        fail_open: bool = True,
        prefix: str = "toolgate:ratelimit",
        clock: Clock = time.time,
    ) -> None:
        self.redis = redis_client
        self.fail_open = fail_open
        self._clock = clock
        self._window_ms = window_seconds * 1000
        self._windows: dict[Tier, SlidingWindow] = {
            tier: SlidingWindow(
                tier=tier,
                limit=limits_for(tier).per_minute,
                window_ms=self._window_ms,
                prefix=prefix,
            )
            for tier in TIER_ORDER
        }

    def window_for(self, tier: Tier | str) -> SlidingWindow:
        return self._windows[Tier(tier)]

    async def check(self, identity: str, tier: Tier | str) -> RateLimitResult:
        window = self.window_for(tier)
        key = window.key(identity)
        now_ms = int(self._clock() * 1000)
        member = f"{now_ms}-{uuid4().hex}"

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, 0, now_ms - window.window_ms)
                pipe.zadd(key, {member: now_ms})
                pipe.zcard(key)
                pipe.zrange(key, 0, 0, withscores=True)
                pipe.pexpire(key, window.window_ms)
                _, _, count, oldest, _ = await pipe.execute()

            count = int(count)
            allowed = count <= window.limit
            if not allowed:
                await self.redis.zrem(key, member)
                count -= 1
        except RedisError as e:
            return self._degraded(window, identity, now_ms, e)

        oldest_ms = int(oldest[0][1]) if oldest else now_ms
        reset_at_ms = oldest_ms + window.window_ms

        track_rate_limit_check(self.strategy, allowed=allowed)
        if not allowed:
            logger.info("rate_limit_exceeded", identity=identity, tier=window.tier.value, limit=window.limit)

        return RateLimitResult(
            allowed=allowed,
            current=count,
            limit=window.limit,
            remaining=max(0, window.limit - count),
            reset_in_ms=max(0, reset_at_ms - now_ms),
            reset_at=_reset_at(reset_at_ms / 1000),
        )

    def _degraded(
        self,
        window: SlidingWindow,
        identity: str,
        now_ms: int,
        error: Exception,
    ) -> RateLimitResult:
        policy = "fail_open" if self.fail_open else "fail_closed"
        logger.error(
            "rate_limit_store_error",
            identity=identity,
            tier=window.tier.value,
            policy=policy,
            error=str(error),
        )
        rate_limit_store_errors_total.labels(policy=policy).inc()
        track_rate_limit_check(self.strategy, allowed=self.fail_open)
        return RateLimitResult(
            allowed=self.fail_open,
            current=0,
            limit=window.limit,
            remaining=window.limit if self.fail_open else 0,
            reset_in_ms=window.window_ms,
            reset_at=_reset_at((now_ms + window.window_ms) / 1000),
            degraded=True,
        )

    async def reset(self, identity: str, tier: Tier | str) -> None:
        await self.redis.delete(self.window_for(tier).key(identity))
        logger.info("rate_limit_reset", identity=identity, tier=Tier(tier).value)


def create_rate_limiter(settings: Settings, redis_client: Redis | None = None) -> RateLimiter:
    """Pick the rate limit strategy for this process."""
    if redis_client is not None:
        return RedisRateLimiter(
            redis_client,
            window_seconds=settings.rate_limit_window_seconds,
            fail_open=settings.rate_limit_fail_open,
            prefix=settings.rate_limit_prefix,
        )
    return InMemoryRateLimiter(window_seconds=settings.rate_limit_window_seconds)
