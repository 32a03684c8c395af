"""Gateway package: key validation, tier policy, rate limiting and usage accounting."""

from toolgate.gateway.gate import AuthContext, AuthGate, AuthResult, Credentials, RequestInfo
from toolgate.gateway.invoker import ToolInvoker, ToolRegistry, ToolResult
from toolgate.gateway.key_client import KeyStoreClient, RevokeOutcome
from toolgate.gateway.rate_limiter import (
    InMemoryRateLimiter,
    RateLimiter,
    RateLimitResult,
    RedisRateLimiter,
    create_rate_limiter,
)
from toolgate.gateway.service import Gateway
from toolgate.gateway.usage import UsageLogEntry, UsageRecorder

__all__ = [
    "AuthContext",
    "AuthGate",
    "AuthResult",
    "Credentials",
    "Gateway",
    "InMemoryRateLimiter",
    "KeyStoreClient",
    "RateLimitResult",
    "RateLimiter",
    "RedisRateLimiter",
    "RequestInfo",
    "RevokeOutcome",
    "ToolInvoker",
    "ToolRegistry",
    "ToolResult",
    "UsageLogEntry",
    "UsageRecorder",
    "create_rate_limiter",
]
