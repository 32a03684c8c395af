"""Authentication and authorization gate.

One :meth:`AuthGate.authenticate` call turns a request's credentials into a
single admit/deny decision. Stages run in a fixed order and the first
failure short-circuits:

    unauthenticated -> key_resolved -> validated -> authorized
    -> rate_checked -> admitted | denied

Denials are returned as values (:class:`AuthResult` with an
:class:`AuthError`), never raised. The gate reads key records but never
mutates them.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import structlog

from toolgate.core.exceptions import ErrorCode, KeyStoreError
from toolgate.core.metrics import track_gate_decision
from toolgate.gateway.key_client import KeyStoreClient, KeyValidation
from toolgate.gateway.rate_limiter import RateLimiter, RateLimitResult
from toolgate.gateway.tiers import KNOWN_TOOLS, is_tool_allowed, limits_for
from toolgate.models.api_key import Tier
from toolgate.store.base import ValidationFailure

logger = structlog.get_logger(__name__)

API_KEY_HEADER = "x-api-key"
AUTHORIZATION_HEADER = "authorization"
BEARER_PREFIX = "Bearer "
API_KEY_QUERY_PARAM = "api_key"

_REASON_CODES: dict[ValidationFailure, ErrorCode] = {
    ValidationFailure.EXPIRED: ErrorCode.EXPIRED_API_KEY,
    ValidationFailure.REVOKED: ErrorCode.REVOKED_API_KEY,
    ValidationFailure.INVALID: ErrorCode.INVALID_API_KEY,
    ValidationFailure.DAILY_LIMIT: ErrorCode.DAILY_LIMIT_EXCEEDED,
    ValidationFailure.MONTHLY_QUOTA: ErrorCode.MONTHLY_QUOTA_EXCEEDED,
}


class GateStage(str, enum.Enum):
    """Stages of one request through the gate."""

    UNAUTHENTICATED = "unauthenticated"
    KEY_RESOLVED = "key_resolved"
    VALIDATED = "validated"
    AUTHORIZED = "authorized"
    RATE_CHECKED = "rate_checked"
    ADMITTED = "admitted"
    DENIED = "denied"


@dataclass(frozen=True)
class Credentials:
    """Credential carriers of one request.

    ``api_key`` is an explicit key and wins over every other carrier.
    """

    api_key: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestInfo:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class RateLimits:
    per_minute: int
    per_day: int | None
    monthly_quota: int | None


@dataclass(frozen=True)
class UsageSnapshot:
    daily: int = 0
    monthly: int = 0


@dataclass(frozen=True)
class AuthContext:
    """Who is calling and under which limits.

    Unauthenticated contexts (no key store, or an optional key that was not
    supplied) carry only the request metadata.
    """

    authenticated: bool
    request: RequestInfo = field(default_factory=RequestInfo)
    api_key_id: UUID | None = None
    tier: Tier | None = None
    rate_limits: RateLimits | None = None
    usage: UsageSnapshot | None = None
    rate_limit: RateLimitResult | None = None

    @classmethod
    def unauthenticated(cls, request: RequestInfo | None = None) -> AuthContext:
        return cls(authenticated=False, request=request or RequestInfo())


@dataclass(frozen=True)
class AuthError:
    """Machine-readable denial with a human-readable message."""

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.code.value, "message": self.message}
        body.update(self.details)
        return body


@dataclass(frozen=True)
class AuthResult:
    """Gate decision. ``denied_at`` is the last stage reached before a failed check."""

    success: bool
    context: AuthContext
    stage: GateStage
    error: AuthError | None = None
    denied_at: GateStage | None = None


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def extract_api_key(
    credentials: Credentials | None,
    fallback_api_key: str | None = None,
) -> str | None:
    """
    Resolve the API key of a request.

    Priority: explicit key, ``x-api-key`` header, ``Authorization: Bearer``
    header, ``api_key`` query parameter, process-level fallback key.
    Header names are matched case-insensitively.
    """
    if credentials is not None:
        if credentials.api_key:
            return credentials.api_key

        header_key = _header(credentials.headers, API_KEY_HEADER)
        if header_key:
            return header_key

        authorization = _header(credentials.headers, AUTHORIZATION_HEADER)
        if authorization and authorization.startswith(BEARER_PREFIX):
            bearer = authorization[len(BEARER_PREFIX):].strip()
            if bearer:
                return bearer

        query_key = credentials.query.get(API_KEY_QUERY_PARAM)
        if query_key:
            return query_key

    return fallback_api_key or None


def classify_validation_error(
    message: str | None,
    reason: ValidationFailure | None = None,
) -> ErrorCode:
    """
    Map a validation failure to an error code.

    The structured ``reason`` wins. Without one, the message is matched by
    substring in this order: "expired", "revoked", "rate limit", "Daily",
    "Monthly" or "quota". Anything else is an invalid key.
    """
    if reason is not None:
        return _REASON_CODES[reason]
    if not message:
        return ErrorCode.INVALID_API_KEY
    if "expired" in message:
        return ErrorCode.EXPIRED_API_KEY
    if "revoked" in message:
        return ErrorCode.REVOKED_API_KEY
    if "rate limit" in message:
        return ErrorCode.RATE_LIMIT_EXCEEDED
    if "Daily" in message:
        return ErrorCode.DAILY_LIMIT_EXCEEDED
    if "Monthly" in message or "quota" in message:
        return ErrorCode.MONTHLY_QUOTA_EXCEEDED
    return ErrorCode.INVALID_API_KEY


def rate_limit_details(result: RateLimitResult) -> dict[str, Any]:
    """Back-off information attached to rate-limit denials."""
    return {
        "limit": result.limit,
        "current": result.current,
        "remaining": result.remaining,
        "reset_in_ms": result.reset_in_ms,
        "reset_at": result.reset_at.isoformat(),
    }


class AuthGate:
    """
    Orchestrates key extraction, validation, tier authorization and rate
    limiting into one decision per request.

    Args:
        key_client: Key store client, or ``None`` when no store is configured.
            Without a store every request is admitted unauthenticated unless
            authentication is explicitly required.
        rate_limiter: Limiter consulted for authenticated requests.
        fallback_api_key: Process-level key used when a request carries none.
    """

    def __init__(
        self,
        key_client: KeyStoreClient | None,
        rate_limiter: RateLimiter,
        fallback_api_key: str | None = None,
    ) -> None:
        self.key_client = key_client
        self.rate_limiter = rate_limiter
        self.fallback_api_key = fallback_api_key

    async def authenticate(
        self,
        credentials: Credentials | None = None,
        tool_name: str | None = None,
        required: bool | None = None,
        allowed_tiers: Iterable[Tier | str] | None = None,
        request: RequestInfo | None = None,
    ) -> AuthResult:
        """
        Decide whether a request may proceed.

        Args:
            credentials: Credential carriers of the request.
            tool_name: Tool being called, checked against the tier allow-list.
            required: ``True`` forces authentication even without a store,
                ``False`` admits requests that carry no key. ``None`` requires
                a key exactly when a store is configured.
            allowed_tiers: Restrict the operation to these tiers.
            request: Caller metadata recorded in the context.

        Returns:
            The decision. On denial ``error`` carries the code and message.
        """
        request = request or RequestInfo()

        if self.key_client is None:
            if required is True:
                return self._deny(
                    GateStage.UNAUTHENTICATED,
                    ErrorCode.INTERNAL_ERROR,
                    "Authentication is required but no key store is configured",
                    request,
                )
            return self._admit_unauthenticated(request)

        api_key = extract_api_key(credentials, self.fallback_api_key)
        if not api_key:
            if required is False:
                return self._admit_unauthenticated(request)
            return self._deny(
                GateStage.UNAUTHENTICATED,
                ErrorCode.MISSING_API_KEY,
                "API key is required",
                request,
            )

        try:
            validation = await self.key_client.validate_key(api_key)
        except KeyStoreError as e:
            logger.error("authentication_store_error", error=str(e))
            return self._deny(
                GateStage.KEY_RESOLVED,
                ErrorCode.INTERNAL_ERROR,
                "Authentication service error",
                request,
            )

        if not validation.valid:
            code = classify_validation_error(validation.error_reason, validation.reason_code)
            return self._deny(
                GateStage.KEY_RESOLVED,
                code,
                validation.error_reason or "Invalid API key",
                request,
            )

        tier = validation.tier
        assert tier is not None

        if tool_name and tool_name in KNOWN_TOOLS and not is_tool_allowed(tier, tool_name):
            return self._deny(
                GateStage.VALIDATED,
                ErrorCode.TIER_NOT_ALLOWED,
                f"Your tier ({tier.value}) does not have access to {tool_name}",
                request,
                details={"tier": tier.value, "tool_name": tool_name},
            )

        if allowed_tiers is not None:
            permitted = [Tier(t) for t in allowed_tiers]
            if tier not in permitted:
                return self._deny(
                    GateStage.VALIDATED,
                    ErrorCode.TIER_NOT_ALLOWED,
                    f"This operation requires one of: {', '.join(t.value for t in permitted)}",
                    request,
                    details={"tier": tier.value},
                )

        rate_limit = await self.rate_limiter.check(str(validation.key_id), tier)
        if not rate_limit.allowed:
            if rate_limit.degraded:
                return self._deny(
                    GateStage.AUTHORIZED,
                    ErrorCode.INTERNAL_ERROR,
                    "Rate limit service unavailable",
                    request,
                    rate_limit=rate_limit,
                )
            return self._deny(
                GateStage.AUTHORIZED,
                ErrorCode.RATE_LIMIT_EXCEEDED,
                f"Rate limit exceeded. You have made {rate_limit.current} requests. "
                f"Limit is {rate_limit.limit} per minute.",
                request,
                details=rate_limit_details(rate_limit),
                rate_limit=rate_limit,
            )

        context = self._authenticated_context(validation, tier, request, rate_limit)
        track_gate_decision(admitted=True)
        logger.debug(
            "request_admitted",
            key_id=str(validation.key_id),
            tier=tier.value,
            tool_name=tool_name,
            remaining=rate_limit.remaining,
        )
        return AuthResult(success=True, context=context, stage=GateStage.ADMITTED)

    @staticmethod
    def _authenticated_context(
        validation: KeyValidation,
        tier: Tier,
        request: RequestInfo,
        rate_limit: RateLimitResult,
    ) -> AuthContext:
        policy = limits_for(tier)
        return AuthContext(
            authenticated=True,
            request=request,
            api_key_id=validation.key_id,
            tier=tier,
            rate_limits=RateLimits(
                per_minute=policy.per_minute,
                per_day=validation.per_day_limit,
                monthly_quota=validation.monthly_quota,
            ),
            usage=UsageSnapshot(daily=validation.daily_usage, monthly=validation.monthly_usage),
            rate_limit=rate_limit,
        )

    @staticmethod
    def _admit_unauthenticated(request: RequestInfo) -> AuthResult:
        track_gate_decision(admitted=True)
        return AuthResult(
            success=True,
            context=AuthContext.unauthenticated(request),
            stage=GateStage.ADMITTED,
        )

    @staticmethod
    def _deny(
        stage: GateStage,
        code: ErrorCode,
        message: str,
        request: RequestInfo,
        *,
        details: dict[str, Any] | None = None,
        rate_limit: RateLimitResult | None = None,
    ) -> AuthResult:
        track_gate_decision(admitted=False, code=code.value)
        logger.info("request_denied", code=code.value, stage=stage.value, reason=message)
        context = AuthContext(
            authenticated=False,
            request=request,
            rate_limit=rate_limit,
        )
        return AuthResult(
            success=False,
            context=context,
            stage=GateStage.DENIED,
            error=AuthError(code=code, message=message, details=details or {}),
            denied_at=stage,
        )
