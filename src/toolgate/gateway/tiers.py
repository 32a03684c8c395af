"""Subscription tier policy.

Static mapping from tier to rate limits, monthly quota and the tools the
tier may call. Allowed tool sets grow monotonically from ``free`` to
``enterprise``.
"""

from dataclasses import dataclass
from typing import Any

from toolgate.models.api_key import Tier

PARSE = "parse"
VALIDATE = "validate"
GRAMMAR = "grammar"
RENDER_HTML = "render_html"
RENDER_SVG = "render_svg"
RENDER = "render"

KNOWN_TOOLS: frozenset[str] = frozenset(
    {PARSE, VALIDATE, GRAMMAR, RENDER_HTML, RENDER_SVG, RENDER}
)


@dataclass(frozen=True)
class TierPolicy:
    """Limits and tool access granted by one tier."""

    tier: Tier
    per_minute: int
    per_day: int
    monthly_quota: int | None
    allowed_tools: frozenset[str]

    @property
    def unlimited(self) -> bool:
        return self.monthly_quota is None


_FREE_TOOLS = frozenset({PARSE, VALIDATE, GRAMMAR})
_BASIC_TOOLS = _FREE_TOOLS | {RENDER_HTML, RENDER_SVG}
_PRO_TOOLS = _BASIC_TOOLS | {RENDER}

TIER_ORDER: tuple[Tier, ...] = (Tier.FREE, Tier.BASIC, Tier.PRO, Tier.ENTERPRISE)

TIER_POLICIES: dict[Tier, TierPolicy] = {
    Tier.FREE: TierPolicy(
        tier=Tier.FREE,
        per_minute=10,
        per_day=100,
        monthly_quota=1_000,
        allowed_tools=_FREE_TOOLS,
    ),
    Tier.BASIC: TierPolicy(
        tier=Tier.BASIC,
        per_minute=30,
        per_day=500,
        monthly_quota=10_000,
        allowed_tools=_BASIC_TOOLS,
    ),
    Tier.PRO: TierPolicy(
        tier=Tier.PRO,
        per_minute=100,
        per_day=2_000,
        monthly_quota=50_000,
        allowed_tools=_PRO_TOOLS,
    ),
    Tier.ENTERPRISE: TierPolicy(
        tier=Tier.ENTERPRISE,
        per_minute=500,
        per_day=10_000,
        monthly_quota=None,
        allowed_tools=_PRO_TOOLS,
    ),
}


def limits_for(tier: Tier | str) -> TierPolicy:
    """Return the policy of ``tier``.

    Args:
        tier: A :class:`Tier` or its string value.

    Raises:
        ValueError: If ``tier`` is not a known tier.
    """
    return TIER_POLICIES[Tier(tier)]


def is_tool_allowed(tier: Tier | str, tool_name: str) -> bool:
    """Whether ``tier`` may call ``tool_name``."""
    return tool_name in limits_for(tier).allowed_tools


def tier_info(tier: Tier | str | None = None) -> dict[str, Any]:
    """Public description of one tier, or of all tiers in ascending order."""
    if tier is None:
        return {"tiers": [_describe(TIER_POLICIES[t]) for t in TIER_ORDER]}
    return _describe(limits_for(tier))


def _describe(policy: TierPolicy) -> dict[str, Any]:
    return {
        "tier": policy.tier.value,
        "rate_limit_per_minute": policy.per_minute,
        "rate_limit_per_day": policy.per_day,
        "monthly_quota": "unlimited" if policy.unlimited else policy.monthly_quota,
        "allowed_tools": sorted(policy.allowed_tools),
    }
