"""API route modules."""

from toolgate.api.routes import api_keys, health, tiers, tools

__all__ = ["api_keys", "health", "tiers", "tools"]
