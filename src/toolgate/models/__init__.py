"""SQLAlchemy models."""

from toolgate.models.api_key import APIKey, KeyStatus, Tier
from toolgate.models.base import Base, TimestampMixin
from toolgate.models.usage import DailyUsage, MonthlyUsage, UsageLog

__all__ = [
    "APIKey",
    "Base",
    "DailyUsage",
    "KeyStatus",
    "MonthlyUsage",
    "Tier",
    "TimestampMixin",
    "UsageLog",
]
