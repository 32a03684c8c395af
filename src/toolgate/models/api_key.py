"""API Key model for gateway authentication."""

import enum
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from toolgate.models.base import Base, JSONType, TimestampMixin


class Tier(str, enum.Enum):
    """Subscription tiers, from least to most privileged."""

    FREE = "free"
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class KeyStatus(str, enum.Enum):
    """Lifecycle status of an API key."""

    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class APIKey(Base, TimestampMixin):
    """
    API key record.

    Only the sha256 fingerprint of the secret is stored; the plaintext is
    returned once at issuance. Limits are copied from the tier at creation.
    Records are never hard-deleted, only moved to ``revoked`` or ``expired``.
    """

    __tablename__ = "api_keys"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    key_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )
    key_prefix: Mapped[str] = mapped_column(
        String(12),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    owner_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    tier: Mapped[str] = mapped_column(
        String(20),
        default=Tier.FREE.value,
        nullable=False,
        index=True,
    )
    rate_limit_per_minute: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    rate_limit_per_day: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    monthly_quota: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=KeyStatus.ACTIVE.value,
        nullable=False,
        index=True,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    key_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        default=dict,
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation of APIKey."""
        return f"<APIKey(id={self.id}, prefix={self.key_prefix}, tier={self.tier}, status={self.status})>"
