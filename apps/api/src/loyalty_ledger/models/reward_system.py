"""Per-business reward program configuration."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from loyalty_ledger.db.base import Base


class RewardSystemKind(str, Enum):
    """Accrual mechanics supported by a reward system."""

    POINTS = "points"
    STAMPS = "stamps"


class ProductScope(str, Enum):
    """Which purchases may earn stamps for a stamps system."""

    SPECIFIC = "specific"
    GENERAL = "general"
    ANY = "any"


class RewardSystem(Base):
    """A points or stamps program owned by a business."""

    __tablename__ = "reward_systems"
    __table_args__ = (
        Index("ix_reward_systems_business_active", "business_id", "is_active"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    business_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    kind = Column(SqlEnum(RewardSystemKind, name="reward_system_kind"), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")

    conversion_amount = Column(Numeric(12, 2), nullable=True)
    conversion_currency = Column(String(3), nullable=True)
    conversion_points = Column(Integer, nullable=True)

    target_stamps = Column(Integer, nullable=True)
    product_scope = Column(SqlEnum(ProductScope, name="reward_system_product_scope"), nullable=True)
    product_identifier = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_points(self) -> bool:
        return self.kind == RewardSystemKind.POINTS

    @property
    def is_stamps(self) -> bool:
        return self.kind == RewardSystemKind.STAMPS
