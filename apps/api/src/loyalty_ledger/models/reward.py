"""Rewards a business offers against its reward systems."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from loyalty_ledger.db.base import Base
from loyalty_ledger.schemas.reward import MoneyValue, ProductValue, RewardValue, TextValue


class RewardValueKind(str, Enum):
    """Shape of what the customer receives."""

    MONEY = "money"
    PRODUCT = "product"
    TEXT = "text"


class LoyaltyReward(Base):
    """Redeemable reward priced in points or stamps of one reward system."""

    __tablename__ = "loyalty_rewards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    business_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    reward_system_id = Column(
        UUID(as_uuid=True), ForeignKey("reward_systems.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    value_kind = Column(SqlEnum(RewardValueKind, name="loyalty_reward_value_kind"), nullable=False)
    value_amount = Column(Numeric(12, 2), nullable=True)
    value_text = Column(String, nullable=True)
    points_required = Column(Integer, nullable=True)
    stamps_required = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def value(self) -> RewardValue:
        if self.value_kind == RewardValueKind.MONEY:
            return MoneyValue(amount=self.value_amount)
        if self.value_kind == RewardValueKind.PRODUCT:
            return ProductValue(product_id=self.value_text)
        return TextValue(text=self.value_text)
