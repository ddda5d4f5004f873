"""Append-only transaction log."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loyalty_ledger.db.base import Base
from loyalty_ledger.models.reward_system import RewardSystemKind


class TransactionType(str, Enum):
    """Direction of a logged balance change."""

    ADD = "add"
    SUBTRACT = "subtract"
    REDEEM = "redeem"


class LoyaltyTransaction(Base):
    """Immutable record of one balance change, with name snapshots."""

    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        Index("ix_loyalty_transactions_user_business", "user_id", "business_id"),
        Index("ix_loyalty_transactions_user_created", "user_id", "created_at"),
        Index("ix_loyalty_transactions_business_created", "business_id", "created_at"),
        Index("ix_loyalty_transactions_business_shift_created", "business_id", "shift_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    business_id = Column(UUID(as_uuid=True), nullable=False)
    business_name = Column(String, nullable=False)
    transaction_type = Column(
        "type", SqlEnum(TransactionType, name="loyalty_transaction_type"), nullable=False
    )
    purchase_amount = Column(Numeric(12, 2), nullable=True)
    total_points_delta = Column(Integer, nullable=False, default=0, server_default="0")
    total_stamps_delta = Column(Integer, nullable=False, default=0, server_default="0")

    branch_id = Column(UUID(as_uuid=True), nullable=True)
    branch_name = Column(String, nullable=True)
    shift_id = Column(UUID(as_uuid=True), nullable=True)
    shift_name = Column(String, nullable=True)
    reward_id = Column(UUID(as_uuid=True), nullable=True)
    reward_name = Column(String, nullable=True)
    redemption_code = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    items = relationship(
        "LoyaltyTransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="LoyaltyTransactionItem.position",
        lazy="selectin",
    )


class LoyaltyTransactionItem(Base):
    """Per reward system share of a transaction."""

    __tablename__ = "loyalty_transaction_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    transaction_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)
    reward_system_id = Column(UUID(as_uuid=True), nullable=False)
    reward_system_name = Column(String, nullable=False)
    reward_system_kind = Column(
        SqlEnum(RewardSystemKind, name="loyalty_transaction_item_system_kind"), nullable=False
    )
    points_delta = Column(Integer, nullable=False, default=0, server_default="0")
    stamps_delta = Column(Integer, nullable=False, default=0, server_default="0")

    transaction = relationship("LoyaltyTransaction", back_populates="items")
