"""Per-user balance rows: account, business roll-up and reward system level."""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, ForeignKeyConstraint, Integer, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loyalty_ledger.db.base import Base


class LedgerAccount(Base):
    """One ledger document per user."""

    __tablename__ = "ledger_accounts"

    user_id = Column(UUID(as_uuid=True), primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    businesses = relationship(
        "LedgerBusinessBalance",
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="LedgerBusinessBalance.business_id",
    )


class LedgerBusinessBalance(Base):
    """Business roll-up; always equals the sum of its reward system rows."""

    __tablename__ = "ledger_business_balances"
    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_ledger_business_balances_points_non_negative"),
        CheckConstraint("stamps >= 0", name="ck_ledger_business_balances_stamps_non_negative"),
    )

    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("ledger_accounts.user_id", ondelete="CASCADE"),
        primary_key=True,
    )
    business_id = Column(UUID(as_uuid=True), primary_key=True, index=True)
    points = Column(Integer, nullable=False, default=0, server_default="0")
    stamps = Column(Integer, nullable=False, default=0, server_default="0")
    last_activity_at = Column(DateTime(timezone=True), nullable=True)

    account = relationship("LedgerAccount", back_populates="businesses")
    systems = relationship(
        "LedgerSystemBalance",
        back_populates="business",
        cascade="all, delete-orphan",
        order_by="LedgerSystemBalance.reward_system_id",
    )


class LedgerSystemBalance(Base):
    """Balance held against a single reward system.

    Rows carry no foreign key to ``reward_systems``; they outlive a
    hard-deleted program.
    """

    __tablename__ = "ledger_system_balances"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id", "business_id"],
            ["ledger_business_balances.user_id", "ledger_business_balances.business_id"],
            ondelete="CASCADE",
        ),
        CheckConstraint("points >= 0", name="ck_ledger_system_balances_points_non_negative"),
        CheckConstraint("stamps >= 0", name="ck_ledger_system_balances_stamps_non_negative"),
    )

    user_id = Column(UUID(as_uuid=True), primary_key=True)
    business_id = Column(UUID(as_uuid=True), primary_key=True)
    reward_system_id = Column(UUID(as_uuid=True), primary_key=True)
    points = Column(Integer, nullable=False, default=0, server_default="0")
    stamps = Column(Integer, nullable=False, default=0, server_default="0")
    last_updated = Column(DateTime(timezone=True), nullable=True)

    business = relationship("LedgerBusinessBalance", back_populates="systems")
