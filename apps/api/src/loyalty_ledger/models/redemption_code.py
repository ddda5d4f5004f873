"""Single-use delivery redemption codes."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from loyalty_ledger.db.base import Base


class RedemptionCode(Base):
    """Pre-computed grant a customer can claim exactly once before expiry."""

    __tablename__ = "redemption_codes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(32), nullable=False, unique=True, index=True)
    business_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    business_name = Column(String, nullable=False)
    purchase_amount = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    points_estimate = Column(Integer, nullable=False, default=0, server_default="0")
    # [{"rewardSystemId": "<uuid>", "count": 2}, ...]
    stamp_grants = Column(JSON, nullable=False, default=list)
    is_redeemed = Column(Boolean, nullable=False, default=False, server_default="false")
    redeemed_by = Column(UUID(as_uuid=True), nullable=True)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
