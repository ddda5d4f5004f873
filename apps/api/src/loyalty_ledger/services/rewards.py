"""Catalog of rewards a business offers against its reward systems."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.models.reward import LoyaltyReward, RewardValueKind
from loyalty_ledger.models.reward_system import RewardSystemKind
from loyalty_ledger.schemas.reward import (
    MoneyValue,
    ProductValue,
    RewardValue,
    TextValue,
    reward_value_adapter,
)
from loyalty_ledger.services.errors import InvalidConfigError, RewardSystemNotFoundError
from loyalty_ledger.services.reward_systems import RewardSystemRegistry


def _parse_value(value: RewardValue | Mapping[str, Any]) -> RewardValue:
    if isinstance(value, (MoneyValue, ProductValue, TextValue)):
        return value
    try:
        return reward_value_adapter.validate_python(dict(value))
    except ValidationError as exc:
        raise InvalidConfigError("Invalid reward value", fields=["value"]) from exc


class RewardCatalog:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._registry = RewardSystemRegistry(db_session)

    async def create(
        self,
        business_id: UUID,
        reward_system_id: UUID,
        *,
        name: str,
        value: RewardValue | Mapping[str, Any],
        points_required: int | None = None,
        stamps_required: int | None = None,
        description: str | None = None,
    ) -> LoyaltyReward:
        """Create a reward priced in the currency of its reward system.

        Points systems need ``points_required``; stamps systems price in stamps
        and default to the system's ``target_stamps``.
        """

        system = await self._registry.get(reward_system_id, business_id)
        if system is None:
            raise RewardSystemNotFoundError(reward_system_id, business_id)

        if not name or not name.strip():
            raise InvalidConfigError("Reward name is required", fields=["name"])
        parsed = _parse_value(value)

        if system.kind == RewardSystemKind.POINTS:
            if stamps_required is not None:
                raise InvalidConfigError(
                    "Rewards on a points system cannot require stamps", fields=["stamps_required"]
                )
            if points_required is None or points_required < 1:
                raise InvalidConfigError(
                    "Rewards on a points system require points_required >= 1", fields=["points_required"]
                )
        else:
            if points_required is not None:
                raise InvalidConfigError(
                    "Rewards on a stamps system cannot require points", fields=["points_required"]
                )
            if stamps_required is None:
                stamps_required = system.target_stamps
            if stamps_required is None or stamps_required < 1:
                raise InvalidConfigError(
                    "Rewards on a stamps system require stamps_required >= 1", fields=["stamps_required"]
                )

        now = datetime.now(timezone.utc)
        reward = LoyaltyReward(
            business_id=business_id,
            reward_system_id=system.id,
            name=name.strip(),
            description=description,
            value_kind=RewardValueKind(parsed.kind),
            value_amount=parsed.amount if isinstance(parsed, MoneyValue) else None,
            value_text=parsed.product_id if isinstance(parsed, ProductValue) else getattr(parsed, "text", None),
            points_required=points_required,
            stamps_required=stamps_required,
            created_at=now,
            updated_at=now,
        )
        self._db.add(reward)
        await self._db.flush()

        logger.info(
            "Created loyalty reward",
            reward_id=str(reward.id),
            business_id=str(business_id),
            reward_system_id=str(system.id),
            value_kind=reward.value_kind.value,
        )
        return reward

    async def get(self, reward_id: UUID, business_id: UUID) -> LoyaltyReward | None:
        stmt = select(LoyaltyReward).where(
            LoyaltyReward.id == reward_id,
            LoyaltyReward.business_id == business_id,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_business(
        self,
        business_id: UUID,
        *,
        reward_system_id: UUID | None = None,
        include_inactive: bool = False,
    ) -> list[LoyaltyReward]:
        stmt = select(LoyaltyReward).where(LoyaltyReward.business_id == business_id)
        if reward_system_id is not None:
            stmt = stmt.where(LoyaltyReward.reward_system_id == reward_system_id)
        if not include_inactive:
            stmt = stmt.where(LoyaltyReward.is_active.is_(True))
        stmt = stmt.order_by(LoyaltyReward.created_at.asc(), LoyaltyReward.id.asc())
        result = await self._db.execute(stmt)
        return list(result.scalars())

    async def deactivate(self, reward_id: UUID, business_id: UUID) -> bool:
        reward = await self.get(reward_id, business_id)
        if reward is None:
            return False
        reward.is_active = False
        await self._db.flush()
        logger.info("Deactivated loyalty reward", reward_id=str(reward_id), business_id=str(business_id))
        return True


__all__ = ["RewardCatalog"]
