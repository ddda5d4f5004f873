"""Registry of per-business points and stamps programs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.models.reward_system import RewardSystem, RewardSystemKind
from loyalty_ledger.schemas.reward_system import (
    PointsSystemConfig,
    StampsSystemConfig,
    parse_reward_system_config,
    validation_error_fields,
)
from loyalty_ledger.services.errors import InvalidConfigError

_POINTS_FIELDS = ("conversion_amount", "conversion_currency", "conversion_points")
_STAMPS_FIELDS = ("target_stamps", "product_scope", "product_identifier")


def _validate(payload: Any) -> PointsSystemConfig | StampsSystemConfig:
    try:
        return parse_reward_system_config(payload)
    except ValidationError as exc:
        fields = validation_error_fields(exc)
        raise InvalidConfigError(
            f"Invalid reward system configuration: {', '.join(fields)}", fields=fields
        ) from exc


def _current_config(system: RewardSystem) -> dict[str, Any]:
    data: dict[str, Any] = {
        "kind": system.kind.value,
        "name": system.name,
        "description": system.description,
        "is_active": system.is_active,
    }
    fields = _POINTS_FIELDS if system.kind == RewardSystemKind.POINTS else _STAMPS_FIELDS
    for field in fields:
        value = getattr(system, field)
        data[field] = value.value if hasattr(value, "value") else value
    return data


def _apply_config(system: RewardSystem, config: PointsSystemConfig | StampsSystemConfig) -> None:
    system.name = config.name
    system.description = config.description
    system.is_active = config.is_active
    if isinstance(config, PointsSystemConfig):
        system.conversion_amount = config.conversion_amount
        system.conversion_currency = config.conversion_currency
        system.conversion_points = config.conversion_points
        system.target_stamps = None
        system.product_scope = None
        system.product_identifier = None
    else:
        system.target_stamps = config.target_stamps
        system.product_scope = config.product_scope
        system.product_identifier = config.product_identifier
        system.conversion_amount = None
        system.conversion_currency = None
        system.conversion_points = None


class RewardSystemRegistry:
    """Create, look up and retire reward systems, always scoped to a business."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def create(
        self, business_id: UUID, config: Mapping[str, Any] | PointsSystemConfig | StampsSystemConfig
    ) -> RewardSystem:
        """Validate ``config`` and persist a new reward system for the business."""

        parsed = _validate(config)
        now = datetime.now(timezone.utc)
        system = RewardSystem(
            business_id=business_id,
            kind=RewardSystemKind(parsed.kind),
            created_at=now,
            updated_at=now,
        )
        _apply_config(system, parsed)
        self._db.add(system)
        await self._db.flush()
        await self._db.refresh(system)

        logger.info(
            "Created reward system",
            reward_system_id=str(system.id),
            business_id=str(business_id),
            kind=system.kind.value,
        )
        return system

    async def get(self, system_id: UUID, business_id: UUID) -> RewardSystem | None:
        stmt = select(RewardSystem).where(
            RewardSystem.id == system_id,
            RewardSystem.business_id == business_id,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many(self, system_ids: list[UUID], business_id: UUID) -> dict[UUID, RewardSystem]:
        """Resolve several systems of one business in a single query."""

        if not system_ids:
            return {}
        stmt = select(RewardSystem).where(
            RewardSystem.id.in_(system_ids),
            RewardSystem.business_id == business_id,
        )
        result = await self._db.execute(stmt)
        return {system.id: system for system in result.scalars()}

    async def list_for_business(
        self,
        business_id: UUID,
        *,
        include_inactive: bool = False,
        kind: RewardSystemKind | None = None,
    ) -> list[RewardSystem]:
        stmt = select(RewardSystem).where(RewardSystem.business_id == business_id)
        if not include_inactive:
            stmt = stmt.where(RewardSystem.is_active.is_(True))
        if kind is not None:
            stmt = stmt.where(RewardSystem.kind == kind)
        stmt = stmt.order_by(RewardSystem.created_at.asc(), RewardSystem.id.asc())
        result = await self._db.execute(stmt)
        return list(result.scalars())

    async def active_points_system(self, business_id: UUID) -> RewardSystem | None:
        """Return the oldest active points system; a business normally runs one."""

        stmt = (
            select(RewardSystem)
            .where(
                RewardSystem.business_id == business_id,
                RewardSystem.kind == RewardSystemKind.POINTS,
                RewardSystem.is_active.is_(True),
            )
            .order_by(RewardSystem.created_at.asc(), RewardSystem.id.asc())
            .limit(1)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def update(
        self, system_id: UUID, business_id: UUID, changes: Mapping[str, Any]
    ) -> RewardSystem | None:
        """Merge ``changes`` into the stored configuration and re-validate the result.

        The kind of a reward system is immutable.
        """

        system = await self.get(system_id, business_id)
        if system is None:
            return None

        requested_kind = changes.get("kind")
        if requested_kind is not None:
            kind_value = requested_kind.value if hasattr(requested_kind, "value") else str(requested_kind)
            if kind_value != system.kind.value:
                raise InvalidConfigError("Reward system kind cannot be changed", fields=["kind"])

        merged = _current_config(system)
        merged.update({key: value for key, value in changes.items() if key != "kind"})
        parsed = _validate(merged)
        _apply_config(system, parsed)
        await self._db.flush()
        await self._db.refresh(system)

        logger.info(
            "Updated reward system",
            reward_system_id=str(system.id),
            business_id=str(business_id),
            changed=sorted(key for key in changes if key != "kind"),
        )
        return system

    async def deactivate(self, system_id: UUID, business_id: UUID, *, hard: bool = False) -> bool:
        """Soft-delete by default; ``hard=True`` removes the row. Balances are untouched."""

        system = await self.get(system_id, business_id)
        if system is None:
            return False

        if hard:
            await self._db.delete(system)
        else:
            system.is_active = False
        await self._db.flush()

        logger.info(
            "Deactivated reward system",
            reward_system_id=str(system_id),
            business_id=str(business_id),
            hard=hard,
        )
        return True


__all__ = ["RewardSystemRegistry"]
