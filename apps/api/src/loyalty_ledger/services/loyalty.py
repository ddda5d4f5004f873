"""Balance-changing workflows: purchases, manual subtractions and reward redemptions.

Each workflow applies its ledger deltas and appends exactly one transaction
inside a single database transaction, so the log never disagrees with the
ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.core.clock import resolve_now
from loyalty_ledger.core.logging import ledger_context
from loyalty_ledger.db.session import atomic
from loyalty_ledger.models.reward_system import ProductScope, RewardSystem, RewardSystemKind
from loyalty_ledger.models.transaction import TransactionType
from loyalty_ledger.services.errors import (
    InvalidGrantError,
    NothingToCreditError,
    RewardNotFoundError,
)
from loyalty_ledger.services.ledger import BusinessBalance, LedgerStore, calculate_points
from loyalty_ledger.services.reward_systems import RewardSystemRegistry
from loyalty_ledger.services.rewards import RewardCatalog
from loyalty_ledger.services.transactions import (
    TransactionDraft,
    TransactionItemDraft,
    TransactionLog,
    TransactionRecord,
)


@dataclass(frozen=True, slots=True)
class StampGrant:
    """Stamps requested against one stamps system."""

    reward_system_id: UUID
    count: int
    product_identifier: str | None = None


@dataclass(frozen=True, slots=True)
class BranchRef:
    id: UUID
    name: str | None = None


@dataclass(frozen=True, slots=True)
class ShiftRef:
    id: UUID
    name: str | None = None


@dataclass(slots=True)
class BalanceChange:
    """Outcome of a workflow: the logged transaction and the resulting business balance."""

    transaction: TransactionRecord
    balance: BusinessBalance


def _to_amount(value: Decimal | int | float | str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidGrantError(f"Invalid purchase amount: {value!r}") from exc


def _points_item(system: RewardSystem, points: int) -> TransactionItemDraft:
    return TransactionItemDraft(
        reward_system_id=system.id,
        reward_system_name=system.name,
        reward_system_kind=RewardSystemKind.POINTS,
        points_delta=points,
    )


def _stamps_item(system: RewardSystem, stamps: int) -> TransactionItemDraft:
    return TransactionItemDraft(
        reward_system_id=system.id,
        reward_system_name=system.name,
        reward_system_kind=RewardSystemKind.STAMPS,
        stamps_delta=stamps,
    )


class LoyaltyService:
    """Pairs every ledger mutation with its transaction log entry."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._registry = RewardSystemRegistry(db_session)
        self._ledger = LedgerStore(db_session)
        self._log = TransactionLog(db_session)
        self._catalog = RewardCatalog(db_session)

    async def record_purchase(
        self,
        user_id: UUID,
        business_id: UUID,
        *,
        business_name: str,
        purchase_amount: Decimal | int | float | str | None = None,
        stamps: Sequence[StampGrant] = (),
        branch: BranchRef | None = None,
        shift: ShiftRef | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> BalanceChange:
        """Credit points for ``purchase_amount`` and the requested stamps, then log an ``add``."""

        timestamp = resolve_now(now)
        async with atomic(self._db):
            items: list[TransactionItemDraft] = []
            amount = _to_amount(purchase_amount) if purchase_amount is not None else None

            if amount is not None and amount > 0:
                system = await self._registry.active_points_system(business_id)
                if system is None:
                    raise InvalidGrantError("No active points system found for this business")
                points = calculate_points(amount, system.conversion_amount, system.conversion_points)
                if points > 0:
                    items.append(_points_item(system, points))

            for system, count in await self._resolve_stamp_grants(business_id, stamps, check_product=True):
                items.append(_stamps_item(system, count))

            if not items:
                raise NothingToCreditError("Purchase does not earn any points or stamps")

            change = await self._apply(
                user_id,
                business_id,
                business_name=business_name,
                transaction_type=TransactionType.ADD,
                items=items,
                purchase_amount=amount,
                branch=branch,
                shift=shift,
                notes=notes or "Purchase transaction",
                now=timestamp,
            )
        return change

    async def subtract(
        self,
        user_id: UUID,
        business_id: UUID,
        *,
        business_name: str,
        points: int | None = None,
        points_system_id: UUID | None = None,
        stamps: Sequence[StampGrant] = (),
        branch: BranchRef | None = None,
        shift: ShiftRef | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> BalanceChange:
        """Debit points and/or stamps; any insufficient balance aborts the whole operation."""

        timestamp = resolve_now(now)
        async with atomic(self._db):
            items: list[TransactionItemDraft] = []

            if points is not None and points != 0:
                if points < 0:
                    raise InvalidGrantError("Points to subtract must be positive")
                if points_system_id is not None:
                    system = await self._registry.get(points_system_id, business_id)
                else:
                    system = await self._registry.active_points_system(business_id)
                if system is None or not system.is_active:
                    raise InvalidGrantError(
                        "Points system not found or not active for this business",
                        reward_system_id=points_system_id,
                    )
                if system.kind != RewardSystemKind.POINTS:
                    raise InvalidGrantError(
                        f"Reward system {system.name} is not a points system", reward_system_id=system.id
                    )
                items.append(_points_item(system, -int(points)))

            for system, count in await self._resolve_stamp_grants(business_id, stamps, check_product=False):
                items.append(_stamps_item(system, -count))

            if not items:
                raise NothingToCreditError("Nothing to subtract")

            change = await self._apply(
                user_id,
                business_id,
                business_name=business_name,
                transaction_type=TransactionType.SUBTRACT,
                items=items,
                branch=branch,
                shift=shift,
                notes=notes or "Manual subtraction",
                now=timestamp,
            )
        return change

    async def redeem_reward(
        self,
        user_id: UUID,
        business_id: UUID,
        reward_id: UUID,
        *,
        business_name: str,
        branch: BranchRef | None = None,
        shift: ShiftRef | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> BalanceChange:
        """Spend a reward's price on its reward system and log a ``redeem``."""

        timestamp = resolve_now(now)
        async with atomic(self._db):
            reward = await self._catalog.get(reward_id, business_id)
            if reward is None or not reward.is_active:
                raise RewardNotFoundError(reward_id, business_id)

            system = await self._registry.get(reward.reward_system_id, business_id)
            if system is None or not system.is_active:
                raise InvalidGrantError(
                    f"Reward system for reward {reward.name} is not active",
                    reward_system_id=reward.reward_system_id,
                )

            if system.kind == RewardSystemKind.POINTS:
                item = _points_item(system, -int(reward.points_required or 0))
            else:
                item = _stamps_item(system, -int(reward.stamps_required or 0))
            if item.points_delta == 0 and item.stamps_delta == 0:
                raise InvalidGrantError(f"Reward {reward.name} has no price", reward_system_id=system.id)

            change = await self._apply(
                user_id,
                business_id,
                business_name=business_name,
                transaction_type=TransactionType.REDEEM,
                items=[item],
                branch=branch,
                shift=shift,
                reward_id=reward.id,
                reward_name=reward.name,
                notes=notes or f"Reward redeemed: {reward.name}",
                now=timestamp,
            )
        return change

    async def _resolve_stamp_grants(
        self,
        business_id: UUID,
        grants: Sequence[StampGrant],
        *,
        check_product: bool,
    ) -> list[tuple[RewardSystem, int]]:
        """Validate grants against the business's stamps systems, merging repeats per system."""

        if not grants:
            return []

        systems = await self._registry.get_many([grant.reward_system_id for grant in grants], business_id)
        merged: dict[UUID, tuple[RewardSystem, int]] = {}
        for grant in grants:
            if not isinstance(grant.count, int) or grant.count <= 0:
                raise InvalidGrantError(
                    "Stamp count must be a positive integer", reward_system_id=grant.reward_system_id
                )
            system = systems.get(grant.reward_system_id)
            if system is None:
                raise InvalidGrantError(
                    f"Stamps system {grant.reward_system_id} not found for this business",
                    reward_system_id=grant.reward_system_id,
                )
            if not system.is_active:
                raise InvalidGrantError(f"Stamps system {system.name} is not active", reward_system_id=system.id)
            if system.kind != RewardSystemKind.STAMPS:
                raise InvalidGrantError(f"Reward system {system.name} is not a stamps system", reward_system_id=system.id)
            if check_product and system.product_scope == ProductScope.SPECIFIC:
                if not grant.product_identifier:
                    raise InvalidGrantError(
                        f"product_identifier is required for stamps system {system.name}",
                        reward_system_id=system.id,
                    )
                if grant.product_identifier.strip() != system.product_identifier:
                    raise InvalidGrantError(
                        f"product_identifier does not match stamps system {system.name}",
                        reward_system_id=system.id,
                    )
            _, previous = merged.get(system.id, (system, 0))
            merged[system.id] = (system, previous + grant.count)
        return list(merged.values())

    async def _apply(
        self,
        user_id: UUID,
        business_id: UUID,
        *,
        business_name: str,
        transaction_type: TransactionType,
        items: list[TransactionItemDraft],
        now: datetime,
        purchase_amount: Decimal | None = None,
        branch: BranchRef | None = None,
        shift: ShiftRef | None = None,
        reward_id: UUID | None = None,
        reward_name: str | None = None,
        notes: str | None = None,
    ) -> BalanceChange:
        with ledger_context(user_id=user_id, business_id=business_id):
            balance: BusinessBalance | None = None
            for item in items:
                balance = await self._ledger.apply_delta(
                    user_id,
                    business_id,
                    item.reward_system_id,
                    points_delta=item.points_delta,
                    stamps_delta=item.stamps_delta,
                    now=now,
                )

            draft = TransactionDraft.build(
                user_id=user_id,
                business_id=business_id,
                business_name=business_name,
                transaction_type=transaction_type,
                items=items,
                purchase_amount=purchase_amount,
                branch_id=branch.id if branch else None,
                branch_name=branch.name if branch else None,
                shift_id=shift.id if shift else None,
                shift_name=shift.name if shift else None,
                reward_id=reward_id,
                reward_name=reward_name,
                notes=notes,
            )
            record = await self._log.append(draft, now=now)
            assert balance is not None

            logger.info(
                "Recorded loyalty balance change",
                transaction_id=str(record.id),
                transaction_type=transaction_type.value,
                points_delta=record.total_points_delta,
                stamps_delta=record.total_stamps_delta,
            )
            return BalanceChange(transaction=record, balance=balance)


__all__ = ["BalanceChange", "BranchRef", "LoyaltyService", "ShiftRef", "StampGrant"]
