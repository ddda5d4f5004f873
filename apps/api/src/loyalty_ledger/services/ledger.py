"""Per-user balance ledger with guarded, atomic deltas.

Balances live at two levels: one row per (user, business, reward system) and
a business roll-up that always equals the sum of its system rows. Every
mutation is a single conditional ``UPDATE`` per level, so concurrent deltas
against the same triple serialize in the database and a balance can never be
observed below zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from loyalty_ledger.core.clock import ensure_utc, resolve_now
from loyalty_ledger.models.ledger import LedgerAccount, LedgerBusinessBalance, LedgerSystemBalance
from loyalty_ledger.observability.loyalty import get_loyalty_store, record_on_commit
from loyalty_ledger.services.errors import InsufficientBalanceError, NothingToCreditError


def calculate_points(
    purchase_amount: Decimal | int | float | str,
    conversion_amount: Decimal | int | float | str,
    conversion_points: int,
) -> int:
    """Return ``floor(purchase_amount / conversion_amount * conversion_points)``.

    Non-positive purchase or conversion amounts earn nothing.
    """

    amount = Decimal(str(purchase_amount))
    per = Decimal(str(conversion_amount))
    if amount <= 0 or per <= 0 or conversion_points <= 0:
        return 0
    # Multiply before dividing so exact ratios stay exact.
    raw = amount * Decimal(conversion_points) / per
    return int(raw.to_integral_value(rounding=ROUND_FLOOR))


@dataclass(slots=True)
class SystemBalance:
    reward_system_id: UUID
    points: int
    stamps: int
    last_updated: datetime | None


@dataclass(slots=True)
class BusinessBalance:
    business_id: UUID
    points: int
    stamps: int
    last_activity_at: datetime | None
    systems: list[SystemBalance] = field(default_factory=list)

    def system(self, reward_system_id: UUID) -> SystemBalance | None:
        for entry in self.systems:
            if entry.reward_system_id == reward_system_id:
                return entry
        return None


@dataclass(slots=True)
class LedgerEntry:
    """Read-only view of a user's full balance document."""

    user_id: UUID
    businesses: list[BusinessBalance]
    created_at: datetime | None
    updated_at: datetime | None

    def business(self, business_id: UUID) -> BusinessBalance | None:
        for entry in self.businesses:
            if entry.business_id == business_id:
                return entry
        return None


def _to_business_balance(row: LedgerBusinessBalance) -> BusinessBalance:
    return BusinessBalance(
        business_id=row.business_id,
        points=int(row.points or 0),
        stamps=int(row.stamps or 0),
        last_activity_at=ensure_utc(row.last_activity_at),
        systems=[
            SystemBalance(
                reward_system_id=system.reward_system_id,
                points=int(system.points or 0),
                stamps=int(system.stamps or 0),
                last_updated=ensure_utc(system.last_updated),
            )
            for system in row.systems
        ],
    )


class LedgerStore:
    """Owns the ledger tables; callers manage the surrounding transaction."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    def _insert(self, model):
        dialect = self._db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise RuntimeError(f"Unsupported database dialect for ledger upserts: {dialect}")

    async def _ensure_rows(
        self, user_id: UUID, business_id: UUID, reward_system_id: UUID, now: datetime
    ) -> None:
        await self._db.execute(
            self._insert(LedgerAccount)
            .values(user_id=user_id, created_at=now, updated_at=now)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        await self._db.execute(
            self._insert(LedgerBusinessBalance)
            .values(user_id=user_id, business_id=business_id, points=0, stamps=0)
            .on_conflict_do_nothing(index_elements=["user_id", "business_id"])
        )
        await self._db.execute(
            self._insert(LedgerSystemBalance)
            .values(
                user_id=user_id,
                business_id=business_id,
                reward_system_id=reward_system_id,
                points=0,
                stamps=0,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "business_id", "reward_system_id"])
        )

    async def _guarded_system_update(
        self,
        user_id: UUID,
        business_id: UUID,
        reward_system_id: UUID,
        points_delta: int,
        stamps_delta: int,
        now: datetime,
        *,
        guarded: bool = True,
    ) -> int:
        stmt = update(LedgerSystemBalance).where(
            LedgerSystemBalance.user_id == user_id,
            LedgerSystemBalance.business_id == business_id,
            LedgerSystemBalance.reward_system_id == reward_system_id,
        )
        if guarded:
            stmt = stmt.where(
                LedgerSystemBalance.points + points_delta >= 0,
                LedgerSystemBalance.stamps + stamps_delta >= 0,
            )
        stmt = stmt.values(
            points=LedgerSystemBalance.points + points_delta,
            stamps=LedgerSystemBalance.stamps + stamps_delta,
            last_updated=now,
        ).execution_options(synchronize_session=False)
        result = await self._db.execute(stmt)
        return result.rowcount

    async def _guarded_business_update(
        self,
        user_id: UUID,
        business_id: UUID,
        points_delta: int,
        stamps_delta: int,
        now: datetime,
    ) -> int:
        stmt = (
            update(LedgerBusinessBalance)
            .where(
                LedgerBusinessBalance.user_id == user_id,
                LedgerBusinessBalance.business_id == business_id,
                LedgerBusinessBalance.points + points_delta >= 0,
                LedgerBusinessBalance.stamps + stamps_delta >= 0,
            )
            .values(
                points=LedgerBusinessBalance.points + points_delta,
                stamps=LedgerBusinessBalance.stamps + stamps_delta,
                last_activity_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        return result.rowcount

    async def apply_delta(
        self,
        user_id: UUID,
        business_id: UUID,
        reward_system_id: UUID,
        *,
        points_delta: int = 0,
        stamps_delta: int = 0,
        now: datetime | None = None,
    ) -> BusinessBalance:
        """Apply signed deltas to one reward system and its business roll-up.

        Rows are created on first credit. A delta that would push either counter
        below zero raises :class:`InsufficientBalanceError` and leaves both
        levels unchanged.
        """

        points_delta = int(points_delta)
        stamps_delta = int(stamps_delta)
        if points_delta == 0 and stamps_delta == 0:
            raise NothingToCreditError("Ledger delta must change points or stamps")

        timestamp = resolve_now(now)
        if points_delta >= 0 and stamps_delta >= 0:
            await self._ensure_rows(user_id, business_id, reward_system_id, timestamp)

        updated = await self._guarded_system_update(
            user_id, business_id, reward_system_id, points_delta, stamps_delta, timestamp
        )
        if updated == 0:
            self._reject(user_id, business_id, reward_system_id, points_delta, stamps_delta)

        updated = await self._guarded_business_update(
            user_id, business_id, points_delta, stamps_delta, timestamp
        )
        if updated == 0:
            await self._guarded_system_update(
                user_id,
                business_id,
                reward_system_id,
                -points_delta,
                -stamps_delta,
                timestamp,
                guarded=False,
            )
            self._reject(user_id, business_id, reward_system_id, points_delta, stamps_delta)

        await self._db.execute(
            update(LedgerAccount)
            .where(LedgerAccount.user_id == user_id)
            .values(updated_at=timestamp)
            .execution_options(synchronize_session=False)
        )

        record_on_commit(
            self._db,
            lambda store: store.record_ledger_mutation(points_delta=points_delta, stamps_delta=stamps_delta),
        )
        logger.info(
            "Applied ledger delta",
            user_id=str(user_id),
            business_id=str(business_id),
            reward_system_id=str(reward_system_id),
            points_delta=points_delta,
            stamps_delta=stamps_delta,
        )

        balance = await self.get_for_business(user_id, business_id)
        if balance is None:  # pragma: no cover - rows were just updated
            raise RuntimeError("Ledger business row vanished after update")
        return balance

    def _reject(
        self,
        user_id: UUID,
        business_id: UUID,
        reward_system_id: UUID,
        points_delta: int,
        stamps_delta: int,
    ) -> None:
        get_loyalty_store().record_ledger_rejection()
        logger.warning(
            "Rejected ledger delta",
            user_id=str(user_id),
            business_id=str(business_id),
            reward_system_id=str(reward_system_id),
            points_delta=points_delta,
            stamps_delta=stamps_delta,
        )
        raise InsufficientBalanceError(
            user_id,
            business_id,
            reward_system_id,
            points_delta=points_delta,
            stamps_delta=stamps_delta,
        )

    async def get(self, user_id: UUID) -> LedgerEntry | None:
        stmt = (
            select(LedgerAccount)
            .where(LedgerAccount.user_id == user_id)
            .options(selectinload(LedgerAccount.businesses).selectinload(LedgerBusinessBalance.systems))
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        account = result.scalar_one_or_none()
        if account is None:
            return None
        return LedgerEntry(
            user_id=account.user_id,
            businesses=[_to_business_balance(row) for row in account.businesses],
            created_at=ensure_utc(account.created_at),
            updated_at=ensure_utc(account.updated_at),
        )

    async def get_for_business(self, user_id: UUID, business_id: UUID) -> BusinessBalance | None:
        stmt = (
            select(LedgerBusinessBalance)
            .where(
                LedgerBusinessBalance.user_id == user_id,
                LedgerBusinessBalance.business_id == business_id,
            )
            .options(selectinload(LedgerBusinessBalance.systems))
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        row = result.scalar_one_or_none()
        return _to_business_balance(row) if row is not None else None

    async def list_business_members(self, business_id: UUID) -> list[tuple[UUID, BusinessBalance]]:
        """Return every user holding a balance row at the business, ordered by user id."""

        stmt = (
            select(LedgerBusinessBalance)
            .where(LedgerBusinessBalance.business_id == business_id)
            .options(selectinload(LedgerBusinessBalance.systems))
            .order_by(LedgerBusinessBalance.user_id.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return [(row.user_id, _to_business_balance(row)) for row in result.scalars()]


__all__ = [
    "BusinessBalance",
    "LedgerEntry",
    "LedgerStore",
    "SystemBalance",
    "calculate_points",
]
