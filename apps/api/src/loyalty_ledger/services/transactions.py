"""Append-only transaction log."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Sequence, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.core.clock import ensure_utc, resolve_now
from loyalty_ledger.core.settings import settings
from loyalty_ledger.models.reward_system import RewardSystemKind
from loyalty_ledger.models.transaction import LoyaltyTransaction, LoyaltyTransactionItem, TransactionType
from loyalty_ledger.observability.loyalty import record_on_commit
from loyalty_ledger.services.errors import InconsistentTransactionError, TransactionNotFoundError


@dataclass(slots=True)
class TransactionItemDraft:
    reward_system_id: UUID
    reward_system_name: str
    reward_system_kind: RewardSystemKind
    points_delta: int = 0
    stamps_delta: int = 0


@dataclass(slots=True)
class TransactionDraft:
    """Everything needed to log one balance change."""

    user_id: UUID
    business_id: UUID
    business_name: str
    transaction_type: TransactionType
    items: list[TransactionItemDraft]
    total_points_delta: int
    total_stamps_delta: int
    purchase_amount: Decimal | None = None
    branch_id: UUID | None = None
    branch_name: str | None = None
    shift_id: UUID | None = None
    shift_name: str | None = None
    reward_id: UUID | None = None
    reward_name: str | None = None
    redemption_code: str | None = None
    notes: str | None = None

    @classmethod
    def build(
        cls,
        *,
        user_id: UUID,
        business_id: UUID,
        business_name: str,
        transaction_type: TransactionType,
        items: Sequence[TransactionItemDraft],
        **extra: Any,
    ) -> "TransactionDraft":
        """Create a draft whose totals are derived from ``items``."""

        item_list = list(items)
        return cls(
            user_id=user_id,
            business_id=business_id,
            business_name=business_name,
            transaction_type=transaction_type,
            items=item_list,
            total_points_delta=sum(item.points_delta for item in item_list),
            total_stamps_delta=sum(item.stamps_delta for item in item_list),
            **extra,
        )


@dataclass(frozen=True, slots=True)
class TransactionItemRecord:
    reward_system_id: UUID
    reward_system_name: str
    reward_system_kind: RewardSystemKind
    points_delta: int
    stamps_delta: int


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """Immutable view of a logged transaction, including its name snapshots."""

    id: UUID
    user_id: UUID
    business_id: UUID
    business_name: str
    transaction_type: TransactionType
    purchase_amount: Decimal | None
    total_points_delta: int
    total_stamps_delta: int
    items: tuple[TransactionItemRecord, ...]
    created_at: datetime
    branch_id: UUID | None = None
    branch_name: str | None = None
    shift_id: UUID | None = None
    shift_name: str | None = None
    reward_id: UUID | None = None
    reward_name: str | None = None
    redemption_code: str | None = None
    notes: str | None = None

    @classmethod
    def from_model(cls, model: LoyaltyTransaction) -> "TransactionRecord":
        return cls(
            id=model.id,
            user_id=model.user_id,
            business_id=model.business_id,
            business_name=model.business_name,
            transaction_type=model.transaction_type,
            purchase_amount=Decimal(model.purchase_amount) if model.purchase_amount is not None else None,
            total_points_delta=int(model.total_points_delta or 0),
            total_stamps_delta=int(model.total_stamps_delta or 0),
            items=tuple(
                TransactionItemRecord(
                    reward_system_id=item.reward_system_id,
                    reward_system_name=item.reward_system_name,
                    reward_system_kind=item.reward_system_kind,
                    points_delta=int(item.points_delta or 0),
                    stamps_delta=int(item.stamps_delta or 0),
                )
                for item in model.items
            ),
            created_at=ensure_utc(model.created_at),
            branch_id=model.branch_id,
            branch_name=model.branch_name,
            shift_id=model.shift_id,
            shift_name=model.shift_name,
            reward_id=model.reward_id,
            reward_name=model.reward_name,
            redemption_code=model.redemption_code,
            notes=model.notes,
        )


@dataclass(slots=True)
class TransactionFilters:
    user_id: UUID | None = None
    business_id: UUID | None = None
    branch_id: UUID | None = None
    shift_id: UUID | None = None
    types: Sequence[TransactionType] | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


@dataclass(slots=True)
class UserTransactionStats:
    """Lifetime activity summary for a user, optionally scoped to one business."""

    user_id: UUID
    total_transactions: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    points_earned: int = 0
    points_spent: int = 0
    stamps_earned: int = 0
    stamps_spent: int = 0
    businesses_visited: int = 0
    first_activity_at: datetime | None = None
    last_activity_at: datetime | None = None


def _validate_draft(draft: TransactionDraft) -> None:
    if not draft.items:
        raise InconsistentTransactionError("Transaction must contain at least one item")
    points = sum(item.points_delta for item in draft.items)
    stamps = sum(item.stamps_delta for item in draft.items)
    if points != draft.total_points_delta or stamps != draft.total_stamps_delta:
        raise InconsistentTransactionError(
            f"Item deltas ({points} points, {stamps} stamps) do not match totals "
            f"({draft.total_points_delta} points, {draft.total_stamps_delta} stamps)"
        )


class TransactionLog:
    """Append and query the immutable transaction history."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def append(self, draft: TransactionDraft, *, now: datetime | None = None) -> TransactionRecord:
        _validate_draft(draft)

        transaction = LoyaltyTransaction(
            user_id=draft.user_id,
            business_id=draft.business_id,
            business_name=draft.business_name,
            transaction_type=draft.transaction_type,
            purchase_amount=draft.purchase_amount,
            total_points_delta=draft.total_points_delta,
            total_stamps_delta=draft.total_stamps_delta,
            branch_id=draft.branch_id,
            branch_name=draft.branch_name,
            shift_id=draft.shift_id,
            shift_name=draft.shift_name,
            reward_id=draft.reward_id,
            reward_name=draft.reward_name,
            redemption_code=draft.redemption_code,
            notes=draft.notes,
            created_at=resolve_now(now),
        )
        transaction.items = [
            LoyaltyTransactionItem(
                position=position,
                reward_system_id=item.reward_system_id,
                reward_system_name=item.reward_system_name,
                reward_system_kind=item.reward_system_kind,
                points_delta=item.points_delta,
                stamps_delta=item.stamps_delta,
            )
            for position, item in enumerate(draft.items)
        ]
        self._db.add(transaction)
        await self._db.flush()

        transaction_type = draft.transaction_type.value
        record_on_commit(self._db, lambda store: store.record_transaction(transaction_type))
        logger.info(
            "Appended loyalty transaction",
            transaction_id=str(transaction.id),
            user_id=str(draft.user_id),
            business_id=str(draft.business_id),
            transaction_type=draft.transaction_type.value,
            points_delta=draft.total_points_delta,
            stamps_delta=draft.total_stamps_delta,
        )
        return TransactionRecord.from_model(transaction)

    async def get_by_id(self, transaction_id: UUID) -> TransactionRecord:
        stmt = select(LoyaltyTransaction).where(LoyaltyTransaction.id == transaction_id)
        result = await self._db.execute(stmt)
        transaction = result.scalar_one_or_none()
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return TransactionRecord.from_model(transaction)

    async def list_transactions(
        self,
        filters: TransactionFilters,
        *,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> tuple[list[TransactionRecord], str | None]:
        """Return one page of transactions, newest first, and the cursor for the next page."""

        page_size = settings.transaction_page_default if limit is None else limit
        page_size = max(1, min(page_size, settings.transaction_page_limit))

        stmt = select(LoyaltyTransaction)
        if filters.user_id is not None:
            stmt = stmt.where(LoyaltyTransaction.user_id == filters.user_id)
        if filters.business_id is not None:
            stmt = stmt.where(LoyaltyTransaction.business_id == filters.business_id)
        if filters.branch_id is not None:
            stmt = stmt.where(LoyaltyTransaction.branch_id == filters.branch_id)
        if filters.shift_id is not None:
            stmt = stmt.where(LoyaltyTransaction.shift_id == filters.shift_id)
        if filters.types:
            stmt = stmt.where(LoyaltyTransaction.transaction_type.in_(list(filters.types)))
        if filters.created_from is not None:
            stmt = stmt.where(LoyaltyTransaction.created_at >= ensure_utc(filters.created_from))
        if filters.created_to is not None:
            stmt = stmt.where(LoyaltyTransaction.created_at < ensure_utc(filters.created_to))

        if cursor:
            cursor_time, cursor_id = decode_time_uuid_cursor(cursor)
            cursor_time = ensure_utc(cursor_time)
            stmt = stmt.where(
                or_(
                    LoyaltyTransaction.created_at < cursor_time,
                    and_(
                        LoyaltyTransaction.created_at == cursor_time,
                        LoyaltyTransaction.id < cursor_id,
                    ),
                )
            )

        stmt = stmt.order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc()).limit(
            page_size + 1
        )
        result = await self._db.execute(stmt)
        rows = list(result.scalars())
        has_more = len(rows) > page_size
        records = [TransactionRecord.from_model(row) for row in rows[:page_size]]

        next_cursor: str | None = None
        if has_more and records:
            tail = records[-1]
            next_cursor = encode_time_uuid_cursor(tail.created_at, tail.id)

        return records, next_cursor

    async def scan_for_report(
        self,
        business_id: UUID,
        start: datetime,
        end: datetime,
        *,
        shift_ids: Sequence[UUID] | None = None,
        types: Sequence[TransactionType] | None = None,
    ) -> list[TransactionRecord]:
        """Return every transaction in ``[start, end)`` for a business, oldest first."""

        stmt = select(LoyaltyTransaction).where(
            LoyaltyTransaction.business_id == business_id,
            LoyaltyTransaction.created_at >= ensure_utc(start),
            LoyaltyTransaction.created_at < ensure_utc(end),
        )
        if shift_ids:
            stmt = stmt.where(LoyaltyTransaction.shift_id.in_(list(shift_ids)))
        if types:
            stmt = stmt.where(LoyaltyTransaction.transaction_type.in_(list(types)))
        stmt = stmt.order_by(LoyaltyTransaction.created_at.asc(), LoyaltyTransaction.id.asc())
        result = await self._db.execute(stmt)
        return [TransactionRecord.from_model(row) for row in result.scalars()]

    async def summarize_user(self, user_id: UUID, *, business_id: UUID | None = None) -> UserTransactionStats:
        conditions = [LoyaltyTransaction.user_id == user_id]
        if business_id is not None:
            conditions.append(LoyaltyTransaction.business_id == business_id)

        points = LoyaltyTransaction.total_points_delta
        stamps = LoyaltyTransaction.total_stamps_delta
        by_type_stmt = (
            select(
                LoyaltyTransaction.transaction_type,
                func.count(LoyaltyTransaction.id),
                func.coalesce(func.sum(case((points > 0, points), else_=0)), 0),
                func.coalesce(func.sum(case((points < 0, -points), else_=0)), 0),
                func.coalesce(func.sum(case((stamps > 0, stamps), else_=0)), 0),
                func.coalesce(func.sum(case((stamps < 0, -stamps), else_=0)), 0),
            )
            .where(*conditions)
            .group_by(LoyaltyTransaction.transaction_type)
        )
        stats = UserTransactionStats(user_id=user_id)
        for transaction_type, count, earned, spent, stamps_earned, stamps_spent in await self._db.execute(
            by_type_stmt
        ):
            stats.by_type[transaction_type.value] = int(count)
            stats.total_transactions += int(count)
            stats.points_earned += int(earned)
            stats.points_spent += int(spent)
            stats.stamps_earned += int(stamps_earned)
            stats.stamps_spent += int(stamps_spent)

        span_stmt = select(
            func.count(func.distinct(LoyaltyTransaction.business_id)),
            func.min(LoyaltyTransaction.created_at),
            func.max(LoyaltyTransaction.created_at),
        ).where(*conditions)
        visited, first_at, last_at = (await self._db.execute(span_stmt)).one()
        stats.businesses_visited = int(visited or 0)
        stats.first_activity_at = ensure_utc(first_at)
        stats.last_activity_at = ensure_utc(last_at)
        return stats


def encode_time_uuid_cursor(timestamp: datetime, identifier: UUID) -> str:
    """Encode pagination cursor for chronological queries."""

    payload = f"{timestamp.isoformat()}|{identifier}".encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("utf-8")


def decode_time_uuid_cursor(cursor: str) -> Tuple[datetime, UUID]:
    """Decode pagination cursor into datetime and UUID parts."""

    raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
    timestamp_str, identifier_str = raw.split("|", 1)
    return datetime.fromisoformat(timestamp_str), UUID(identifier_str)


__all__ = [
    "TransactionDraft",
    "TransactionFilters",
    "TransactionItemDraft",
    "TransactionItemRecord",
    "TransactionLog",
    "TransactionRecord",
    "UserTransactionStats",
    "decode_time_uuid_cursor",
    "encode_time_uuid_cursor",
]
