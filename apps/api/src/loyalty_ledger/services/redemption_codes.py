"""Single-use, time-limited codes for deferred (delivery) reward claims."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.core.clock import ensure_utc, resolve_now
from loyalty_ledger.core.logging import ledger_context
from loyalty_ledger.core.settings import settings
from loyalty_ledger.db.session import atomic
from loyalty_ledger.models.redemption_code import RedemptionCode
from loyalty_ledger.models.reward_system import RewardSystemKind
from loyalty_ledger.models.transaction import TransactionType
from loyalty_ledger.observability.loyalty import get_loyalty_store
from loyalty_ledger.services.errors import (
    CodeAlreadyRedeemedError,
    CodeExpiredError,
    CodeGenerationExhaustedError,
    CodeNotFoundError,
    InvalidGrantError,
    NoActiveRewardSystemsError,
    NoRewardSystemsFoundError,
    RedemptionCodeError,
)
from loyalty_ledger.services.ledger import LedgerStore, calculate_points
from loyalty_ledger.services.loyalty import StampGrant
from loyalty_ledger.services.reward_systems import RewardSystemRegistry
from loyalty_ledger.services.transactions import TransactionDraft, TransactionItemDraft, TransactionLog


@dataclass(slots=True)
class ClaimResult:
    points_added: int
    stamps_added: int
    business_id: UUID
    transaction_id: UUID


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class RedemptionCodeEngine:
    """Issue codes carrying a pre-computed grant and claim them at most once."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._registry = RewardSystemRegistry(db_session)
        self._ledger = LedgerStore(db_session)
        self._log = TransactionLog(db_session)

    async def generate(
        self,
        business_id: UUID,
        *,
        business_name: str,
        purchase_amount: Decimal | int | float | str = 0,
        stamp_grants: Sequence[StampGrant] = (),
        ttl: timedelta | None = None,
        now: datetime | None = None,
    ) -> RedemptionCode:
        """Create a code worth the points estimate for ``purchase_amount`` plus valid stamp grants.

        Grants referencing unknown, inactive or non-stamps systems are dropped.
        """

        timestamp = resolve_now(now)
        try:
            amount = Decimal(str(purchase_amount or 0))
        except (InvalidOperation, ValueError) as exc:
            raise InvalidGrantError(f"Invalid purchase amount: {purchase_amount!r}") from exc
        if amount < 0:
            raise InvalidGrantError("Purchase amount cannot be negative")

        async with atomic(self._db):
            points_estimate = 0
            if amount > 0:
                points_system = await self._registry.active_points_system(business_id)
                if points_system is not None:
                    points_estimate = calculate_points(
                        amount, points_system.conversion_amount, points_system.conversion_points
                    )

            grants = await self._filter_stamp_grants(business_id, stamp_grants)
            if points_estimate == 0 and not grants:
                raise NoRewardSystemsFoundError(
                    "Redemption code would not credit any active reward system"
                )

            code_value = await self._generate_unique_code()
            redemption = RedemptionCode(
                code=code_value,
                business_id=business_id,
                business_name=business_name,
                purchase_amount=amount,
                points_estimate=points_estimate,
                stamp_grants=grants,
                is_redeemed=False,
                expires_at=timestamp + (ttl or timedelta(days=settings.redemption_code_ttl_days)),
                created_at=timestamp,
            )
            self._db.add(redemption)
            try:
                await self._db.flush()
            except IntegrityError as exc:
                raise CodeGenerationExhaustedError(
                    "Redemption code collided with a concurrently issued code"
                ) from exc

        get_loyalty_store().record_code_event("generated")
        logger.info(
            "Generated redemption code",
            business_id=str(business_id),
            redemption_code_id=str(redemption.id),
            points_estimate=points_estimate,
            stamp_grants=len(grants),
        )
        return redemption

    async def claim(self, code: str, user_id: UUID, *, now: datetime | None = None) -> ClaimResult:
        """Claim ``code`` for ``user_id``, crediting the ledger and logging an ``add``.

        The redeemed flag is flipped by a single conditional update, so of two
        concurrent claims exactly one succeeds. Any later failure rolls the flag
        back together with the ledger changes.
        """

        normalized = normalize_code(code)
        timestamp = resolve_now(now)
        with ledger_context(user_id=user_id, redemption_code=normalized):
            try:
                async with atomic(self._db):
                    claimed = await self._db.execute(
                        update(RedemptionCode)
                        .where(
                            RedemptionCode.code == normalized,
                            RedemptionCode.is_redeemed.is_(False),
                            RedemptionCode.expires_at >= timestamp,
                        )
                        .values(is_redeemed=True, redeemed_by=user_id, redeemed_at=timestamp)
                        .execution_options(synchronize_session=False)
                    )
                    if claimed.rowcount == 0:
                        await self._raise_claim_failure(normalized, timestamp)

                    redemption = await self._load(normalized)
                    assert redemption is not None
                    result = await self._credit(redemption, user_id, timestamp)
            except RedemptionCodeError as exc:
                get_loyalty_store().record_code_event(f"rejected:{exc.code}")
                logger.warning("Rejected redemption code claim", reason=exc.code)
                raise

            get_loyalty_store().record_code_event("claimed")
            logger.info(
                "Claimed redemption code",
                business_id=str(result.business_id),
                transaction_id=str(result.transaction_id),
                points_added=result.points_added,
                stamps_added=result.stamps_added,
            )
            return result

    async def get(self, code: str) -> RedemptionCode | None:
        return await self._load(normalize_code(code))

    async def purge_expired(self, *, now: datetime | None = None) -> int:
        """Delete every code whose expiry has passed, redeemed or not."""

        timestamp = resolve_now(now)
        async with atomic(self._db):
            result = await self._db.execute(
                delete(RedemptionCode)
                .where(RedemptionCode.expires_at < timestamp)
                .execution_options(synchronize_session=False)
            )
        purged = int(result.rowcount or 0)
        get_loyalty_store().record_codes_purged(purged)
        return purged

    async def _load(self, normalized: str) -> RedemptionCode | None:
        stmt = (
            select(RedemptionCode)
            .where(RedemptionCode.code == normalized)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _raise_claim_failure(self, normalized: str, timestamp: datetime) -> None:
        redemption = await self._load(normalized)
        if redemption is None:
            raise CodeNotFoundError(normalized)
        # Expiry wins over redemption status.
        if timestamp > ensure_utc(redemption.expires_at):
            raise CodeExpiredError(normalized)
        raise CodeAlreadyRedeemedError(normalized)

    async def _credit(self, redemption: RedemptionCode, user_id: UUID, timestamp: datetime) -> ClaimResult:
        business_id = redemption.business_id
        items: list[TransactionItemDraft] = []

        amount = Decimal(redemption.purchase_amount or 0)
        if amount > 0:
            points_system = await self._registry.active_points_system(business_id)
            if points_system is not None:
                points = calculate_points(amount, points_system.conversion_amount, points_system.conversion_points)
                if points > 0:
                    items.append(
                        TransactionItemDraft(
                            reward_system_id=points_system.id,
                            reward_system_name=points_system.name,
                            reward_system_kind=RewardSystemKind.POINTS,
                            points_delta=points,
                        )
                    )

        grants = [(UUID(str(entry["rewardSystemId"])), int(entry["count"])) for entry in redemption.stamp_grants or []]
        systems = await self._registry.get_many([system_id for system_id, _ in grants], business_id)
        for system_id, count in grants:
            system = systems.get(system_id)
            if system is None or not system.is_active or system.kind != RewardSystemKind.STAMPS or count <= 0:
                continue
            items.append(
                TransactionItemDraft(
                    reward_system_id=system.id,
                    reward_system_name=system.name,
                    reward_system_kind=RewardSystemKind.STAMPS,
                    stamps_delta=count,
                )
            )

        if not items:
            raise NoActiveRewardSystemsError(
                "None of the reward systems on this code are still active"
            )

        for item in items:
            await self._ledger.apply_delta(
                user_id,
                business_id,
                item.reward_system_id,
                points_delta=item.points_delta,
                stamps_delta=item.stamps_delta,
                now=timestamp,
            )

        record = await self._log.append(
            TransactionDraft.build(
                user_id=user_id,
                business_id=business_id,
                business_name=redemption.business_name,
                transaction_type=TransactionType.ADD,
                items=items,
                purchase_amount=amount if amount > 0 else None,
                redemption_code=redemption.code,
                notes=f"Delivery order (code: {redemption.code})",
            ),
            now=timestamp,
        )
        return ClaimResult(
            points_added=record.total_points_delta,
            stamps_added=record.total_stamps_delta,
            business_id=business_id,
            transaction_id=record.id,
        )

    async def _filter_stamp_grants(
        self, business_id: UUID, stamp_grants: Sequence[StampGrant]
    ) -> list[dict[str, Any]]:
        candidates = [grant for grant in stamp_grants if isinstance(grant.count, int) and grant.count > 0]
        if not candidates:
            return []
        systems = await self._registry.get_many([grant.reward_system_id for grant in candidates], business_id)
        grants: list[dict[str, Any]] = []
        for grant in candidates:
            system = systems.get(grant.reward_system_id)
            if system is None or not system.is_active or system.kind != RewardSystemKind.STAMPS:
                continue
            grants.append({"rewardSystemId": str(system.id), "count": grant.count})
        return grants

    async def _generate_unique_code(self) -> str:
        for _ in range(max(1, settings.redemption_code_max_attempts)):
            candidate = uuid4().hex[: settings.redemption_code_length].upper()
            stmt = select(RedemptionCode.id).where(RedemptionCode.code == candidate)
            result = await self._db.execute(stmt)
            if result.scalar_one_or_none() is None:
                return candidate
        raise CodeGenerationExhaustedError(
            f"Could not generate a unique redemption code after {settings.redemption_code_max_attempts} attempts"
        )


__all__ = ["ClaimResult", "RedemptionCodeEngine", "normalize_code"]
