"""Tests for the ledger store: points math, guarded deltas and roll-ups."""

import asyncio
import datetime as dt
from decimal import Decimal
from uuid import uuid4

import pytest

from loyalty_ledger.services.errors import InsufficientBalanceError, NothingToCreditError
from loyalty_ledger.services.ledger import LedgerStore, calculate_points


@pytest.mark.parametrize(
    ("amount", "expected"),
    [
        (Decimal("100"), 10),
        (Decimal("50"), 5),
        (Decimal("5"), 0),
        (Decimal("99.99"), 9),
        (Decimal("0"), 0),
        (Decimal("-20"), 0),
    ],
)
def test_calculate_points_floors_at_ten_to_one(amount: Decimal, expected: int) -> None:
    assert calculate_points(amount, Decimal("10"), 1) == expected


def test_calculate_points_handles_fractional_conversions() -> None:
    assert calculate_points("30", "0.10", 1) == 300
    assert calculate_points(Decimal("25"), Decimal("7.5"), 3) == 10
    assert calculate_points(100, 0, 5) == 0


@pytest.mark.asyncio
async def test_credit_materializes_rows_and_rolls_up(session_factory) -> None:
    user_id, business_id = uuid4(), uuid4()
    points_system, stamps_system = uuid4(), uuid4()
    now = dt.datetime(2026, 3, 2, 9, 30, tzinfo=dt.timezone.utc)

    async with session_factory() as session:
        ledger = LedgerStore(session)
        assert await ledger.get(user_id) is None

        await ledger.apply_delta(user_id, business_id, points_system, points_delta=10, now=now)
        balance = await ledger.apply_delta(user_id, business_id, stamps_system, stamps_delta=2, now=now)
        await session.commit()

        assert (balance.points, balance.stamps) == (10, 2)
        assert balance.last_activity_at == now
        assert balance.system(points_system).points == 10
        assert balance.system(stamps_system).stamps == 2
        assert balance.points == sum(entry.points for entry in balance.systems)
        assert balance.stamps == sum(entry.stamps for entry in balance.systems)

        entry = await ledger.get(user_id)
        assert entry is not None
        assert [business.business_id for business in entry.businesses] == [business_id]
        assert entry.business(business_id).points == 10


@pytest.mark.asyncio
async def test_zero_delta_is_rejected(session_factory) -> None:
    async with session_factory() as session:
        ledger = LedgerStore(session)
        with pytest.raises(NothingToCreditError):
            await ledger.apply_delta(uuid4(), uuid4(), uuid4())


@pytest.mark.asyncio
async def test_debit_below_zero_leaves_balances_untouched(session_factory, reset_loyalty_store) -> None:
    user_id, business_id, system_id = uuid4(), uuid4(), uuid4()

    async with session_factory() as session:
        ledger = LedgerStore(session)
        await ledger.apply_delta(user_id, business_id, system_id, points_delta=5, stamps_delta=1)
        await session.commit()

        with pytest.raises(InsufficientBalanceError) as excinfo:
            await ledger.apply_delta(user_id, business_id, system_id, points_delta=-6)
        assert excinfo.value.code == "insufficient_balance"
        assert excinfo.value.points_delta == -6

        with pytest.raises(InsufficientBalanceError):
            await ledger.apply_delta(user_id, business_id, system_id, points_delta=-1, stamps_delta=-2)

        balance = await ledger.get_for_business(user_id, business_id)
        assert (balance.points, balance.stamps) == (5, 1)

        balance = await ledger.apply_delta(user_id, business_id, system_id, points_delta=-5, stamps_delta=-1)
        await session.commit()
        assert (balance.points, balance.stamps) == (0, 0)

    snapshot = reset_loyalty_store.snapshot()
    assert snapshot.ledger["mutations"] == {"credit": 1, "rejected": 2, "debit": 1}


@pytest.mark.asyncio
async def test_debit_without_prior_balance_creates_nothing(session_factory) -> None:
    user_id, business_id = uuid4(), uuid4()
    async with session_factory() as session:
        ledger = LedgerStore(session)
        with pytest.raises(InsufficientBalanceError):
            await ledger.apply_delta(user_id, business_id, uuid4(), stamps_delta=-1)
        await session.rollback()

        assert await ledger.get(user_id) is None
        assert await ledger.get_for_business(user_id, business_id) is None


@pytest.mark.asyncio
async def test_businesses_are_isolated(session_factory) -> None:
    user_id, cafe, bakery = uuid4(), uuid4(), uuid4()
    async with session_factory() as session:
        ledger = LedgerStore(session)
        await ledger.apply_delta(user_id, cafe, uuid4(), points_delta=3)
        await ledger.apply_delta(user_id, bakery, uuid4(), points_delta=8)
        await session.commit()

        assert (await ledger.get_for_business(user_id, cafe)).points == 3
        assert (await ledger.get_for_business(user_id, bakery)).points == 8
        entry = await ledger.get(user_id)
        assert sorted(business.points for business in entry.businesses) == [3, 8]


@pytest.mark.asyncio
async def test_list_business_members(session_factory) -> None:
    business_id, system_id = uuid4(), uuid4()
    first, second = sorted([uuid4(), uuid4()])
    async with session_factory() as session:
        ledger = LedgerStore(session)
        await ledger.apply_delta(second, business_id, system_id, stamps_delta=4)
        await ledger.apply_delta(first, business_id, system_id, stamps_delta=1)
        await ledger.apply_delta(first, uuid4(), system_id, stamps_delta=9)
        await session.commit()

        members = await ledger.list_business_members(business_id)

    assert [(user_id, balance.stamps) for user_id, balance in members] == [(first, 1), (second, 4)]


@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(file_session_factory) -> None:
    user_id, business_id, system_id = uuid4(), uuid4(), uuid4()
    async with file_session_factory() as session:
        await LedgerStore(session).apply_delta(user_id, business_id, system_id, points_delta=10)
        await session.commit()

    async def debit() -> bool:
        async with file_session_factory() as session:
            try:
                await LedgerStore(session).apply_delta(user_id, business_id, system_id, points_delta=-7)
            except InsufficientBalanceError:
                await session.rollback()
                return False
            await session.commit()
            return True

    outcomes = await asyncio.gather(debit(), debit())

    assert sorted(outcomes) == [False, True]
    async with file_session_factory() as session:
        balance = await LedgerStore(session).get_for_business(user_id, business_id)
    assert balance.points == 3
    assert balance.system(system_id).points == 3


@pytest.mark.asyncio
async def test_concurrent_credits_are_not_lost(file_session_factory) -> None:
    user_id, business_id, system_id = uuid4(), uuid4(), uuid4()

    async def credit() -> None:
        async with file_session_factory() as session:
            await LedgerStore(session).apply_delta(user_id, business_id, system_id, points_delta=5)
            await session.commit()

    await asyncio.gather(*(credit() for _ in range(4)))

    async with file_session_factory() as session:
        balance = await LedgerStore(session).get_for_business(user_id, business_id)
    assert balance.points == 20
    assert balance.system(system_id).points == 20
