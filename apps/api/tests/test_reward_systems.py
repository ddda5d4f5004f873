"""Tests for the reward system registry."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from loyalty_ledger.models.ledger import LedgerSystemBalance
from loyalty_ledger.models.reward_system import ProductScope, RewardSystemKind
from loyalty_ledger.schemas.reward_system import PointsSystemConfig
from loyalty_ledger.services.errors import InvalidConfigError
from loyalty_ledger.services.ledger import LedgerStore
from loyalty_ledger.services.reward_systems import RewardSystemRegistry


POINTS_CONFIG = {
    "kind": "points",
    "name": "Cafe points",
    "conversion_amount": Decimal("10"),
    "conversion_points": 1,
}


@pytest.mark.asyncio
async def test_create_points_system_defaults_currency(session_factory) -> None:
    business_id = uuid4()
    async with session_factory() as session:
        registry = RewardSystemRegistry(session)
        system = await registry.create(business_id, POINTS_CONFIG)
        await session.commit()

        assert system.kind == RewardSystemKind.POINTS
        assert system.is_active is True
        assert Decimal(system.conversion_amount) == Decimal("10")
        assert system.conversion_currency == "MXN"
        assert system.target_stamps is None
        assert system.product_scope is None


@pytest.mark.asyncio
async def test_create_accepts_camel_case_payload_and_config_models(session_factory) -> None:
    business_id = uuid4()
    async with session_factory() as session:
        registry = RewardSystemRegistry(session)
        stamps = await registry.create(
            business_id,
            {
                "kind": "stamps",
                "name": "Coffee card",
                "targetStamps": 8,
                "productScope": "specific",
                "productIdentifier": "latte",
            },
        )
        points = await registry.create(
            business_id,
            PointsSystemConfig(
                kind="points",
                name="Points",
                conversion_amount=Decimal("20"),
                conversion_currency="usd",
                conversion_points=3,
            ),
        )

        assert stamps.target_stamps == 8
        assert stamps.product_scope == ProductScope.SPECIFIC
        assert stamps.product_identifier == "latte"
        assert stamps.conversion_points is None
        assert points.conversion_currency == "USD"


@pytest.mark.asyncio
async def test_create_rejects_fields_of_the_other_kind(session_factory) -> None:
    async with session_factory() as session:
        registry = RewardSystemRegistry(session)
        with pytest.raises(InvalidConfigError) as excinfo:
            await registry.create(uuid4(), {**POINTS_CONFIG, "target_stamps": 5})

    assert excinfo.value.code == "invalid_config"
    assert excinfo.value.fields == ["target_stamps"]


@pytest.mark.asyncio
async def test_create_rejects_incomplete_configurations(session_factory) -> None:
    async with session_factory() as session:
        registry = RewardSystemRegistry(session)

        with pytest.raises(InvalidConfigError) as missing_kind:
            await registry.create(uuid4(), {"name": "No kind"})
        assert missing_kind.value.fields == ["kind"]

        with pytest.raises(InvalidConfigError) as bad_points:
            await registry.create(
                uuid4(),
                {"kind": "points", "name": "Broken", "conversion_amount": 0, "conversion_points": 0},
            )
        assert bad_points.value.fields == ["conversion_amount", "conversion_points"]

        with pytest.raises(InvalidConfigError) as specific_without_identifier:
            await registry.create(
                uuid4(),
                {"kind": "stamps", "name": "Card", "target_stamps": 5, "product_scope": "specific"},
            )
        assert specific_without_identifier.value.fields == ["product_identifier"]


@pytest.mark.asyncio
async def test_lookups_are_scoped_to_the_owning_business(session_factory) -> None:
    business_id = uuid4()
    other_business = uuid4()
    async with session_factory() as session:
        registry = RewardSystemRegistry(session)
        system = await registry.create(business_id, POINTS_CONFIG)
        await session.commit()

        assert (await registry.get(system.id, business_id)).id == system.id
        assert await registry.get(system.id, other_business) is None
        assert await registry.list_for_business(other_business) == []
        assert await registry.update(system.id, other_business, {"name": "Stolen"}) is None
        assert await registry.deactivate(system.id, other_business) is False


@pytest.mark.asyncio
async def test_list_and_active_points_system(session_factory) -> None:
    business_id = uuid4()
    async with session_factory() as session:
        registry = RewardSystemRegistry(session)
        first = await registry.create(business_id, POINTS_CONFIG)
        second = await registry.create(business_id, {**POINTS_CONFIG, "name": "Second points"})
        stamps = await registry.create(
            business_id,
            {"kind": "stamps", "name": "Any purchase", "target_stamps": 10, "product_scope": "any"},
        )
        await session.commit()

        assert (await registry.active_points_system(business_id)).id == first.id

        await registry.deactivate(first.id, business_id)
        await session.commit()

        assert (await registry.active_points_system(business_id)).id == second.id
        active = await registry.list_for_business(business_id)
        assert [system.id for system in active] == [second.id, stamps.id]
        everything = await registry.list_for_business(business_id, include_inactive=True)
        assert len(everything) == 3
        only_stamps = await registry.list_for_business(business_id, kind=RewardSystemKind.STAMPS)
        assert [system.id for system in only_stamps] == [stamps.id]


@pytest.mark.asyncio
async def test_update_revalidates_and_keeps_kind_immutable(session_factory) -> None:
    business_id = uuid4()
    async with session_factory() as session:
        registry = RewardSystemRegistry(session)
        system = await registry.create(business_id, POINTS_CONFIG)
        await session.commit()

        updated = await registry.update(system.id, business_id, {"conversion_points": 2, "name": "Renamed"})
        await session.commit()
        assert updated.conversion_points == 2
        assert updated.name == "Renamed"

        with pytest.raises(InvalidConfigError) as kind_change:
            await registry.update(system.id, business_id, {"kind": "stamps"})
        assert kind_change.value.fields == ["kind"]

        with pytest.raises(InvalidConfigError) as invalid:
            await registry.update(system.id, business_id, {"conversion_amount": -5})
        assert invalid.value.fields == ["conversion_amount"]

        unchanged = await registry.update(system.id, business_id, {"kind": RewardSystemKind.POINTS})
        assert unchanged.kind == RewardSystemKind.POINTS


@pytest.mark.asyncio
async def test_hard_delete_leaves_balances_in_place(session_factory) -> None:
    business_id = uuid4()
    user_id = uuid4()
    async with session_factory() as session:
        registry = RewardSystemRegistry(session)
        system = await registry.create(business_id, POINTS_CONFIG)
        await LedgerStore(session).apply_delta(user_id, business_id, system.id, points_delta=7)
        await session.commit()

        assert await registry.deactivate(system.id, business_id, hard=True) is True
        await session.commit()

        assert await registry.get(system.id, business_id) is None
        balances = (await session.execute(select(LedgerSystemBalance))).scalars().all()
        assert [(row.reward_system_id, row.points) for row in balances] == [(system.id, 7)]
