"""Shift and day reports over the transaction log."""

import datetime as dt
import json
from decimal import Decimal
from uuid import uuid4

import pytest

from loyalty_ledger.models.reward_system import RewardSystemKind
from loyalty_ledger.models.transaction import TransactionType
from loyalty_ledger.services.errors import InvalidReportRangeError
from loyalty_ledger.services.loyalty import BranchRef, LoyaltyService, ShiftRef
from loyalty_ledger.services.reporting import ReportService, build_report, enforce_report_range
from loyalty_ledger.services.reward_systems import RewardSystemRegistry
from loyalty_ledger.services.transactions import TransactionItemRecord, TransactionRecord

UTC = dt.timezone.utc
BUSINESS_ID = uuid4()
POINTS_SYSTEM = uuid4()
STAMPS_SYSTEM = uuid4()
MORNING = uuid4()
DOWNTOWN = uuid4()


def _item(name, kind, points=0, stamps=0, system_id=None):
    return TransactionItemRecord(
        reward_system_id=system_id or (POINTS_SYSTEM if kind == RewardSystemKind.POINTS else STAMPS_SYSTEM),
        reward_system_name=name,
        reward_system_kind=kind,
        points_delta=points,
        stamps_delta=stamps,
    )


def _record(created_at, items, *, transaction_type=TransactionType.ADD, shift=None, branch=None):
    return TransactionRecord(
        id=uuid4(),
        user_id=uuid4(),
        business_id=BUSINESS_ID,
        business_name="Cafe Central",
        transaction_type=transaction_type,
        purchase_amount=None,
        total_points_delta=sum(item.points_delta for item in items),
        total_stamps_delta=sum(item.stamps_delta for item in items),
        items=tuple(items),
        created_at=created_at,
        branch_id=branch[0] if branch else None,
        branch_name=branch[1] if branch else None,
        shift_id=shift[0] if shift else None,
        shift_name=shift[1] if shift else None,
    )


@pytest.fixture
def records():
    morning = (MORNING, "Morning")
    downtown = (DOWNTOWN, "Downtown")
    return [
        _record(
            dt.datetime(2026, 3, 3, 8, 15, tzinfo=UTC),
            [_item("Cafe stars", RewardSystemKind.POINTS, points=3)],
            shift=morning,
            branch=downtown,
        ),
        _record(
            dt.datetime(2026, 3, 2, 9, 40, tzinfo=UTC),
            [
                _item("Cafe points", RewardSystemKind.POINTS, points=5),
                _item("Latte card", RewardSystemKind.STAMPS, stamps=1),
            ],
            shift=morning,
            branch=downtown,
        ),
        _record(
            dt.datetime(2026, 3, 2, 18, 0, tzinfo=UTC),
            [_item("Cafe points", RewardSystemKind.POINTS, points=-4)],
            transaction_type=TransactionType.SUBTRACT,
        ),
        _record(
            dt.datetime(2026, 3, 2, 9, 5, tzinfo=UTC),
            [_item("Cafe points", RewardSystemKind.POINTS, points=10)],
            shift=morning,
            branch=downtown,
        ),
    ]


def _build(records):
    return build_report(
        records,
        business_id=BUSINESS_ID,
        start_date=dt.date(2026, 3, 2),
        end_date=dt.date(2026, 3, 3),
    )


def test_report_groups_by_day_and_shift(records) -> None:
    report = _build(records)

    assert report.business_name == "Cafe Central"
    assert (report.summary.total_transactions, report.summary.total_points, report.summary.total_stamps) == (4, 14, 1)
    assert report.summary.total_days == 2

    monday, tuesday = report.daily
    assert (monday.date, monday.day_of_week) == (dt.date(2026, 3, 2), "Monday")
    assert (tuesday.date, tuesday.day_of_week) == (dt.date(2026, 3, 3), "Tuesday")
    assert (monday.totals.transactions, monday.totals.points, monday.totals.stamps) == (3, 11, 1)

    morning, unassigned = monday.shifts
    assert (morning.shift_id, morning.shift_name) == (MORNING, "Morning")
    assert (morning.totals.transactions, morning.totals.points, morning.totals.stamps) == (2, 15, 1)
    assert [detail.time for detail in morning.transactions] == ["09:05", "09:40", "09:40"]
    assert [(entry.system_name, entry.transactions, entry.points, entry.stamps) for entry in morning.system_breakdown] == [
        ("Cafe points", 2, 15, 0),
        ("Latte card", 1, 0, 1),
    ]
    assert (unassigned.shift_id, unassigned.shift_name) == (None, "Unassigned shift")
    assert unassigned.totals.points == -4
    assert unassigned.transactions[0].transaction_type == TransactionType.SUBTRACT


def test_report_period_totals(records) -> None:
    report = _build(records)

    assert [(entry.shift_id, entry.totals.transactions, entry.totals.points) for entry in report.totals_by_shift] == [
        (MORNING, 3, 18),
        (None, 1, -4),
    ]
    assert [(entry.branch_name, entry.totals.transactions) for entry in report.branch_summary] == [
        ("Downtown", 3),
        ("Unassigned branch", 1),
    ]
    assert [shift.shift_id for shift in report.branch_summary[0].shifts] == [MORNING]
    # Names come from each record's snapshot, so a renamed system shows up under both names.
    assert [(entry.system_name, entry.transactions, entry.points) for entry in report.totals_by_system] == [
        ("Cafe points", 3, 11),
        ("Latte card", 1, 0),
        ("Cafe stars", 1, 3),
    ]


def test_report_is_deterministic_and_serializable(records) -> None:
    first = _build(records).as_dict()
    second = _build(list(reversed(records))).as_dict()

    assert first == second
    payload = json.loads(json.dumps(first))
    assert payload["business_id"] == str(BUSINESS_ID)
    assert payload["daily"][0]["date"] == "2026-03-02"
    assert payload["daily"][0]["shifts"][0]["transactions"][0]["system_kind"] == "points"
    assert payload["daily"][0]["shifts"][1]["transactions"][0]["transaction_type"] == "subtract"


def test_report_labels() -> None:
    nameless_shift = uuid4()
    record = _record(
        dt.datetime(2026, 3, 2, 23, 59, tzinfo=UTC),
        [_item("Cafe points", RewardSystemKind.POINTS, points=1)],
        shift=(nameless_shift, None),
    )
    report = build_report(
        [record],
        business_id=BUSINESS_ID,
        start_date=dt.date(2026, 3, 2),
        end_date=dt.date(2026, 3, 2),
        unassigned_branch_label="No branch",
    )

    assert report.daily[0].shifts[0].shift_name == str(nameless_shift)
    assert report.branch_summary[0].branch_name == "No branch"

    empty = build_report([], business_id=BUSINESS_ID, start_date=dt.date(2026, 3, 2), end_date=dt.date(2026, 3, 2))
    assert empty.daily == []
    assert empty.summary.total_days == 0
    assert empty.business_name is None


def test_report_splits_same_named_systems_by_kind() -> None:
    points_card, stamps_card = uuid4(), uuid4()
    record = _record(
        dt.datetime(2026, 3, 2, 10, 0, tzinfo=UTC),
        [
            _item("Loyalty card", RewardSystemKind.POINTS, points=4, system_id=points_card),
            _item("Loyalty card", RewardSystemKind.STAMPS, stamps=1, system_id=stamps_card),
        ],
    )

    report = build_report([record], business_id=BUSINESS_ID, start_date=dt.date(2026, 3, 2), end_date=dt.date(2026, 3, 2))

    expected = [
        ("Loyalty card", RewardSystemKind.POINTS, 4, 0),
        ("Loyalty card", RewardSystemKind.STAMPS, 0, 1),
    ]
    rows = report.totals_by_system
    assert [(entry.system_name, entry.system_kind, entry.points, entry.stamps) for entry in rows] == expected
    shift_rows = report.daily[0].shifts[0].system_breakdown
    assert [(entry.system_name, entry.system_kind, entry.points, entry.stamps) for entry in shift_rows] == expected


def test_enforce_report_range() -> None:
    enforce_report_range(dt.date(2026, 3, 2), dt.date(2026, 3, 2))
    enforce_report_range(dt.date(2026, 1, 1), dt.date(2026, 4, 1))
    enforce_report_range(dt.date(2026, 3, 1), dt.date(2026, 3, 8), max_days=7)

    with pytest.raises(InvalidReportRangeError):
        enforce_report_range(dt.date(2026, 3, 3), dt.date(2026, 3, 2))
    with pytest.raises(InvalidReportRangeError) as excinfo:
        enforce_report_range(dt.date(2026, 1, 1), dt.date(2026, 4, 2))
    assert "91 days" in str(excinfo.value)
    with pytest.raises(InvalidReportRangeError):
        enforce_report_range(dt.date(2026, 3, 1), dt.date(2026, 3, 9), max_days=7)


@pytest.mark.asyncio
async def test_report_service_reads_half_open_window(session_factory) -> None:
    business_id, user_id = uuid4(), uuid4()
    shift = ShiftRef(id=uuid4(), name="Evening")
    branch = BranchRef(id=uuid4(), name="Harbor")

    async with session_factory() as session:
        registry = RewardSystemRegistry(session)
        points = await registry.create(
            business_id,
            {"kind": "points", "name": "Cafe points", "conversion_amount": Decimal("10"), "conversion_points": 1},
        )
        points_id = points.id
        await session.commit()

        service = LoyaltyService(session)
        for created_at in (
            dt.datetime(2026, 3, 1, 23, 59, tzinfo=UTC),
            dt.datetime(2026, 3, 2, 0, 0, tzinfo=UTC),
            dt.datetime(2026, 3, 3, 23, 59, tzinfo=UTC),
            dt.datetime(2026, 3, 4, 0, 0, tzinfo=UTC),
        ):
            await service.record_purchase(
                user_id,
                business_id,
                business_name="Cafe Central",
                purchase_amount=Decimal("20"),
                branch=branch,
                shift=shift,
                now=created_at,
            )
        await service.subtract(
            user_id,
            business_id,
            business_name="Cafe Central",
            points=1,
            shift=shift,
            now=dt.datetime(2026, 3, 2, 12, 0, tzinfo=UTC),
        )

        await registry.update(points_id, business_id, {"name": "Cafe stars"})
        await session.commit()

        reports = ReportService(session)
        report = await reports.build_report(business_id, dt.date(2026, 3, 2), dt.date(2026, 3, 3))

        assert report.summary.total_transactions == 3
        assert report.summary.total_points == 3
        assert [day.date for day in report.daily] == [dt.date(2026, 3, 2), dt.date(2026, 3, 3)]
        assert [entry.system_name for entry in report.totals_by_system] == ["Cafe points"]
        assert report.daily[0].shifts[0].shift_name == "Evening"
        assert [entry.branch_name for entry in report.branch_summary] == ["Harbor", "Unassigned branch"]

        adds_only = await reports.build_report(
            business_id, dt.date(2026, 3, 2), dt.date(2026, 3, 3), types=[TransactionType.ADD]
        )
        assert adds_only.summary.total_transactions == 2

        other_shift = await reports.build_report(
            business_id, dt.date(2026, 3, 2), dt.date(2026, 3, 3), shift_ids=[uuid4()]
        )
        assert other_shift.summary.total_transactions == 0

        with pytest.raises(InvalidReportRangeError):
            await reports.build_report(business_id, dt.date(2026, 3, 3), dt.date(2026, 3, 2))
