"""Shift and day reports derived from the transaction log.

``build_report`` is a pure function over transaction records: it reads only
the name snapshots stored on each record, never live reward systems, branches
or shifts, so re-running it over the same records always yields the same
report.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.core.settings import settings
from loyalty_ledger.models.reward_system import RewardSystemKind
from loyalty_ledger.models.transaction import TransactionType
from loyalty_ledger.services.errors import InvalidReportRangeError
from loyalty_ledger.services.transactions import TransactionLog, TransactionRecord

_DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass(slots=True)
class ReportTotals:
    transactions: int = 0
    points: int = 0
    stamps: int = 0

    def add(self, points: int, stamps: int) -> None:
        self.transactions += 1
        self.points += points
        self.stamps += stamps


@dataclass(slots=True)
class TransactionDetail:
    """One row per transaction item."""

    transaction_id: UUID
    time: str
    user_id: UUID
    system_name: str
    system_kind: RewardSystemKind
    points: int
    stamps: int
    transaction_type: TransactionType


@dataclass(slots=True)
class SystemBreakdown:
    system_name: str
    system_kind: RewardSystemKind
    transactions: int = 0
    points: int = 0
    stamps: int = 0


@dataclass(slots=True)
class ShiftSummary:
    shift_id: UUID | None
    shift_name: str
    totals: ReportTotals = field(default_factory=ReportTotals)
    transactions: list[TransactionDetail] = field(default_factory=list)
    system_breakdown: list[SystemBreakdown] = field(default_factory=list)


@dataclass(slots=True)
class DailyReport:
    date: date
    day_of_week: str
    shifts: list[ShiftSummary] = field(default_factory=list)
    totals: ReportTotals = field(default_factory=ReportTotals)


@dataclass(slots=True)
class ShiftTotals:
    shift_id: UUID | None
    shift_name: str
    totals: ReportTotals = field(default_factory=ReportTotals)


@dataclass(slots=True)
class BranchSummary:
    branch_id: UUID | None
    branch_name: str
    totals: ReportTotals = field(default_factory=ReportTotals)
    shifts: list[ShiftTotals] = field(default_factory=list)


@dataclass(slots=True)
class ReportSummary:
    total_transactions: int = 0
    total_points: int = 0
    total_stamps: int = 0
    total_days: int = 0


@dataclass(slots=True)
class ReportData:
    business_id: UUID
    business_name: str | None
    start_date: date
    end_date: date
    summary: ReportSummary
    daily: list[DailyReport]
    branch_summary: list[BranchSummary]
    totals_by_shift: list[ShiftTotals]
    totals_by_system: list[SystemBreakdown]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_serializable_dict)


def _serializable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _serializable_dict(items: list[tuple[str, Any]]) -> dict[str, Any]:
    return {key: _serializable(value) for key, value in items}


class _SystemAccumulator:
    """Order-preserving aggregation of item deltas by reward system name and kind snapshot.

    A points and a stamps system that share a name stay on separate rows.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, RewardSystemKind], SystemBreakdown] = {}

    def add(self, name: str, kind: RewardSystemKind, points: int, stamps: int) -> None:
        entry = self._entries.get((name, kind))
        if entry is None:
            entry = SystemBreakdown(system_name=name, system_kind=kind)
            self._entries[(name, kind)] = entry
        entry.transactions += 1
        entry.points += points
        entry.stamps += stamps

    def result(self) -> list[SystemBreakdown]:
        return list(self._entries.values())


def build_report(
    records: Iterable[TransactionRecord],
    *,
    business_id: UUID,
    start_date: date,
    end_date: date,
    unassigned_shift_label: str | None = None,
    unassigned_branch_label: str | None = None,
) -> ReportData:
    """Group ``records`` into day, shift and reward system summaries.

    Days are UTC calendar dates; records without a shift land in one
    unassigned bucket per day.
    """

    shift_label = unassigned_shift_label or settings.report_unassigned_shift_label
    branch_label = unassigned_branch_label or settings.report_unassigned_branch_label
    ordered = sorted(records, key=lambda record: (record.created_at, str(record.id)))

    summary = ReportSummary()
    daily: dict[date, DailyReport] = {}
    day_shifts: dict[date, dict[UUID | None, ShiftSummary]] = {}
    day_systems: dict[tuple[date, UUID | None], _SystemAccumulator] = {}
    period_shifts: dict[UUID | None, ShiftTotals] = {}
    period_systems = _SystemAccumulator()
    branches: dict[UUID | None, BranchSummary] = {}
    branch_shifts: dict[tuple[UUID | None, UUID | None], ShiftTotals] = {}
    business_name: str | None = None

    for record in ordered:
        created_at = record.created_at.astimezone(timezone.utc)
        day = created_at.date()
        business_name = business_name or record.business_name
        shift_name = (record.shift_name or str(record.shift_id)) if record.shift_id else shift_label
        points = record.total_points_delta
        stamps = record.total_stamps_delta

        report_day = daily.get(day)
        if report_day is None:
            report_day = DailyReport(date=day, day_of_week=_DAY_NAMES[day.weekday()])
            daily[day] = report_day
            day_shifts[day] = {}
        report_day.totals.add(points, stamps)

        shift = day_shifts[day].get(record.shift_id)
        if shift is None:
            shift = ShiftSummary(shift_id=record.shift_id, shift_name=shift_name)
            day_shifts[day][record.shift_id] = shift
            report_day.shifts.append(shift)
            day_systems[(day, record.shift_id)] = _SystemAccumulator()
        shift.totals.add(points, stamps)

        hhmm = created_at.strftime("%H:%M")
        for item in record.items:
            shift.transactions.append(
                TransactionDetail(
                    transaction_id=record.id,
                    time=hhmm,
                    user_id=record.user_id,
                    system_name=item.reward_system_name,
                    system_kind=item.reward_system_kind,
                    points=item.points_delta,
                    stamps=item.stamps_delta,
                    transaction_type=record.transaction_type,
                )
            )
            day_systems[(day, record.shift_id)].add(
                item.reward_system_name, item.reward_system_kind, item.points_delta, item.stamps_delta
            )
            period_systems.add(
                item.reward_system_name, item.reward_system_kind, item.points_delta, item.stamps_delta
            )

        period_shift = period_shifts.get(record.shift_id)
        if period_shift is None:
            period_shift = ShiftTotals(shift_id=record.shift_id, shift_name=shift_name)
            period_shifts[record.shift_id] = period_shift
        period_shift.totals.add(points, stamps)

        branch = branches.get(record.branch_id)
        if branch is None:
            branch_name = (record.branch_name or str(record.branch_id)) if record.branch_id else branch_label
            branch = BranchSummary(branch_id=record.branch_id, branch_name=branch_name)
            branches[record.branch_id] = branch
        branch.totals.add(points, stamps)

        branch_shift = branch_shifts.get((record.branch_id, record.shift_id))
        if branch_shift is None:
            branch_shift = ShiftTotals(shift_id=record.shift_id, shift_name=shift_name)
            branch_shifts[(record.branch_id, record.shift_id)] = branch_shift
            branch.shifts.append(branch_shift)
        branch_shift.totals.add(points, stamps)

        summary.total_transactions += 1
        summary.total_points += points
        summary.total_stamps += stamps

    for (day, shift_id), accumulator in day_systems.items():
        day_shifts[day][shift_id].system_breakdown = accumulator.result()
    summary.total_days = len(daily)

    return ReportData(
        business_id=business_id,
        business_name=business_name,
        start_date=start_date,
        end_date=end_date,
        summary=summary,
        daily=list(daily.values()),
        branch_summary=list(branches.values()),
        totals_by_shift=list(period_shifts.values()),
        totals_by_system=period_systems.result(),
    )


def enforce_report_range(start: date, end: date, *, max_days: int | None = None) -> None:
    """Reject inverted ranges and ranges whose end lies more than ``max_days`` days after the start."""

    limit = settings.report_max_range_days if max_days is None else max_days
    if start > end:
        raise InvalidReportRangeError(f"Report start {start.isoformat()} is after end {end.isoformat()}")
    span = (end - start).days
    if span > limit:
        raise InvalidReportRangeError(f"Report range of {span} days exceeds the {limit}-day limit")


class ReportService:
    def __init__(self, db_session: AsyncSession) -> None:
        self._log = TransactionLog(db_session)

    async def build_report(
        self,
        business_id: UUID,
        start_date: date,
        end_date: date,
        *,
        shift_ids: Sequence[UUID] | None = None,
        types: Sequence[TransactionType] | None = None,
    ) -> ReportData:
        if start_date > end_date:
            raise InvalidReportRangeError(
                f"Report start {start_date.isoformat()} is after end {end_date.isoformat()}"
            )

        window_start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
        window_end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
        records = await self._log.scan_for_report(
            business_id, window_start, window_end, shift_ids=shift_ids, types=types
        )
        report = build_report(
            records,
            business_id=business_id,
            start_date=start_date,
            end_date=end_date,
        )
        logger.info(
            "Built loyalty report",
            business_id=str(business_id),
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            transactions=report.summary.total_transactions,
            days=report.summary.total_days,
        )
        return report


__all__ = [
    "BranchSummary",
    "DailyReport",
    "ReportData",
    "ReportService",
    "ReportSummary",
    "ReportTotals",
    "ShiftSummary",
    "ShiftTotals",
    "SystemBreakdown",
    "TransactionDetail",
    "build_report",
    "enforce_report_range",
]
