from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

_PENDING_KEY = "loyalty_observability_pending"


@dataclass
class LoyaltySnapshot:
    ledger: Dict[str, Dict[str, int]]
    transactions: Dict[str, int]
    redemption_codes: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "ledger": {key: dict(value) for key, value in self.ledger.items()},
            "transactions": dict(self.transactions),
            "redemption_codes": dict(self.redemption_codes),
        }


class LoyaltyObservabilityStore:
    """Collect ledger and redemption telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._ledger_mutations: Dict[str, int] = defaultdict(int)
        self._ledger_points: Dict[str, int] = defaultdict(int)
        self._ledger_stamps: Dict[str, int] = defaultdict(int)
        self._transactions: Dict[str, int] = defaultdict(int)
        self._codes: Dict[str, int] = defaultdict(int)

    def record_ledger_mutation(self, *, points_delta: int, stamps_delta: int) -> None:
        direction = "debit" if points_delta < 0 or stamps_delta < 0 else "credit"
        with self._lock:
            self._ledger_mutations[direction] += 1
            self._ledger_points[direction] += abs(points_delta)
            self._ledger_stamps[direction] += abs(stamps_delta)

    def record_ledger_rejection(self) -> None:
        with self._lock:
            self._ledger_mutations["rejected"] += 1

    def record_transaction(self, transaction_type: str) -> None:
        with self._lock:
            self._transactions[transaction_type] += 1

    def record_code_event(self, event: str) -> None:
        with self._lock:
            self._codes[event] += 1

    def record_codes_purged(self, count: int) -> None:
        with self._lock:
            self._codes["purged"] += count

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            ledger = {
                "mutations": dict(self._ledger_mutations),
                "points": dict(self._ledger_points),
                "stamps": dict(self._ledger_stamps),
            }
            transactions = dict(self._transactions)
            codes = dict(self._codes)
        return LoyaltySnapshot(ledger=ledger, transactions=transactions, redemption_codes=codes)

    def reset(self) -> None:
        with self._lock:
            self._ledger_mutations.clear()
            self._ledger_points.clear()
            self._ledger_stamps.clear()
            self._transactions.clear()
            self._codes.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


def record_on_commit(
    session: AsyncSession, record: Callable[[LoyaltyObservabilityStore], None]
) -> None:
    """Defer ``record`` until ``session`` commits; a rollback discards it."""

    session.sync_session.info.setdefault(_PENDING_KEY, []).append(record)


@event.listens_for(Session, "after_commit")
def _apply_pending(session: Session) -> None:
    for record in session.info.pop(_PENDING_KEY, []):
        record(_STORE)


@event.listens_for(Session, "after_rollback")
def _discard_pending(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot", "record_on_commit"]
