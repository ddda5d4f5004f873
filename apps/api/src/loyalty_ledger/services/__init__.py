"""Loyalty ledger service exports."""

from .errors import *  # noqa: F401,F403
from .ledger import BusinessBalance, LedgerEntry, LedgerStore, SystemBalance, calculate_points  # noqa: F401
from .loyalty import BalanceChange, BranchRef, LoyaltyService, ShiftRef, StampGrant  # noqa: F401
from .redemption_codes import ClaimResult, RedemptionCodeEngine  # noqa: F401
from .reporting import ReportData, ReportService, build_report, enforce_report_range  # noqa: F401
from .reward_systems import RewardSystemRegistry  # noqa: F401
from .rewards import RewardCatalog  # noqa: F401
from .transactions import (  # noqa: F401
    TransactionDraft,
    TransactionFilters,
    TransactionItemDraft,
    TransactionLog,
    TransactionRecord,
    UserTransactionStats,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)
