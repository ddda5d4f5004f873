"""Typed failures raised by the loyalty core.

Every exception carries a stable ``code`` so a request layer can map it to
its own presentation without string matching on messages.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID


class LoyaltyError(RuntimeError):
    """Base exception for loyalty ledger failures."""

    code = "loyalty_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class InvalidConfigError(LoyaltyError):
    """Raised when a reward system or reward definition is malformed."""

    code = "invalid_config"

    def __init__(self, message: str, fields: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.fields = list(fields)


class RewardSystemNotFoundError(LoyaltyError):
    code = "reward_system_not_found"

    def __init__(self, system_id: UUID, business_id: UUID) -> None:
        super().__init__(f"Reward system {system_id} not found for business {business_id}")
        self.system_id = system_id
        self.business_id = business_id


class InvalidGrantError(LoyaltyError):
    """Raised when a requested grant does not match an active system of the right kind."""

    code = "invalid_grant"

    def __init__(self, message: str, reward_system_id: UUID | None = None) -> None:
        super().__init__(message)
        self.reward_system_id = reward_system_id


class InsufficientBalanceError(LoyaltyError):
    """Raised when a delta would drive a balance below zero."""

    code = "insufficient_balance"

    def __init__(
        self,
        user_id: UUID,
        business_id: UUID,
        reward_system_id: UUID,
        *,
        points_delta: int = 0,
        stamps_delta: int = 0,
    ) -> None:
        super().__init__(
            f"Insufficient balance on reward system {reward_system_id} "
            f"(points {points_delta:+d}, stamps {stamps_delta:+d})"
        )
        self.user_id = user_id
        self.business_id = business_id
        self.reward_system_id = reward_system_id
        self.points_delta = points_delta
        self.stamps_delta = stamps_delta


class NothingToCreditError(LoyaltyError):
    code = "nothing_to_credit"


class InconsistentTransactionError(LoyaltyError):
    """Raised when transaction items are empty or do not sum to the totals."""

    code = "inconsistent_transaction"


class TransactionNotFoundError(LoyaltyError):
    code = "transaction_not_found"

    def __init__(self, transaction_id: UUID) -> None:
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class RewardNotFoundError(LoyaltyError):
    code = "reward_not_found"

    def __init__(self, reward_id: UUID, business_id: UUID) -> None:
        super().__init__(f"Reward {reward_id} not found for business {business_id}")
        self.reward_id = reward_id
        self.business_id = business_id


class InvalidReportRangeError(LoyaltyError):
    code = "invalid_report_range"


class RedemptionCodeError(LoyaltyError):
    """Base exception for redemption code lifecycle failures."""

    code = "redemption_code_error"


class CodeNotFoundError(RedemptionCodeError):
    code = "code_not_found"

    def __init__(self, code_value: str) -> None:
        super().__init__(f"Redemption code {code_value!r} does not exist")
        self.code_value = code_value


class CodeAlreadyRedeemedError(RedemptionCodeError):
    code = "code_already_redeemed"

    def __init__(self, code_value: str) -> None:
        super().__init__(f"Redemption code {code_value!r} was already redeemed")
        self.code_value = code_value


class CodeExpiredError(RedemptionCodeError):
    code = "code_expired"

    def __init__(self, code_value: str) -> None:
        super().__init__(f"Redemption code {code_value!r} has expired")
        self.code_value = code_value


class NoActiveRewardSystemsError(RedemptionCodeError):
    """Raised at claim time when none of the code's reward systems are still active."""

    code = "no_active_reward_systems"


class NoRewardSystemsFoundError(RedemptionCodeError):
    """Raised at generation time when the code would credit nothing."""

    code = "no_reward_systems_found"


class CodeGenerationExhaustedError(RedemptionCodeError):
    code = "code_generation_exhausted"


__all__ = [
    "CodeAlreadyRedeemedError",
    "CodeExpiredError",
    "CodeGenerationExhaustedError",
    "CodeNotFoundError",
    "InconsistentTransactionError",
    "InsufficientBalanceError",
    "InvalidConfigError",
    "InvalidGrantError",
    "InvalidReportRangeError",
    "LoyaltyError",
    "NoActiveRewardSystemsError",
    "NoRewardSystemsFoundError",
    "NothingToCreditError",
    "RedemptionCodeError",
    "RewardNotFoundError",
    "RewardSystemNotFoundError",
    "TransactionNotFoundError",
]
