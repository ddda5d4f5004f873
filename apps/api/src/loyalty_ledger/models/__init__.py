"""SQLAlchemy models package."""

from .ledger import LedgerAccount, LedgerBusinessBalance, LedgerSystemBalance  # noqa: F401
from .redemption_code import RedemptionCode  # noqa: F401
from .reward import LoyaltyReward, RewardValueKind  # noqa: F401
from .reward_system import ProductScope, RewardSystem, RewardSystemKind  # noqa: F401
from .transaction import LoyaltyTransaction, LoyaltyTransactionItem, TransactionType  # noqa: F401
