"""
Incentive Ledger for a referral-driven rewards platform

This module provides:
- Append-only transactions as the only way a balance changes
- A repeating 0..6 task cycle with table-driven rewards
- Two-level referral commissions on verified subscription payments
- Spin entitlements derived from subscriptions, invites and grants
- Atomic, optimistically locked state transitions under concurrency
"""

from .errors import (
    LedgerServiceError,
    NotFoundError,
    InvalidStateTransitionError,
    InsufficientBalanceError,
    InsufficientSpinsError,
    LedgerValidationError,
    ConcurrencyConflictError,
    PermissionDeniedError,
)
from .models import (
    Account,
    AccountView,
    SubscriptionStatus,
    Transaction,
    TransactionCategory,
    Payment,
    PaymentStatus,
    Withdrawal,
    WithdrawalStatus,
    SubscriptionTier,
    SpinOutcome,
)
from .rewards import RewardCalculator, reward
from .service import LedgerService

__all__ = [
    "Account",
    "AccountView",
    "SubscriptionStatus",
    "Transaction",
    "TransactionCategory",
    "Payment",
    "PaymentStatus",
    "Withdrawal",
    "WithdrawalStatus",
    "SubscriptionTier",
    "SpinOutcome",
    "RewardCalculator",
    "reward",
    "LedgerService",
    "LedgerServiceError",
    "NotFoundError",
    "InvalidStateTransitionError",
    "InsufficientBalanceError",
    "InsufficientSpinsError",
    "LedgerValidationError",
    "ConcurrencyConflictError",
    "PermissionDeniedError",
]
