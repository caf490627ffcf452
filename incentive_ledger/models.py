from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


MAX_TASK_PROGRESS = 6
MAX_INCREMENT_STEPS = 60


class SubscriptionTier(str, Enum):
    NONE = "NONE"
    BASIC = "BASIC"
    PRO = "PRO"
    VIP = "VIP"


class TransactionCategory(str, Enum):
    TASK_REWARD = "TASK_REWARD"
    REFERRAL_COMMISSION = "REFERRAL_COMMISSION"
    WITHDRAWAL = "WITHDRAWAL"
    WITHDRAWAL_REFUND = "WITHDRAWAL_REFUND"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
    SPIN_PRIZE = "SPIN_PRIZE"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class WithdrawalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class SpinOutcome(str, Enum):
    CASH_PRIZE = "CASH_PRIZE"
    BONUS_SPIN = "BONUS_SPIN"
    NO_PRIZE = "NO_PRIZE"


class SubscriptionState(str, Enum):
    UNSUBSCRIBED = "UNSUBSCRIBED"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


class Account(BaseModel):
    id: UUID
    username: str
    referral_code: str
    referred_by_code: Optional[str] = None
    balance: Decimal = Decimal("0.00")
    current_task_progress: int = Field(default=0, ge=0, le=MAX_TASK_PROGRESS)
    completed_tasks: int = 0
    successful_invites: int = 0
    total_invites: int = 0
    extra_spins: int = 0
    spins_used: int = 0
    subscription_tier: SubscriptionTier = SubscriptionTier.NONE
    subscription_active: bool = False
    subscription_expires_at: Optional[datetime] = None
    created_at: datetime
    version: int = 0

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)


class AccountView(Account):
    """Account as seen from outside, with expiry and spins resolved at read time.

    ``subscription_active`` here is the derived value, not the stored flag.
    """

    subscription_state: SubscriptionState
    available_spins: int


class SubscriptionStatus(BaseModel):
    account_id: UUID
    tier: SubscriptionTier
    state: SubscriptionState
    active: bool
    expires_at: Optional[datetime] = None


class Transaction(BaseModel):
    id: UUID
    account_id: UUID
    amount: Decimal
    category: TransactionCategory
    balance_after: Decimal
    description: str
    created_at: datetime
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True, frozen=True)


class Payment(BaseModel):
    id: UUID
    account_id: UUID
    tier: SubscriptionTier
    amount: Decimal
    reference: str
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    version: int = 0

    model_config = ConfigDict(from_attributes=True)

    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING


class Withdrawal(BaseModel):
    id: UUID
    account_id: UUID
    amount: Decimal
    wallet: str
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    version: int = 0

    model_config = ConfigDict(from_attributes=True)

    def is_pending(self) -> bool:
        return self.status == WithdrawalStatus.PENDING


class Review(BaseModel):
    id: UUID
    account_id: UUID
    username: str
    rating: int
    comment: str
    is_active: bool = True
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommissionPayout(BaseModel):
    level: int
    account_id: UUID
    amount: Decimal
    transaction_id: UUID


class ClaimResult(BaseModel):
    reward: Decimal
    new_balance: Decimal
    account: Account


class VerificationResult(BaseModel):
    account: Account
    payment: Payment
    commissions: list[CommissionPayout] = Field(default_factory=list)


class SpinResult(BaseModel):
    balance: Decimal
    available_spins: int
    outcome: Optional[SpinOutcome] = None


class TransactionHistory(BaseModel):
    account_id: UUID
    entries: list[Transaction]
    total_count: int
    current_balance: Decimal


class ReferralStats(BaseModel):
    referral_code: str
    total_invites: int
    successful_invites: int
    direct_referrals: int
    commission_earned: Decimal


# API request bodies

class RegisterAccountRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    referred_by_code: Optional[str] = Field(default=None, description="Referral code of the inviting account")

    model_config = ConfigDict(json_schema_extra={
        "example": {"username": "alice", "referred_by_code": "ABCD2345"}
    })


class SubmitPaymentRequest(BaseModel):
    tier: SubscriptionTier
    amount: Decimal
    reference: str = Field(..., description="Externally supplied transaction reference")

    model_config = ConfigDict(json_schema_extra={
        "example": {"tier": "VIP", "amount": 100.00, "reference": "TX-2024-000123"}
    })


class VerifyPaymentRequest(BaseModel):
    verified_by: str


class RejectPaymentRequest(BaseModel):
    reason: str = Field(..., description="Reason for rejection")
    rejected_by: Optional[str] = None


class WithdrawalRequest(BaseModel):
    amount: Decimal
    wallet: str = Field(..., description="Destination wallet identifier")


class ResolveWithdrawalRequest(BaseModel):
    approve: bool
    resolved_by: Optional[str] = None


class SpendSpinRequest(BaseModel):
    outcome: SpinOutcome
    prize_amount: Decimal = Decimal("0.00")


class IncrementProgressRequest(BaseModel):
    steps: int = Field(default=1, ge=1, le=MAX_INCREMENT_STEPS)


class GrantSpinsRequest(BaseModel):
    count: int


class BalanceAdjustmentRequest(BaseModel):
    amount: Decimal
    description: str


class ReviewRequest(BaseModel):
    rating: int
    comment: str
