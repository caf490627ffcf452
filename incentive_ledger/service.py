import random
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, TypeVar
from uuid import UUID, uuid4

from .errors import (
    ConcurrencyConflictError,
    DuplicateReferralCodeError,
    InvalidStateTransitionError,
    LedgerServiceError,
    LedgerValidationError,
    PermissionDeniedError,
)
from .logging_config import get_logger
from .models import (
    Account,
    AccountView,
    ClaimResult,
    Payment,
    PaymentStatus,
    ReferralStats,
    Review,
    SpinOutcome,
    SpinResult,
    SubscriptionStatus,
    SubscriptionTier,
    TransactionCategory,
    TransactionHistory,
    VerificationResult,
    Withdrawal,
    WithdrawalStatus,
)
from .referrals import CommissionDistributor, generate_referral_code, referred_accounts
from .rewards import RewardCalculator
from .settings import Settings, settings as default_settings
from .spins import SpinAllocator
from .storage import InMemoryStorage, UnitOfWork
from .subscriptions import PAYABLE_TIERS, SubscriptionLifecycle, is_subscription_active, subscription_state
from .tasks import TaskProgressMachine

logger = get_logger(__name__)

T = TypeVar("T")

MAX_REVIEW_LENGTH = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_admin(is_admin: bool, action: str) -> None:
    if not is_admin:
        raise PermissionDeniedError(f"Administrator privileges required to {action}")


def _decimal(value, field: str = "amount") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise LedgerValidationError(f"Invalid {field}: {value!r}")
    if not amount.is_finite():
        raise LedgerValidationError(f"Invalid {field}: {value!r}")
    return amount


def _positive_amount(value, field: str = "amount") -> Decimal:
    amount = _decimal(value, field)
    if amount <= 0:
        raise LedgerValidationError(f"{field.capitalize()} must be a positive number, got {value}")
    return amount


class LedgerService:
    """Single entry point for every incentive state transition.

    Each mutating call runs inside a fresh :class:`UnitOfWork` that is
    committed atomically. A commit that loses an optimistic-lock race is
    retried from scratch, re-reading state, up to ``max_commit_retries``
    times.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        config: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.settings = config or default_settings
        self.clock = clock or _utcnow

        self.calculator = RewardCalculator(self.settings.reward_table)
        self.commissions = CommissionDistributor(
            rate=self.settings.commission_rate,
            levels=self.settings.commission_levels,
        )
        on_reward = self._commission_on_task_reward if self.settings.commission_on_task_rewards else None
        self.tasks = TaskProgressMachine(self.calculator, on_reward=on_reward)
        self.spins = SpinAllocator(self.settings.invites_per_bonus_spin)
        self.subscriptions = SubscriptionLifecycle(
            self.tasks,
            self.commissions,
            duration=timedelta(days=self.settings.subscription_duration_days),
        )

    # Accounts

    def register_account(self, username: str, referred_by_code: Optional[str] = None) -> Account:
        username = (username or "").strip()
        if not username:
            raise LedgerValidationError("Username is required")
        code_ref = referred_by_code.strip().upper() if referred_by_code else None

        for _ in range(self.settings.referral_code_max_attempts):
            code = generate_referral_code(self.settings.referral_code_length)
            if self.storage.referral_code_exists(code):
                continue

            def work(unit: UnitOfWork) -> Account:
                referrer = None
                if code_ref:
                    referrer = unit.find_account_by_referral_code(code_ref)
                    if referrer is None:
                        raise LedgerValidationError(f"Unknown referral code {code_ref}")
                    referrer.total_invites += 1
                return unit.add_account(Account(
                    id=uuid4(),
                    username=username,
                    referral_code=code,
                    referred_by_code=code_ref,
                    created_at=unit.now,
                ))

            try:
                account = self._run("register_account", work)
            except DuplicateReferralCodeError:
                continue

            logger.info(
                "account_registered",
                account_id=str(account.id),
                referral_code=account.referral_code,
                referred_by_code=code_ref,
            )
            return account

        raise LedgerServiceError("Could not allocate a unique referral code")

    def get_account(self, account_id: UUID) -> Account:
        return UnitOfWork(self.storage, self.clock()).get_account(account_id)

    def get_account_view(self, account_id: UUID) -> AccountView:
        return self.account_view(self.get_account(account_id))

    def account_view(self, account: Account) -> AccountView:
        """Resolve subscription expiry and spins against the current clock."""
        now = self.clock()
        return AccountView(
            **account.model_dump(exclude={"subscription_active"}),
            subscription_active=is_subscription_active(account, now),
            subscription_state=subscription_state(account, now),
            available_spins=self.spins.available_spins(account, now),
        )

    # Task progress

    def increment_task_progress(self, account_id: UUID, steps: int = 1, *, is_admin: bool) -> Account:
        _require_admin(is_admin, "adjust task progress")

        def work(unit: UnitOfWork) -> Account:
            account = unit.get_account(account_id)
            self.tasks.increment(unit, account, steps)
            return account

        return self._run("increment_task_progress", work)

    def claim_task_reward(self, account_id: UUID) -> ClaimResult:
        def work(unit: UnitOfWork) -> ClaimResult:
            account = unit.get_account(account_id)
            reward = self.tasks.claim(unit, account)
            return ClaimResult(reward=reward, new_balance=account.balance, account=account)

        return self._run("claim_task_reward", work)

    # Payments and subscriptions

    def submit_payment(
        self,
        account_id: UUID,
        tier: SubscriptionTier,
        amount: Decimal,
        reference: str,
    ) -> Payment:
        if tier not in PAYABLE_TIERS:
            raise LedgerValidationError(f"Tier {tier} cannot be purchased")
        amount = _positive_amount(amount)
        reference = (reference or "").strip()
        if not reference:
            raise LedgerValidationError("Payment reference is required")

        def work(unit: UnitOfWork) -> Payment:
            unit.get_account(account_id)
            return unit.add_payment(Payment(
                id=uuid4(),
                account_id=account_id,
                tier=tier,
                amount=amount,
                reference=reference,
                created_at=unit.now,
            ))

        payment = self._run("submit_payment", work)
        logger.info(
            "payment_submitted",
            payment_id=str(payment.id),
            account_id=str(account_id),
            tier=tier.value,
            amount=str(amount),
        )
        return payment

    def verify_payment(self, payment_id: UUID, verified_by: str, *, is_admin: bool) -> VerificationResult:
        _require_admin(is_admin, "verify payments")

        def work(unit: UnitOfWork) -> VerificationResult:
            payment = unit.get_payment(payment_id)
            account, payouts = self.subscriptions.verify(unit, payment, verified_by)
            return VerificationResult(account=account, payment=payment, commissions=payouts)

        return self._run("verify_payment", work)

    def reject_payment(
        self,
        payment_id: UUID,
        reason: str,
        *,
        rejected_by: Optional[str] = None,
        is_admin: bool,
    ) -> Payment:
        _require_admin(is_admin, "reject payments")
        if not reason or not reason.strip():
            raise LedgerValidationError("A rejection reason is required")

        def work(unit: UnitOfWork) -> Payment:
            payment = unit.get_payment(payment_id)
            return self.subscriptions.reject(unit, payment, reason.strip(), rejected_by)

        return self._run("reject_payment", work)

    def get_subscription_status(self, account_id: UUID) -> SubscriptionStatus:
        now = self.clock()
        account = UnitOfWork(self.storage, now).get_account(account_id)
        return SubscriptionStatus(
            account_id=account.id,
            tier=account.subscription_tier,
            state=subscription_state(account, now),
            active=is_subscription_active(account, now),
            expires_at=account.subscription_expires_at,
        )

    def list_payments(self, status: Optional[PaymentStatus] = None, *, is_admin: bool) -> list[Payment]:
        _require_admin(is_admin, "list payments")
        return self.storage.list_payments(status)

    # Withdrawals

    def request_withdrawal(self, account_id: UUID, amount: Decimal, wallet: str) -> Withdrawal:
        amount = _positive_amount(amount)
        wallet = (wallet or "").strip()
        if not wallet:
            raise LedgerValidationError("Destination wallet is required")

        def work(unit: UnitOfWork) -> Withdrawal:
            account = unit.get_account(account_id)
            withdrawal = unit.add_withdrawal(Withdrawal(
                id=uuid4(),
                account_id=account_id,
                amount=amount,
                wallet=wallet,
                created_at=unit.now,
            ))
            unit.post_transaction(
                account,
                -amount,
                TransactionCategory.WITHDRAWAL,
                f"Withdrawal to {wallet}",
                metadata={"withdrawal_id": str(withdrawal.id)},
            )
            return withdrawal

        withdrawal = self._run("request_withdrawal", work)
        logger.info(
            "withdrawal_requested",
            withdrawal_id=str(withdrawal.id),
            account_id=str(account_id),
            amount=str(amount),
        )
        return withdrawal

    def resolve_withdrawal(
        self,
        withdrawal_id: UUID,
        approve: bool,
        *,
        resolved_by: Optional[str] = None,
        is_admin: bool,
    ) -> Withdrawal:
        _require_admin(is_admin, "resolve withdrawals")

        def work(unit: UnitOfWork) -> Withdrawal:
            withdrawal = unit.get_withdrawal(withdrawal_id)
            if not withdrawal.is_pending():
                raise InvalidStateTransitionError(
                    f"Cannot resolve withdrawal {withdrawal_id} in {withdrawal.status.value} state"
                )

            withdrawal.status = WithdrawalStatus.APPROVED if approve else WithdrawalStatus.REJECTED
            withdrawal.resolved_at = unit.now
            withdrawal.resolved_by = resolved_by
            if not approve:
                account = unit.get_account(withdrawal.account_id)
                unit.post_transaction(
                    account,
                    withdrawal.amount,
                    TransactionCategory.WITHDRAWAL_REFUND,
                    "Refund of rejected withdrawal",
                    metadata={"withdrawal_id": str(withdrawal.id)},
                )
            return withdrawal

        withdrawal = self._run("resolve_withdrawal", work)
        logger.info(
            "withdrawal_resolved",
            withdrawal_id=str(withdrawal_id),
            status=withdrawal.status.value,
            resolved_by=resolved_by,
        )
        return withdrawal

    # Spins

    def spend_spin(
        self,
        account_id: UUID,
        outcome: SpinOutcome,
        prize_amount: Decimal = Decimal("0.00"),
    ) -> SpinResult:
        prize_amount = _decimal(prize_amount, "prize amount")

        def work(unit: UnitOfWork) -> SpinResult:
            account = unit.get_account(account_id)
            remaining = self.spins.spend(unit, account, outcome, prize_amount)
            return SpinResult(balance=account.balance, available_spins=remaining, outcome=outcome)

        return self._run("spend_spin", work)

    def get_spin_summary(self, account_id: UUID) -> SpinResult:
        now = self.clock()
        account = UnitOfWork(self.storage, now).get_account(account_id)
        return SpinResult(balance=account.balance, available_spins=self.spins.available_spins(account, now))

    def grant_extra_spins(self, account_id: UUID, count: int, *, is_admin: bool) -> Account:
        _require_admin(is_admin, "grant spins")
        if count < 1:
            raise LedgerValidationError("Spin grants must be a positive count")

        def work(unit: UnitOfWork) -> Account:
            account = unit.get_account(account_id)
            account.extra_spins += count
            return account

        return self._run("grant_extra_spins", work)

    # Manual adjustments

    def adjust_balance(self, account_id: UUID, amount: Decimal, description: str, *, is_admin: bool) -> Account:
        _require_admin(is_admin, "adjust balances")
        amount = _decimal(amount)
        if amount == 0:
            raise LedgerValidationError("Adjustment amount must be a non-zero number")

        def work(unit: UnitOfWork) -> Account:
            account = unit.get_account(account_id)
            unit.post_transaction(account, amount, TransactionCategory.MANUAL_ADJUSTMENT, description)
            return account

        return self._run("adjust_balance", work)

    # Reporting

    def get_transaction_history(self, account_id: UUID, limit: int = 50, offset: int = 0) -> TransactionHistory:
        account = self.get_account(account_id)
        entries = self.storage.list_transactions(account_id)
        entries.sort(key=lambda e: e.created_at, reverse=True)

        return TransactionHistory(
            account_id=account_id,
            entries=entries[offset:offset + limit],
            total_count=len(entries),
            current_balance=account.balance,
        )

    def get_referral_stats(self, account_id: UUID) -> ReferralStats:
        account = self.get_account(account_id)
        earned = sum(
            (t.amount for t in self.storage.list_transactions(account_id)
             if t.category == TransactionCategory.REFERRAL_COMMISSION),
            Decimal("0.00"),
        )
        return ReferralStats(
            referral_code=account.referral_code,
            total_invites=account.total_invites,
            successful_invites=account.successful_invites,
            direct_referrals=len(referred_accounts(self.storage, account.referral_code)),
            commission_earned=earned,
        )

    # Reviews

    def submit_review(self, account_id: UUID, rating: int, comment: str) -> Review:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise LedgerValidationError(f"Rating must be an integer between 1 and 5, got {rating!r}")
        comment = (comment or "").strip()
        if not comment or len(comment) > MAX_REVIEW_LENGTH:
            raise LedgerValidationError(f"Comment must be between 1 and {MAX_REVIEW_LENGTH} characters")
        if self.storage.find_review_for_account(account_id):
            raise LedgerValidationError(f"Account {account_id} has already submitted a review")

        def work(unit: UnitOfWork) -> Review:
            account = unit.get_account(account_id)
            return unit.add_review(Review(
                id=uuid4(),
                account_id=account_id,
                username=account.username,
                rating=rating,
                comment=comment,
                created_at=unit.now,
            ))

        return self._run("submit_review", work)

    def _commission_on_task_reward(self, unit: UnitOfWork, account: Account, reward: Decimal) -> None:
        self.commissions.distribute(unit, account, reward, source="task reward")

    def _run(self, operation: str, work: Callable[[UnitOfWork], T]) -> T:
        attempts = self.settings.max_commit_retries
        for attempt in range(1, attempts + 1):
            unit = UnitOfWork(self.storage, self.clock())
            result = work(unit)
            try:
                unit.commit()
            except ConcurrencyConflictError:
                logger.warning("commit_conflict_retry", operation=operation, attempt=attempt)
                time.sleep(random.uniform(0, 0.002 * attempt))
                continue
            return result

        logger.error("commit_retries_exhausted", operation=operation, attempts=attempts)
        raise ConcurrencyConflictError(f"{operation} failed after {attempts} attempts due to concurrent updates")
