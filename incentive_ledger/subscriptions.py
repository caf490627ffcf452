"""
Subscription lifecycle.

A payment moves PENDING -> VERIFIED or PENDING -> REJECTED exactly once.
Verification activates the subscription and, in the same unit of work, grants
a spin, credits the referrer with a successful invite plus one task step, and
pays referral commissions on the payment amount. Expiry is never stored: an
account is active only while ``subscription_expires_at`` lies in the future.
"""

from datetime import datetime, timedelta
from typing import Optional

from .errors import InvalidStateTransitionError
from .logging_config import get_logger
from .models import (
    Account,
    CommissionPayout,
    Payment,
    PaymentStatus,
    SubscriptionState,
    SubscriptionTier,
)
from .referrals import CommissionDistributor, ReferralGraph
from .storage import UnitOfWork
from .tasks import TaskProgressMachine

logger = get_logger(__name__)

PAYABLE_TIERS = (SubscriptionTier.BASIC, SubscriptionTier.PRO, SubscriptionTier.VIP)


def is_subscription_active(account: Account, now: datetime) -> bool:
    return bool(
        account.subscription_active
        and account.subscription_expires_at is not None
        and account.subscription_expires_at > now
    )


def subscription_state(account: Account, now: datetime) -> SubscriptionState:
    if is_subscription_active(account, now):
        return SubscriptionState.ACTIVE
    if account.subscription_expires_at is not None:
        return SubscriptionState.EXPIRED
    return SubscriptionState.UNSUBSCRIBED


class SubscriptionLifecycle:
    def __init__(
        self,
        tasks: TaskProgressMachine,
        commissions: CommissionDistributor,
        duration: timedelta = timedelta(days=30),
    ):
        self.tasks = tasks
        self.commissions = commissions
        self.duration = duration

    def verify(
        self,
        unit: UnitOfWork,
        payment: Payment,
        verified_by: str,
    ) -> tuple[Account, list[CommissionPayout]]:
        self._require_pending(payment, "verify")
        now = unit.now
        account = unit.get_account(payment.account_id)

        payment.status = PaymentStatus.VERIFIED
        payment.verified_at = now
        payment.verified_by = verified_by

        account.subscription_tier = payment.tier
        account.subscription_active = True
        account.subscription_expires_at = now + self.duration
        account.extra_spins += 1

        referrer = ReferralGraph(unit).parent_of(account)
        if referrer is not None:
            referrer.successful_invites += 1
            self.tasks.increment(unit, referrer)

        payouts = self.commissions.distribute(
            unit, account, payment.amount, source=f"{payment.tier.value} subscription"
        )

        logger.info(
            "payment_verified",
            payment_id=str(payment.id),
            account_id=str(account.id),
            tier=payment.tier.value,
            amount=str(payment.amount),
            verified_by=verified_by,
            referrer_id=str(referrer.id) if referrer else None,
            commissions=len(payouts),
        )
        return account, payouts

    def reject(
        self,
        unit: UnitOfWork,
        payment: Payment,
        reason: str,
        rejected_by: Optional[str] = None,
    ) -> Payment:
        self._require_pending(payment, "reject")

        payment.status = PaymentStatus.REJECTED
        payment.rejected_at = unit.now
        payment.rejected_by = rejected_by
        payment.rejection_reason = reason

        logger.info(
            "payment_rejected",
            payment_id=str(payment.id),
            account_id=str(payment.account_id),
            reason=reason,
            rejected_by=rejected_by,
        )
        return payment

    @staticmethod
    def _require_pending(payment: Payment, action: str) -> None:
        if not payment.is_pending():
            raise InvalidStateTransitionError(
                f"Cannot {action} payment {payment.id} in {payment.status.value} state"
            )
