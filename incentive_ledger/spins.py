from datetime import datetime
from decimal import Decimal

from .errors import InsufficientSpinsError, LedgerValidationError
from .logging_config import get_logger
from .models import Account, SpinOutcome, TransactionCategory
from .storage import UnitOfWork
from .subscriptions import is_subscription_active

logger = get_logger(__name__)


class SpinAllocator:
    def __init__(self, invites_per_bonus_spin: int = 3):
        self.invites_per_bonus_spin = invites_per_bonus_spin

    def available_spins(self, account: Account, now: datetime) -> int:
        """Spins held right now; derived from the raw counters, never stored."""
        subscription_bonus = 1 if is_subscription_active(account, now) else 0
        invite_bonus = account.successful_invites // self.invites_per_bonus_spin
        return max(0, subscription_bonus + invite_bonus + account.extra_spins - account.spins_used)

    def spend(
        self,
        unit: UnitOfWork,
        account: Account,
        outcome: SpinOutcome,
        prize_amount: Decimal = Decimal("0.00"),
    ) -> int:
        if outcome == SpinOutcome.CASH_PRIZE and prize_amount <= 0:
            raise LedgerValidationError("A cash prize must have a positive amount")
        if outcome != SpinOutcome.CASH_PRIZE and prize_amount:
            raise LedgerValidationError(f"Outcome {outcome.value} does not carry a prize amount")

        if self.available_spins(account, unit.now) <= 0:
            raise InsufficientSpinsError(f"Account {account.id} has no spins available")

        account.spins_used += 1
        if outcome == SpinOutcome.CASH_PRIZE:
            unit.post_transaction(
                account,
                prize_amount,
                TransactionCategory.SPIN_PRIZE,
                "Spin cash prize",
                metadata={"outcome": outcome.value},
            )
        elif outcome == SpinOutcome.BONUS_SPIN:
            account.extra_spins += 1

        remaining = self.available_spins(account, unit.now)
        logger.info(
            "spin_spent",
            account_id=str(account.id),
            outcome=outcome.value,
            prize=str(prize_amount),
            available_spins=remaining,
        )
        return remaining
