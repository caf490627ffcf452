"""
Referral graph traversal and multi-level commissions.

Each account points to at most one referrer through ``referred_by_code``, so
the graph is a forest walked parent-ward only. Commissions are credited to up
to ``levels`` ancestors within the caller's unit of work, so a chain is paid
completely or not at all.
"""

import secrets
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator, Optional

from .logging_config import get_logger
from .models import Account, CommissionPayout, TransactionCategory
from .storage import InMemoryStorage, UnitOfWork

logger = get_logger(__name__)

# No 0/O or 1/I/l, codes end up typed by hand
REFERRAL_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CENTS = Decimal("0.01")


def generate_referral_code(length: int = 8) -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length))


class ReferralGraph:
    def __init__(self, unit: UnitOfWork):
        self.unit = unit

    def parent_of(self, account: Account) -> Optional[Account]:
        return self.unit.find_account_by_referral_code(account.referred_by_code)

    def ancestors(self, account: Account, max_levels: int) -> Iterator[tuple[int, Account]]:
        """Yield ``(level, ancestor)`` pairs, nearest first.

        Stops at the root, after ``max_levels``, or on revisiting an account.
        """
        visited = {account.id}
        current = account
        for level in range(1, max_levels + 1):
            parent = self.parent_of(current)
            if parent is None:
                return
            if parent.id in visited:
                logger.warning(
                    "referral_cycle_detected",
                    account_id=str(account.id),
                    revisited_id=str(parent.id),
                    level=level,
                )
                return
            visited.add(parent.id)
            yield level, parent
            current = parent


def referred_accounts(storage: InMemoryStorage, referral_code: str) -> list[Account]:
    return storage.find_accounts_referred_by(referral_code)


class CommissionDistributor:
    def __init__(self, rate: Decimal = Decimal("0.10"), levels: int = 2):
        self.rate = Decimal(str(rate))
        self.levels = levels

    def commission_for(self, base_amount: Decimal) -> Decimal:
        return (Decimal(base_amount) * self.rate).quantize(CENTS, rounding=ROUND_HALF_UP)

    def distribute(
        self,
        unit: UnitOfWork,
        account: Account,
        base_amount: Decimal,
        source: str = "payment",
    ) -> list[CommissionPayout]:
        amount = self.commission_for(base_amount)
        if amount <= 0:
            return []

        payouts = []
        for level, ancestor in ReferralGraph(unit).ancestors(account, self.levels):
            transaction = unit.post_transaction(
                ancestor,
                amount,
                TransactionCategory.REFERRAL_COMMISSION,
                f"Level {level} commission from {account.username} ({source})",
                metadata={
                    "level": level,
                    "source_account_id": str(account.id),
                    "base_amount": str(base_amount),
                    "source": source,
                },
            )
            payouts.append(CommissionPayout(
                level=level,
                account_id=ancestor.id,
                amount=amount,
                transaction_id=transaction.id,
            ))
            logger.info(
                "commission_paid",
                level=level,
                beneficiary_id=str(ancestor.id),
                source_account_id=str(account.id),
                amount=str(amount),
            )
        return payouts
