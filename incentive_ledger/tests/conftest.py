from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from incentive_ledger.models import SubscriptionTier
from incentive_ledger.service import LedgerService
from incentive_ledger.settings import Settings


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return Settings(
        commission_rate=Decimal("0.10"),
        commission_levels=2,
        commission_on_task_rewards=False,
        subscription_duration_days=30,
        invites_per_bonus_spin=3,
        max_commit_retries=50,
        reward_table=None,
    )


@pytest.fixture
def service(config, clock):
    return LedgerService(config=config, clock=clock)


@pytest.fixture
def subscribe(service):
    """Submit and verify a payment, returning the verification result."""
    counter = {"n": 0}

    def _subscribe(account_id, tier=SubscriptionTier.VIP, amount=Decimal("100.00")):
        counter["n"] += 1
        payment = service.submit_payment(account_id, tier, amount, f"TX-{counter['n']:05d}")
        return service.verify_payment(payment.id, "admin@test.com", is_admin=True)

    return _subscribe
