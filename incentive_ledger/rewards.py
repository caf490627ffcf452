"""
Task reward table.

Rewards are defined per subscription tier at discrete progress thresholds.
A progress value between thresholds earns the reward of the highest threshold
at or below it, so 4 and 5 pay the 3 reward unless a tier defines its own.
"""

from decimal import Decimal
from typing import Optional, Union

from .models import MAX_TASK_PROGRESS, SubscriptionTier

MIN_CLAIM_PROGRESS = 2

RewardTable = dict[SubscriptionTier, dict[int, Decimal]]

DEFAULT_REWARD_TABLE: RewardTable = {
    SubscriptionTier.NONE: {2: Decimal("0.50"), 3: Decimal("1.00"), 6: Decimal("2.50")},
    SubscriptionTier.BASIC: {2: Decimal("2.00"), 3: Decimal("4.00"), 6: Decimal("10.00")},
    SubscriptionTier.PRO: {2: Decimal("4.00"), 3: Decimal("8.00"), 6: Decimal("20.00")},
    SubscriptionTier.VIP: {2: Decimal("7.00"), 3: Decimal("14.00"), 6: Decimal("35.00")},
}


def normalize_tier(tier: Union[SubscriptionTier, str, None]) -> SubscriptionTier:
    if isinstance(tier, SubscriptionTier):
        return tier
    if isinstance(tier, str):
        try:
            return SubscriptionTier(tier.strip().upper())
        except ValueError:
            pass
    return SubscriptionTier.NONE


class RewardCalculator:
    def __init__(self, table: Optional[dict] = None):
        self.table: RewardTable = dict(DEFAULT_REWARD_TABLE)
        if table:
            for tier, thresholds in table.items():
                self.table[normalize_tier(tier)] = {
                    int(level): Decimal(str(amount)) for level, amount in thresholds.items()
                }

    def reward(self, tier: Union[SubscriptionTier, str, None], progress: int) -> Decimal:
        if progress < MIN_CLAIM_PROGRESS:
            return Decimal("0.00")
        progress = min(progress, MAX_TASK_PROGRESS)

        thresholds = self.table.get(normalize_tier(tier), {})
        eligible = [level for level in thresholds if level <= progress]
        if not eligible:
            return Decimal("0.00")
        return thresholds[max(eligible)]


_default_calculator = RewardCalculator()


def reward(tier: Union[SubscriptionTier, str, None], progress: int) -> Decimal:
    """Reward for ``progress`` under the default table."""
    return _default_calculator.reward(tier, progress)
