"""
Task progress cycle.

Each account carries a repeating 0..6 counter. Reaching 6 completes the task
immediately: the tier's full reward is credited, ``completed_tasks`` grows and
the counter returns to 0. From 2 upwards the holder may claim early for the
reward of the current level.
"""

from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from .errors import InvalidStateTransitionError, LedgerValidationError
from .logging_config import get_logger
from .models import MAX_INCREMENT_STEPS, MAX_TASK_PROGRESS, Account, TransactionCategory
from .rewards import MIN_CLAIM_PROGRESS, RewardCalculator
from .storage import UnitOfWork

logger = get_logger(__name__)


class TaskPhase(str, Enum):
    IDLE = "IDLE"
    ACCUMULATING = "ACCUMULATING"
    READY_TO_COMPLETE = "READY_TO_COMPLETE"


def phase_of(progress: int) -> TaskPhase:
    if progress <= 0:
        return TaskPhase.IDLE
    if progress >= MAX_TASK_PROGRESS:
        return TaskPhase.READY_TO_COMPLETE
    return TaskPhase.ACCUMULATING


# Called with (unit, account, reward) after a task reward is credited
RewardHook = Callable[[UnitOfWork, Account, Decimal], None]


class TaskProgressMachine:
    def __init__(self, calculator: RewardCalculator, on_reward: Optional[RewardHook] = None):
        self.calculator = calculator
        self.on_reward = on_reward

    def increment(self, unit: UnitOfWork, account: Account, steps: int = 1) -> list[Decimal]:
        """Advance progress by ``steps``, auto-completing every time it hits 6.

        Returns the rewards credited along the way.
        """
        if not 1 <= steps <= MAX_INCREMENT_STEPS:
            raise LedgerValidationError(
                f"Progress increments must be between 1 and {MAX_INCREMENT_STEPS} steps, got {steps}"
            )

        credited = []
        for _ in range(steps):
            account.current_task_progress = min(account.current_task_progress + 1, MAX_TASK_PROGRESS)
            if phase_of(account.current_task_progress) == TaskPhase.READY_TO_COMPLETE:
                credited.append(self._complete(unit, account, "Task cycle completed"))
        return credited

    def claim(self, unit: UnitOfWork, account: Account) -> Decimal:
        progress = account.current_task_progress
        if progress < MIN_CLAIM_PROGRESS:
            raise InvalidStateTransitionError(
                f"Cannot claim task reward at progress {progress}; at least {MIN_CLAIM_PROGRESS} is required"
            )
        return self._complete(unit, account, f"Task reward claimed at progress {progress}")

    def _complete(self, unit: UnitOfWork, account: Account, description: str) -> Decimal:
        progress = account.current_task_progress
        amount = self.calculator.reward(account.subscription_tier, progress)

        if amount > 0:
            unit.post_transaction(
                account,
                amount,
                TransactionCategory.TASK_REWARD,
                description,
                metadata={"progress": progress, "tier": account.subscription_tier.value},
            )
        account.completed_tasks += 1
        account.current_task_progress = 0

        logger.info(
            "task_reward_credited",
            account_id=str(account.id),
            progress=progress,
            tier=account.subscription_tier.value,
            reward=str(amount),
            completed_tasks=account.completed_tasks,
        )

        if self.on_reward and amount > 0:
            self.on_reward(unit, account, amount)
        return amount
