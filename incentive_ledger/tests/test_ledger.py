"""
Unit Tests for the Ledger Service

Tests cover:
1. Task progress increments and auto-complete
2. Early reward claims
3. Withdrawal reservation, approval and refund
4. Manual adjustments and admin checks
5. Transaction history and reviews
"""

import pytest
from decimal import Decimal
from uuid import UUID

from incentive_ledger.errors import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    LedgerValidationError,
    PermissionDeniedError,
    WithdrawalNotFoundError,
)
from incentive_ledger.models import MAX_INCREMENT_STEPS, SubscriptionTier, TransactionCategory, WithdrawalStatus
from incentive_ledger.tasks import TaskPhase, phase_of


MISSING_ID = UUID("00000000-0000-0000-0000-000000000000")


def fund(service, account_id, amount):
    return service.adjust_balance(account_id, Decimal(amount), "Test funding", is_admin=True)


class TestTaskProgress:
    """Tests for the task progress cycle."""

    def test_increment_accumulates(self, service):
        account = service.register_account("alice")

        account = service.increment_task_progress(account.id, is_admin=True)
        assert account.current_task_progress == 1
        assert phase_of(account.current_task_progress) == TaskPhase.ACCUMULATING

        account = service.increment_task_progress(account.id, 3, is_admin=True)
        assert account.current_task_progress == 4
        assert account.balance == Decimal("0.00")

    def test_reaching_six_auto_completes(self, service):
        account = service.register_account("alice")
        service.increment_task_progress(account.id, 5, is_admin=True)

        account = service.increment_task_progress(account.id, is_admin=True)

        assert account.current_task_progress == 0
        assert phase_of(account.current_task_progress) == TaskPhase.IDLE
        assert account.completed_tasks == 1
        assert account.balance == Decimal("2.50")  # NONE tier full-cycle reward

        history = service.get_transaction_history(account.id)
        assert [e.category for e in history.entries] == [TransactionCategory.TASK_REWARD]

    def test_vip_completion_example(self, service, subscribe):
        """VIP at progress 5 completes with +35 and leaves the referrer's invites alone."""
        referrer = service.register_account("referrer")
        account = service.register_account("vip", referred_by_code=referrer.referral_code)
        subscribe(account.id, SubscriptionTier.VIP, Decimal("100.00"))
        service.increment_task_progress(account.id, 5, is_admin=True)
        referrer_before = service.get_account(referrer.id)

        account = service.increment_task_progress(account.id, is_admin=True)

        assert account.current_task_progress == 0
        assert account.completed_tasks == 1
        assert account.balance == Decimal("35.00")
        referrer_after = service.get_account(referrer.id)
        assert referrer_after.successful_invites == referrer_before.successful_invites
        assert referrer_after.balance == referrer_before.balance

    def test_multi_step_increment_can_complete_twice(self, service):
        account = service.register_account("alice")

        account = service.increment_task_progress(account.id, 12, is_admin=True)

        assert account.completed_tasks == 2
        assert account.current_task_progress == 0
        assert account.balance == Decimal("5.00")

    def test_non_positive_steps_rejected(self, service):
        account = service.register_account("alice")
        with pytest.raises(LedgerValidationError):
            service.increment_task_progress(account.id, 0, is_admin=True)

    def test_oversized_increment_rejected(self, service):
        account = service.register_account("alice")
        with pytest.raises(LedgerValidationError):
            service.increment_task_progress(account.id, MAX_INCREMENT_STEPS + 1, is_admin=True)

        account = service.get_account(account.id)
        assert account.completed_tasks == 0
        assert account.balance == Decimal("0.00")

    def test_increment_requires_admin(self, service):
        account = service.register_account("alice")
        with pytest.raises(PermissionDeniedError):
            service.increment_task_progress(account.id, is_admin=False)
        assert service.get_account(account.id).current_task_progress == 0

    def test_increment_unknown_account(self, service):
        with pytest.raises(AccountNotFoundError):
            service.increment_task_progress(MISSING_ID, is_admin=True)


class TestClaimTaskReward:
    """Tests for early reward claims."""

    def test_claim_below_threshold_fails(self, service):
        account = service.register_account("alice")
        service.increment_task_progress(account.id, is_admin=True)

        with pytest.raises(InvalidStateTransitionError):
            service.claim_task_reward(account.id)

        account = service.get_account(account.id)
        assert account.current_task_progress == 1
        assert account.balance == Decimal("0.00")

    def test_claim_at_four_pays_level_three_reward(self, service, subscribe):
        account = service.register_account("alice")
        subscribe(account.id, SubscriptionTier.PRO)
        service.increment_task_progress(account.id, 4, is_admin=True)

        result = service.claim_task_reward(account.id)

        assert result.reward == Decimal("8.00")
        assert result.new_balance == Decimal("8.00")
        assert result.account.current_task_progress == 0
        assert result.account.completed_tasks == 1

    def test_claim_twice_fails_second_time(self, service):
        account = service.register_account("alice")
        service.increment_task_progress(account.id, 2, is_admin=True)
        service.claim_task_reward(account.id)

        with pytest.raises(InvalidStateTransitionError):
            service.claim_task_reward(account.id)
        assert service.get_account(account.id).balance == Decimal("0.50")


class TestWithdrawals:
    """Tests for the withdrawal flow."""

    def test_request_reserves_balance(self, service):
        account = service.register_account("alice")
        fund(service, account.id, "50.00")

        withdrawal = service.request_withdrawal(account.id, Decimal("20.00"), "wallet-123")

        assert withdrawal.status == WithdrawalStatus.PENDING
        assert service.get_account(account.id).balance == Decimal("30.00")

    def test_request_exceeding_balance_fails(self, service):
        account = service.register_account("alice")
        fund(service, account.id, "10.00")

        with pytest.raises(InsufficientBalanceError):
            service.request_withdrawal(account.id, Decimal("10.01"), "wallet-123")

        assert service.get_account(account.id).balance == Decimal("10.00")
        assert service.get_transaction_history(account.id).total_count == 1

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), "abc"])
    def test_invalid_amount_rejected(self, service, amount):
        account = service.register_account("alice")
        with pytest.raises(LedgerValidationError):
            service.request_withdrawal(account.id, amount, "wallet-123")

    def test_reject_refunds_exactly_once(self, service):
        account = service.register_account("alice")
        fund(service, account.id, "50.00")
        withdrawal = service.request_withdrawal(account.id, Decimal("20.00"), "wallet-123")

        rejected = service.resolve_withdrawal(withdrawal.id, False, resolved_by="admin", is_admin=True)
        assert rejected.status == WithdrawalStatus.REJECTED
        assert service.get_account(account.id).balance == Decimal("50.00")

        with pytest.raises(InvalidStateTransitionError):
            service.resolve_withdrawal(withdrawal.id, False, is_admin=True)
        assert service.get_account(account.id).balance == Decimal("50.00")

        refunds = [
            e for e in service.get_transaction_history(account.id).entries
            if e.category == TransactionCategory.WITHDRAWAL_REFUND
        ]
        assert len(refunds) == 1
        assert refunds[0].amount == Decimal("20.00")

    def test_approved_withdrawal_cannot_be_rejected(self, service):
        account = service.register_account("alice")
        fund(service, account.id, "50.00")
        withdrawal = service.request_withdrawal(account.id, Decimal("20.00"), "wallet-123")

        approved = service.resolve_withdrawal(withdrawal.id, True, is_admin=True)
        assert approved.status == WithdrawalStatus.APPROVED

        with pytest.raises(InvalidStateTransitionError):
            service.resolve_withdrawal(withdrawal.id, False, is_admin=True)
        assert service.get_account(account.id).balance == Decimal("30.00")

    def test_resolve_unknown_withdrawal(self, service):
        with pytest.raises(WithdrawalNotFoundError):
            service.resolve_withdrawal(MISSING_ID, True, is_admin=True)

    def test_resolve_requires_admin(self, service):
        account = service.register_account("alice")
        fund(service, account.id, "50.00")
        withdrawal = service.request_withdrawal(account.id, Decimal("20.00"), "wallet-123")

        with pytest.raises(PermissionDeniedError):
            service.resolve_withdrawal(withdrawal.id, False, is_admin=False)


class TestManualAdjustments:
    """Tests for admin balance adjustments."""

    def test_debit_beyond_balance_is_rejected_not_clamped(self, service):
        account = service.register_account("alice")
        fund(service, account.id, "5.00")

        with pytest.raises(InsufficientBalanceError):
            service.adjust_balance(account.id, Decimal("-6.00"), "Correction", is_admin=True)
        assert service.get_account(account.id).balance == Decimal("5.00")

    def test_zero_adjustment_rejected(self, service):
        account = service.register_account("alice")
        with pytest.raises(LedgerValidationError):
            service.adjust_balance(account.id, Decimal("0"), "Nothing", is_admin=True)

    def test_adjustment_requires_admin(self, service):
        account = service.register_account("alice")
        with pytest.raises(PermissionDeniedError):
            service.adjust_balance(account.id, Decimal("5"), "Gift", is_admin=False)


class TestTransactionHistory:
    """Tests for the audit trail."""

    def test_balance_matches_sum_of_transactions(self, service):
        account = service.register_account("alice")
        fund(service, account.id, "40.00")
        service.increment_task_progress(account.id, 6, is_admin=True)
        withdrawal = service.request_withdrawal(account.id, Decimal("15.00"), "wallet-1")
        service.resolve_withdrawal(withdrawal.id, False, is_admin=True)
        service.request_withdrawal(account.id, Decimal("10.00"), "wallet-2")

        history = service.get_transaction_history(account.id)

        assert history.total_count == 5
        assert sum(e.amount for e in history.entries) == history.current_balance
        assert history.current_balance == Decimal("32.50")

    def test_history_pagination(self, service):
        account = service.register_account("alice")
        for _ in range(3):
            fund(service, account.id, "1.00")

        history = service.get_transaction_history(account.id, limit=2, offset=0)

        assert history.total_count == 3
        assert len(history.entries) == 2


class TestReviews:
    """Tests for account reviews."""

    def test_submit_review(self, service):
        account = service.register_account("alice")

        review = service.submit_review(account.id, 5, "Great payouts")

        assert review.rating == 5
        assert review.username == "alice"

    @pytest.mark.parametrize("rating", [0, 6, True, "5"])
    def test_out_of_range_rating_rejected(self, service, rating):
        account = service.register_account("alice")
        with pytest.raises(LedgerValidationError):
            service.submit_review(account.id, rating, "Hmm")

    def test_one_review_per_account(self, service):
        account = service.register_account("alice")
        service.submit_review(account.id, 4, "Good")

        with pytest.raises(LedgerValidationError):
            service.submit_review(account.id, 2, "Changed my mind")

    def test_comment_length_limit(self, service):
        account = service.register_account("alice")
        with pytest.raises(LedgerValidationError):
            service.submit_review(account.id, 3, "x" * 501)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
