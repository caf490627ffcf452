"""
Account store and unit of work.

Records are kept as plain dicts keyed by id, each carrying a ``version``.
All mutations go through a :class:`UnitOfWork`: records read through it are
staged copies, and :meth:`InMemoryStorage.commit` validates every staged
version under the store lock before writing anything, so a commit is
all-or-nothing across accounts, payments, withdrawals and transactions.
"""

import threading
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .errors import (
    AccountNotFoundError,
    ConcurrencyConflictError,
    DuplicateReferenceError,
    DuplicateReferralCodeError,
    InsufficientBalanceError,
    LedgerValidationError,
    PaymentNotFoundError,
    WithdrawalNotFoundError,
)
from .logging_config import get_logger
from .models import (
    Account,
    Payment,
    PaymentStatus,
    Review,
    Transaction,
    TransactionCategory,
    Withdrawal,
)

logger = get_logger(__name__)


class InMemoryStorage:
    def __init__(self):
        self.accounts: dict[UUID, dict] = {}
        self.transactions: dict[UUID, dict] = {}
        self.payments: dict[UUID, dict] = {}
        self.withdrawals: dict[UUID, dict] = {}
        self.reviews: dict[UUID, dict] = {}
        self.referral_code_index: dict[str, UUID] = {}
        self.payment_reference_index: dict[str, UUID] = {}
        self.review_index: dict[UUID, UUID] = {}
        self._lock = threading.RLock()

    # Reads return fresh model instances; callers never share stored dicts.

    def find_account(self, account_id: UUID) -> Optional[Account]:
        with self._lock:
            data = self.accounts.get(account_id)
            return Account(**data) if data else None

    def find_account_by_referral_code(self, code: str) -> Optional[Account]:
        with self._lock:
            account_id = self.referral_code_index.get(code)
            return self.find_account(account_id) if account_id else None

    def find_accounts_referred_by(self, code: str) -> list[Account]:
        with self._lock:
            return [
                Account(**a) for a in self.accounts.values()
                if a["referred_by_code"] == code
            ]

    def referral_code_exists(self, code: str) -> bool:
        with self._lock:
            return code in self.referral_code_index

    def find_payment(self, payment_id: UUID) -> Optional[Payment]:
        with self._lock:
            data = self.payments.get(payment_id)
            return Payment(**data) if data else None

    def find_payment_by_reference(self, reference: str) -> Optional[Payment]:
        with self._lock:
            payment_id = self.payment_reference_index.get(reference)
            return self.find_payment(payment_id) if payment_id else None

    def list_payments(self, status: Optional[PaymentStatus] = None) -> list[Payment]:
        with self._lock:
            payments = [Payment(**p) for p in self.payments.values()]
        if status:
            payments = [p for p in payments if p.status == status]
        payments.sort(key=lambda p: p.created_at, reverse=True)
        return payments

    def find_withdrawal(self, withdrawal_id: UUID) -> Optional[Withdrawal]:
        with self._lock:
            data = self.withdrawals.get(withdrawal_id)
            return Withdrawal(**data) if data else None

    def list_transactions(self, account_id: UUID) -> list[Transaction]:
        with self._lock:
            return [
                Transaction(**t) for t in self.transactions.values()
                if t["account_id"] == account_id
            ]

    def find_review_for_account(self, account_id: UUID) -> Optional[Review]:
        with self._lock:
            review_id = self.review_index.get(account_id)
            return Review(**self.reviews[review_id]) if review_id else None

    def commit(self, unit: "UnitOfWork") -> None:
        with self._lock:
            self._validate(unit)
            self._apply(unit)

    def _validate(self, unit: "UnitOfWork") -> None:
        for account in unit.staged_accounts():
            if account.id in unit.new_ids:
                if account.id in self.accounts:
                    raise ConcurrencyConflictError(f"Account {account.id} already exists")
                if account.referral_code in self.referral_code_index:
                    raise DuplicateReferralCodeError(f"Referral code {account.referral_code} is taken")
            else:
                self._check_version(self.accounts, account, "Account")

        for payment in unit.staged_payments():
            if payment.id in unit.new_ids:
                if payment.reference in self.payment_reference_index:
                    raise DuplicateReferenceError(f"Payment reference {payment.reference} already exists")
            else:
                self._check_version(self.payments, payment, "Payment")

        for withdrawal in unit.staged_withdrawals():
            if withdrawal.id not in unit.new_ids:
                self._check_version(self.withdrawals, withdrawal, "Withdrawal")

        for review in unit.new_reviews:
            if review.account_id in self.review_index:
                raise LedgerValidationError(f"Account {review.account_id} has already submitted a review")

    def _check_version(self, table: dict, record, kind: str) -> None:
        stored = table.get(record.id)
        if stored is None or stored["version"] != record.version:
            logger.info(
                "commit_conflict",
                kind=kind,
                record_id=str(record.id),
                expected_version=record.version,
                stored_version=stored["version"] if stored else None,
            )
            raise ConcurrencyConflictError(f"{kind} {record.id} was modified concurrently")

    def _apply(self, unit: "UnitOfWork") -> None:
        for account in unit.dirty(unit.staged_accounts()):
            account.version += 1
            self.accounts[account.id] = account.model_dump()
            self.referral_code_index[account.referral_code] = account.id

        for payment in unit.dirty(unit.staged_payments()):
            payment.version += 1
            self.payments[payment.id] = payment.model_dump()
            self.payment_reference_index[payment.reference] = payment.id

        for withdrawal in unit.dirty(unit.staged_withdrawals()):
            withdrawal.version += 1
            self.withdrawals[withdrawal.id] = withdrawal.model_dump()

        for review in unit.new_reviews:
            self.reviews[review.id] = review.model_dump()
            self.review_index[review.account_id] = review.id

        for transaction in unit.transactions:
            self.transactions[transaction.id] = transaction.model_dump()


class UnitOfWork:
    """One atomic read-modify-write over any number of records."""

    def __init__(self, storage: InMemoryStorage, now: datetime):
        self.storage = storage
        self.now = now
        self.new_ids: set[UUID] = set()
        self.new_reviews: list[Review] = []
        self.transactions: list[Transaction] = []
        self._accounts: dict[UUID, Account] = {}
        self._payments: dict[UUID, Payment] = {}
        self._withdrawals: dict[UUID, Withdrawal] = {}
        self._snapshots: dict[UUID, dict] = {}

    def get_account(self, account_id: UUID) -> Account:
        if account_id not in self._accounts:
            account = self.storage.find_account(account_id)
            if not account:
                raise AccountNotFoundError(f"Account {account_id} not found")
            self._stage(self._accounts, account)
        return self._accounts[account_id]

    def find_account_by_referral_code(self, code: Optional[str]) -> Optional[Account]:
        if not code:
            return None
        for account in self._accounts.values():
            if account.referral_code == code:
                return account
        account = self.storage.find_account_by_referral_code(code)
        return self.get_account(account.id) if account else None

    def add_account(self, account: Account) -> Account:
        self.new_ids.add(account.id)
        self._accounts[account.id] = account
        return account

    def get_payment(self, payment_id: UUID) -> Payment:
        if payment_id not in self._payments:
            payment = self.storage.find_payment(payment_id)
            if not payment:
                raise PaymentNotFoundError(f"Payment {payment_id} not found")
            self._stage(self._payments, payment)
        return self._payments[payment_id]

    def add_payment(self, payment: Payment) -> Payment:
        self.new_ids.add(payment.id)
        self._payments[payment.id] = payment
        return payment

    def get_withdrawal(self, withdrawal_id: UUID) -> Withdrawal:
        if withdrawal_id not in self._withdrawals:
            withdrawal = self.storage.find_withdrawal(withdrawal_id)
            if not withdrawal:
                raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
            self._stage(self._withdrawals, withdrawal)
        return self._withdrawals[withdrawal_id]

    def add_withdrawal(self, withdrawal: Withdrawal) -> Withdrawal:
        self.new_ids.add(withdrawal.id)
        self._withdrawals[withdrawal.id] = withdrawal
        return withdrawal

    def add_review(self, review: Review) -> Review:
        self.new_reviews.append(review)
        return review

    def post_transaction(
        self,
        account: Account,
        amount: Decimal,
        category: TransactionCategory,
        description: str,
        metadata: Optional[dict] = None,
    ) -> Transaction:
        """Apply a balance change and append its ledger entry in this unit."""
        new_balance = account.balance + amount
        if new_balance < 0:
            raise InsufficientBalanceError(-amount, account.balance)

        account.balance = new_balance
        transaction = Transaction(
            id=uuid4(),
            account_id=account.id,
            amount=amount,
            category=category,
            balance_after=new_balance,
            description=description,
            created_at=self.now,
            metadata=metadata or {},
        )
        self.transactions.append(transaction)
        return transaction

    def commit(self) -> None:
        self.storage.commit(self)

    def staged_accounts(self) -> list[Account]:
        return list(self._accounts.values())

    def staged_payments(self) -> list[Payment]:
        return list(self._payments.values())

    def staged_withdrawals(self) -> list[Withdrawal]:
        return list(self._withdrawals.values())

    def dirty(self, records: list) -> list:
        return [
            r for r in records
            if r.id in self.new_ids or r.model_dump() != self._snapshots.get(r.id)
        ]

    def _stage(self, staged: dict, record) -> None:
        staged[record.id] = record
        self._snapshots[record.id] = record.model_dump()
