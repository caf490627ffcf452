class LedgerServiceError(Exception):
    pass


class NotFoundError(LedgerServiceError):
    pass


class AccountNotFoundError(NotFoundError):
    pass


class PaymentNotFoundError(NotFoundError):
    pass


class WithdrawalNotFoundError(NotFoundError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class InsufficientBalanceError(LedgerServiceError):
    def __init__(self, required, available):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient balance: required {required}, available {available}")


class InsufficientSpinsError(LedgerServiceError):
    pass


class LedgerValidationError(LedgerServiceError):
    pass


class DuplicateReferenceError(LedgerServiceError):
    pass


class DuplicateReferralCodeError(LedgerServiceError):
    pass


class PermissionDeniedError(LedgerServiceError):
    pass


class ConcurrencyConflictError(LedgerServiceError):
    pass
