from typing import Optional
from uuid import UUID
from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import (
    ConcurrencyConflictError, DuplicateReferenceError, InsufficientBalanceError,
    InsufficientSpinsError, InvalidStateTransitionError, LedgerServiceError,
    LedgerValidationError, NotFoundError, PermissionDeniedError,
)
from .logging_config import get_logger, setup_logging
from .models import (
    AccountView, BalanceAdjustmentRequest, ClaimResult, GrantSpinsRequest,
    IncrementProgressRequest, Payment, PaymentStatus, ReferralStats,
    RegisterAccountRequest, RejectPaymentRequest, ResolveWithdrawalRequest,
    Review, ReviewRequest, SpendSpinRequest, SpinResult, SubmitPaymentRequest,
    SubscriptionStatus,
    TransactionHistory, VerificationResult, VerifyPaymentRequest, Withdrawal,
    WithdrawalRequest,
)
from .service import LedgerService
from .settings import settings

setup_logging()
logger = get_logger(__name__)

ERROR_STATUS = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (DuplicateReferenceError, status.HTTP_409_CONFLICT),
    (InsufficientBalanceError, status.HTTP_400_BAD_REQUEST),
    (InsufficientSpinsError, status.HTTP_400_BAD_REQUEST),
    (LedgerValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConcurrencyConflictError, status.HTTP_503_SERVICE_UNAVAILABLE),
]

app = FastAPI(
    title="Incentive Ledger API",
    description="Task rewards, referral commissions and spins with atomic, audited balance changes",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = LedgerService()


class Caller(BaseModel):
    account_id: Optional[UUID] = None
    is_admin: bool = False


def get_ledger_service() -> LedgerService:
    return ledger_service


def resolve_caller(
    x_account_id: Optional[UUID] = Header(default=None, alias="X-Account-Id"),
    x_admin: bool = Header(default=False, alias="X-Admin"),
) -> Caller:
    """Identity resolved by the upstream auth gateway."""
    return Caller(account_id=x_account_id, is_admin=x_admin)


def require_account(caller: Caller = Depends(resolve_caller)) -> UUID:
    if caller.account_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return caller.account_id


@app.exception_handler(LedgerServiceError)
async def ledger_error_handler(request: Request, exc: LedgerServiceError):
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    logger.info("ledger_request_failed", path=request.url.path, error=type(exc).__name__, detail=str(exc))
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": settings.app_name}


@app.post("/accounts", response_model=AccountView, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
def register_account(request: RegisterAccountRequest, service: LedgerService = Depends(get_ledger_service)) -> AccountView:
    return service.account_view(service.register_account(request.username, request.referred_by_code))


@app.get("/me", response_model=AccountView, tags=["Accounts"])
def get_me(account_id: UUID = Depends(require_account), service: LedgerService = Depends(get_ledger_service)) -> AccountView:
    return service.get_account_view(account_id)


@app.get("/me/subscription", response_model=SubscriptionStatus, tags=["Accounts"])
def get_my_subscription(
    account_id: UUID = Depends(require_account),
    service: LedgerService = Depends(get_ledger_service),
) -> SubscriptionStatus:
    return service.get_subscription_status(account_id)


@app.get("/me/transactions", response_model=TransactionHistory, tags=["Accounts"])
def get_my_transactions(
    limit: int = 50,
    offset: int = 0,
    account_id: UUID = Depends(require_account),
    service: LedgerService = Depends(get_ledger_service),
) -> TransactionHistory:
    return service.get_transaction_history(account_id, limit, offset)


@app.get("/me/referrals", response_model=ReferralStats, tags=["Referrals"])
def get_my_referrals(account_id: UUID = Depends(require_account), service: LedgerService = Depends(get_ledger_service)) -> ReferralStats:
    return service.get_referral_stats(account_id)


@app.post("/me/tasks/claim", response_model=ClaimResult, tags=["Tasks"])
def claim_task_reward(account_id: UUID = Depends(require_account), service: LedgerService = Depends(get_ledger_service)) -> ClaimResult:
    return service.claim_task_reward(account_id)


@app.get("/me/spins", response_model=SpinResult, tags=["Spins"])
def get_my_spins(account_id: UUID = Depends(require_account), service: LedgerService = Depends(get_ledger_service)) -> SpinResult:
    return service.get_spin_summary(account_id)


@app.post("/me/spins", response_model=SpinResult, tags=["Spins"])
def spend_spin(
    request: SpendSpinRequest,
    account_id: UUID = Depends(require_account),
    service: LedgerService = Depends(get_ledger_service),
) -> SpinResult:
    return service.spend_spin(account_id, request.outcome, request.prize_amount)


@app.post("/me/payments", response_model=Payment, status_code=status.HTTP_201_CREATED, tags=["Payments"])
def submit_payment(
    request: SubmitPaymentRequest,
    account_id: UUID = Depends(require_account),
    service: LedgerService = Depends(get_ledger_service),
) -> Payment:
    return service.submit_payment(account_id, request.tier, request.amount, request.reference)


@app.post("/me/withdrawals", response_model=Withdrawal, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def request_withdrawal(
    request: WithdrawalRequest,
    account_id: UUID = Depends(require_account),
    service: LedgerService = Depends(get_ledger_service),
) -> Withdrawal:
    return service.request_withdrawal(account_id, request.amount, request.wallet)


@app.post("/me/review", response_model=Review, status_code=status.HTTP_201_CREATED, tags=["Reviews"])
def submit_review(
    request: ReviewRequest,
    account_id: UUID = Depends(require_account),
    service: LedgerService = Depends(get_ledger_service),
) -> Review:
    return service.submit_review(account_id, request.rating, request.comment)


@app.get("/admin/accounts/{account_id}", response_model=AccountView, tags=["Admin"])
def admin_get_account(
    account_id: UUID,
    caller: Caller = Depends(resolve_caller),
    service: LedgerService = Depends(get_ledger_service),
) -> AccountView:
    if not caller.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return service.get_account_view(account_id)


@app.get("/admin/payments", response_model=list[Payment], tags=["Admin"])
def list_payments(
    payment_status: Optional[PaymentStatus] = None,
    caller: Caller = Depends(resolve_caller),
    service: LedgerService = Depends(get_ledger_service),
) -> list[Payment]:
    return service.list_payments(payment_status, is_admin=caller.is_admin)


@app.post("/admin/payments/{payment_id}/verify", response_model=VerificationResult, tags=["Admin"])
def verify_payment(
    payment_id: UUID,
    request: VerifyPaymentRequest,
    caller: Caller = Depends(resolve_caller),
    service: LedgerService = Depends(get_ledger_service),
) -> VerificationResult:
    return service.verify_payment(payment_id, request.verified_by, is_admin=caller.is_admin)


@app.post("/admin/payments/{payment_id}/reject", response_model=Payment, tags=["Admin"])
def reject_payment(
    payment_id: UUID,
    request: RejectPaymentRequest,
    caller: Caller = Depends(resolve_caller),
    service: LedgerService = Depends(get_ledger_service),
) -> Payment:
    return service.reject_payment(
        payment_id, request.reason, rejected_by=request.rejected_by, is_admin=caller.is_admin
    )


@app.post("/admin/withdrawals/{withdrawal_id}/resolve", response_model=Withdrawal, tags=["Admin"])
def resolve_withdrawal(
    withdrawal_id: UUID,
    request: ResolveWithdrawalRequest,
    caller: Caller = Depends(resolve_caller),
    service: LedgerService = Depends(get_ledger_service),
) -> Withdrawal:
    return service.resolve_withdrawal(
        withdrawal_id, request.approve, resolved_by=request.resolved_by, is_admin=caller.is_admin
    )


@app.post("/admin/accounts/{account_id}/progress", response_model=AccountView, tags=["Admin"])
def increment_task_progress(
    account_id: UUID,
    request: IncrementProgressRequest,
    caller: Caller = Depends(resolve_caller),
    service: LedgerService = Depends(get_ledger_service),
) -> AccountView:
    account = service.increment_task_progress(account_id, request.steps, is_admin=caller.is_admin)
    return service.account_view(account)


@app.post("/admin/accounts/{account_id}/spins", response_model=AccountView, tags=["Admin"])
def grant_extra_spins(
    account_id: UUID,
    request: GrantSpinsRequest,
    caller: Caller = Depends(resolve_caller),
    service: LedgerService = Depends(get_ledger_service),
) -> AccountView:
    return service.account_view(service.grant_extra_spins(account_id, request.count, is_admin=caller.is_admin))


@app.post("/admin/accounts/{account_id}/balance", response_model=AccountView, tags=["Admin"])
def adjust_balance(
    account_id: UUID,
    request: BalanceAdjustmentRequest,
    caller: Caller = Depends(resolve_caller),
    service: LedgerService = Depends(get_ledger_service),
) -> AccountView:
    account = service.adjust_balance(account_id, request.amount, request.description, is_admin=caller.is_admin)
    return service.account_view(account)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
