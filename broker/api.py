import logging
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .exceptions import LedgerServiceError
from .models import (
    Asset,
    AssignPlanRequest,
    AuditEntry,
    BackdateTransactionRequest,
    BalanceSnapshot,
    CreateTransactionRequest,
    CreditProfitRequest,
    InvestmentPlan,
    InvestmentStats,
    InvestmentView,
    KycRecord,
    PinResetResponse,
    PinVerification,
    PlanRequest,
    ProfitCreditResponse,
    ReclaimCapitalRequest,
    ReclaimCapitalResponse,
    RegisterUserRequest,
    ReviewKycRequest,
    ReviewTransactionRequest,
    SetKycStatusRequest,
    SetPinRequest,
    SubmitDepositRequest,
    SubmitKycRequest,
    SubscribeRequest,
    Transaction,
    TransactionHistoryResponse,
    TransactionResponse,
    TransactionStatus,
    TransactionType,
    UpdateBalancesRequest,
    UpdateGateSettingsRequest,
    UserAccount,
    UserActionRequest,
    UserInvestment,
    VerifyPinRequest,
    WithdrawalEligibility,
    WithdrawalRequest,
    WithdrawalResult,
)
from .service import BrokerService

logger = logging.getLogger(__name__)

PRIVATE_FIELDS = {"transaction_pin"}

ERROR_STATUS = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "state_conflict": status.HTTP_409_CONFLICT,
    "account_status": status.HTTP_403_FORBIDDEN,
}

app = FastAPI(
    title="Broker Ledger API",
    description="Balances, transaction journal, investment lifecycle and withdrawal eligibility for a retail broker",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

broker_service = BrokerService()


@app.exception_handler(LedgerServiceError)
async def ledger_error_handler(request: Request, exc: LedgerServiceError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.category, status.HTTP_400_BAD_REQUEST)
    logger.info("%s %s -> %s %s", request.method, request.url.path, status_code, exc.code)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "broker-ledger"}


# users

@app.post("/users", response_model=UserAccount, response_model_exclude=PRIVATE_FIELDS,
          status_code=status.HTTP_201_CREATED, tags=["Users"])
def register_user(request: RegisterUserRequest) -> UserAccount:
    return broker_service.register_user(request)


@app.get("/users/{user_id}", response_model=UserAccount, response_model_exclude=PRIVATE_FIELDS, tags=["Users"])
def get_user(user_id: UUID) -> UserAccount:
    return broker_service.get_user(user_id)


@app.get("/users/{user_id}/balance", response_model=BalanceSnapshot, tags=["Users"])
def get_user_balance(user_id: UUID) -> BalanceSnapshot:
    return broker_service.get_balance(user_id)


@app.get("/users/{user_id}/transactions", response_model=TransactionHistoryResponse, tags=["Users"])
def get_user_transactions(
    user_id: UUID,
    type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    asset: Optional[Asset] = None,
    limit: int = 20,
    offset: int = 0,
) -> TransactionHistoryResponse:
    return broker_service.list_transactions(
        user_id, tx_type=type, status=status, asset=asset, limit=limit, offset=offset
    )


@app.post("/users/{user_id}/pin", response_model=UserAccount, response_model_exclude=PRIVATE_FIELDS, tags=["Users"])
def set_transaction_pin(user_id: UUID, request: SetPinRequest) -> UserAccount:
    return broker_service.set_transaction_pin(user_id, request)


@app.post("/users/{user_id}/pin/verify", response_model=PinVerification, tags=["Users"])
def verify_pin(user_id: UUID, request: VerifyPinRequest) -> PinVerification:
    return broker_service.verify_pin(user_id, request.pin)


@app.post("/kyc", response_model=KycRecord, status_code=status.HTTP_201_CREATED, tags=["KYC"])
def submit_kyc(request: SubmitKycRequest) -> KycRecord:
    return broker_service.submit_kyc(request)


@app.post("/deposits", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED, tags=["Transactions"])
def submit_deposit(request: SubmitDepositRequest) -> TransactionResponse:
    return broker_service.submit_deposit(request)


# investments

@app.get("/plans", response_model=list[InvestmentPlan], tags=["Investments"])
def list_plans() -> list[InvestmentPlan]:
    return broker_service.available_plans()


@app.post("/investments", response_model=UserInvestment, status_code=status.HTTP_201_CREATED, tags=["Investments"])
def subscribe(request: SubscribeRequest) -> UserInvestment:
    return broker_service.subscribe(request.user_id, request.plan_id, request.amount, request.asset)


@app.get("/users/{user_id}/investments", response_model=list[InvestmentView], tags=["Investments"])
def list_user_investments(user_id: UUID) -> list[InvestmentView]:
    return broker_service.list_user_investments(user_id)


@app.get("/users/{user_id}/investments/stats", response_model=InvestmentStats, tags=["Investments"])
def investment_stats(user_id: UUID) -> InvestmentStats:
    return broker_service.investment_stats(user_id)


@app.post("/investments/{investment_id}/profit", response_model=ProfitCreditResponse, tags=["Investments"])
def credit_profit(investment_id: UUID, request: CreditProfitRequest) -> ProfitCreditResponse:
    return broker_service.credit_profit(investment_id, request.amount, request.performed_by)


@app.post("/investments/{investment_id}/reclaim", response_model=ReclaimCapitalResponse, tags=["Investments"])
def reclaim_capital(investment_id: UUID, request: ReclaimCapitalRequest) -> ReclaimCapitalResponse:
    return broker_service.reclaim_capital(investment_id, request.user_id)


# withdrawals

@app.post("/withdrawals", response_model=WithdrawalResult, tags=["Withdrawals"])
def request_withdrawal(request: WithdrawalRequest):
    return broker_service.request_withdrawal(request)


@app.get("/users/{user_id}/withdrawal-eligibility", response_model=WithdrawalEligibility, tags=["Withdrawals"])
def check_withdrawal_eligibility(user_id: UUID) -> WithdrawalEligibility:
    return broker_service.check_withdrawal_eligibility(user_id)


# admin

@app.post("/admin/transactions", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED,
          tags=["Admin"])
def admin_create_transaction(request: CreateTransactionRequest) -> TransactionResponse:
    return broker_service.admin_create_transaction(request)


@app.get("/admin/transactions", response_model=TransactionHistoryResponse, tags=["Admin"])
def admin_list_transactions(
    user_id: Optional[UUID] = None,
    type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    asset: Optional[Asset] = None,
    limit: int = 20,
    offset: int = 0,
) -> TransactionHistoryResponse:
    return broker_service.list_transactions(
        user_id, tx_type=type, status=status, asset=asset, limit=limit, offset=offset
    )


@app.get("/admin/transactions/{transaction_id}", response_model=Transaction, tags=["Admin"])
def get_transaction(transaction_id: UUID) -> Transaction:
    return broker_service.get_transaction(transaction_id)


@app.post("/admin/transactions/{transaction_id}/approve", response_model=TransactionResponse, tags=["Admin"])
def approve_transaction(transaction_id: UUID, request: ReviewTransactionRequest) -> TransactionResponse:
    return broker_service.approve(transaction_id, request.performed_by)


@app.post("/admin/transactions/{transaction_id}/decline", response_model=TransactionResponse, tags=["Admin"])
def decline_transaction(transaction_id: UUID, request: ReviewTransactionRequest) -> TransactionResponse:
    return broker_service.decline(transaction_id, request.performed_by)


@app.post("/admin/transactions/{transaction_id}/backdate", response_model=Transaction, tags=["Admin"])
def backdate_transaction(transaction_id: UUID, request: BackdateTransactionRequest) -> Transaction:
    return broker_service.admin.backdate_transaction(transaction_id, request.backdated_at, request.performed_by)


@app.put("/admin/users/{user_id}/balances", response_model=BalanceSnapshot, tags=["Admin"])
def update_user_balances(user_id: UUID, request: UpdateBalancesRequest) -> BalanceSnapshot:
    return broker_service.admin.update_user_balances(user_id, request)


@app.put("/admin/users/{user_id}/gates", response_model=UserAccount, response_model_exclude=PRIVATE_FIELDS, tags=["Admin"])
def update_gate_settings(user_id: UUID, request: UpdateGateSettingsRequest) -> UserAccount:
    return broker_service.admin.update_gate_settings(user_id, request)


@app.post("/admin/users/{user_id}/actions", response_model=PinResetResponse, tags=["Admin"])
def perform_user_action(user_id: UUID, request: UserActionRequest) -> PinResetResponse:
    return broker_service.admin.perform_user_action(user_id, request.action, request.performed_by)


@app.put("/admin/users/{user_id}/plan", response_model=UserAccount, response_model_exclude=PRIVATE_FIELDS, tags=["Admin"])
def assign_plan(user_id: UUID, request: AssignPlanRequest) -> UserAccount:
    return broker_service.admin.assign_plan(user_id, request.plan_id, request.performed_by)


@app.put("/admin/users/{user_id}/kyc", response_model=Optional[KycRecord], tags=["Admin"])
def set_kyc_status(user_id: UUID, request: SetKycStatusRequest) -> Optional[KycRecord]:
    return broker_service.admin.set_kyc_status(user_id, request.status, request.performed_by)


@app.get("/admin/kyc", response_model=list[KycRecord], tags=["Admin"])
def list_pending_kyc() -> list[KycRecord]:
    return broker_service.admin.pending_kyc()


@app.post("/admin/kyc/{kyc_id}/review", response_model=KycRecord, tags=["Admin"])
def review_kyc(kyc_id: UUID, request: ReviewKycRequest) -> KycRecord:
    return broker_service.admin.review_kyc(kyc_id, request.status, request.performed_by, request.rejection_reason)


@app.post("/admin/plans", response_model=InvestmentPlan, status_code=status.HTTP_201_CREATED, tags=["Admin"])
def create_plan(request: PlanRequest) -> InvestmentPlan:
    return broker_service.admin.create_plan(request)


@app.put("/admin/plans/{plan_id}", response_model=InvestmentPlan, tags=["Admin"])
def update_plan(plan_id: UUID, request: PlanRequest) -> InvestmentPlan:
    return broker_service.admin.update_plan(plan_id, request)


@app.delete("/admin/plans/{plan_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Admin"])
def delete_plan(plan_id: UUID, performed_by: str) -> None:
    broker_service.admin.delete_plan(plan_id, performed_by)


@app.get("/admin/audit", response_model=list[AuditEntry], tags=["Admin"])
def list_audit(entity_id: Optional[str] = None) -> list[AuditEntry]:
    return broker_service.audit.entries(entity_id)


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=settings.LOG_LEVEL)
    uvicorn.run(app, host="0.0.0.0", port=8000)
