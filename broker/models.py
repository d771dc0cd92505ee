from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, model_validator

from gates import GateCode


class Asset(str, Enum):
    FIAT = "FIAT"
    BTC = "BTC"


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    PROFIT = "PROFIT"
    BONUS = "BONUS"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"


class InvestmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class KycStatus(str, Enum):
    NOT_SUBMITTED = "NOT_SUBMITTED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"


class BalanceField(str, Enum):
    FIAT_BALANCE = "fiat_balance"
    BITCOIN_BALANCE = "bitcoin_balance"
    PROFIT_BALANCE = "profit_balance"
    ACTIVE_INVESTMENT = "active_investment"
    TOTAL_DEPOSITED = "total_deposited"
    TOTAL_WITHDRAWN = "total_withdrawn"
    TOTAL_BONUS = "total_bonus"

    @classmethod
    def for_asset(cls, asset: "Asset") -> "BalanceField":
        return cls.BITCOIN_BALANCE if asset == Asset.BTC else cls.FIAT_BALANCE


class WithdrawalMethod(str, Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    BITCOIN = "BITCOIN"
    ETHEREUM = "ETHEREUM"
    CASHAPP = "CASHAPP"
    PAYPAL = "PAYPAL"
    ZELLE = "ZELLE"

    @property
    def display_name(self) -> str:
        return {
            "BANK_TRANSFER": "Bank Transfer",
            "BITCOIN": "Bitcoin",
            "ETHEREUM": "Ethereum",
            "CASHAPP": "Cash App",
            "PAYPAL": "PayPal",
            "ZELLE": "Zelle",
        }[self.value]


class UserAction(str, Enum):
    SUSPEND = "suspend"
    UNSUSPEND = "unsuspend"
    BLOCK = "block"
    UNBLOCK = "unblock"
    RESET_PIN = "reset_pin"


# ---------------------------------------------------------------- entities

class UserAccount(BaseModel):
    id: UUID
    currency: str = "USD"
    fiat_balance: Decimal = Decimal("0")
    bitcoin_balance: Decimal = Decimal("0")
    profit_balance: Decimal = Decimal("0")
    active_investment: Decimal = Decimal("0")
    total_deposited: Decimal = Decimal("0")
    total_withdrawn: Decimal = Decimal("0")
    total_bonus: Decimal = Decimal("0")
    withdrawal_fee: Decimal = Decimal("0")
    withdrawal_fee_instruction: Optional[str] = None
    signal_fee_enabled: bool = False
    signal_fee_instruction: Optional[str] = None
    tier: Literal[1, 2, 3] = 1
    tier_upgrade_enabled: bool = False
    tier_upgrade_instruction: Optional[str] = None
    transaction_pin: Optional[str] = None
    is_suspended: bool = False
    is_blocked: bool = False
    current_plan_id: Optional[UUID] = None
    version: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def balance_of(self, balance_field: BalanceField) -> Decimal:
        return getattr(self, balance_field.value)


class InvestmentPlan(BaseModel):
    id: UUID
    name: str
    min_amount: Decimal
    max_amount: Decimal
    roi_percentage: Decimal
    duration_days: int
    is_active: bool = True
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserInvestment(BaseModel):
    id: UUID
    user_id: UUID
    plan_id: UUID
    invested_amount: Decimal
    expected_return: Decimal
    profit_credited: Decimal = Decimal("0")
    funding_asset: Asset = Asset.FIAT
    start_date: datetime
    end_date: datetime
    status: InvestmentStatus = InvestmentStatus.ACTIVE
    capital_reclaimed: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def expected_profit(self) -> Decimal:
        return self.expected_return - self.invested_amount

    @property
    def remaining_profit(self) -> Decimal:
        return self.expected_profit - self.profit_credited


class Transaction(BaseModel):
    id: UUID
    user_id: UUID
    type: TransactionType
    asset: Asset
    amount: Decimal
    status: TransactionStatus
    reference: str
    description: Optional[str] = None
    crypto_amount: Optional[Decimal] = None
    crypto_currency: Optional[str] = None
    wallet_address: Optional[str] = None
    wallet_network: Optional[str] = None
    deposit_proof_url: Optional[str] = None
    payment_method_name: Optional[str] = None
    withdrawal_method: Optional[WithdrawalMethod] = None
    withdrawal_details: dict[str, str] = Field(default_factory=dict)
    investment_id: Optional[UUID] = None
    created_by_admin: Optional[str] = None
    reviewed_by: Optional[str] = None
    backdated_at: Optional[datetime] = None
    created_at: datetime
    approved_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def effective_at(self) -> datetime:
        return self.backdated_at or self.created_at


class KycRecord(BaseModel):
    id: UUID
    user_id: UUID
    status: KycStatus
    document_type: str
    document_url: str
    selfie_url: Optional[str] = None
    rejection_reason: Optional[str] = None
    submitted_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class AuditEntry(BaseModel):
    id: UUID
    admin_id: str
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    details: dict = Field(default_factory=dict)
    created_at: datetime


# ---------------------------------------------------------------- requests

class RegisterUserRequest(BaseModel):
    currency: Optional[str] = None
    transaction_pin: Optional[str] = Field(default=None, pattern=r"^\d{4}$")


class TransactionMeta(BaseModel):
    description: Optional[str] = None
    crypto_amount: Optional[Decimal] = Field(default=None, gt=0)
    crypto_currency: Optional[str] = None
    wallet_address: Optional[str] = None
    wallet_network: Optional[str] = None
    deposit_proof_url: Optional[str] = None
    payment_method_name: Optional[str] = None
    withdrawal_method: Optional[WithdrawalMethod] = None
    withdrawal_details: dict[str, str] = Field(default_factory=dict)
    investment_id: Optional[UUID] = None


class CreateTransactionRequest(BaseModel):
    user_id: UUID
    type: TransactionType
    asset: Asset = Asset.FIAT
    amount: Decimal = Field(..., gt=0)
    status: Optional[TransactionStatus] = None
    description: Optional[str] = None
    backdated_at: Optional[datetime] = None
    performed_by: str = Field(..., description="Admin creating the entry")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "user_id": "550e8400-e29b-41d4-a716-446655440000",
            "type": "BONUS",
            "asset": "FIAT",
            "amount": 10.00,
            "performed_by": "admin@example.com",
        }
    })


class ReviewTransactionRequest(BaseModel):
    performed_by: str


class SubmitDepositRequest(BaseModel):
    user_id: UUID
    amount: Decimal = Field(..., gt=0)
    asset: Asset = Asset.FIAT
    deposit_proof_url: str = Field(..., min_length=1)
    crypto_amount: Optional[Decimal] = Field(default=None, gt=0)
    crypto_currency: Optional[str] = None
    wallet_address: Optional[str] = None
    wallet_network: Optional[str] = None
    payment_method_name: Optional[str] = None


class SubmitKycRequest(BaseModel):
    user_id: UUID
    document_type: str = Field(..., min_length=1)
    document_url: str = Field(..., min_length=1)
    selfie_url: Optional[str] = None


class ReviewKycRequest(BaseModel):
    status: KycStatus
    rejection_reason: Optional[str] = None
    performed_by: str

    @model_validator(mode="after")
    def _reason_on_decline(self) -> "ReviewKycRequest":
        if self.status not in (KycStatus.APPROVED, KycStatus.DECLINED):
            raise ValueError("KYC can only be reviewed to APPROVED or DECLINED")
        if self.status == KycStatus.DECLINED and not self.rejection_reason:
            raise ValueError("A rejection reason is required when declining KYC")
        return self


class SubscribeRequest(BaseModel):
    user_id: UUID
    plan_id: UUID
    amount: Decimal = Field(..., gt=0)
    asset: Asset = Asset.FIAT


class CreditProfitRequest(BaseModel):
    amount: Decimal
    performed_by: Optional[str] = None


class ReclaimCapitalRequest(BaseModel):
    user_id: Optional[UUID] = None


_REQUIRED_DETAILS: dict[WithdrawalMethod, tuple[str, ...]] = {
    WithdrawalMethod.BANK_TRANSFER: ("bankName", "accountName", "accountNumber", "country"),
    WithdrawalMethod.BITCOIN: ("walletAddress",),
    WithdrawalMethod.ETHEREUM: ("walletAddress",),
    WithdrawalMethod.CASHAPP: ("cashtag",),
    WithdrawalMethod.PAYPAL: ("paypalEmail",),
    WithdrawalMethod.ZELLE: (),
}


class WithdrawalRequest(BaseModel):
    user_id: UUID
    balance_type: Asset
    amount: Decimal
    method: WithdrawalMethod
    withdrawal_details: dict[str, str] = Field(default_factory=dict)
    pin: str = ""

    @model_validator(mode="after")
    def _check_details(self) -> "WithdrawalRequest":
        details = self.withdrawal_details
        missing = [k for k in _REQUIRED_DETAILS[self.method] if not details.get(k, "").strip()]
        if missing:
            raise ValueError(f"Missing {self.method.display_name} details: {', '.join(missing)}")
        if self.method == WithdrawalMethod.CASHAPP and not details["cashtag"].startswith("$"):
            raise ValueError("Cash App tag must start with $")
        if self.method == WithdrawalMethod.PAYPAL and "@" not in details["paypalEmail"]:
            raise ValueError("Valid PayPal email is required")
        if self.method == WithdrawalMethod.ZELLE and not (details.get("zelleEmail") or details.get("zellePhone")):
            raise ValueError("Either email or phone number is required for Zelle")
        return self


class SetPinRequest(BaseModel):
    new_pin: str
    confirm_pin: str
    current_pin: Optional[str] = None


class VerifyPinRequest(BaseModel):
    pin: str


class UpdateBalancesRequest(BaseModel):
    fiat_balance: Optional[Decimal] = Field(default=None, ge=0)
    bitcoin_balance: Optional[Decimal] = Field(default=None, ge=0)
    profit_balance: Optional[Decimal] = Field(default=None, ge=0)
    active_investment: Optional[Decimal] = Field(default=None, ge=0)
    total_deposited: Optional[Decimal] = Field(default=None, ge=0)
    total_withdrawn: Optional[Decimal] = Field(default=None, ge=0)
    total_bonus: Optional[Decimal] = Field(default=None, ge=0)
    performed_by: str


class UpdateGateSettingsRequest(BaseModel):
    withdrawal_fee: Optional[Decimal] = Field(default=None, ge=0)
    withdrawal_fee_instruction: Optional[str] = None
    signal_fee_enabled: Optional[bool] = None
    signal_fee_instruction: Optional[str] = None
    tier: Optional[Literal[1, 2, 3]] = None
    tier_upgrade_enabled: Optional[bool] = None
    tier_upgrade_instruction: Optional[str] = None
    performed_by: str


class UserActionRequest(BaseModel):
    action: UserAction
    performed_by: str


class AssignPlanRequest(BaseModel):
    plan_id: Optional[UUID] = None
    performed_by: str


class BackdateTransactionRequest(BaseModel):
    backdated_at: Optional[datetime] = None
    performed_by: str


class SetKycStatusRequest(BaseModel):
    status: KycStatus
    performed_by: str


class PlanRequest(BaseModel):
    name: str = Field(..., min_length=1)
    min_amount: Decimal = Field(..., gt=0)
    max_amount: Decimal = Field(..., gt=0)
    roi_percentage: Decimal = Field(..., ge=0)
    duration_days: int = Field(..., gt=0)
    is_active: bool = True
    performed_by: str

    @model_validator(mode="after")
    def _check_bounds(self) -> "PlanRequest":
        if self.min_amount > self.max_amount:
            raise ValueError("Minimum amount cannot exceed maximum amount")
        return self


# ---------------------------------------------------------------- responses

class BalanceSnapshot(BaseModel):
    user_id: UUID
    currency: str
    fiat_balance: Decimal
    bitcoin_balance: Decimal
    profit_balance: Decimal
    active_investment: Decimal
    total_deposited: Decimal
    total_withdrawn: Decimal
    total_bonus: Decimal


class TransactionResponse(BaseModel):
    transaction: Transaction
    balances: BalanceSnapshot
    message: str


class TransactionHistoryResponse(BaseModel):
    transactions: list[Transaction]
    total_count: int


class ProfitCreditResponse(BaseModel):
    investment: UserInvestment
    transaction: Transaction
    remaining_profit: Decimal


class ReclaimCapitalResponse(BaseModel):
    amount: Decimal
    investment: UserInvestment


class InvestmentView(BaseModel):
    id: UUID
    plan_id: UUID
    plan_name: str
    invested_amount: Decimal
    expected_return: Decimal
    profit_credited: Decimal
    ideal_daily_profit: Decimal
    roi_percentage: Decimal
    duration_days: int
    start_date: datetime
    end_date: datetime
    status: InvestmentStatus
    days_elapsed: int
    days_remaining: int
    progress: Decimal
    capital_reclaimed: bool
    can_reclaim_capital: bool


class InvestmentStats(BaseModel):
    active_count: int
    total_invested: Decimal
    completed_count: int
    total_returns: Decimal


class PinVerification(BaseModel):
    valid: bool
    reason: Optional[str] = None


class PinResetResponse(BaseModel):
    user_id: UUID
    action: UserAction
    new_pin: Optional[str] = None


class WithdrawalEligibility(BaseModel):
    eligible: bool
    reason: Optional[str] = None
    kyc_status: KycStatus
    has_pin: bool
    is_suspended: bool
    is_blocked: bool
    tier: int
    pending_gates: list[dict] = Field(default_factory=list)
    fiat_balance: Decimal
    bitcoin_balance: Decimal


class WithdrawalAccepted(BaseModel):
    outcome: Literal["ACCEPTED"] = "ACCEPTED"
    transaction_id: UUID
    reference: str
    amount: Decimal
    balance_type: Asset


class WithdrawalBlocked(BaseModel):
    outcome: Literal["BLOCKED"] = "BLOCKED"
    code: GateCode
    message: str
    instruction: Optional[str] = None
    fee_amount: Optional[Decimal] = None
    tier: Optional[int] = None
    required_tier: Optional[int] = None
    kyc_status: Optional[KycStatus] = None
    available: Optional[Decimal] = None
    evaluated_gates: list[str] = Field(default_factory=list)


WithdrawalResult = Annotated[Union[WithdrawalAccepted, WithdrawalBlocked], Field(discriminator="outcome")]
