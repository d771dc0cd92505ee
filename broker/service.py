import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from .admin import AdminService
from .audit import AuditTrail
from .balances import BalanceLedger
from .config import Settings, settings as default_settings
from .exceptions import InvalidStateTransitionError
from .investments import InvestmentManager
from .journal import TransactionJournal
from .models import (
    Asset,
    BalanceSnapshot,
    CreateTransactionRequest,
    InvestmentPlan,
    InvestmentStats,
    InvestmentView,
    KycRecord,
    KycStatus,
    PinVerification,
    ProfitCreditResponse,
    ReclaimCapitalResponse,
    RegisterUserRequest,
    SetPinRequest,
    SubmitDepositRequest,
    SubmitKycRequest,
    Transaction,
    TransactionHistoryResponse,
    TransactionMeta,
    TransactionResponse,
    TransactionStatus,
    TransactionType,
    UserAccount,
    UserInvestment,
    WithdrawalAccepted,
    WithdrawalBlocked,
    WithdrawalEligibility,
    WithdrawalRequest,
)
from .storage import InMemoryStorage
from .withdrawals import WithdrawalService

logger = logging.getLogger(__name__)


class BrokerService:
    """Entry point wiring the ledger, journal, investment lifecycle and withdrawal gate
    over one storage instance."""

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.settings = settings or default_settings
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.balances = BalanceLedger(self.storage)
        self.journal = TransactionJournal(self.storage, self.balances, self.settings, self.clock)
        self.audit = AuditTrail(self.storage, self.clock)
        self.investments = InvestmentManager(
            self.storage, self.balances, self.journal, self.audit, self.clock
        )
        self.withdrawals = WithdrawalService(self.storage, self.journal, self.audit, self.settings)
        self.admin = AdminService(self.storage, self.journal, self.withdrawals, self.audit, self.clock)

    # accounts

    def register_user(self, request: Optional[RegisterUserRequest] = None) -> UserAccount:
        request = request or RegisterUserRequest()
        now = self.clock()
        user = UserAccount(
            id=uuid4(),
            currency=request.currency or self.settings.DEFAULT_CURRENCY,
            transaction_pin=request.transaction_pin,
            created_at=now,
            updated_at=now,
        )
        self.storage.insert_user(user)
        logger.info("Registered user %s", user.id)
        return user

    def get_user(self, user_id: UUID) -> UserAccount:
        return self.storage.get_user(user_id)

    def get_balance(self, user_id: UUID) -> BalanceSnapshot:
        return self.balances.get_snapshot(user_id)

    # kyc

    def submit_kyc(self, request: SubmitKycRequest) -> KycRecord:
        with self.storage.atomic():
            self.storage.get_user(request.user_id)
            existing = self.storage.find_kyc_for_user(request.user_id)
            if existing is not None and existing.status != KycStatus.DECLINED:
                raise InvalidStateTransitionError(
                    f"KYC is already {existing.status.value.lower()}", status=existing.status.value
                )
            record = KycRecord(
                id=existing.id if existing else uuid4(),
                user_id=request.user_id,
                status=KycStatus.PENDING,
                document_type=request.document_type,
                document_url=request.document_url,
                selfie_url=request.selfie_url,
                submitted_at=self.clock(),
            )
            self.storage.save_kyc(record)
        logger.info("KYC submitted for user %s", request.user_id)
        return record

    def get_kyc_status(self, user_id: UUID) -> KycStatus:
        self.storage.get_user(user_id)
        return self.withdrawals.kyc_status(user_id)

    # journal

    def submit_deposit(self, request: SubmitDepositRequest) -> TransactionResponse:
        return self.journal.create_transaction(
            request.user_id, TransactionType.DEPOSIT, request.asset, request.amount,
            TransactionMeta(
                deposit_proof_url=request.deposit_proof_url,
                crypto_amount=request.crypto_amount,
                crypto_currency=request.crypto_currency,
                wallet_address=request.wallet_address,
                wallet_network=request.wallet_network,
                payment_method_name=request.payment_method_name,
            ),
        )

    def create_transaction(
        self,
        user_id: UUID,
        tx_type: TransactionType,
        asset: Asset,
        amount: Decimal,
        meta: Optional[TransactionMeta] = None,
        status: Optional[TransactionStatus] = None,
    ) -> TransactionResponse:
        return self.journal.create_transaction(user_id, tx_type, asset, amount, meta, status=status)

    def admin_create_transaction(self, request: CreateTransactionRequest) -> TransactionResponse:
        return self.admin.create_transaction(request)

    def approve(self, transaction_id: UUID, performed_by: str) -> TransactionResponse:
        return self.admin.approve_transaction(transaction_id, performed_by)

    def decline(self, transaction_id: UUID, performed_by: str) -> TransactionResponse:
        return self.admin.decline_transaction(transaction_id, performed_by)

    def get_transaction(self, transaction_id: UUID) -> Transaction:
        return self.journal.get_transaction(transaction_id)

    def list_transactions(self, user_id: Optional[UUID] = None, **filters) -> TransactionHistoryResponse:
        return self.journal.list_transactions(user_id, **filters)

    # investments

    def available_plans(self) -> list[InvestmentPlan]:
        return self.investments.available_plans()

    def subscribe(
        self, user_id: UUID, plan_id: UUID, amount: Decimal, asset: Asset = Asset.FIAT
    ) -> UserInvestment:
        return self.investments.subscribe(user_id, plan_id, amount, asset)

    def credit_profit(
        self, investment_id: UUID, amount: Decimal, performed_by: Optional[str] = None
    ) -> ProfitCreditResponse:
        return self.investments.credit_profit(investment_id, amount, performed_by)

    def reclaim_capital(self, investment_id: UUID, user_id: Optional[UUID] = None) -> ReclaimCapitalResponse:
        return self.investments.reclaim_capital(investment_id, user_id)

    def list_user_investments(self, user_id: UUID) -> list[InvestmentView]:
        return self.investments.list_user_investments(user_id)

    def investment_stats(self, user_id: UUID) -> InvestmentStats:
        return self.investments.investment_stats(user_id)

    # withdrawals

    def request_withdrawal(self, request: WithdrawalRequest) -> WithdrawalAccepted | WithdrawalBlocked:
        return self.withdrawals.request_withdrawal(request)

    def check_withdrawal_eligibility(self, user_id: UUID) -> WithdrawalEligibility:
        return self.withdrawals.check_eligibility(user_id)

    def set_transaction_pin(self, user_id: UUID, request: SetPinRequest) -> UserAccount:
        return self.withdrawals.set_pin(user_id, request.new_pin, request.confirm_pin, request.current_pin)

    def verify_pin(self, user_id: UUID, pin: str) -> PinVerification:
        return self.withdrawals.verify_pin(user_id, pin)
