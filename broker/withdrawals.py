"""
Withdrawal Eligibility Gate

Every withdrawal attempt is evaluated fresh against stored data through an
ordered gate chain:

    account status -> KYC -> amount/balance -> withdrawal fee
        -> signal fee -> tier upgrade -> transaction PIN

The first blocking gate ends the evaluation and is returned as a
WithdrawalBlocked result with no side effects. When every gate passes the
requested amount is reserved (debited) and a PENDING withdrawal is
journaled in the same atomic step.
"""

import logging
import re
import secrets
from decimal import Decimal
from typing import Optional
from uuid import UUID

from gates import (
    FeeGate,
    GateBlock,
    GateContext,
    GateEngine,
    PinGate,
    SignalGate,
    TierGate,
    withdrawal_chain,
)
from gates.gate_engine import PolicyGate

from .audit import AuditAction, AuditTrail
from .balances import ensure_account_active
from .config import Settings, settings as default_settings
from .exceptions import InvalidPinFormatError, PinMismatchError
from .journal import TransactionJournal
from .models import (
    BalanceField,
    KycStatus,
    PinVerification,
    TransactionMeta,
    TransactionType,
    UserAccount,
    WithdrawalAccepted,
    WithdrawalBlocked,
    WithdrawalEligibility,
    WithdrawalRequest,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

PIN_PATTERN = re.compile(r"^\d{4}$")


def generate_pin() -> str:
    return f"{secrets.randbelow(9000) + 1000}"


class WithdrawalService:
    def __init__(
        self,
        storage: InMemoryStorage,
        journal: TransactionJournal,
        audit: AuditTrail,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.journal = journal
        self.audit = audit
        self.settings = settings or default_settings

    def policy_gates(self, user: UserAccount) -> list[PolicyGate]:
        """Per-user blocking policies, in the order they are presented."""
        gates: list[PolicyGate] = []
        if user.withdrawal_fee > 0:
            gates.append(FeeGate(
                amount=user.withdrawal_fee,
                instruction=user.withdrawal_fee_instruction or self.settings.WITHDRAWAL_FEE_INSTRUCTION,
            ))
        if user.signal_fee_enabled:
            gates.append(SignalGate(
                instruction=user.signal_fee_instruction or self.settings.SIGNAL_FEE_INSTRUCTION,
            ))
        if user.tier_upgrade_enabled:
            gates.append(TierGate(
                tier=user.tier,
                instruction=user.tier_upgrade_instruction or self.settings.tier_upgrade_instruction(user.tier),
                required_tier=self.settings.REQUIRED_TIER,
            ))
        return gates

    def gate_chain(self, user: UserAccount) -> GateEngine:
        return withdrawal_chain(self.policy_gates(user))

    def kyc_status(self, user_id: UUID) -> KycStatus:
        record = self.storage.find_kyc_for_user(user_id)
        return record.status if record else KycStatus.NOT_SUBMITTED

    def check_eligibility(self, user_id: UUID) -> WithdrawalEligibility:
        user = self.storage.get_user(user_id)
        kyc_status = self.kyc_status(user_id)

        reason = None
        if user.is_blocked:
            reason = "Your account has been blocked. Please contact support."
        elif user.is_suspended:
            reason = "Your account is suspended. Please contact support."
        elif kyc_status != KycStatus.APPROVED:
            reason = (
                "Your KYC verification is pending. Please wait for approval."
                if kyc_status == KycStatus.PENDING
                else "Please complete KYC verification before making withdrawals."
            )

        return WithdrawalEligibility(
            eligible=reason is None,
            reason=reason,
            kyc_status=kyc_status,
            has_pin=bool(user.transaction_pin),
            is_suspended=user.is_suspended,
            is_blocked=user.is_blocked,
            tier=user.tier,
            pending_gates=[g.to_dict() for g in self.policy_gates(user)],
            fiat_balance=user.fiat_balance,
            bitcoin_balance=user.bitcoin_balance,
        )

    def request_withdrawal(self, request: WithdrawalRequest):
        balance_field = BalanceField.for_asset(request.balance_type)

        with self.storage.atomic():
            user = self.storage.get_user(request.user_id)
            context = GateContext(
                amount=Decimal(request.amount),
                available=user.balance_of(balance_field),
                balance_type=request.balance_type.value,
                kyc_status=self.kyc_status(user.id).value,
                is_blocked=user.is_blocked,
                is_suspended=user.is_suspended,
                tier=user.tier,
                pin_on_file=user.transaction_pin,
                submitted_pin=request.pin,
            )
            decision = self.gate_chain(user).evaluate(context)
            if not decision.passed:
                logger.info(
                    "Withdrawal of %s %s by user %s blocked at %s: %s",
                    request.amount, request.balance_type.value, user.id,
                    decision.block.gate, decision.block.code.value,
                )
                return self._blocked(decision.block, decision.evaluated)

            response = self.journal.create_transaction(
                user.id, TransactionType.WITHDRAWAL, request.balance_type, request.amount,
                TransactionMeta(
                    withdrawal_method=request.method,
                    withdrawal_details=request.withdrawal_details,
                ),
            )

        transaction = response.transaction
        logger.info(
            "Withdrawal %s of %s %s reserved for user %s",
            transaction.reference, transaction.amount, transaction.asset.value, user.id,
        )
        return WithdrawalAccepted(
            transaction_id=transaction.id,
            reference=transaction.reference,
            amount=transaction.amount,
            balance_type=transaction.asset,
        )

    def verify_pin(self, user_id: UUID, pin: str) -> PinVerification:
        user = self.storage.get_user(user_id)
        block = PinGate().evaluate(
            GateContext(
                amount=Decimal("0"), available=Decimal("0"), balance_type="FIAT",
                kyc_status=KycStatus.NOT_SUBMITTED.value,
                pin_on_file=user.transaction_pin, submitted_pin=pin,
            )
        )
        if block is not None:
            return PinVerification(valid=False, reason=block.message)
        return PinVerification(valid=True)

    def set_pin(
        self,
        user_id: UUID,
        new_pin: str,
        confirm_pin: str,
        current_pin: Optional[str] = None,
    ) -> UserAccount:
        if new_pin != confirm_pin:
            raise PinMismatchError("PINs do not match")
        if not PIN_PATTERN.match(new_pin or ""):
            raise InvalidPinFormatError("PIN must be exactly 4 digits")

        with self.storage.atomic():
            user = self.storage.get_user(user_id)
            ensure_account_active(user)
            if user.transaction_pin:
                if not current_pin:
                    raise PinMismatchError("Current PIN is required")
                if not self.verify_pin(user_id, current_pin).valid:
                    raise PinMismatchError("Current PIN is incorrect")
            saved = self.storage.save_user(user.model_copy(update={"transaction_pin": new_pin}))

        logger.info("Transaction PIN updated for user %s", user_id)
        return saved

    def reset_pin(self, user_id: UUID, performed_by: str) -> str:
        with self.storage.atomic():
            user = self.storage.get_user(user_id)
            new_pin = generate_pin()
            self.storage.save_user(user.model_copy(update={"transaction_pin": new_pin}))
            self.audit.record(performed_by, AuditAction.USER_PIN_RESET, "User", str(user_id))
        return new_pin

    @staticmethod
    def _blocked(block: GateBlock, evaluated: list[str]) -> WithdrawalBlocked:
        params = block.params
        kyc_status = params.get("kyc_status")
        return WithdrawalBlocked(
            code=block.code,
            message=block.message,
            instruction=params.get("instruction"),
            fee_amount=params.get("fee_amount"),
            tier=params.get("tier"),
            required_tier=params.get("required_tier"),
            kyc_status=KycStatus(kyc_status) if kyc_status else None,
            available=params.get("available"),
            evaluated_gates=evaluated,
        )
