"""
Unit Tests for the Withdrawal Eligibility Gate

Tests cover:
1. Gate ordering and the first-block outcome
2. Reservation on acceptance, restore on decline
3. Per-user fee, signal and tier policies
4. Transaction PIN management
5. Eligibility summary
"""

import pytest
from decimal import Decimal

from broker.exceptions import InvalidPinFormatError, PinMismatchError
from broker.models import (
    Asset,
    KycStatus,
    RegisterUserRequest,
    SetPinRequest,
    SubmitKycRequest,
    TransactionStatus,
    UpdateBalancesRequest,
    UpdateGateSettingsRequest,
    UserAction,
    WithdrawalAccepted,
    WithdrawalBlocked,
    WithdrawalMethod,
    WithdrawalRequest,
)
from broker.service import BrokerService
from gates import GateCode


ADMIN = "admin@example.com"
PIN = "1234"


def eligible_user(service, fiat="1000", pin=PIN):
    user = service.register_user(RegisterUserRequest(transaction_pin=pin))
    service.admin.update_user_balances(
        user.id, UpdateBalancesRequest(fiat_balance=Decimal(fiat), performed_by=ADMIN)
    )
    service.admin.set_kyc_status(user.id, KycStatus.APPROVED, ADMIN)
    return user


def withdraw(service, user_id, amount="200", pin=PIN, balance_type=Asset.FIAT):
    return service.request_withdrawal(WithdrawalRequest(
        user_id=user_id,
        balance_type=balance_type,
        amount=Decimal(amount),
        method=WithdrawalMethod.BITCOIN,
        withdrawal_details={"walletAddress": "bc1qexampleaddress"},
        pin=pin,
    ))


def set_gates(service, user_id, **settings):
    service.admin.update_gate_settings(user_id, UpdateGateSettingsRequest(performed_by=ADMIN, **settings))


class TestWithdrawalAccepted:
    """Tests for withdrawals that pass every gate."""

    def test_accepted_withdrawal_reserves_funds(self):
        service = BrokerService()
        user = eligible_user(service)

        result = withdraw(service, user.id)

        assert isinstance(result, WithdrawalAccepted)
        assert result.reference.startswith("WD-")
        assert service.get_balance(user.id).fiat_balance == Decimal("800")
        transaction = service.get_transaction(result.transaction_id)
        assert transaction.status == TransactionStatus.PENDING
        assert transaction.withdrawal_method == WithdrawalMethod.BITCOIN
        assert transaction.withdrawal_details["walletAddress"] == "bc1qexampleaddress"

    def test_decline_restores_exact_balance(self):
        service = BrokerService()
        user = eligible_user(service, "1000")
        before = service.get_balance(user.id).fiat_balance

        result = withdraw(service, user.id, "333.33")
        service.decline(result.transaction_id, ADMIN)

        assert service.get_balance(user.id).fiat_balance == before

    def test_approve_counts_withdrawal(self):
        service = BrokerService()
        user = eligible_user(service)

        result = withdraw(service, user.id)
        service.approve(result.transaction_id, ADMIN)

        balance = service.get_balance(user.id)
        assert balance.fiat_balance == Decimal("800")
        assert balance.total_withdrawn == Decimal("200")

    def test_bitcoin_balance_withdrawal(self):
        service = BrokerService()
        user = eligible_user(service)
        service.admin.update_user_balances(
            user.id, UpdateBalancesRequest(bitcoin_balance=Decimal("0.5"), performed_by=ADMIN)
        )

        result = withdraw(service, user.id, "0.1", balance_type=Asset.BTC)

        assert isinstance(result, WithdrawalAccepted)
        balance = service.get_balance(user.id)
        assert balance.bitcoin_balance == Decimal("0.4")
        assert balance.fiat_balance == Decimal("1000")


class TestGateOrder:
    """Tests for the order in which gates block."""

    def test_fee_blocks_without_side_effects(self):
        service = BrokerService()
        user = eligible_user(service)
        set_gates(service, user.id, withdrawal_fee=Decimal("25"))

        result = withdraw(service, user.id)

        assert isinstance(result, WithdrawalBlocked)
        assert result.code == GateCode.WITHDRAWAL_FEE_REQUIRED
        assert result.fee_amount == Decimal("25")
        assert result.evaluated_gates == ["account_status", "kyc", "amount", "withdrawal_fee"]
        assert service.get_balance(user.id).fiat_balance == Decimal("1000")
        assert service.list_transactions(user.id).total_count == 0

    def test_policies_are_reported_one_at_a_time(self):
        service = BrokerService()
        user = eligible_user(service)
        set_gates(
            service, user.id,
            withdrawal_fee=Decimal("25"), withdrawal_fee_instruction="Send the fee to support",
            signal_fee_enabled=True, tier_upgrade_enabled=True,
        )

        first = withdraw(service, user.id)
        assert first.code == GateCode.WITHDRAWAL_FEE_REQUIRED
        assert first.instruction == "Send the fee to support"

        set_gates(service, user.id, withdrawal_fee=Decimal("0"))
        second = withdraw(service, user.id)
        assert second.code == GateCode.SIGNAL_FEE_REQUIRED

        set_gates(service, user.id, signal_fee_enabled=False)
        third = withdraw(service, user.id)
        assert third.code == GateCode.TIER_UPGRADE_REQUIRED
        assert third.tier == 1
        assert third.required_tier == 3
        assert "Tier 1" in third.instruction

        set_gates(service, user.id, tier_upgrade_enabled=False)
        assert isinstance(withdraw(service, user.id), WithdrawalAccepted)

    def test_pending_kyc_stops_at_kyc_gate(self):
        service = BrokerService()
        user = service.register_user(RegisterUserRequest(transaction_pin=PIN))
        service.admin.update_user_balances(
            user.id, UpdateBalancesRequest(fiat_balance=Decimal("1000"), performed_by=ADMIN)
        )
        service.submit_kyc(SubmitKycRequest(
            user_id=user.id, document_type="passport", document_url="https://files.example.com/id.png",
        ))
        set_gates(service, user.id, withdrawal_fee=Decimal("25"))

        result = withdraw(service, user.id)

        assert result.code == GateCode.KYC_REQUIRED
        assert result.kyc_status == KycStatus.PENDING
        assert result.evaluated_gates == ["account_status", "kyc"]

    def test_missing_kyc(self):
        service = BrokerService()
        user = service.register_user(RegisterUserRequest(transaction_pin=PIN))

        result = withdraw(service, user.id)

        assert result.code == GateCode.KYC_REQUIRED
        assert result.kyc_status == KycStatus.NOT_SUBMITTED

    def test_account_status_blocks_first(self):
        service = BrokerService()
        user = eligible_user(service)
        service.admin.perform_user_action(user.id, UserAction.SUSPEND, ADMIN)

        assert withdraw(service, user.id).code == GateCode.ACCOUNT_SUSPENDED

        service.admin.perform_user_action(user.id, UserAction.BLOCK, ADMIN)
        result = withdraw(service, user.id)
        assert result.code == GateCode.ACCOUNT_BLOCKED
        assert result.evaluated_gates == ["account_status"]

    def test_amount_checks_before_policies(self):
        service = BrokerService()
        user = eligible_user(service, "100")
        set_gates(service, user.id, signal_fee_enabled=True)

        over = withdraw(service, user.id, "100.01")
        assert over.code == GateCode.INSUFFICIENT_FUNDS
        assert over.available == Decimal("100")

        assert withdraw(service, user.id, "0").code == GateCode.INVALID_AMOUNT

    def test_pin_is_checked_last(self):
        service = BrokerService()
        user = eligible_user(service)

        wrong = withdraw(service, user.id, pin="9999")
        assert wrong.code == GateCode.INVALID_PIN
        assert wrong.evaluated_gates[-1] == "pin"
        assert service.get_balance(user.id).fiat_balance == Decimal("1000")

        no_pin_user = eligible_user(service, pin=None)
        assert withdraw(service, no_pin_user.id).code == GateCode.PIN_NOT_SET


class TestWithdrawalRequestValidation:
    """Tests for per-method withdrawal details."""

    def test_cashapp_tag_must_start_with_dollar(self):
        with pytest.raises(ValueError):
            WithdrawalRequest(
                user_id=BrokerService().register_user().id,
                balance_type=Asset.FIAT, amount=Decimal("10"),
                method=WithdrawalMethod.CASHAPP, withdrawal_details={"cashtag": "jane"},
            )

    def test_bank_transfer_requires_all_fields(self):
        with pytest.raises(ValueError):
            WithdrawalRequest(
                user_id=BrokerService().register_user().id,
                balance_type=Asset.FIAT, amount=Decimal("10"),
                method=WithdrawalMethod.BANK_TRANSFER,
                withdrawal_details={"bankName": "First Bank", "accountName": "Jane"},
            )

    def test_zelle_accepts_phone(self):
        request = WithdrawalRequest(
            user_id=BrokerService().register_user().id,
            balance_type=Asset.FIAT, amount=Decimal("10"),
            method=WithdrawalMethod.ZELLE, withdrawal_details={"zellePhone": "+15555550100"},
        )
        assert request.method == WithdrawalMethod.ZELLE


class TestTransactionPin:
    """Tests for setting and verifying the transaction PIN."""

    def test_set_first_pin(self):
        service = BrokerService()
        user = service.register_user()

        service.set_transaction_pin(user.id, SetPinRequest(new_pin="4321", confirm_pin="4321"))

        assert service.verify_pin(user.id, "4321").valid is True
        assert service.verify_pin(user.id, "0000").valid is False

    def test_change_requires_current_pin(self):
        service = BrokerService()
        user = service.register_user(RegisterUserRequest(transaction_pin=PIN))

        with pytest.raises(PinMismatchError):
            service.set_transaction_pin(user.id, SetPinRequest(new_pin="5678", confirm_pin="5678"))
        with pytest.raises(PinMismatchError):
            service.set_transaction_pin(
                user.id, SetPinRequest(new_pin="5678", confirm_pin="5678", current_pin="0000")
            )

        service.set_transaction_pin(
            user.id, SetPinRequest(new_pin="5678", confirm_pin="5678", current_pin=PIN)
        )
        assert service.verify_pin(user.id, "5678").valid is True

    def test_pin_format_and_confirmation(self):
        service = BrokerService()
        user = service.register_user()

        with pytest.raises(PinMismatchError):
            service.set_transaction_pin(user.id, SetPinRequest(new_pin="1234", confirm_pin="1235"))
        with pytest.raises(InvalidPinFormatError):
            service.set_transaction_pin(user.id, SetPinRequest(new_pin="12a4", confirm_pin="12a4"))
        with pytest.raises(InvalidPinFormatError):
            service.set_transaction_pin(user.id, SetPinRequest(new_pin="12345", confirm_pin="12345"))

    def test_verify_without_pin(self):
        service = BrokerService()
        user = service.register_user()

        result = service.verify_pin(user.id, "1234")

        assert result.valid is False
        assert result.reason == "Please set up your transaction PIN first"


class TestEligibilitySummary:
    """Tests for the eligibility summary shown before a withdrawal."""

    def test_eligible_user(self):
        service = BrokerService()
        user = eligible_user(service)

        summary = service.check_withdrawal_eligibility(user.id)

        assert summary.eligible is True
        assert summary.has_pin is True
        assert summary.pending_gates == []
        assert summary.fiat_balance == Decimal("1000")

    def test_summary_lists_policy_gates(self):
        service = BrokerService()
        user = eligible_user(service)
        set_gates(service, user.id, withdrawal_fee=Decimal("10"), tier_upgrade_enabled=True, tier=2)

        summary = service.check_withdrawal_eligibility(user.id)

        assert [g["type"] for g in summary.pending_gates] == ["withdrawal_fee", "tier_upgrade"]
        assert summary.pending_gates[1]["tier"] == 2

    def test_blocked_user_not_eligible(self):
        service = BrokerService()
        user = eligible_user(service)
        service.admin.perform_user_action(user.id, UserAction.BLOCK, ADMIN)

        summary = service.check_withdrawal_eligibility(user.id)

        assert summary.eligible is False
        assert summary.is_blocked is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
