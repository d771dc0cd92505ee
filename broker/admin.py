"""
Admin Operations

Trusted overrides used by the back office. These paths skip account-status
checks and every change is written to the audit trail.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID, uuid4

from .audit import AuditAction, AuditTrail
from .balances import snapshot
from .exceptions import InvalidStateTransitionError, PlanInUseError
from .journal import TransactionJournal
from .models import (
    BalanceSnapshot,
    CreateTransactionRequest,
    InvestmentPlan,
    KycRecord,
    KycStatus,
    PinResetResponse,
    PlanRequest,
    Transaction,
    TransactionMeta,
    TransactionResponse,
    UpdateBalancesRequest,
    UpdateGateSettingsRequest,
    UserAccount,
    UserAction,
)
from .storage import InMemoryStorage
from .withdrawals import WithdrawalService

logger = logging.getLogger(__name__)

_USER_FLAGS = {
    UserAction.SUSPEND: ({"is_suspended": True}, AuditAction.USER_SUSPENDED),
    UserAction.UNSUSPEND: ({"is_suspended": False}, AuditAction.USER_UNSUSPENDED),
    UserAction.BLOCK: ({"is_blocked": True}, AuditAction.USER_BLOCKED),
    UserAction.UNBLOCK: ({"is_blocked": False}, AuditAction.USER_UNBLOCKED),
}


class AdminService:
    def __init__(
        self,
        storage: InMemoryStorage,
        journal: TransactionJournal,
        withdrawals: WithdrawalService,
        audit: AuditTrail,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.journal = journal
        self.withdrawals = withdrawals
        self.audit = audit
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # users

    def update_user_balances(self, user_id: UUID, request: UpdateBalancesRequest) -> BalanceSnapshot:
        """Overwrite any subset of the ledger fields. No business invariants are checked."""
        updates = request.model_dump(exclude_none=True, exclude={"performed_by"})
        with self.storage.atomic():
            user = self.storage.get_user(user_id)
            saved = self.storage.save_user(user.model_copy(update=updates))
            self.audit.record(
                request.performed_by, AuditAction.USER_BALANCES_UPDATED, "User", str(user_id), **updates
            )
        logger.warning("Balances of user %s overwritten by %s: %s", user_id, request.performed_by, updates)
        return snapshot(saved)

    def update_gate_settings(self, user_id: UUID, request: UpdateGateSettingsRequest) -> UserAccount:
        updates = request.model_dump(exclude_none=True, exclude={"performed_by"})
        with self.storage.atomic():
            user = self.storage.get_user(user_id)
            saved = self.storage.save_user(user.model_copy(update=updates))
            self.audit.record(
                request.performed_by, AuditAction.USER_GATES_UPDATED, "User", str(user_id), **updates
            )
        return saved

    def perform_user_action(self, user_id: UUID, action: UserAction, performed_by: str) -> PinResetResponse:
        if action == UserAction.RESET_PIN:
            new_pin = self.withdrawals.reset_pin(user_id, performed_by)
            return PinResetResponse(user_id=user_id, action=action, new_pin=new_pin)

        updates, audit_action = _USER_FLAGS[action]
        with self.storage.atomic():
            user = self.storage.get_user(user_id)
            self.storage.save_user(user.model_copy(update=updates))
            self.audit.record(performed_by, audit_action, "User", str(user_id))
        return PinResetResponse(user_id=user_id, action=action)

    def assign_plan(self, user_id: UUID, plan_id: Optional[UUID], performed_by: str) -> UserAccount:
        with self.storage.atomic():
            if plan_id is not None:
                self.storage.get_plan(plan_id)
            user = self.storage.get_user(user_id)
            saved = self.storage.save_user(user.model_copy(update={"current_plan_id": plan_id}))
            self.audit.record(performed_by, AuditAction.USER_PLAN_ASSIGNED, "User", str(user_id), plan_id=plan_id)
        return saved

    # kyc

    def review_kyc(
        self,
        kyc_id: UUID,
        status: KycStatus,
        performed_by: str,
        rejection_reason: Optional[str] = None,
    ) -> KycRecord:
        with self.storage.atomic():
            record = self.storage.get_kyc(kyc_id)
            if record.status != KycStatus.PENDING:
                raise InvalidStateTransitionError(
                    f"Cannot review KYC in {record.status.value} state", status=record.status.value
                )
            record = record.model_copy(update={
                "status": status,
                "rejection_reason": rejection_reason if status == KycStatus.DECLINED else None,
                "reviewed_at": self.clock(),
                "reviewed_by": performed_by,
            })
            self.storage.save_kyc(record)
            action = AuditAction.KYC_APPROVED if status == KycStatus.APPROVED else AuditAction.KYC_DECLINED
            self.audit.record(
                performed_by, action, "KYC", str(kyc_id),
                user_id=record.user_id, rejection_reason=record.rejection_reason,
            )
        return record

    def set_kyc_status(self, user_id: UUID, status: KycStatus, performed_by: str) -> Optional[KycRecord]:
        """Trusted override. NOT_SUBMITTED removes the user's KYC record."""
        with self.storage.atomic():
            self.storage.get_user(user_id)
            record = self.storage.find_kyc_for_user(user_id)
            now = self.clock()
            if status == KycStatus.NOT_SUBMITTED:
                if record is not None:
                    self.storage.delete_kyc(record.id)
                record = None
            elif record is None:
                record = KycRecord(
                    id=uuid4(), user_id=user_id, status=status,
                    document_type="admin_override", document_url="",
                    submitted_at=now, reviewed_at=now, reviewed_by=performed_by,
                )
                self.storage.save_kyc(record)
            else:
                record = record.model_copy(update={
                    "status": status, "reviewed_at": now, "reviewed_by": performed_by,
                })
                self.storage.save_kyc(record)
            self.audit.record(performed_by, AuditAction.KYC_STATUS_SET, "User", str(user_id), status=status.value)
        return record

    def get_kyc(self, kyc_id: UUID) -> KycRecord:
        return self.storage.get_kyc(kyc_id)

    def pending_kyc(self) -> list[KycRecord]:
        return self.storage.list_kyc(KycStatus.PENDING)

    # plans

    def create_plan(self, request: PlanRequest) -> InvestmentPlan:
        plan = InvestmentPlan(
            id=uuid4(),
            created_at=self.clock(),
            **request.model_dump(exclude={"performed_by"}),
        )
        with self.storage.atomic():
            self.storage.save_plan(plan)
            self.audit.record(request.performed_by, AuditAction.PLAN_CREATED, "InvestmentPlan", str(plan.id),
                              name=plan.name)
        return plan

    def update_plan(self, plan_id: UUID, request: PlanRequest) -> InvestmentPlan:
        with self.storage.atomic():
            plan = self.storage.get_plan(plan_id)
            plan = plan.model_copy(update=request.model_dump(exclude={"performed_by"}))
            self.storage.save_plan(plan)
            self.audit.record(request.performed_by, AuditAction.PLAN_UPDATED, "InvestmentPlan", str(plan_id),
                              name=plan.name)
        return plan

    def delete_plan(self, plan_id: UUID, performed_by: str) -> None:
        with self.storage.atomic():
            plan = self.storage.get_plan(plan_id)
            in_use = self.storage.list_investments(plan_id=plan_id)
            if in_use:
                raise PlanInUseError(
                    "Cannot delete plan with existing investments. Deactivate it instead.",
                    plan_id=str(plan_id), investments=len(in_use),
                )
            self.storage.delete_plan(plan_id)
            self.audit.record(performed_by, AuditAction.PLAN_DELETED, "InvestmentPlan", str(plan_id),
                              name=plan.name)

    # transactions

    def create_transaction(self, request: CreateTransactionRequest) -> TransactionResponse:
        response = self.journal.create_transaction(
            request.user_id, request.type, request.asset, request.amount,
            TransactionMeta(description=request.description),
            status=request.status,
            created_by_admin=request.performed_by,
            backdated_at=request.backdated_at,
        )
        transaction = response.transaction
        self.audit.record(
            request.performed_by, AuditAction.TRANSACTION_CREATED, "Transaction", str(transaction.id),
            type=transaction.type.value, amount=transaction.amount, status=transaction.status.value,
        )
        return response

    def approve_transaction(self, transaction_id: UUID, performed_by: str) -> TransactionResponse:
        response = self.journal.approve(transaction_id, performed_by)
        self.audit.record(performed_by, AuditAction.TRANSACTION_APPROVED, "Transaction", str(transaction_id),
                          reference=response.transaction.reference)
        return response

    def decline_transaction(self, transaction_id: UUID, performed_by: str) -> TransactionResponse:
        response = self.journal.decline(transaction_id, performed_by)
        self.audit.record(performed_by, AuditAction.TRANSACTION_DECLINED, "Transaction", str(transaction_id),
                          reference=response.transaction.reference)
        return response

    def backdate_transaction(
        self, transaction_id: UUID, backdated_at: Optional[datetime], performed_by: str
    ) -> Transaction:
        transaction = self.journal.backdate(transaction_id, backdated_at)
        self.audit.record(performed_by, AuditAction.TRANSACTION_BACKDATED, "Transaction", str(transaction_id),
                          backdated_at=transaction.backdated_at)
        return transaction
