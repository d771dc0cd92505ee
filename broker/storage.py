import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

from .exceptions import (
    ConcurrentModificationError,
    InvestmentNotFoundError,
    KycNotFoundError,
    PlanNotFoundError,
    TransactionNotFoundError,
    UserNotFoundError,
)
from .models import (
    AuditEntry,
    InvestmentPlan,
    KycRecord,
    KycStatus,
    Transaction,
    UserAccount,
    UserInvestment,
)

STARTER_PLAN_ID = UUID("11111111-1111-1111-1111-111111111111")
SILVER_PLAN_ID = UUID("22222222-2222-2222-2222-222222222222")
GOLD_PLAN_ID = UUID("33333333-3333-3333-3333-333333333333")

_MISSING = object()


class InMemoryStorage:
    """Document store for users, plans, investments, transactions and KYC.

    Every logical operation runs inside ``atomic()``: the store lock is held
    for the block and each write records the value it replaced, so an
    exception anywhere in the block undoes exactly the keys it touched.
    User documents carry a ``version`` that ``save_user`` compares before
    writing.
    """

    def __init__(self, seed: bool = True):
        self._lock = threading.RLock()
        self.users: dict[UUID, dict] = {}
        self.plans: dict[UUID, dict] = {}
        self.investments: dict[UUID, dict] = {}
        self.transactions: dict[UUID, dict] = {}
        self.kyc: dict[UUID, dict] = {}
        self.audit_log: list[dict] = []
        self.reference_index: dict[str, UUID] = {}
        self._undo: Optional[list[tuple]] = None
        if seed:
            self._seed_data()

    def _seed_data(self):
        now = datetime.now(timezone.utc)
        for plan_id, name, lo, hi, roi, days in (
            (STARTER_PLAN_ID, "Starter Plan", "100", "4999", "10", 30),
            (SILVER_PLAN_ID, "Silver Plan", "5000", "19999", "25", 60),
            (GOLD_PLAN_ID, "Gold Plan", "20000", "100000", "50", 90),
        ):
            self.plans[plan_id] = {
                "id": plan_id, "name": name,
                "min_amount": Decimal(lo), "max_amount": Decimal(hi),
                "roi_percentage": Decimal(roi), "duration_days": days,
                "is_active": True, "created_at": now,
            }

    @contextmanager
    def atomic(self) -> Iterator["InMemoryStorage"]:
        with self._lock:
            outermost = self._undo is None
            if outermost:
                self._undo = []
            mark = len(self._undo)
            try:
                yield self
            except Exception:
                self._rollback(mark)
                raise
            finally:
                if outermost:
                    self._undo = None

    def _rollback(self, mark: int) -> None:
        while len(self._undo) > mark:
            collection, key, previous = self._undo.pop()
            if collection is self.audit_log:
                del collection[key:]
            elif previous is _MISSING:
                collection.pop(key, None)
            else:
                collection[key] = previous

    def _put(self, collection: dict, key, value) -> None:
        # Stored documents are replaced, never mutated in place.
        if self._undo is not None:
            self._undo.append((collection, key, collection.get(key, _MISSING)))
        collection[key] = value

    def _pop(self, collection: dict, key):
        value = collection.pop(key, _MISSING)
        if value is not _MISSING and self._undo is not None:
            self._undo.append((collection, key, value))
        return value

    def _rows(self, collection: dict) -> list:
        with self._lock:
            return list(collection.values())

    # users

    def get_user(self, user_id: UUID) -> UserAccount:
        data = self.users.get(user_id)
        if not data:
            raise UserNotFoundError(f"User {user_id} not found")
        return UserAccount(**data)

    def insert_user(self, user: UserAccount) -> UserAccount:
        with self._lock:
            self._put(self.users, user.id, user.model_dump())
        return user

    def save_user(self, user: UserAccount) -> UserAccount:
        with self._lock:
            stored = self.users.get(user.id)
            if not stored:
                raise UserNotFoundError(f"User {user.id} not found")
            if stored["version"] != user.version:
                raise ConcurrentModificationError(
                    f"User {user.id} was modified concurrently (expected version {user.version}, "
                    f"found {stored['version']})"
                )
            data = user.model_dump()
            data["version"] = user.version + 1
            data["updated_at"] = datetime.now(timezone.utc)
            self._put(self.users, user.id, data)
            return UserAccount(**data)

    # plans

    def get_plan(self, plan_id: UUID) -> InvestmentPlan:
        data = self.plans.get(plan_id)
        if not data:
            raise PlanNotFoundError(f"Investment plan {plan_id} not found")
        return InvestmentPlan(**data)

    def save_plan(self, plan: InvestmentPlan) -> InvestmentPlan:
        with self._lock:
            self._put(self.plans, plan.id, plan.model_dump())
        return plan

    def delete_plan(self, plan_id: UUID) -> None:
        with self._lock:
            if self._pop(self.plans, plan_id) is _MISSING:
                raise PlanNotFoundError(f"Investment plan {plan_id} not found")

    def list_plans(self, active_only: bool = False) -> list[InvestmentPlan]:
        plans = [InvestmentPlan(**p) for p in self._rows(self.plans)]
        if active_only:
            plans = [p for p in plans if p.is_active]
        plans.sort(key=lambda p: p.min_amount)
        return plans

    # investments

    def get_investment(self, investment_id: UUID) -> UserInvestment:
        data = self.investments.get(investment_id)
        if not data:
            raise InvestmentNotFoundError(f"Investment {investment_id} not found")
        return UserInvestment(**data)

    def save_investment(self, investment: UserInvestment) -> UserInvestment:
        with self._lock:
            self._put(self.investments, investment.id, investment.model_dump())
        return investment

    def list_investments(self, user_id: Optional[UUID] = None,
                         plan_id: Optional[UUID] = None) -> list[UserInvestment]:
        investments = [
            UserInvestment(**i) for i in self._rows(self.investments)
            if (user_id is None or i["user_id"] == user_id)
            and (plan_id is None or i["plan_id"] == plan_id)
        ]
        investments.sort(key=lambda i: i.created_at, reverse=True)
        return investments

    # transactions

    def get_transaction(self, transaction_id: UUID) -> Transaction:
        data = self.transactions.get(transaction_id)
        if not data:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return Transaction(**data)

    def save_transaction(self, transaction: Transaction) -> Transaction:
        with self._lock:
            self._put(self.transactions, transaction.id, transaction.model_dump())
            self._put(self.reference_index, transaction.reference, transaction.id)
        return transaction

    def reference_exists(self, reference: str) -> bool:
        return reference in self.reference_index

    def list_transactions(self, user_id: Optional[UUID] = None) -> list[Transaction]:
        transactions = [
            Transaction(**t) for t in self._rows(self.transactions)
            if user_id is None or t["user_id"] == user_id
        ]
        transactions.sort(key=lambda t: t.effective_at, reverse=True)
        return transactions

    # kyc

    def get_kyc(self, kyc_id: UUID) -> KycRecord:
        data = self.kyc.get(kyc_id)
        if not data:
            raise KycNotFoundError(f"KYC submission {kyc_id} not found")
        return KycRecord(**data)

    def find_kyc_for_user(self, user_id: UUID) -> Optional[KycRecord]:
        for data in self._rows(self.kyc):
            if data["user_id"] == user_id:
                return KycRecord(**data)
        return None

    def save_kyc(self, record: KycRecord) -> KycRecord:
        with self._lock:
            self._put(self.kyc, record.id, record.model_dump())
        return record

    def delete_kyc(self, kyc_id: UUID) -> None:
        with self._lock:
            self._pop(self.kyc, kyc_id)

    def list_kyc(self, status: Optional[KycStatus] = None) -> list[KycRecord]:
        records = [KycRecord(**k) for k in self._rows(self.kyc)]
        if status is not None:
            records = [r for r in records if r.status == status]
        records.sort(key=lambda r: r.submitted_at)
        return records

    # audit

    def append_audit(self, entry: AuditEntry) -> AuditEntry:
        with self._lock:
            if self._undo is not None:
                self._undo.append((self.audit_log, len(self.audit_log), None))
            self.audit_log.append(entry.model_dump())
        return entry

    def list_audit(self, entity_id: Optional[str] = None) -> list[AuditEntry]:
        with self._lock:
            entries = list(self.audit_log)
        return [
            AuditEntry(**e) for e in entries
            if entity_id is None or e["entity_id"] == entity_id
        ]
