"""
Investment Lifecycle Manager

subscribe -> credit_profit (any number of times, bounded by the expected
profit) -> reclaim_capital once the plan has run its course. Reclaim is the
only transition out of ACTIVE; an investment whose profit is fully credited
stays ACTIVE until its capital is reclaimed.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from .audit import AuditAction, AuditTrail
from .balances import BalanceLedger, ensure_account_active, validate_amount
from .exceptions import (
    AlreadyReclaimedError,
    AlreadySubscribedError,
    AmountOutOfRangeError,
    ExceedsExpectedReturnError,
    InvestmentNotActiveError,
    InvestmentNotFoundError,
    NotMaturedError,
    PlanInactiveError,
    PlanNotFoundError,
)
from .journal import TransactionJournal
from .models import (
    Asset,
    BalanceField,
    InvestmentPlan,
    InvestmentStats,
    InvestmentStatus,
    InvestmentView,
    ProfitCreditResponse,
    ReclaimCapitalResponse,
    TransactionMeta,
    TransactionType,
    UserInvestment,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def expected_return(amount: Decimal, roi_percentage: Decimal) -> Decimal:
    return amount * (1 + roi_percentage / Decimal(100))


def ideal_daily_profit(investment: UserInvestment, duration_days: int) -> Decimal:
    """Advisory per-day profit for spreading the expected profit evenly."""
    if duration_days <= 0:
        return Decimal("0")
    return investment.expected_profit / Decimal(duration_days)


def progress(investment: UserInvestment) -> Decimal:
    expected = investment.expected_profit
    if expected <= 0:
        return Decimal("0")
    percent = investment.profit_credited / expected * 100
    return min(Decimal(100), max(Decimal(0), percent))


def _ceil_days(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


class InvestmentManager:
    def __init__(
        self,
        storage: InMemoryStorage,
        balances: BalanceLedger,
        journal: TransactionJournal,
        audit: AuditTrail,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.balances = balances
        self.journal = journal
        self.audit = audit
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def subscribe(
        self, user_id: UUID, plan_id: UUID, amount: Decimal, asset: Asset = Asset.FIAT
    ) -> UserInvestment:
        amount = validate_amount(amount, asset)

        with self.storage.atomic():
            user = self.storage.get_user(user_id)
            ensure_account_active(user)

            plan = self.storage.get_plan(plan_id)
            if not plan.is_active:
                raise PlanInactiveError("Investment plan is not active", plan_id=str(plan_id))
            if amount < plan.min_amount or amount > plan.max_amount:
                raise AmountOutOfRangeError(amount, plan.min_amount, plan.max_amount)

            for existing in self.storage.list_investments(user_id=user_id, plan_id=plan_id):
                if existing.status == InvestmentStatus.ACTIVE:
                    raise AlreadySubscribedError(
                        "You already have an active subscription to this plan", plan_id=str(plan_id)
                    )

            self.balances.transfer(
                user_id, BalanceField.for_asset(asset), BalanceField.ACTIVE_INVESTMENT, amount,
                reason=f"subscription to {plan.name}",
            )
            current = self.storage.get_user(user_id)
            self.storage.save_user(current.model_copy(update={"current_plan_id": plan.id}))

            now = self.clock()
            investment = UserInvestment(
                id=uuid4(),
                user_id=user_id,
                plan_id=plan.id,
                invested_amount=amount,
                expected_return=expected_return(amount, plan.roi_percentage),
                funding_asset=asset,
                start_date=now,
                end_date=now + timedelta(days=plan.duration_days),
                created_at=now,
                updated_at=now,
            )
            self.storage.save_investment(investment)

        logger.info(
            "User %s subscribed %s %s to %s (investment %s, expected return %s)",
            user_id, amount, asset.value, plan.name, investment.id, investment.expected_return,
        )
        return investment

    def credit_profit(
        self, investment_id: UUID, amount: Decimal, performed_by: Optional[str] = None
    ) -> ProfitCreditResponse:
        amount = validate_amount(amount)

        with self.storage.atomic():
            investment = self.storage.get_investment(investment_id)
            if investment.status != InvestmentStatus.ACTIVE:
                raise InvestmentNotActiveError(
                    "Can only credit profit to active investments", status=investment.status.value
                )
            remaining = investment.remaining_profit
            if amount > remaining:
                logger.info(
                    "Rejected profit credit of %s on investment %s: %s remaining",
                    amount, investment_id, remaining,
                )
                raise ExceedsExpectedReturnError(amount, remaining)

            investment = investment.model_copy(update={
                "profit_credited": investment.profit_credited + amount,
                "updated_at": self.clock(),
            })
            self.storage.save_investment(investment)
            response = self.journal.create_transaction(
                investment.user_id, TransactionType.PROFIT, Asset.FIAT, amount,
                TransactionMeta(investment_id=investment.id),
                created_by_admin=performed_by,
            )
            if performed_by:
                self.audit.record(
                    performed_by, AuditAction.PROFIT_CREDITED, "Investment", str(investment.id),
                    user_id=investment.user_id, amount=amount,
                )

        logger.info(
            "Credited profit %s to investment %s (%s of %s)",
            amount, investment_id, investment.profit_credited, investment.expected_profit,
        )
        return ProfitCreditResponse(
            investment=investment,
            transaction=response.transaction,
            remaining_profit=investment.remaining_profit,
        )

    def reclaim_capital(self, investment_id: UUID, user_id: Optional[UUID] = None) -> ReclaimCapitalResponse:
        with self.storage.atomic():
            investment = self.storage.get_investment(investment_id)
            if user_id is not None and investment.user_id != user_id:
                raise InvestmentNotFoundError(f"Investment {investment_id} not found")

            ensure_account_active(self.storage.get_user(investment.user_id))
            if investment.capital_reclaimed:
                raise AlreadyReclaimedError()
            if investment.status != InvestmentStatus.ACTIVE:
                raise InvestmentNotActiveError("Investment is not active", status=investment.status.value)
            now = self.clock()
            if now < investment.end_date:
                raise NotMaturedError(investment.end_date)

            self.balances.transfer(
                investment.user_id, BalanceField.ACTIVE_INVESTMENT,
                BalanceField.for_asset(investment.funding_asset), investment.invested_amount,
                reason=f"capital reclaim {investment.id}",
            )
            investment = investment.model_copy(update={
                "capital_reclaimed": True,
                "status": InvestmentStatus.COMPLETED,
                "updated_at": now,
            })
            self.storage.save_investment(investment)

        logger.info("Reclaimed capital %s from investment %s", investment.invested_amount, investment_id)
        return ReclaimCapitalResponse(amount=investment.invested_amount, investment=investment)

    def available_plans(self) -> list[InvestmentPlan]:
        return self.storage.list_plans(active_only=True)

    def list_user_investments(self, user_id: UUID) -> list[InvestmentView]:
        now = self.clock()
        views = []
        for inv in self.storage.list_investments(user_id=user_id):
            try:
                plan = self.storage.get_plan(inv.plan_id)
            except PlanNotFoundError:
                plan = None
            duration = plan.duration_days if plan else _ceil_days(inv.end_date - inv.start_date)
            views.append(InvestmentView(
                id=inv.id,
                plan_id=inv.plan_id,
                plan_name=plan.name if plan else "Unknown Plan",
                invested_amount=inv.invested_amount,
                expected_return=inv.expected_return,
                profit_credited=inv.profit_credited,
                ideal_daily_profit=ideal_daily_profit(inv, duration),
                roi_percentage=plan.roi_percentage if plan else Decimal("0"),
                duration_days=duration,
                start_date=inv.start_date,
                end_date=inv.end_date,
                status=inv.status,
                days_elapsed=max(0, _ceil_days(now - inv.start_date)),
                days_remaining=max(0, _ceil_days(inv.end_date - now)),
                progress=progress(inv),
                capital_reclaimed=inv.capital_reclaimed,
                can_reclaim_capital=(
                    now >= inv.end_date
                    and not inv.capital_reclaimed
                    and inv.status == InvestmentStatus.ACTIVE
                ),
            ))
        return views

    def investment_stats(self, user_id: UUID) -> InvestmentStats:
        investments = self.storage.list_investments(user_id=user_id)
        active = [i for i in investments if i.status == InvestmentStatus.ACTIVE]
        completed = [i for i in investments if i.status == InvestmentStatus.COMPLETED]
        return InvestmentStats(
            active_count=len(active),
            total_invested=sum((i.invested_amount for i in active), Decimal("0")),
            completed_count=len(completed),
            total_returns=sum((i.expected_return for i in completed), Decimal("0")),
        )
