"""
Unit Tests for the Investment Lifecycle

Tests cover:
1. Subscription and plan bounds
2. Profit crediting up to the expected profit
3. Capital reclaim after maturity
4. Investment read models
"""

import threading
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from broker.exceptions import (
    AccountSuspendedError,
    AlreadyReclaimedError,
    AlreadySubscribedError,
    AmountOutOfRangeError,
    ExceedsExpectedReturnError,
    InsufficientFundsError,
    InvalidAmountError,
    InvestmentNotFoundError,
    NotMaturedError,
    PlanInactiveError,
    PlanNotFoundError,
)
from broker.models import (
    Asset,
    InvestmentStatus,
    PlanRequest,
    TransactionType,
    UpdateBalancesRequest,
    UserAction,
)
from broker.service import BrokerService
from broker.storage import GOLD_PLAN_ID, SILVER_PLAN_ID, STARTER_PLAN_ID
from uuid import uuid4


ADMIN = "admin@example.com"


class FakeClock:
    def __init__(self, start=datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def funded_user(service, fiat="1000"):
    user = service.register_user()
    service.admin.update_user_balances(
        user.id, UpdateBalancesRequest(fiat_balance=Decimal(fiat), performed_by=ADMIN)
    )
    return user


class TestSubscribe:
    """Tests for plan subscription."""

    def test_subscribe_moves_fiat_into_active_investment(self):
        clock = FakeClock()
        service = BrokerService(clock=clock)
        user = funded_user(service)

        investment = service.subscribe(user.id, STARTER_PLAN_ID, Decimal("500"))

        assert investment.status == InvestmentStatus.ACTIVE
        assert investment.expected_return == Decimal("550")
        assert investment.end_date == clock.now + timedelta(days=30)
        balance = service.get_balance(user.id)
        assert balance.fiat_balance == Decimal("500")
        assert balance.active_investment == Decimal("500")
        assert balance.fiat_balance + balance.active_investment == Decimal("1000")
        assert service.get_user(user.id).current_plan_id == STARTER_PLAN_ID

    def test_amount_outside_plan_bounds(self):
        service = BrokerService()
        user = funded_user(service, "100000")

        with pytest.raises(AmountOutOfRangeError) as exc_info:
            service.subscribe(user.id, STARTER_PLAN_ID, Decimal("99"))
        assert exc_info.value.params["min_amount"] == Decimal("100")

        with pytest.raises(AmountOutOfRangeError):
            service.subscribe(user.id, SILVER_PLAN_ID, Decimal("20000"))

        assert service.get_balance(user.id).fiat_balance == Decimal("100000")

    def test_insufficient_fiat(self):
        service = BrokerService()
        user = funded_user(service, "1000")

        with pytest.raises(InsufficientFundsError):
            service.subscribe(user.id, GOLD_PLAN_ID, Decimal("20000"))

        balance = service.get_balance(user.id)
        assert balance.fiat_balance == Decimal("1000")
        assert balance.active_investment == Decimal("0")
        assert service.list_user_investments(user.id) == []

    def test_unknown_and_inactive_plans(self):
        service = BrokerService()
        user = funded_user(service)

        with pytest.raises(PlanNotFoundError):
            service.subscribe(user.id, uuid4(), Decimal("500"))

        service.admin.update_plan(STARTER_PLAN_ID, PlanRequest(
            name="Starter Plan", min_amount=Decimal("100"), max_amount=Decimal("4999"),
            roi_percentage=Decimal("10"), duration_days=30, is_active=False, performed_by=ADMIN,
        ))
        with pytest.raises(PlanInactiveError):
            service.subscribe(user.id, STARTER_PLAN_ID, Decimal("500"))

    def test_second_active_subscription_to_same_plan(self):
        service = BrokerService()
        user = funded_user(service)
        service.subscribe(user.id, STARTER_PLAN_ID, Decimal("200"))

        with pytest.raises(AlreadySubscribedError):
            service.subscribe(user.id, STARTER_PLAN_ID, Decimal("200"))

        assert service.get_balance(user.id).active_investment == Decimal("200")

    def test_suspended_user_cannot_subscribe(self):
        service = BrokerService()
        user = funded_user(service)
        service.admin.perform_user_action(user.id, UserAction.SUSPEND, ADMIN)

        with pytest.raises(AccountSuspendedError):
            service.subscribe(user.id, STARTER_PLAN_ID, Decimal("500"))

    def test_subscribe_from_bitcoin_balance(self):
        clock = FakeClock()
        service = BrokerService(clock=clock)
        user = service.register_user()
        service.admin.update_user_balances(
            user.id, UpdateBalancesRequest(bitcoin_balance=Decimal("750"), performed_by=ADMIN)
        )

        investment = service.subscribe(user.id, STARTER_PLAN_ID, Decimal("500"), Asset.BTC)

        assert investment.funding_asset == Asset.BTC
        balance = service.get_balance(user.id)
        assert balance.bitcoin_balance == Decimal("250")
        assert balance.fiat_balance == Decimal("0")
        assert balance.active_investment == Decimal("500")

        clock.advance(days=30)
        service.reclaim_capital(investment.id)

        balance = service.get_balance(user.id)
        assert balance.bitcoin_balance == Decimal("750")
        assert balance.active_investment == Decimal("0")

    def test_bitcoin_subscription_amount_precision(self):
        service = BrokerService()
        user = service.register_user()
        service.admin.update_user_balances(
            user.id, UpdateBalancesRequest(bitcoin_balance=Decimal("750"), performed_by=ADMIN)
        )

        with pytest.raises(InvalidAmountError):
            service.subscribe(user.id, STARTER_PLAN_ID, Decimal("150.000000001"), Asset.BTC)
        assert service.get_balance(user.id).bitcoin_balance == Decimal("750")


class TestProfitAndReclaim:
    """Tests for the full ROI 10%, 30 day scenario."""

    def test_full_lifecycle(self):
        clock = FakeClock()
        service = BrokerService(clock=clock)
        user = funded_user(service)
        investment = service.subscribe(user.id, STARTER_PLAN_ID, Decimal("500"))

        credit = service.credit_profit(investment.id, Decimal("50"))
        assert credit.remaining_profit == Decimal("0")
        assert credit.transaction.type == TransactionType.PROFIT
        assert credit.transaction.investment_id == investment.id
        assert credit.transaction.reference.startswith("PRF-")
        assert service.get_balance(user.id).profit_balance == Decimal("50")

        with pytest.raises(ExceedsExpectedReturnError):
            service.credit_profit(investment.id, Decimal("50"))
        assert service.get_balance(user.id).profit_balance == Decimal("50")

        with pytest.raises(NotMaturedError):
            service.reclaim_capital(investment.id)

        clock.advance(days=30)
        reclaim = service.reclaim_capital(investment.id)

        assert reclaim.amount == Decimal("500")
        assert reclaim.investment.status == InvestmentStatus.COMPLETED
        assert reclaim.investment.capital_reclaimed is True
        balance = service.get_balance(user.id)
        assert balance.fiat_balance == Decimal("1000")
        assert balance.active_investment == Decimal("0")
        assert balance.profit_balance == Decimal("50")

        with pytest.raises(AlreadyReclaimedError):
            service.reclaim_capital(investment.id)
        assert service.get_balance(user.id).fiat_balance == Decimal("1000")

    def test_partial_credits_accumulate(self):
        service = BrokerService()
        user = funded_user(service)
        investment = service.subscribe(user.id, STARTER_PLAN_ID, Decimal("500"))

        service.credit_profit(investment.id, Decimal("20"))
        second = service.credit_profit(investment.id, Decimal("29.99"))

        assert second.investment.profit_credited == Decimal("49.99")
        assert second.remaining_profit == Decimal("0.01")

    def test_fully_credited_investment_stays_active(self):
        service = BrokerService()
        user = funded_user(service)
        investment = service.subscribe(user.id, STARTER_PLAN_ID, Decimal("500"))

        response = service.credit_profit(investment.id, Decimal("50"))

        assert response.investment.status == InvestmentStatus.ACTIVE

    def test_credit_profit_ignores_account_status(self):
        service = BrokerService()
        user = funded_user(service)
        investment = service.subscribe(user.id, STARTER_PLAN_ID, Decimal("500"))
        service.admin.perform_user_action(user.id, UserAction.SUSPEND, ADMIN)

        service.credit_profit(investment.id, Decimal("10"), performed_by=ADMIN)

        assert service.get_balance(user.id).profit_balance == Decimal("10")

    def test_suspended_user_cannot_reclaim(self):
        clock = FakeClock()
        service = BrokerService(clock=clock)
        user = funded_user(service)
        investment = service.subscribe(user.id, STARTER_PLAN_ID, Decimal("500"))
        clock.advance(days=31)
        service.admin.perform_user_action(user.id, UserAction.SUSPEND, ADMIN)

        with pytest.raises(AccountSuspendedError):
            service.reclaim_capital(investment.id)
        assert service.get_balance(user.id).active_investment == Decimal("500")

    def test_reclaim_checks_ownership(self):
        clock = FakeClock()
        service = BrokerService(clock=clock)
        owner = funded_user(service)
        other = service.register_user()
        investment = service.subscribe(owner.id, STARTER_PLAN_ID, Decimal("500"))
        clock.advance(days=30)

        with pytest.raises(InvestmentNotFoundError):
            service.reclaim_capital(investment.id, user_id=other.id)

    def test_concurrent_reclaims_credit_once(self):
        """Ten simultaneous reclaims of one matured investment: exactly one pays out."""
        clock = FakeClock()
        service = BrokerService(clock=clock)
        user = funded_user(service)
        investment = service.subscribe(user.id, STARTER_PLAN_ID, Decimal("500"))
        clock.advance(days=30)
        results = []

        def reclaim():
            try:
                service.reclaim_capital(investment.id, user_id=user.id)
                results.append(True)
            except AlreadyReclaimedError:
                results.append(False)

        threads = [threading.Thread(target=reclaim) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 9
        balance = service.get_balance(user.id)
        assert balance.fiat_balance == Decimal("1000")
        assert balance.active_investment == Decimal("0")


class TestInvestmentViews:
    """Tests for investment listings and stats."""

    def test_views_and_stats(self):
        clock = FakeClock()
        service = BrokerService(clock=clock)
        user = funded_user(service, "10000")
        starter = service.subscribe(user.id, STARTER_PLAN_ID, Decimal("600"))
        service.subscribe(user.id, SILVER_PLAN_ID, Decimal("5000"))
        service.credit_profit(starter.id, Decimal("30"))
        clock.advance(days=10)

        view = next(v for v in service.list_user_investments(user.id) if v.id == starter.id)
        assert view.plan_name == "Starter Plan"
        assert view.ideal_daily_profit == Decimal("2")
        assert view.progress == Decimal("50")
        assert view.days_elapsed == 10
        assert view.days_remaining == 20
        assert view.can_reclaim_capital is False

        clock.advance(days=20)
        service.reclaim_capital(starter.id)

        stats = service.investment_stats(user.id)
        assert stats.active_count == 1
        assert stats.total_invested == Decimal("5000")
        assert stats.completed_count == 1
        assert stats.total_returns == Decimal("660")

    def test_available_plans_sorted_by_minimum(self):
        service = BrokerService()

        plans = service.available_plans()

        assert [p.id for p in plans] == [STARTER_PLAN_ID, SILVER_PLAN_ID, GOLD_PLAN_ID]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
