"""
Balance Ledger

Holds the per-user balance fields and applies credits and debits to them as
one unit. A change set either lands completely or not at all; a field that
would go negative fails the whole change with InsufficientFundsError.
"""

import logging
from decimal import Decimal
from typing import Mapping
from uuid import UUID

from .exceptions import (
    AccountBlockedError,
    AccountSuspendedError,
    InsufficientFundsError,
    InvalidAmountError,
)
from .models import Asset, BalanceField, BalanceSnapshot, UserAccount
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

BTC_PLACES = 8


def ensure_account_active(user: UserAccount) -> None:
    if user.is_blocked:
        raise AccountBlockedError()
    if user.is_suspended:
        raise AccountSuspendedError()


def validate_amount(amount: Decimal, asset: Asset = Asset.FIAT) -> Decimal:
    amount = Decimal(str(amount))
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError("Amount must be greater than 0", amount=amount)
    if asset == Asset.BTC and amount.as_tuple().exponent < -BTC_PLACES:
        raise InvalidAmountError(
            f"Bitcoin amounts support at most {BTC_PLACES} decimal places", amount=amount
        )
    return amount


def snapshot(user: UserAccount) -> BalanceSnapshot:
    return BalanceSnapshot(
        user_id=user.id,
        currency=user.currency,
        **{f.value: user.balance_of(f) for f in BalanceField},
    )


class BalanceLedger:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def apply(
        self,
        user_id: UUID,
        changes: Mapping[BalanceField, Decimal],
        *,
        enforce_status: bool = True,
        reason: str = "",
    ) -> UserAccount:
        """Apply signed deltas to several balance fields in one write."""
        with self.storage.atomic():
            user = self.storage.get_user(user_id)
            if enforce_status:
                ensure_account_active(user)

            updates: dict[str, Decimal] = {}
            for balance_field, delta in changes.items():
                current = user.balance_of(balance_field)
                new_value = current + delta
                if new_value < 0:
                    logger.info(
                        "Rejected %s on user %s: %s would go to %s",
                        reason or "balance change", user_id, balance_field.value, new_value,
                    )
                    raise InsufficientFundsError(balance_field.value, current, -delta)
                updates[balance_field.value] = new_value

            saved = self.storage.save_user(user.model_copy(update=updates))

        logger.info(
            "Applied %s to user %s: %s",
            reason or "balance change", user_id,
            ", ".join(f"{f.value}{d:+}" for f, d in changes.items()),
        )
        return saved

    def credit(self, user_id: UUID, balance_field: BalanceField, amount: Decimal, **kwargs) -> UserAccount:
        amount = validate_amount(amount)
        return self.apply(user_id, {balance_field: amount}, **kwargs)

    def debit(self, user_id: UUID, balance_field: BalanceField, amount: Decimal, **kwargs) -> UserAccount:
        amount = validate_amount(amount)
        return self.apply(user_id, {balance_field: -amount}, **kwargs)

    def transfer(
        self,
        user_id: UUID,
        source: BalanceField,
        target: BalanceField,
        amount: Decimal,
        **kwargs,
    ) -> UserAccount:
        """Debit ``source`` and credit ``target`` by the same amount together."""
        amount = validate_amount(amount)
        return self.apply(user_id, {source: -amount, target: amount}, **kwargs)

    def get_snapshot(self, user_id: UUID) -> BalanceSnapshot:
        return snapshot(self.storage.get_user(user_id))
