"""
Transaction Journal

Append-only record of balance-affecting events. Entries are never removed;
only their status moves, and only PENDING -> APPROVED or PENDING -> DECLINED.

Ledger effects:
- DEPOSIT    credits the asset balance and total_deposited on approval.
- WITHDRAWAL reserves (debits) the asset balance when it enters PENDING,
             adds to total_withdrawn on approval and restores the
             reservation on decline.
- PROFIT     credits profit_balance on approval.
- BONUS      credits total_bonus on approval.
Profit and bonus entries are approved at creation unless an admin asks for
PENDING, so they hit the ledger synchronously.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from .balances import BalanceLedger, ensure_account_active, snapshot, validate_amount
from .config import Settings, settings as default_settings
from .exceptions import (
    InvalidStateTransitionError,
    InvalidTransactionRequestError,
    ReferenceCollisionError,
    TransactionNotFoundError,
)
from .models import (
    Asset,
    BalanceField,
    Transaction,
    TransactionHistoryResponse,
    TransactionMeta,
    TransactionResponse,
    TransactionStatus,
    TransactionType,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

REFERENCE_PREFIXES = {
    TransactionType.DEPOSIT: "DEP",
    TransactionType.WITHDRAWAL: "WD",
    TransactionType.PROFIT: "PRF",
    TransactionType.BONUS: "BON",
}


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TransactionJournal:
    def __init__(
        self,
        storage: InMemoryStorage,
        balances: BalanceLedger,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.balances = balances
        self.settings = settings or default_settings
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def create_transaction(
        self,
        user_id: UUID,
        tx_type: TransactionType,
        asset: Asset,
        amount: Decimal,
        meta: Optional[TransactionMeta] = None,
        *,
        status: Optional[TransactionStatus] = None,
        created_by_admin: Optional[str] = None,
        backdated_at: Optional[datetime] = None,
    ) -> TransactionResponse:
        amount = validate_amount(amount, asset)
        meta = meta or TransactionMeta()
        status = self._initial_status(tx_type, status, created_by_admin)
        user_initiated = created_by_admin is None and tx_type in (
            TransactionType.DEPOSIT, TransactionType.WITHDRAWAL
        )

        with self.storage.atomic():
            user = self.storage.get_user(user_id)
            if user_initiated:
                ensure_account_active(user)
            now = self.clock()
            transaction = Transaction(
                id=uuid4(),
                user_id=user_id,
                type=tx_type,
                asset=asset,
                amount=amount,
                status=status,
                reference=self._generate_reference(tx_type),
                description=meta.description or self._describe(tx_type, meta),
                crypto_amount=meta.crypto_amount,
                crypto_currency=meta.crypto_currency,
                wallet_address=meta.wallet_address,
                wallet_network=meta.wallet_network,
                deposit_proof_url=meta.deposit_proof_url,
                payment_method_name=meta.payment_method_name,
                withdrawal_method=meta.withdrawal_method,
                withdrawal_details=meta.withdrawal_details,
                investment_id=meta.investment_id,
                created_by_admin=created_by_admin,
                backdated_at=_utc(backdated_at),
                created_at=now,
                approved_at=now if status == TransactionStatus.APPROVED else None,
            )

            if status == TransactionStatus.PENDING and tx_type == TransactionType.WITHDRAWAL:
                user = self.balances.debit(
                    user_id, BalanceField.for_asset(asset), amount,
                    enforce_status=user_initiated, reason=f"withdrawal reservation {transaction.reference}",
                )
            elif status == TransactionStatus.APPROVED:
                user = self._apply_approval(transaction, reserved=False)

            self.storage.save_transaction(transaction)

        logger.info(
            "Created %s %s %s %s for user %s (%s)",
            status.value, tx_type.value, amount, asset.value, user_id, transaction.reference,
        )
        return TransactionResponse(
            transaction=transaction,
            balances=snapshot(user),
            message="Transaction created successfully",
        )

    def approve(self, transaction_id: UUID, performed_by: str) -> TransactionResponse:
        with self.storage.atomic():
            transaction = self._get_pending(transaction_id, "approve")
            user = self._apply_approval(transaction, reserved=True)
            transaction = transaction.model_copy(update={
                "status": TransactionStatus.APPROVED,
                "approved_at": self.clock(),
                "reviewed_by": performed_by,
            })
            self.storage.save_transaction(transaction)

        logger.info("Approved %s %s by %s", transaction.type.value, transaction.reference, performed_by)
        return TransactionResponse(
            transaction=transaction,
            balances=snapshot(user),
            message="Transaction approved successfully",
        )

    def decline(self, transaction_id: UUID, performed_by: str) -> TransactionResponse:
        with self.storage.atomic():
            transaction = self._get_pending(transaction_id, "decline")
            if transaction.type == TransactionType.WITHDRAWAL:
                user = self.balances.credit(
                    transaction.user_id, BalanceField.for_asset(transaction.asset), transaction.amount,
                    enforce_status=False, reason=f"withdrawal reversal {transaction.reference}",
                )
            else:
                user = self.storage.get_user(transaction.user_id)
            transaction = transaction.model_copy(update={
                "status": TransactionStatus.DECLINED,
                "declined_at": self.clock(),
                "reviewed_by": performed_by,
            })
            self.storage.save_transaction(transaction)

        logger.info("Declined %s %s by %s", transaction.type.value, transaction.reference, performed_by)
        return TransactionResponse(
            transaction=transaction,
            balances=snapshot(user),
            message="Transaction declined successfully",
        )

    def backdate(self, transaction_id: UUID, backdated_at: Optional[datetime]) -> Transaction:
        with self.storage.atomic():
            transaction = self.storage.get_transaction(transaction_id)
            transaction = transaction.model_copy(update={"backdated_at": _utc(backdated_at)})
            self.storage.save_transaction(transaction)
        return transaction

    def get_transaction(self, transaction_id: UUID) -> Transaction:
        return self.storage.get_transaction(transaction_id)

    def get_by_reference(self, reference: str) -> Transaction:
        transaction_id = self.storage.reference_index.get(reference)
        if transaction_id is None:
            raise TransactionNotFoundError(f"Transaction {reference} not found")
        return self.storage.get_transaction(transaction_id)

    def list_transactions(
        self,
        user_id: Optional[UUID] = None,
        tx_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        asset: Optional[Asset] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> TransactionHistoryResponse:
        transactions = [
            t for t in self.storage.list_transactions(user_id)
            if (tx_type is None or t.type == tx_type)
            and (status is None or t.status == status)
            and (asset is None or t.asset == asset)
        ]
        return TransactionHistoryResponse(
            transactions=transactions[offset:offset + limit],
            total_count=len(transactions),
        )

    def _initial_status(
        self,
        tx_type: TransactionType,
        requested: Optional[TransactionStatus],
        created_by_admin: Optional[str],
    ) -> TransactionStatus:
        if requested == TransactionStatus.DECLINED:
            raise InvalidTransactionRequestError("Transactions cannot be created as DECLINED")
        if created_by_admin:
            return requested or TransactionStatus.APPROVED
        if tx_type in (TransactionType.DEPOSIT, TransactionType.WITHDRAWAL):
            if requested == TransactionStatus.APPROVED:
                raise InvalidTransactionRequestError(
                    f"User-initiated {tx_type.value.lower()}s must await admin approval"
                )
            return TransactionStatus.PENDING
        if requested == TransactionStatus.PENDING:
            raise InvalidTransactionRequestError(
                f"Only an admin can create a pending {tx_type.value.lower()} entry"
            )
        return TransactionStatus.APPROVED

    def _apply_approval(self, transaction: Transaction, reserved: bool):
        asset_field = BalanceField.for_asset(transaction.asset)
        amount = transaction.amount
        if transaction.type == TransactionType.DEPOSIT:
            changes = {asset_field: amount, BalanceField.TOTAL_DEPOSITED: amount}
        elif transaction.type == TransactionType.WITHDRAWAL:
            changes = {BalanceField.TOTAL_WITHDRAWN: amount}
            if not reserved:
                changes[asset_field] = -amount
        elif transaction.type == TransactionType.PROFIT:
            changes = {BalanceField.PROFIT_BALANCE: amount}
            if self.settings.PROFIT_CREDITS_FIAT:
                changes[BalanceField.FIAT_BALANCE] = amount
        else:
            changes = {BalanceField.TOTAL_BONUS: amount}
        return self.balances.apply(
            transaction.user_id, changes, enforce_status=False,
            reason=f"{transaction.type.value.lower()} {transaction.reference}",
        )

    def _get_pending(self, transaction_id: UUID, verb: str) -> Transaction:
        transaction = self.storage.get_transaction(transaction_id)
        if transaction.status != TransactionStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Cannot {verb} transaction in {transaction.status.value} state. "
                "Transaction has already been processed.",
                reference=transaction.reference, status=transaction.status.value,
            )
        return transaction

    def _generate_reference(self, tx_type: TransactionType) -> str:
        prefix = REFERENCE_PREFIXES[tx_type]
        for _ in range(self.settings.REFERENCE_ATTEMPTS):
            reference = f"{prefix}-{uuid4().hex[:8].upper()}"
            if not self.storage.reference_exists(reference):
                return reference
        raise ReferenceCollisionError(f"Could not allocate a unique {prefix} reference")

    @staticmethod
    def _describe(tx_type: TransactionType, meta: TransactionMeta) -> str:
        if tx_type == TransactionType.WITHDRAWAL and meta.withdrawal_method:
            return f"{meta.withdrawal_method.display_name} withdrawal"
        if tx_type == TransactionType.DEPOSIT:
            via = meta.payment_method_name or meta.wallet_network
            return f"Deposit via {via}" if via else "Deposit"
        if tx_type == TransactionType.PROFIT:
            return "Investment profit"
        return tx_type.value.title()
