"""
Ledger & Eligibility Engine for a retail investment broker

This package provides:
- Per-user balances changed only as whole, non-negative change sets
- An append-only transaction journal: pending -> approved / declined
- Investment lifecycle: subscribe -> credit profit -> reclaim capital
- An ordered withdrawal gate chain with typed outcomes
- Audited admin overrides
"""

from .exceptions import LedgerServiceError
from .models import (
    Asset,
    BalanceField,
    InvestmentStatus,
    KycStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    UserAccount,
    UserInvestment,
    WithdrawalAccepted,
    WithdrawalBlocked,
)
from .service import BrokerService
from .storage import InMemoryStorage

__all__ = [
    "Asset",
    "BalanceField",
    "InvestmentStatus",
    "KycStatus",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "UserAccount",
    "UserInvestment",
    "WithdrawalAccepted",
    "WithdrawalBlocked",
    "BrokerService",
    "InMemoryStorage",
    "LedgerServiceError",
]
