from datetime import datetime
from decimal import Decimal
from typing import Any, Optional


class LedgerServiceError(Exception):
    code = "LEDGER_ERROR"
    category = "validation"

    def __init__(self, message: str, **params: Any):
        super().__init__(message)
        self.message = message
        self.params = params

    def to_dict(self) -> dict:
        payload = {"code": self.code, "category": self.category, "message": self.message}
        for key, value in self.params.items():
            if isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, datetime):
                value = value.isoformat()
            payload[key] = value
        return payload


# validation

class InvalidAmountError(LedgerServiceError):
    code = "INVALID_AMOUNT"


class AmountOutOfRangeError(LedgerServiceError):
    code = "AMOUNT_OUT_OF_RANGE"

    def __init__(self, amount: Decimal, min_amount: Decimal, max_amount: Decimal):
        if amount < min_amount:
            message = f"Minimum investment is {min_amount}"
        else:
            message = f"Maximum investment is {max_amount}"
        super().__init__(message, amount=amount, min_amount=min_amount, max_amount=max_amount)


class PlanInactiveError(LedgerServiceError):
    code = "PLAN_INACTIVE"


class InsufficientFundsError(LedgerServiceError):
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, field: str, available: Decimal, requested: Decimal):
        super().__init__(
            f"Insufficient {field}: available {available}, requested {requested}",
            field=field, available=available, requested=requested,
        )


class InvalidPinFormatError(LedgerServiceError):
    code = "INVALID_PIN_FORMAT"


class PinMismatchError(LedgerServiceError):
    code = "PIN_MISMATCH"


class AlreadySubscribedError(LedgerServiceError):
    code = "ALREADY_SUBSCRIBED"


class InvalidTransactionRequestError(LedgerServiceError):
    code = "INVALID_TRANSACTION_REQUEST"


# not found

class NotFoundError(LedgerServiceError):
    code = "NOT_FOUND"
    category = "not_found"


class UserNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"


class PlanNotFoundError(NotFoundError):
    code = "PLAN_NOT_FOUND"


class InvestmentNotFoundError(NotFoundError):
    code = "INVESTMENT_NOT_FOUND"


class TransactionNotFoundError(NotFoundError):
    code = "TRANSACTION_NOT_FOUND"


class KycNotFoundError(NotFoundError):
    code = "KYC_NOT_FOUND"


# state conflicts

class StateConflictError(LedgerServiceError):
    code = "STATE_CONFLICT"
    category = "state_conflict"


class InvalidStateTransitionError(StateConflictError):
    code = "INVALID_STATE_TRANSITION"


class NotMaturedError(StateConflictError):
    code = "NOT_MATURED"

    def __init__(self, end_date: datetime):
        super().__init__("Plan duration has not ended yet", end_date=end_date)


class AlreadyReclaimedError(StateConflictError):
    code = "ALREADY_RECLAIMED"

    def __init__(self, message: str = "Capital has already been reclaimed"):
        super().__init__(message)


class InvestmentNotActiveError(StateConflictError):
    code = "INVESTMENT_NOT_ACTIVE"


class ExceedsExpectedReturnError(StateConflictError):
    code = "EXCEEDS_EXPECTED_RETURN"

    def __init__(self, amount: Decimal, remaining: Decimal):
        super().__init__(
            f"Profit of {amount} exceeds the remaining expected profit of {remaining}",
            amount=amount, remaining=remaining,
        )


class ConcurrentModificationError(StateConflictError):
    code = "CONCURRENT_MODIFICATION"


class PlanInUseError(StateConflictError):
    code = "PLAN_IN_USE"


class ReferenceCollisionError(StateConflictError):
    code = "REFERENCE_COLLISION"


# account status

class AccountStatusError(LedgerServiceError):
    code = "ACCOUNT_STATUS"
    category = "account_status"


class AccountBlockedError(AccountStatusError):
    code = "ACCOUNT_BLOCKED"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Your account has been blocked. Please contact support.")


class AccountSuspendedError(AccountStatusError):
    code = "ACCOUNT_SUSPENDED"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Your account is suspended. Please contact support.")
