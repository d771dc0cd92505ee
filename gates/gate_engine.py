from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional, Protocol, Union
import hmac


class GateCode(str, Enum):
    ACCOUNT_BLOCKED = "ACCOUNT_BLOCKED"
    ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
    KYC_REQUIRED = "KYC_REQUIRED"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    WITHDRAWAL_FEE_REQUIRED = "WITHDRAWAL_FEE_REQUIRED"
    SIGNAL_FEE_REQUIRED = "SIGNAL_FEE_REQUIRED"
    TIER_UPGRADE_REQUIRED = "TIER_UPGRADE_REQUIRED"
    PIN_NOT_SET = "PIN_NOT_SET"
    INVALID_PIN = "INVALID_PIN"


@dataclass
class GateContext:
    """Snapshot of everything a withdrawal attempt is judged against."""
    amount: Decimal
    available: Decimal
    balance_type: str
    kyc_status: str
    is_blocked: bool = False
    is_suspended: bool = False
    tier: int = 1
    pin_on_file: Optional[str] = None
    submitted_pin: Optional[str] = None


@dataclass
class GateBlock:
    code: GateCode
    gate: str
    message: str
    params: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"code": self.code.value, "gate": self.gate, "message": self.message, "params": self.params}


@dataclass
class GateDecision:
    block: Optional[GateBlock]
    evaluated: list[str]

    @property
    def passed(self) -> bool:
        return self.block is None


class WithdrawalGate(Protocol):
    name: ClassVar[str]

    def evaluate(self, context: GateContext) -> Optional[GateBlock]: ...


@dataclass
class AccountStatusGate:
    name: ClassVar[str] = "account_status"

    def evaluate(self, context: GateContext) -> Optional[GateBlock]:
        if context.is_blocked:
            return GateBlock(GateCode.ACCOUNT_BLOCKED, self.name,
                             "Your account has been blocked. Please contact support.")
        if context.is_suspended:
            return GateBlock(GateCode.ACCOUNT_SUSPENDED, self.name,
                             "Your account is suspended. Please contact support.")
        return None


@dataclass
class KycGate:
    name: ClassVar[str] = "kyc"

    def evaluate(self, context: GateContext) -> Optional[GateBlock]:
        if context.kyc_status == "APPROVED":
            return None
        if context.kyc_status == "PENDING":
            message = "Your KYC verification is pending. Please wait for approval."
        else:
            message = "Please complete KYC verification before making withdrawals."
        return GateBlock(GateCode.KYC_REQUIRED, self.name, message, {"kyc_status": context.kyc_status})


@dataclass
class AmountGate:
    name: ClassVar[str] = "amount"

    def evaluate(self, context: GateContext) -> Optional[GateBlock]:
        if context.amount <= 0:
            return GateBlock(GateCode.INVALID_AMOUNT, self.name, "Amount must be greater than 0")
        if context.amount > context.available:
            label = "Bitcoin" if context.balance_type == "BTC" else "fiat"
            return GateBlock(
                GateCode.INSUFFICIENT_FUNDS, self.name, f"Insufficient {label} balance",
                {"available": context.available, "requested": context.amount,
                 "balance_type": context.balance_type},
            )
        return None


@dataclass
class FeeGate:
    amount: Decimal
    instruction: str
    name: ClassVar[str] = "withdrawal_fee"

    def evaluate(self, context: GateContext) -> Optional[GateBlock]:
        if self.amount <= 0:
            return None
        return GateBlock(GateCode.WITHDRAWAL_FEE_REQUIRED, self.name, self.instruction,
                         {"fee_amount": self.amount, "instruction": self.instruction})

    def to_dict(self) -> dict:
        return {"type": self.name, "amount": str(self.amount), "instruction": self.instruction}


@dataclass
class SignalGate:
    instruction: str
    name: ClassVar[str] = "signal_fee"

    def evaluate(self, context: GateContext) -> Optional[GateBlock]:
        return GateBlock(GateCode.SIGNAL_FEE_REQUIRED, self.name, self.instruction,
                         {"instruction": self.instruction})

    def to_dict(self) -> dict:
        return {"type": self.name, "instruction": self.instruction}


@dataclass
class TierGate:
    tier: int
    instruction: str
    required_tier: int = 3
    name: ClassVar[str] = "tier_upgrade"

    def evaluate(self, context: GateContext) -> Optional[GateBlock]:
        # Presence in the chain is the block; the tier itself is informational.
        return GateBlock(GateCode.TIER_UPGRADE_REQUIRED, self.name, self.instruction,
                         {"tier": self.tier, "required_tier": self.required_tier,
                          "instruction": self.instruction})

    def to_dict(self) -> dict:
        return {"type": self.name, "tier": self.tier, "required_tier": self.required_tier,
                "instruction": self.instruction}


@dataclass
class PinGate:
    name: ClassVar[str] = "pin"

    def evaluate(self, context: GateContext) -> Optional[GateBlock]:
        if not context.pin_on_file:
            return GateBlock(GateCode.PIN_NOT_SET, self.name,
                             "Please set up your transaction PIN first")
        submitted = context.submitted_pin or ""
        if not hmac.compare_digest(submitted.encode(), context.pin_on_file.encode()):
            return GateBlock(
                GateCode.INVALID_PIN, self.name,
                "Invalid PIN. If you've forgotten your PIN, please contact support to retrieve it.",
            )
        return None


PolicyGate = Union[FeeGate, SignalGate, TierGate]


def policy_gate_from_dict(data: dict[str, Any]) -> PolicyGate:
    kind = data["type"]
    if kind == FeeGate.name:
        return FeeGate(amount=Decimal(str(data["amount"])), instruction=data["instruction"])
    if kind == SignalGate.name:
        return SignalGate(instruction=data["instruction"])
    if kind == TierGate.name:
        return TierGate(tier=int(data["tier"]), instruction=data["instruction"],
                        required_tier=int(data.get("required_tier", 3)))
    raise ValueError(f"Unknown gate type: {kind}")


class GateEngine:
    def __init__(self, gates: Optional[list[WithdrawalGate]] = None):
        self.gates: list[WithdrawalGate] = list(gates or [])

    def add_gate(self, gate: WithdrawalGate) -> None:
        self.gates.append(gate)

    def insert_gate(self, index: int, gate: WithdrawalGate) -> None:
        self.gates.insert(index, gate)

    def remove_gate(self, name: str) -> None:
        self.gates = [g for g in self.gates if g.name != name]

    def list_gates(self) -> list[str]:
        return [g.name for g in self.gates]

    def evaluate(self, context: GateContext) -> GateDecision:
        evaluated: list[str] = []
        for gate in self.gates:
            evaluated.append(gate.name)
            block = gate.evaluate(context)
            if block is not None:
                return GateDecision(block=block, evaluated=evaluated)
        return GateDecision(block=None, evaluated=evaluated)


def withdrawal_chain(policy_gates: list[PolicyGate]) -> GateEngine:
    """Standard chain: precheck stages, then per-user policy gates in order, then the PIN."""
    return GateEngine([AccountStatusGate(), KycGate(), AmountGate(), *policy_gates, PinGate()])
