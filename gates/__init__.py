"""
Withdrawal Gate Package

Provides an ordered chain of withdrawal gates evaluated one at a time;
the first gate that blocks ends the evaluation.
"""

from .gate_engine import (
    GateEngine,
    GateCode,
    GateContext,
    GateBlock,
    GateDecision,
    AccountStatusGate,
    KycGate,
    AmountGate,
    FeeGate,
    SignalGate,
    TierGate,
    PinGate,
    policy_gate_from_dict,
    withdrawal_chain,
)

__all__ = [
    "GateEngine",
    "GateCode",
    "GateContext",
    "GateBlock",
    "GateDecision",
    "AccountStatusGate",
    "KycGate",
    "AmountGate",
    "FeeGate",
    "SignalGate",
    "TierGate",
    "PinGate",
    "policy_gate_from_dict",
    "withdrawal_chain",
]
