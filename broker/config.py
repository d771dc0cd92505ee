from __future__ import annotations

import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    DEFAULT_CURRENCY: str = os.environ.get("BROKER_DEFAULT_CURRENCY", "USD")
    WITHDRAWAL_FEE_INSTRUCTION: str = os.environ.get(
        "BROKER_WITHDRAWAL_FEE_INSTRUCTION",
        "Please pay the required withdrawal fee to process your transaction. "
        "Contact support for payment details.",
    )
    SIGNAL_FEE_INSTRUCTION: str = os.environ.get(
        "BROKER_SIGNAL_FEE_INSTRUCTION",
        "Signal fee payment is required to process your withdrawal. "
        "Contact support for payment details.",
    )
    TIER_UPGRADE_INSTRUCTION: str = os.environ.get(
        "BROKER_TIER_UPGRADE_INSTRUCTION",
        "You cannot make withdrawals because you are still in Tier {tier}. "
        "You need to upgrade to Tier {required_tier} to enable withdrawals. "
        "Please contact support for assistance.",
    )
    REQUIRED_TIER: int = int(os.environ.get("BROKER_REQUIRED_TIER", "3"))
    PROFIT_CREDITS_FIAT: bool = _env_bool("BROKER_PROFIT_CREDITS_FIAT")
    REFERENCE_ATTEMPTS: int = int(os.environ.get("BROKER_REFERENCE_ATTEMPTS", "5"))
    LOG_LEVEL: str = os.environ.get("BROKER_LOG_LEVEL", "INFO")

    def tier_upgrade_instruction(self, tier: int) -> str:
        return self.TIER_UPGRADE_INSTRUCTION.format(tier=tier, required_tier=self.REQUIRED_TIER)


settings = Settings()
