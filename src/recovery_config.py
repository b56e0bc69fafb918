"""
Guardian Recovery - Configuration

Engine policy is read from environment variables. The CLI loads a ``.env``
file first via python-dotenv, so the same names work in either place.

Environment Variables:
    RECOVERY_INITIAL_OWNER=alice
    RECOVERY_STAKE_AMOUNT=0.1
    RECOVERY_SUCCESS_BONUS=0.01
    RECOVERY_MAX_REQUEST_AGE_DAYS=30
    RECOVERY_SINGLE_ACTIVE_STAKE=true
    RECOVERY_API_KEY=...
    RECOVERY_REQUIRE_AUTH=true
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from reputation_store import BASE_REPUTATION, FAILED_SUPPORT_PENALTY, SUCCESS_REPUTATION_REWARD
from stake_ledger import STAKE_AMOUNT, SUCCESS_BONUS
from time_lock import REQUIRED_DELAYS

QUORUM_PERCENT = 60
DEFAULT_MAX_REQUEST_AGE = timedelta(days=30)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation as e:
        raise ValueError(f"{name} must be a decimal number, got {raw!r}") from e


@dataclass
class RecoveryConfig:
    """Tunable policy for a recovery engine instance."""

    initial_owner: str = "owner"
    stake_amount: Decimal = field(default_factory=lambda: STAKE_AMOUNT)
    success_bonus: Decimal = field(default_factory=lambda: SUCCESS_BONUS)
    max_request_age: timedelta = DEFAULT_MAX_REQUEST_AGE
    single_active_stake: bool = True
    api_key: str | None = None
    require_auth: bool = True

    @classmethod
    def from_env(cls) -> "RecoveryConfig":
        """Build a config from environment variables, falling back to defaults."""
        max_age_days = os.getenv("RECOVERY_MAX_REQUEST_AGE_DAYS")
        config = cls(
            initial_owner=os.getenv("RECOVERY_INITIAL_OWNER", "owner"),
            stake_amount=_env_decimal("RECOVERY_STAKE_AMOUNT", STAKE_AMOUNT),
            success_bonus=_env_decimal("RECOVERY_SUCCESS_BONUS", SUCCESS_BONUS),
            max_request_age=(
                timedelta(days=float(max_age_days)) if max_age_days else DEFAULT_MAX_REQUEST_AGE
            ),
            single_active_stake=_env_bool("RECOVERY_SINGLE_ACTIVE_STAKE", True),
            api_key=os.getenv("RECOVERY_API_KEY") or None,
            require_auth=_env_bool("RECOVERY_REQUIRE_AUTH", True),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Raise ValueError if the policy is inconsistent."""
        if not self.initial_owner:
            raise ValueError("initial_owner must be set")
        if self.stake_amount <= 0:
            raise ValueError("stake_amount must be positive")
        if self.success_bonus < 0:
            raise ValueError("success_bonus cannot be negative")
        longest = max(REQUIRED_DELAYS.values())
        if self.max_request_age <= longest:
            raise ValueError(
                f"max_request_age must exceed the longest time lock ({longest})"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "initial_owner": self.initial_owner,
            "stake_amount": str(self.stake_amount),
            "success_bonus": str(self.success_bonus),
            "max_request_age_seconds": self.max_request_age.total_seconds(),
            "single_active_stake": self.single_active_stake,
            "require_auth": self.require_auth,
            "api_key": "configured" if self.api_key else None,
        }


def get_recovery_config(config: RecoveryConfig | None = None) -> dict[str, Any]:
    """Summary of the fixed policy constants and the tunable settings."""
    config = config or RecoveryConfig()
    return {
        "version": "1.0",
        "base_reputation": BASE_REPUTATION,
        "success_reputation_reward": SUCCESS_REPUTATION_REWARD,
        "failed_support_penalty": FAILED_SUPPORT_PENALTY,
        "quorum_percent": QUORUM_PERCENT,
        "time_locks": {c.name: d.total_seconds() for c, d in REQUIRED_DELAYS.items()},
        **config.to_dict(),
    }
