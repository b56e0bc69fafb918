"""
Guardian Recovery - Reputation Store

Holds each guardian's reputation score and activity flag, and applies the
settlement rules after a recovery request reaches a terminal state.

Rules:
- Successful participant: +10 reputation, one more recovery, one more success
- Failed support: -20 reputation (floored at 0), one more recovery
- Reputation is unbounded above
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from monitoring import get_logger
from recovery_errors import UnknownGuardian

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

BASE_REPUTATION = 100
SUCCESS_REPUTATION_REWARD = 10
FAILED_SUPPORT_PENALTY = 20


class ReputationOutcome(Enum):
    """How a guardian's participation in a closed request is judged."""
    SUCCESSFUL_PARTICIPANT = "successful_participant"
    FAILED_SUPPORT = "failed_support"


@dataclass
class Guardian:
    """A principal allowed to vote on recovery requests."""
    guardian_id: str
    reputation_score: int = BASE_REPUTATION
    is_active: bool = True
    total_recoveries: int = 0
    successful_recoveries: int = 0
    staked_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    added_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    removed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "guardian_id": self.guardian_id,
            "reputation_score": self.reputation_score,
            "is_active": self.is_active,
            "total_recoveries": self.total_recoveries,
            "successful_recoveries": self.successful_recoveries,
            "staked_amount": str(self.staked_amount),
            "added_at": self.added_at.isoformat(),
            "removed_at": self.removed_at.isoformat() if self.removed_at else None,
        }


class ReputationStore:
    """Guardian records keyed by id, with the reputation adjustment rules."""

    def __init__(self):
        self.guardians: dict[str, Guardian] = {}

    def register(self, guardian_id: str, now: datetime | None = None) -> Guardian:
        """Create a fresh record at base reputation, or return the existing one."""
        guardian = self.guardians.get(guardian_id)
        if guardian is None:
            guardian = Guardian(guardian_id=guardian_id)
            if now is not None:
                guardian.added_at = now
            self.guardians[guardian_id] = guardian
        return guardian

    def get(self, guardian_id: str) -> Guardian | None:
        return self.guardians.get(guardian_id)

    def require(self, guardian_id: str) -> Guardian:
        guardian = self.guardians.get(guardian_id)
        if guardian is None:
            raise UnknownGuardian(
                f"Guardian {guardian_id} not found",
                component="reputation_store",
                action="lookup",
                details={"guardian_id": guardian_id},
            )
        return guardian

    def score(self, guardian_id: str) -> int:
        return self.require(guardian_id).reputation_score

    def adjust(self, guardian_id: str, outcome: ReputationOutcome) -> int:
        """
        Apply a settlement outcome to a guardian.

        Args:
            guardian_id: Guardian to adjust
            outcome: Settlement outcome

        Returns:
            The guardian's new reputation score
        """
        guardian = self.require(guardian_id)
        previous = guardian.reputation_score

        if outcome is ReputationOutcome.SUCCESSFUL_PARTICIPANT:
            guardian.reputation_score += SUCCESS_REPUTATION_REWARD
            guardian.successful_recoveries += 1
        else:
            guardian.reputation_score = max(0, guardian.reputation_score - FAILED_SUPPORT_PENALTY)
        guardian.total_recoveries += 1

        logger.debug(
            "Reputation adjusted",
            extra={
                "guardian_id": guardian_id,
                "outcome": outcome.value,
                "previous_score": previous,
                "new_score": guardian.reputation_score,
            },
        )
        return guardian.reputation_score
