"""
Guardian Recovery - Guardian Registry

Authoritative guardian set for one account. Owner-only administration adds and
removes guardians; the ordered active list is the source for the quorum
denominator when a recovery request is opened.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from monitoring import get_logger, metrics
from recovery_errors import AlreadyActive, InvalidIdentity, NotGuardian, NotOwner
from reputation_store import Guardian, ReputationStore

logger = get_logger(__name__)


@dataclass
class AccountState:
    """The single mutable owner of the custodial account."""
    current_owner: str

    def to_dict(self) -> dict[str, Any]:
        return {"current_owner": self.current_owner}


class GuardianRegistry:
    """
    Adds, removes and enumerates guardians.

    Removal only flips the active flag; the record, its reputation and its
    counters are kept, and re-adding the same id reactivates that record.
    """

    def __init__(self, account: AccountState, reputation: ReputationStore):
        self.account = account
        self.reputation = reputation
        self._active_order: list[str] = []

    def _require_owner(self, caller: str, action: str) -> None:
        if caller != self.account.current_owner:
            raise NotOwner(
                "Only the current owner can manage guardians",
                component="guardian_registry",
                action=action,
                details={"caller": caller},
            )

    def add_guardian(self, caller: str, guardian_id: str, now: datetime | None = None) -> Guardian:
        """
        Add (or reactivate) a guardian.

        Raises:
            NotOwner: Caller is not the current owner
            InvalidIdentity: Id is empty or is the owner
            AlreadyActive: Guardian is already active
        """
        self._require_owner(caller, "add_guardian")

        if not guardian_id or guardian_id == self.account.current_owner:
            raise InvalidIdentity(
                "Guardian identity must be non-empty and differ from the owner",
                component="guardian_registry",
                action="add_guardian",
                details={"guardian_id": guardian_id},
            )

        existing = self.reputation.get(guardian_id)
        if existing is not None and existing.is_active:
            raise AlreadyActive(
                f"Guardian {guardian_id} is already active",
                component="guardian_registry",
                action="add_guardian",
            )

        if existing is not None:
            existing.is_active = True
            existing.removed_at = None
            guardian = existing
        else:
            guardian = self.reputation.register(guardian_id, now=now)

        self._active_order.append(guardian_id)
        metrics.set_gauge("guardians_active", len(self._active_order))
        logger.info(
            "Guardian added",
            extra={"guardian_id": guardian_id, "reactivated": existing is not None},
        )
        return guardian

    def remove_guardian(self, caller: str, guardian_id: str, now: datetime | None = None) -> Guardian:
        """
        Deactivate a guardian.

        Open requests keep the quorum they snapshotted at creation.
        """
        self._require_owner(caller, "remove_guardian")

        guardian = self.reputation.get(guardian_id)
        if guardian is None or not guardian.is_active:
            raise NotGuardian(
                f"{guardian_id} is not an active guardian",
                component="guardian_registry",
                action="remove_guardian",
            )

        guardian.is_active = False
        guardian.removed_at = now
        self._active_order.remove(guardian_id)
        metrics.set_gauge("guardians_active", len(self._active_order))
        logger.info("Guardian removed", extra={"guardian_id": guardian_id})
        return guardian

    def is_active(self, guardian_id: str | None) -> bool:
        if not guardian_id:
            return False
        guardian = self.reputation.get(guardian_id)
        return guardian is not None and guardian.is_active

    def get_guardian(self, guardian_id: str) -> Guardian | None:
        return self.reputation.get(guardian_id)

    def active_guardians(self) -> list[Guardian]:
        """Active guardians in the order they were (re)added."""
        return [self.reputation.guardians[gid] for gid in self._active_order]

    def all_guardians(self) -> list[Guardian]:
        return list(self.reputation.guardians.values())

    def total_active_reputation(self) -> int:
        return sum(g.reputation_score for g in self.active_guardians())

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.account.current_owner,
            "active": [g.to_dict() for g in self.active_guardians()],
            "inactive": [g.to_dict() for g in self.all_guardians() if not g.is_active],
            "total_active_reputation": self.total_active_reputation(),
        }
