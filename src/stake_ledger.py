"""
Guardian Recovery - Stake Ledger

Escrows the stake a guardian pays to cast a vote and settles it when the
request closes. Settled amounts accrue to a withdrawable balance which is paid
out through the ValueTransfer collaborator.

Ordering rule: every ledger field is moved to its post-operation value before
the collaborator is invoked. If the collaborator fails, the fields are put back
and a CollaboratorError is raised, so the caller sees no partial effect.

Escrow is keyed by (guardian, request). With single_active_stake enabled a
guardian may hold stake on only one open request at a time.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from monitoring import get_logger, metrics
from recovery_errors import (
    CollaboratorError,
    NothingToWithdraw,
    StakeAlreadyActive,
    StateError,
)
from reputation_store import ReputationStore

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

STAKE_AMOUNT = Decimal("0.1")
SUCCESS_BONUS = Decimal("0.01")

ZERO = Decimal("0")


class SettlementMode(Enum):
    """What happens to an escrowed stake when its request closes."""
    REFUND_PLUS_BONUS = "refund_plus_bonus"
    REFUND_ONLY = "refund_only"
    FORFEIT = "forfeit"


@dataclass
class StakeEntry:
    """Stake held for one guardian's vote on one request."""
    guardian_id: str
    request_id: int
    amount: Decimal
    escrowed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "guardian_id": self.guardian_id,
            "request_id": self.request_id,
            "amount": str(self.amount),
            "escrowed_at": self.escrowed_at.isoformat(),
        }


# =============================================================================
# Value Transfer Collaborator
# =============================================================================

class ValueTransfer(ABC):
    """
    External ledger that actually moves funds.

    Implementations must raise on failure; the engine treats any exception as
    fatal for the operation in progress.
    """

    @abstractmethod
    def collect(self, identity: str, amount: Decimal) -> None:
        """Take ``amount`` from ``identity`` into engine escrow."""

    @abstractmethod
    def pay(self, identity: str, amount: Decimal) -> None:
        """Send ``amount`` from the engine to ``identity``."""


class InMemoryValueTransfer(ValueTransfer):
    """
    Records transfers in memory.

    ``fail_on`` names operations ("collect", "pay") that should raise, which
    lets tests exercise the fail-closed paths.
    """

    def __init__(self):
        self.collected: dict[str, Decimal] = {}
        self.paid: dict[str, Decimal] = {}
        self.transfers: list[dict[str, Any]] = []
        self.fail_on: set[str] = set()
        self._lock = threading.Lock()

    def collect(self, identity: str, amount: Decimal) -> None:
        if "collect" in self.fail_on:
            raise ConnectionError("value transfer unavailable")
        with self._lock:
            self.collected[identity] = self.collected.get(identity, ZERO) + amount
            self.transfers.append({"op": "collect", "identity": identity, "amount": amount})

    def pay(self, identity: str, amount: Decimal) -> None:
        if "pay" in self.fail_on:
            raise ConnectionError("value transfer unavailable")
        with self._lock:
            self.paid[identity] = self.paid.get(identity, ZERO) + amount
            self.transfers.append({"op": "pay", "identity": identity, "amount": amount})


# =============================================================================
# Stake Ledger
# =============================================================================

class StakeLedger:
    """
    Escrow and settlement of per-vote stakes.

    Attributes:
        escrows: Open stake entries keyed by (guardian_id, request_id)
        balances: Withdrawable earnings per identity
    """

    def __init__(
        self,
        reputation: ReputationStore,
        value_transfer: ValueTransfer,
        success_bonus: Decimal = SUCCESS_BONUS,
        single_active_stake: bool = True,
    ):
        self.reputation = reputation
        self.value_transfer = value_transfer
        self.success_bonus = success_bonus
        self.single_active_stake = single_active_stake

        self.escrows: dict[tuple[str, int], StakeEntry] = {}
        self.balances: dict[str, Decimal] = {}

        # Accounting
        self.total_escrowed = ZERO
        self.total_refunded = ZERO
        self.total_bonus_paid = ZERO
        self.total_forfeited = ZERO
        self.total_withdrawn = ZERO
        self._escrowed_by_request: dict[int, Decimal] = {}
        self._refunded_by_request: dict[int, Decimal] = {}
        self._bonus_by_request: dict[int, Decimal] = {}

    # -------------------------------------------------------------------------
    # Escrow
    # -------------------------------------------------------------------------

    def active_requests_for(self, guardian_id: str) -> list[int]:
        """Requests on which the guardian currently holds stake."""
        return [rid for (gid, rid) in self.escrows if gid == guardian_id]

    def check_can_escrow(self, guardian_id: str, request_id: int) -> None:
        """Raise if the guardian may not escrow stake on this request."""
        if (guardian_id, request_id) in self.escrows:
            raise StateError(
                f"Guardian {guardian_id} already holds stake on request {request_id}",
                component="stake_ledger",
                action="escrow",
            )
        if self.single_active_stake:
            held = self.active_requests_for(guardian_id)
            if held:
                raise StakeAlreadyActive(
                    f"Guardian {guardian_id} already has stake escrowed on request {held[0]}",
                    component="stake_ledger",
                    action="escrow",
                    details={"guardian_id": guardian_id, "held_on": held},
                )

    def escrow(
        self,
        guardian_id: str,
        request_id: int,
        amount: Decimal,
        now: datetime | None = None,
    ) -> StakeEntry:
        """
        Hold ``amount`` for the guardian's vote on ``request_id``.

        The entry is recorded first and the funds are then collected from the
        guardian; a collection failure removes the entry again.
        """
        self.check_can_escrow(guardian_id, request_id)
        guardian = self.reputation.require(guardian_id)

        entry = StakeEntry(guardian_id=guardian_id, request_id=request_id, amount=amount)
        if now is not None:
            entry.escrowed_at = now

        key = (guardian_id, request_id)
        self.escrows[key] = entry
        guardian.staked_amount += amount
        self.total_escrowed += amount
        self._escrowed_by_request[request_id] = self._escrowed_by_request.get(request_id, ZERO) + amount

        try:
            self.value_transfer.collect(guardian_id, amount)
        except Exception as e:
            del self.escrows[key]
            guardian.staked_amount -= amount
            self.total_escrowed -= amount
            self._escrowed_by_request[request_id] -= amount
            logger.error(
                "Stake collection failed",
                extra={"guardian_id": guardian_id, "request_id": request_id, "amount": str(amount)},
            )
            raise CollaboratorError(
                "Value transfer failed while collecting stake",
                component="stake_ledger",
                action="escrow",
                details={"guardian_id": guardian_id, "request_id": request_id},
                cause=e,
            ) from e

        return entry

    def held(self, guardian_id: str, request_id: int) -> Decimal:
        entry = self.escrows.get((guardian_id, request_id))
        return entry.amount if entry else ZERO

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------

    def settle(self, guardian_id: str, request_id: int, mode: SettlementMode) -> Decimal:
        """
        Release the stake held for one vote.

        Returns:
            Amount credited to the guardian's withdrawable balance
        """
        entry = self.escrows.pop((guardian_id, request_id), None)
        if entry is None:
            raise StateError(
                f"No stake held for guardian {guardian_id} on request {request_id}",
                component="stake_ledger",
                action="settle",
            )

        guardian = self.reputation.require(guardian_id)
        guardian.staked_amount -= entry.amount
        if guardian.staked_amount < ZERO:
            guardian.staked_amount = ZERO

        credited = ZERO
        if mode is SettlementMode.FORFEIT:
            self.total_forfeited += entry.amount
        else:
            credited = entry.amount
            self.total_refunded += entry.amount
            self._refunded_by_request[request_id] = (
                self._refunded_by_request.get(request_id, ZERO) + entry.amount
            )
            if mode is SettlementMode.REFUND_PLUS_BONUS:
                credited += self.success_bonus
                self.total_bonus_paid += self.success_bonus
                self._bonus_by_request[request_id] = (
                    self._bonus_by_request.get(request_id, ZERO) + self.success_bonus
                )
            self.balances[guardian_id] = self.balances.get(guardian_id, ZERO) + credited

        return credited

    # -------------------------------------------------------------------------
    # Withdrawal
    # -------------------------------------------------------------------------

    def balance_of(self, identity: str) -> Decimal:
        return self.balances.get(identity, ZERO)

    def withdraw(self, identity: str) -> Decimal:
        """
        Pay out the identity's whole withdrawable balance.

        The balance is zeroed before the collaborator is called.

        Raises:
            NothingToWithdraw: If the balance is zero
            CollaboratorError: If the payment fails (balance restored)
        """
        amount = self.balances.get(identity, ZERO)
        if amount <= ZERO:
            raise NothingToWithdraw(
                f"No earnings to withdraw for {identity}",
                component="stake_ledger",
                action="withdraw",
                details={"identity": identity},
            )

        self.balances[identity] = ZERO
        self.total_withdrawn += amount

        try:
            self.value_transfer.pay(identity, amount)
        except Exception as e:
            self.balances[identity] = amount
            self.total_withdrawn -= amount
            logger.error("Earnings payout failed", extra={"identity": identity, "amount": str(amount)})
            raise CollaboratorError(
                "Value transfer failed while paying earnings",
                component="stake_ledger",
                action="withdraw",
                details={"identity": identity},
                cause=e,
            ) from e

        metrics.increment("earnings_withdrawn")
        return amount

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def escrowed_for(self, request_id: int) -> Decimal:
        """Total stake ever escrowed on a request."""
        return self._escrowed_by_request.get(request_id, ZERO)

    def refunded_for(self, request_id: int) -> Decimal:
        """Stake returned for a request, excluding bonuses."""
        return self._refunded_by_request.get(request_id, ZERO)

    def bonus_for(self, request_id: int) -> Decimal:
        return self._bonus_by_request.get(request_id, ZERO)

    def paid_out_for(self, request_id: int) -> Decimal:
        """Refunds plus bonuses credited on a request's settlement."""
        return self.refunded_for(request_id) + self.bonus_for(request_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "open_escrows": [e.to_dict() for e in self.escrows.values()],
            "total_escrowed": str(self.total_escrowed),
            "total_refunded": str(self.total_refunded),
            "total_bonus_paid": str(self.total_bonus_paid),
            "total_forfeited": str(self.total_forfeited),
            "total_withdrawn": str(self.total_withdrawn),
            "outstanding_balances": {k: str(v) for k, v in self.balances.items() if v > ZERO},
        }
