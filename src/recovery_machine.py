"""
Guardian Recovery - Recovery Request State Machine

A recovery request proposes replacing the account owner. Guardians vote on it
with stake; support votes add the voter's reputation (at vote time) to the
request's weight. When the weight reaches the quorum snapshotted at creation,
the request executes inside the same call: ownership moves and every voter is
settled.

States:
    OPEN -> EXECUTED   quorum reached
    OPEN -> EXPIRED    max age passed without quorum, closed by a guardian

Terminal states are final. Every operation either completes or raises a
RecoveryError with no partial effect.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from functools import wraps
from typing import Any

from guardian_registry import AccountState, GuardianRegistry
from monitoring import get_logger, metrics
from recovery_config import QUORUM_PERCENT, RecoveryConfig
from recovery_errors import (
    AlreadyVoted,
    CollaboratorError,
    InsufficientStake,
    InvalidTarget,
    LockedStillWaiting,
    NotGuardian,
    NotOpen,
    RecoveryError,
    RequestNotExpired,
    UnknownRequest,
    ValidationError,
)
from reputation_store import ReputationOutcome, ReputationStore
from stake_ledger import InMemoryValueTransfer, SettlementMode, StakeLedger, ValueTransfer
from time_lock import RecoveryClass, SystemClock, TimeLockPolicy

logger = get_logger(__name__)


class RequestStatus(Enum):
    """Lifecycle status of a recovery request."""
    OPEN = "open"
    EXECUTED = "executed"
    EXPIRED = "expired"


@dataclass
class VoteRecord:
    """One guardian's vote on one request."""
    guardian_id: str
    supported: bool
    stake_held: Decimal
    weight: int
    voted_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "guardian_id": self.guardian_id,
            "supported": self.supported,
            "stake_held": str(self.stake_held),
            "weight": self.weight,
            "voted_at": self.voted_at.isoformat(),
        }


@dataclass
class RecoveryRequest:
    """A proposal to replace the account owner."""
    request_id: int
    requester: str
    new_owner: str
    recovery_class: RecoveryClass
    request_time: datetime
    required_weight: int
    current_weight: int = 0
    votes: dict[str, VoteRecord] = field(default_factory=dict)
    status: RequestStatus = RequestStatus.OPEN
    closed_at: datetime | None = None
    previous_owner: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status is RequestStatus.OPEN

    def has_voted(self, guardian_id: str) -> bool:
        return guardian_id in self.votes

    def support_voters(self) -> list[str]:
        return [gid for gid, v in self.votes.items() if v.supported]

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "requester": self.requester,
            "new_owner": self.new_owner,
            "recovery_class": self.recovery_class.name,
            "request_time": self.request_time.isoformat(),
            "required_weight": self.required_weight,
            "current_weight": self.current_weight,
            "votes": [v.to_dict() for v in self.votes.values()],
            "status": self.status.value,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "previous_owner": self.previous_owner,
        }


def quorum_weight(total_reputation: int, percent: int = QUORUM_PERCENT) -> int:
    """Ceiling of ``percent`` of ``total_reputation``, never below 1."""
    return max(1, (total_reputation * percent + 99) // 100)


def _serialized(action: str):
    """Run an engine operation under the engine lock, counting rejections."""

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            with self._lock, metrics.timer("recovery_operation_duration_ms", {"operation": action}):
                try:
                    return func(self, *args, **kwargs)
                except RecoveryError as e:
                    metrics.increment(
                        "recovery_operations_rejected",
                        labels={"operation": action, "error": type(e).__name__},
                    )
                    if isinstance(e, CollaboratorError):
                        logger.error("Recovery operation aborted", extra={"operation": action, "error": str(e)})
                    else:
                        logger.warning(
                            "Recovery operation rejected",
                            extra={"operation": action, "error_type": type(e).__name__, "reason": e.message},
                        )
                    raise

        return wrapper

    return decorator


class RecoveryRequestMachine:
    """
    Owns every recovery request for one account.

    Collaborators are passed in: the registry and account state, the stake
    ledger (which wraps the value-transfer collaborator), a clock and the time
    lock policy.
    """

    def __init__(
        self,
        account: AccountState,
        registry: GuardianRegistry,
        ledger: StakeLedger,
        clock=None,
        time_lock: TimeLockPolicy | None = None,
        stake_amount: Decimal | None = None,
        max_request_age: timedelta | None = None,
    ):
        self.account = account
        self.registry = registry
        self.reputation: ReputationStore = registry.reputation
        self.ledger = ledger
        self.clock = clock or SystemClock()
        self.time_lock = time_lock or TimeLockPolicy()

        defaults = RecoveryConfig()
        self.stake_amount = stake_amount if stake_amount is not None else defaults.stake_amount
        self.max_request_age = max_request_age or defaults.max_request_age
        if self.max_request_age <= self.time_lock.longest_delay():
            raise ValueError("max_request_age must exceed the longest time lock delay")

        self.requests: dict[int, RecoveryRequest] = {}
        self.events: list[dict[str, Any]] = []
        self._next_id = 1
        self._lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        config: RecoveryConfig,
        clock=None,
        value_transfer: ValueTransfer | None = None,
    ) -> "RecoveryRequestMachine":
        """Wire a complete engine from a config."""
        config.validate()
        account = AccountState(current_owner=config.initial_owner)
        reputation = ReputationStore()
        registry = GuardianRegistry(account, reputation)
        ledger = StakeLedger(
            reputation,
            value_transfer or InMemoryValueTransfer(),
            success_bonus=config.success_bonus,
            single_active_stake=config.single_active_stake,
        )
        return cls(
            account,
            registry,
            ledger,
            clock=clock,
            stake_amount=config.stake_amount,
            max_request_age=config.max_request_age,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _now(self, action: str) -> datetime:
        try:
            return self.clock.now()
        except Exception as e:
            raise CollaboratorError(
                "Clock unavailable",
                component="recovery_machine",
                action=action,
                cause=e,
            ) from e

    def _require_request(self, request_id: int, action: str) -> RecoveryRequest:
        request = self.requests.get(request_id)
        if request is None:
            raise UnknownRequest(
                f"Recovery request {request_id} not found",
                component="recovery_machine",
                action=action,
                details={"request_id": request_id},
            )
        return request

    def _require_guardian(self, guardian_id: str, action: str) -> None:
        if not self.registry.is_active(guardian_id):
            raise NotGuardian(
                f"{guardian_id} is not an active guardian",
                component="recovery_machine",
                action=action,
                details={"caller": guardian_id},
            )

    def _emit_event(self, event_type: str, data: dict[str, Any], timestamp: datetime) -> None:
        """Append an event to the audit trail."""
        self.events.append({
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "data": data,
        })

    def _update_open_gauge(self) -> None:
        metrics.set_gauge(
            "recovery_requests_open",
            sum(1 for r in self.requests.values() if r.is_open),
        )

    @staticmethod
    def _coerce_stake(stake_provided) -> Decimal:
        if isinstance(stake_provided, bool):
            raise ValidationError("Stake must be a number", component="recovery_machine", action="vote")
        try:
            stake = Decimal(str(stake_provided))
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(
                f"Stake must be a number, got {stake_provided!r}",
                component="recovery_machine",
                action="vote",
            ) from e
        if not stake.is_finite():
            raise ValidationError("Stake must be finite", component="recovery_machine", action="vote")
        return stake

    # =========================================================================
    # Operations
    # =========================================================================

    @_serialized("open_request")
    def open_request(self, requester: str, new_owner: str, recovery_class) -> RecoveryRequest:
        """
        Open a recovery request.

        The quorum is 60% of the total active reputation at this instant and
        is never recomputed.

        Raises:
            NotGuardian: Requester is not an active guardian
            InvalidTarget: New owner is empty or already the owner
            InvalidRecoveryClass: Class not recognised
        """
        now = self._now("open_request")
        self._require_guardian(requester, "open_request")

        if not new_owner or new_owner == self.account.current_owner:
            raise InvalidTarget(
                "New owner must be non-empty and differ from the current owner",
                component="recovery_machine",
                action="open_request",
                details={"new_owner": new_owner},
            )
        recovery_class = RecoveryClass.parse(recovery_class)

        request = RecoveryRequest(
            request_id=self._next_id,
            requester=requester,
            new_owner=new_owner,
            recovery_class=recovery_class,
            request_time=now,
            required_weight=quorum_weight(self.registry.total_active_reputation()),
        )
        self.requests[request.request_id] = request
        self._next_id += 1

        self._emit_event("RequestOpened", {
            "request_id": request.request_id,
            "requester": requester,
            "new_owner": new_owner,
            "recovery_class": recovery_class.name,
            "required_weight": request.required_weight,
        }, now)
        metrics.increment("recovery_requests_opened", labels={"class": recovery_class.name})
        self._update_open_gauge()
        logger.info(
            "Recovery request opened",
            extra={
                "request_id": request.request_id,
                "recovery_class": recovery_class.name,
                "required_weight": request.required_weight,
            },
        )
        return request

    @_serialized("vote")
    def vote(self, request_id: int, guardian_id: str, support: bool, stake_provided) -> RecoveryRequest:
        """
        Cast a staked vote. Executes the request in the same call if the vote
        brings the support weight to the quorum.

        Raises:
            UnknownRequest, NotOpen, NotGuardian, AlreadyVoted,
            InsufficientStake, LockedStillWaiting, StakeAlreadyActive,
            CollaboratorError
        """
        now = self._now("vote")
        request = self._require_request(request_id, "vote")

        if not request.is_open:
            raise NotOpen(
                f"Recovery request {request_id} is {request.status.value}",
                component="recovery_machine",
                action="vote",
                details={"request_id": request_id, "status": request.status.value},
            )
        self._require_guardian(guardian_id, "vote")
        if request.has_voted(guardian_id):
            raise AlreadyVoted(
                f"{guardian_id} already voted on request {request_id}",
                component="recovery_machine",
                action="vote",
            )
        if not isinstance(support, bool):
            raise ValidationError("support must be a boolean", component="recovery_machine", action="vote")

        stake = self._coerce_stake(stake_provided)
        if stake < self.stake_amount:
            raise InsufficientStake(
                f"Stake {stake} below required {self.stake_amount}",
                component="recovery_machine",
                action="vote",
                details={"provided": str(stake), "required": str(self.stake_amount)},
            )
        if not self.time_lock.is_unlocked(request.recovery_class, request.request_time, now):
            raise LockedStillWaiting(
                "Time lock has not elapsed for this recovery class",
                component="recovery_machine",
                action="vote",
                details={
                    "recovery_class": request.recovery_class.name,
                    "unlocks_at": self.time_lock.unlocks_at(
                        request.recovery_class, request.request_time
                    ).isoformat(),
                },
            )
        self.ledger.check_can_escrow(guardian_id, request_id)

        weight = self.reputation.score(guardian_id) if support else 0
        record = VoteRecord(
            guardian_id=guardian_id,
            supported=support,
            stake_held=stake,
            weight=weight,
            voted_at=now,
        )
        request.votes[guardian_id] = record
        try:
            self.ledger.escrow(guardian_id, request_id, stake, now=now)
        except RecoveryError:
            del request.votes[guardian_id]
            raise

        request.current_weight += weight

        self._emit_event("VoteCast", {
            "request_id": request_id,
            "guardian_id": guardian_id,
            "support": support,
            "weight": weight,
            "current_weight": request.current_weight,
        }, now)
        metrics.increment("recovery_votes_cast", labels={"support": str(support).lower()})
        logger.info(
            "Vote recorded",
            extra={
                "request_id": request_id,
                "guardian_id": guardian_id,
                "support": support,
                "current_weight": request.current_weight,
                "required_weight": request.required_weight,
            },
        )

        if request.current_weight >= request.required_weight:
            self._execute(request, now)

        return request

    def _execute(self, request: RecoveryRequest, now: datetime) -> None:
        """Commit the owner change and settle every voter as successful."""
        request.status = RequestStatus.EXECUTED
        request.closed_at = now
        request.previous_owner = self.account.current_owner
        self.account.current_owner = request.new_owner

        for guardian_id in request.votes:
            self.reputation.adjust(guardian_id, ReputationOutcome.SUCCESSFUL_PARTICIPANT)
            self.ledger.settle(guardian_id, request.request_id, SettlementMode.REFUND_PLUS_BONUS)

        self._emit_event("RequestExecuted", {
            "request_id": request.request_id,
            "previous_owner": request.previous_owner,
            "new_owner": request.new_owner,
            "participants": list(request.votes),
        }, now)
        metrics.increment("recovery_requests_executed", labels={"class": request.recovery_class.name})
        self._update_open_gauge()
        logger.info(
            "Recovery executed, ownership transferred",
            extra={"request_id": request.request_id, "new_owner": request.new_owner},
        )

    @_serialized("expire_request")
    def expire_request(self, request_id: int, caller: str) -> RecoveryRequest:
        """
        Close an open request that aged out without reaching quorum.

        Support voters lose reputation; every voter gets their stake back.

        Raises:
            UnknownRequest, NotOpen, NotGuardian, RequestNotExpired
        """
        now = self._now("expire_request")
        request = self._require_request(request_id, "expire_request")
        if not request.is_open:
            raise NotOpen(
                f"Recovery request {request_id} is {request.status.value}",
                component="recovery_machine",
                action="expire_request",
            )
        self._require_guardian(caller, "expire_request")

        expires_at = request.request_time + self.max_request_age
        if now < expires_at:
            raise RequestNotExpired(
                f"Recovery request {request_id} has not reached its maximum age",
                component="recovery_machine",
                action="expire_request",
                details={"expires_at": expires_at.isoformat()},
            )

        request.status = RequestStatus.EXPIRED
        request.closed_at = now

        penalized = []
        for guardian_id, record in request.votes.items():
            if record.supported:
                self.reputation.adjust(guardian_id, ReputationOutcome.FAILED_SUPPORT)
                penalized.append(guardian_id)
            self.ledger.settle(guardian_id, request_id, SettlementMode.REFUND_ONLY)

        self._emit_event("RequestExpired", {
            "request_id": request_id,
            "closed_by": caller,
            "penalized": penalized,
            "refunded": list(request.votes),
        }, now)
        metrics.increment("recovery_requests_expired", labels={"class": request.recovery_class.name})
        self._update_open_gauge()
        logger.info(
            "Recovery request expired",
            extra={"request_id": request_id, "penalized": len(penalized)},
        )
        return request

    @_serialized("withdraw_earnings")
    def withdraw_earnings(self, identity: str) -> Decimal:
        """Pay out the identity's accrued refunds and bonuses."""
        now = self._now("withdraw_earnings")
        amount = self.ledger.withdraw(identity)
        self._emit_event("EarningsWithdrawn", {"identity": identity, "amount": str(amount)}, now)
        logger.info("Earnings withdrawn", extra={"identity": identity, "amount": str(amount)})
        return amount

    # =========================================================================
    # Administrative pass-throughs
    # =========================================================================

    @_serialized("add_guardian")
    def add_guardian(self, caller: str, guardian_id: str):
        now = self._now("add_guardian")
        guardian = self.registry.add_guardian(caller, guardian_id, now=now)
        self._emit_event("GuardianAdded", {"guardian_id": guardian_id}, now)
        return guardian

    @_serialized("remove_guardian")
    def remove_guardian(self, caller: str, guardian_id: str):
        now = self._now("remove_guardian")
        guardian = self.registry.remove_guardian(caller, guardian_id, now=now)
        self._emit_event("GuardianRemoved", {"guardian_id": guardian_id}, now)
        return guardian

    # =========================================================================
    # Queries
    # =========================================================================

    def get_request(self, request_id: int) -> RecoveryRequest:
        with self._lock:
            return self._require_request(request_id, "get_request")

    def list_requests(self, status: RequestStatus | None = None) -> list[RecoveryRequest]:
        with self._lock:
            return [
                r for r in self.requests.values()
                if status is None or r.status is status
            ]

    @property
    def current_owner(self) -> str:
        return self.account.current_owner

    def get_statistics(self) -> dict[str, Any]:
        with self._lock:
            by_status = {s.value: 0 for s in RequestStatus}
            for r in self.requests.values():
                by_status[r.status.value] += 1
            return {
                "current_owner": self.account.current_owner,
                "requests": by_status,
                "active_guardians": len(self.registry.active_guardians()),
                "total_active_reputation": self.registry.total_active_reputation(),
                "ledger": self.ledger.to_dict(),
                "event_count": len(self.events),
            }
