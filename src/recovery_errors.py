"""
Guardian Recovery - Exception Hierarchy

Every failure raised by the recovery engine derives from RecoveryError and
carries a structured ErrorContext for logging and API serialization.

Categories:
- AuthorizationError: caller lacks the required role
- ValidationError: malformed or invalid argument
- StateError: operation invalid for the current entity state
- ResourceError: insufficient stake or balance
- CollaboratorError: clock or value-transfer failure (fatal, fail-closed)
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ErrorSeverity(Enum):
    """Severity levels for recovery errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Structured context for error tracking and debugging."""
    component: str
    action: str
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: dict[str, Any] = field(default_factory=dict)
    severity: ErrorSeverity = ErrorSeverity.MEDIUM

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "component": self.component,
            "action": self.action,
            "timestamp": self.timestamp,
            "details": self.details,
            "severity": self.severity.value,
        }


class RecoveryError(Exception):
    """
    Base exception for all recovery engine errors.

    Subclasses set ``category`` and ``http_status`` so the API layer can map
    them without a lookup table.
    """

    category = "recovery"
    http_status = 500
    default_severity = ErrorSeverity.MEDIUM

    def __init__(
        self,
        message: str,
        component: str = "recovery",
        action: str = "unknown",
        details: dict[str, Any] | None = None,
        severity: ErrorSeverity | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            component=component,
            action=action,
            severity=severity or self.default_severity,
            details=details or {},
        )
        self.cause = cause

        if cause:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result = {
            "error": self.message,
            "error_type": type(self).__name__,
            "category": self.category,
            **self.context.to_dict(),
        }
        if self.cause:
            result["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return result

    def __str__(self) -> str:
        base = f"[{self.context.component}:{self.context.action}] {self.message}"
        if self.cause:
            base += f" (caused by: {self.cause})"
        return base


# =============================================================================
# Categories
# =============================================================================

class AuthorizationError(RecoveryError):
    """Caller lacks the role the operation requires."""
    category = "authorization"
    http_status = 403


class ValidationError(RecoveryError):
    """An argument is missing, malformed or refers to nothing."""
    category = "validation"
    http_status = 400
    default_severity = ErrorSeverity.LOW


class StateError(RecoveryError):
    """Operation is invalid for the entity's current state."""
    category = "state"
    http_status = 409


class ResourceError(RecoveryError):
    """Insufficient stake or balance."""
    category = "resource"
    http_status = 402


class CollaboratorError(RecoveryError):
    """
    Clock or value-transfer collaborator failed.

    The attempted transition is aborted and no state is changed.
    """
    category = "collaborator"
    http_status = 503
    default_severity = ErrorSeverity.CRITICAL


# =============================================================================
# Authorization
# =============================================================================

class NotOwner(AuthorizationError):
    """Raised when a non-owner attempts an owner-only administrative call."""


class NotGuardian(AuthorizationError):
    """Raised when the caller is not an active guardian."""


# =============================================================================
# Validation
# =============================================================================

class InvalidIdentity(ValidationError):
    """Guardian identity is empty or equals the account owner."""


class InvalidTarget(ValidationError):
    """Proposed new owner is empty or already the owner."""


class InvalidRecoveryClass(ValidationError):
    """Recovery class name is not recognised."""


class UnknownRequest(ValidationError):
    """No recovery request exists with the given id."""
    http_status = 404


class UnknownGuardian(ValidationError):
    """No guardian record exists with the given id."""
    http_status = 404


# =============================================================================
# State
# =============================================================================

class AlreadyActive(StateError):
    """Guardian is already active."""


class NotOpen(StateError):
    """Recovery request is no longer open."""


class AlreadyVoted(StateError):
    """Guardian has already voted on this request."""


class LockedStillWaiting(StateError):
    """The time lock for this recovery class has not elapsed yet."""


class RequestNotExpired(StateError):
    """The request has not reached its maximum age."""


class StakeAlreadyActive(StateError):
    """Guardian already holds stake on another open request."""


# =============================================================================
# Resource
# =============================================================================

class InsufficientStake(ResourceError):
    """Stake provided is below the required amount."""


class NothingToWithdraw(ResourceError):
    """Identity has no withdrawable balance."""
