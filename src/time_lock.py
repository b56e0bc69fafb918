"""
Guardian Recovery - Time Lock Policy

Maps a recovery class to the minimum wait before non-emergency votes are
admitted. The policy is a declarative lookup table so it can be inspected and
tested in isolation.

Also provides the Clock collaborators the engine polls for "now".
"""

import threading
from datetime import UTC, datetime, timedelta
from enum import Enum

from recovery_errors import InvalidRecoveryClass


class RecoveryClass(Enum):
    """Declared severity of the incident behind a recovery request."""
    LOST_KEY = "lost_key"
    COMPROMISED = "compromised"
    EMERGENCY = "emergency"

    @classmethod
    def parse(cls, value) -> "RecoveryClass":
        """Accept an enum member, its name or its value (case-insensitive)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if key in (member.value, member.name.lower()):
                    return member
        raise InvalidRecoveryClass(
            f"Unknown recovery class: {value!r}",
            component="time_lock",
            action="parse",
            details={"allowed": [m.name for m in cls]},
        )


# Waiting period per class
REQUIRED_DELAYS: dict[RecoveryClass, timedelta] = {
    RecoveryClass.LOST_KEY: timedelta(days=7),
    RecoveryClass.COMPROMISED: timedelta(days=1),
    RecoveryClass.EMERGENCY: timedelta(0),
}


class TimeLockPolicy:
    """
    Decides whether a vote arrives after the lock for its class has elapsed.

    EMERGENCY bypasses the wait entirely but still needs the same quorum.
    """

    def __init__(self, delays: dict[RecoveryClass, timedelta] | None = None):
        self.delays = dict(delays or REQUIRED_DELAYS)
        missing = [c.name for c in RecoveryClass if c not in self.delays]
        if missing:
            raise ValueError(f"Time lock table missing classes: {missing}")

    def required_delay(self, recovery_class: RecoveryClass) -> timedelta:
        return self.delays[recovery_class]

    def longest_delay(self) -> timedelta:
        return max(self.delays.values())

    def unlocks_at(self, recovery_class: RecoveryClass, request_time: datetime) -> datetime:
        return request_time + self.required_delay(recovery_class)

    def is_unlocked(
        self,
        recovery_class: RecoveryClass,
        request_time: datetime,
        now: datetime,
    ) -> bool:
        if recovery_class is RecoveryClass.EMERGENCY:
            return True
        return now >= self.unlocks_at(recovery_class, request_time)

    def to_dict(self) -> dict[str, float]:
        return {c.name: d.total_seconds() for c, d in self.delays.items()}


# =============================================================================
# Clocks
# =============================================================================

class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """
    Clock that only moves when told to.

    Used by tests and demos to step across time-lock and expiry boundaries.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=UTC)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, delta: timedelta) -> datetime:
        if delta < timedelta(0):
            raise ValueError("ManualClock cannot move backwards")
        with self._lock:
            self._now += delta
            return self._now

    def set(self, moment: datetime) -> None:
        with self._lock:
            if moment < self._now:
                raise ValueError("ManualClock cannot move backwards")
            self._now = moment
