"""
Tests for the reputation store (src/reputation_store.py)
"""

from decimal import Decimal

import pytest

from recovery_errors import UnknownGuardian
from reputation_store import (
    BASE_REPUTATION,
    Guardian,
    ReputationOutcome,
    ReputationStore,
)


@pytest.fixture
def store():
    store = ReputationStore()
    store.register("g1")
    return store


class TestRegistration:
    """Tests for guardian records."""

    def test_new_guardian_defaults(self, store):
        guardian = store.get("g1")
        assert guardian.reputation_score == BASE_REPUTATION
        assert guardian.is_active is True
        assert guardian.total_recoveries == 0
        assert guardian.successful_recoveries == 0
        assert guardian.staked_amount == Decimal("0")

    def test_register_is_idempotent(self, store):
        store.adjust("g1", ReputationOutcome.SUCCESSFUL_PARTICIPANT)
        again = store.register("g1")
        assert again.reputation_score == BASE_REPUTATION + 10

    def test_require_unknown(self, store):
        with pytest.raises(UnknownGuardian):
            store.require("nobody")

    def test_to_dict(self):
        data = Guardian(guardian_id="g9").to_dict()
        assert data["guardian_id"] == "g9"
        assert data["staked_amount"] == "0"
        assert data["removed_at"] is None


class TestAdjust:
    """Tests for settlement outcomes."""

    def test_successful_participant(self, store):
        new_score = store.adjust("g1", ReputationOutcome.SUCCESSFUL_PARTICIPANT)
        guardian = store.get("g1")
        assert new_score == 110
        assert guardian.total_recoveries == 1
        assert guardian.successful_recoveries == 1

    def test_failed_support(self, store):
        new_score = store.adjust("g1", ReputationOutcome.FAILED_SUPPORT)
        guardian = store.get("g1")
        assert new_score == 80
        assert guardian.total_recoveries == 1
        assert guardian.successful_recoveries == 0

    def test_failed_support_floors_at_zero(self, store):
        for _ in range(6):
            store.adjust("g1", ReputationOutcome.FAILED_SUPPORT)
        assert store.score("g1") == 0
        assert store.get("g1").total_recoveries == 6

    def test_reputation_unbounded_above(self, store):
        for _ in range(50):
            store.adjust("g1", ReputationOutcome.SUCCESSFUL_PARTICIPANT)
        assert store.score("g1") == BASE_REPUTATION + 500

    def test_adjust_unknown_guardian(self, store):
        with pytest.raises(UnknownGuardian):
            store.adjust("ghost", ReputationOutcome.FAILED_SUPPORT)
