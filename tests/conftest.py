"""
Pytest configuration and shared fixtures for Guardian Recovery tests.

Provides:
- A manual clock and an in-memory value transfer collaborator
- Engine factories with guardians already registered
- Flask app/client wired to the same collaborators
- Metrics reset between tests
"""

import os
import sys
from datetime import UTC, datetime
from decimal import Decimal

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from monitoring import metrics  # noqa: E402
from recovery_config import RecoveryConfig  # noqa: E402
from recovery_machine import RecoveryRequestMachine  # noqa: E402
from stake_ledger import InMemoryValueTransfer  # noqa: E402
from time_lock import ManualClock  # noqa: E402

OWNER = "owner"
TEST_API_KEY = "test-api-key-12345"
STAKE = Decimal("0.1")
BONUS = Decimal("0.01")


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with empty metrics."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return ManualClock(datetime(2024, 1, 1, tzinfo=UTC))


@pytest.fixture
def transfer():
    return InMemoryValueTransfer()


@pytest.fixture
def make_engine(clock, transfer):
    """Factory: engine owned by OWNER with the given guardians added."""

    def _make(guardians=(), **config_overrides):
        config = RecoveryConfig(initial_owner=OWNER, **config_overrides)
        engine = RecoveryRequestMachine.from_config(config, clock=clock, value_transfer=transfer)
        for guardian_id in guardians:
            engine.add_guardian(OWNER, guardian_id)
        return engine

    return _make


@pytest.fixture
def engine(make_engine):
    """Engine with three guardians at base reputation (total 300)."""
    return make_engine(["g1", "g2", "g3"])


@pytest.fixture
def flask_app(clock, transfer):
    """Flask app around a fresh engine, API key required."""
    from api import create_app

    config = RecoveryConfig(initial_owner=OWNER, api_key=TEST_API_KEY, require_auth=True)
    app = create_app(config, clock=clock, value_transfer=transfer, configure_logs=False)
    app.config["TESTING"] = True
    yield app

    from api.state import reset_engine
    reset_engine()


@pytest.fixture
def flask_client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def headers_for():
    """Build authenticated request headers for a caller."""

    def _headers(caller=None, api_key=TEST_API_KEY):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        if caller:
            headers["X-Caller-Id"] = caller
        return headers

    return _headers
