"""
Shared state for the Guardian Recovery API.

Holds the engine instance and its config. ``create_app`` initializes them and
the blueprints read them through ``get_engine`` / ``get_config``.
"""

import threading

from recovery_config import RecoveryConfig
from recovery_machine import RecoveryRequestMachine

_engine: RecoveryRequestMachine | None = None
_config: RecoveryConfig | None = None
_state_lock = threading.Lock()


def init_engine(
    config: RecoveryConfig | None = None,
    clock=None,
    value_transfer=None,
) -> RecoveryRequestMachine:
    """Build a fresh engine and make it the shared instance."""
    global _engine, _config
    with _state_lock:
        _config = config or RecoveryConfig.from_env()
        _engine = RecoveryRequestMachine.from_config(
            _config, clock=clock, value_transfer=value_transfer
        )
        return _engine


def get_engine() -> RecoveryRequestMachine:
    """Get the shared engine, creating one from the environment if needed."""
    if _engine is None:
        return init_engine()
    return _engine


def get_config() -> RecoveryConfig:
    if _config is None:
        get_engine()
    return _config


def reset_engine() -> None:
    """Drop the shared engine (useful for testing)."""
    global _engine, _config
    with _state_lock:
        _engine = None
        _config = None
