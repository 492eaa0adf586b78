"""
Test configuration and fixtures for the conversation relay test suite.
"""

import os

import pytest

# Set environment before any config is built
os.environ.setdefault("LOGGING_ENVIRONMENT", "unit_test")
os.environ.setdefault("LOGGING_LEVEL", "WARNING")
os.environ.setdefault("SERVER_HOST", "127.0.0.1")

from conversation_relay.config import reset_config  # noqa: E402
from conversation_relay.realtime.connection_manager import ConnectionManager  # noqa: E402
from conversation_relay.realtime.relay_service import RelayService  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_config():
    """Each test sees configuration built from its own environment."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def relay():
    """A fresh relay with predictable message ids."""
    counter = iter(range(1, 1_000_000))
    return RelayService(message_id_factory=lambda: f"msg-{next(counter)}")


@pytest.fixture
def connection_manager(relay):
    return ConnectionManager(relay)
