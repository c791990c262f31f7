"""
Pytest configuration and shared fixtures for all tests
"""

import os
import sys

import pytest

# Add project root to Python path
project_root = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.dirname(project_root))

from metadata_proxy.config import Config  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Provide a manually advanced clock."""
    return FakeClock()


@pytest.fixture(scope="session")
def test_env_vars():
    """Provide test environment variables."""
    return {
        "STREAM_URL": "http://test.stream.local:8000/chiptune.ogg",
        "PORT": "3100",
        "LOG_LEVEL": "DEBUG",
        "RETRY_DELAY_SECONDS": "0.01",
    }


@pytest.fixture
def mock_env(monkeypatch, test_env_vars):
    """Mock environment variables for testing."""
    for key, value in test_env_vars.items():
        monkeypatch.setenv(key, value)


@pytest.fixture
def test_config():
    """Configuration with short timings for tests."""
    return Config(
        stream_url="http://test.stream.local:8000/chiptune.ogg",
        retry_delay_seconds=0.01,
        keepalive_seconds=0.05,
        min_emit_interval_seconds=5.0,
    )
