"""Pytest configuration and shared fixtures."""

import os
import sys
from pathlib import Path

import pytest

# Add src directory to Python path for tests
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))


class FakeClock:
    """Manually advanced wall clock for window and cooldown tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """A FakeClock to inject into trackers."""
    return FakeClock()


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Pin logging env vars and drop any LOOPGUARD_* overrides from the host."""
    test_env = {
        "LOG_LEVEL": "DEBUG",
        "JSON_LOGS": "false",
    }

    for key, value in test_env.items():
        monkeypatch.setenv(key, value)

    for key in list(os.environ):
        if key.startswith("LOOPGUARD_"):
            monkeypatch.delenv(key, raising=False)
