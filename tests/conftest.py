"""
Shared fixtures for the StakeGuard test suite.
"""

import os
import sys

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from stakeguard.engine import StakeGuardEngine


class FixedClock:
    """Manually advanced network clock."""

    def __init__(self, now: int = 1_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, delta: int) -> int:
        self.now += delta
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def engine(clock):
    return StakeGuardEngine(clock=clock)


@pytest.fixture
def admin(engine):
    return engine.issue_capability("operator")
