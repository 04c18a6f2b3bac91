"""
Shared fixtures for all tests.

The fake clock lets tests move time forward in exact milliseconds so
durations can be asserted without sleeping.
"""

import pytest

from stepprof.profiler import ProfilerEngine


class FakeClock:
    """Monotonic clock in seconds, advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms / 1000.0
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(clock: FakeClock) -> ProfilerEngine:
    """Enabled engine driven by the fake clock."""
    return ProfilerEngine(
        enabled=True,
        trivial_fraction=0.75,
        clock=clock,
        wall_clock=lambda: 1_700_000_000.0,
        profile_id="test-profile",
    )
