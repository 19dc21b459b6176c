import pytest

from vidyut_timer.controller import TransitionController
from vidyut_timer.store import MemorySessionStore


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> float:
        self.t += seconds
        return self.t


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemorySessionStore(clock=clock)


@pytest.fixture
def controller(store):
    return TransitionController(store, "user-1")
