import pytest

import kvroute.failover as failover
import kvroute.memory as memory
from kvroute.memory import MemoryBackend


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock(monkeypatch):
    """Replace the monotonic clock used for holdoff and lease expiry."""
    fake = FakeClock()
    monkeypatch.setattr(failover, "_now", fake)
    monkeypatch.setattr(memory, "_now", fake)
    return fake


@pytest.fixture()
def backends() -> list[MemoryBackend]:
    return [MemoryBackend("a"), MemoryBackend("b"), MemoryBackend("c")]
