import threading
from typing import Any, Dict, List

import pytest

from observability.errors import ExportFailure
from observability.sink import LogSink
from observability.trace_store import TraceStore
from sessions.stats_store import SessionStatsStore


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingSink(LogSink):
    """Sink that keeps every submitted batch; can be told to fail."""

    def __init__(self, fail: bool = False):
        self.batches: List[List[Dict[str, Any]]] = []
        self.fail = fail
        self._lock = threading.Lock()

    def submit(self, entries: List[Dict[str, Any]]) -> None:
        if self.fail:
            raise ExportFailure("sink down")
        with self._lock:
            self.batches.append(entries)

    @property
    def entries(self) -> List[Dict[str, Any]]:
        return [e for batch in self.batches for e in batch]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def trace_store(clock):
    store = TraceStore(clock=clock)
    yield store
    store.destroy()


@pytest.fixture
def stats_store(clock):
    return SessionStatsStore(clock=clock)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return RecordingSink(fail=True)
