"""Test doubles for the NetPulse engine.

Provides fakes for everything that would touch the OS or the network:
platform probes, HTTP openers and clocks.

Usage:
    from tests.mocks import FakeProbe, FakeOpener, FakeResponse, StepClock

    probe = FakeProbe(connections=[ActiveConnection("1.1.1.1")])
    opener = FakeOpener([FakeResponse(b"Apple, Inc.")])
"""

import io
from typing import Callable, List, Optional, Union
from urllib.error import URLError

from config import DataAccessFailed
from engine.platform_probe import ActiveConnection, ArpEntry, CounterSample, PlatformProbe


class FakeProbe(PlatformProbe):
    """Platform probe with scripted results.

    ``connections`` may be a list (returned every time), a DataAccessFailed
    (raised every time), or a callable producing either.
    """

    name = "fake"

    def __init__(self, arp: Optional[List[ArpEntry]] = None,
                 connections: Union[List[ActiveConnection], DataAccessFailed, Callable, None] = None,
                 counters: Union[CounterSample, Callable, None] = None):
        super().__init__()
        self.arp = arp or []
        self.connections = connections if connections is not None else []
        self.counters = counters
        self.arp_reads = 0

    def read_arp_table(self) -> List[ArpEntry]:
        self.arp_reads += 1
        return list(self.arp)

    def list_connections(self) -> List[ActiveConnection]:
        value = self.connections() if callable(self.connections) else self.connections
        if isinstance(value, DataAccessFailed):
            raise value
        return list(value)

    def read_counters(self) -> Optional[CounterSample]:
        return self.counters() if callable(self.counters) else self.counters


class FakeResponse:
    """Stand-in for an ``http.client.HTTPResponse`` used as a context manager."""

    def __init__(self, body: bytes = b"", status: int = 200):
        self._stream = io.BytesIO(body)
        self.status = status
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class FakeOpener:
    """Callable replacing ``urlopen``.

    Each call consumes the next scripted outcome: a FakeResponse is
    returned, an exception instance is raised. When the script runs out the
    ``default`` outcome is used.
    """

    def __init__(self, outcomes: Optional[list] = None, default=None):
        self.outcomes = list(outcomes or [])
        self.default = default if default is not None else URLError("no route")
        self.requests = []
        self.timeouts = []

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        self.timeouts.append(timeout)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if callable(outcome) and not isinstance(outcome, (FakeResponse, BaseException)):
            outcome = outcome(request)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def urls(self) -> List[str]:
        return [request.full_url for request in self.requests]


class StepClock:
    """Monotonic clock that advances by ``step`` seconds on every read."""

    def __init__(self, start: float = 0.0, step: float = 1.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now
