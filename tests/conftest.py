"""Shared pytest fixtures for the simulator test suite.

Provides a deterministic fake scheduler, a scripted transport endpoint,
generator configs and a small two-node network used across the suite.
"""

import heapq
from ipaddress import IPv4Address
from typing import Any, Callable, List, Optional, Set, Tuple

import pytest

from cwnd_sim.core.exceptions import TransportError
from cwnd_sim.core.scheduler import EventId, EventTable, Scheduler
from cwnd_sim.core.simulator import NetworkSimulator
from cwnd_sim.core.transport import TransportEndpoint
from cwnd_sim.traffic.application import TrafficGenerator, TrafficGeneratorConfig

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeScheduler(Scheduler):
    """Heap-ordered scheduler driven explicitly by the test."""

    def __init__(self) -> None:
        self.time = 0.0
        self._queue: List[Tuple[float, int, EventId]] = []
        self._events = EventTable()
        self._counter = 0

    def schedule(self, delay: float, callback: Callable[..., Any], *args: Any) -> EventId:
        event_id = self._events.allocate(callback, args)
        heapq.heappush(self._queue, (self.time + delay, self._counter, event_id))
        self._counter += 1
        return event_id

    def cancel(self, event_id: Optional[EventId]) -> None:
        self._events.release(event_id)

    def is_pending(self, event_id: Optional[EventId]) -> bool:
        return self._events.is_live(event_id)

    def now(self) -> float:
        return self.time

    def step(self) -> bool:
        """Dispatch the next live event. Returns False when nothing is left."""
        while self._queue:
            when, _, event_id = heapq.heappop(self._queue)
            entry = self._events.release(event_id)
            if entry is None:
                continue
            self.time = when
            callback, args = entry
            callback(*args)
            return True
        return False

    def run(self, until: Optional[float] = None) -> None:
        while self._queue:
            if until is not None and self._queue[0][0] > until:
                self.time = until
                return
            if not self.step():
                return
        if until is not None:
            self.time = max(self.time, until)

    def advance(self, delta: float) -> None:
        self.run(self.time + delta)


class FakeEndpoint(TransportEndpoint):
    """Endpoint that records calls and can be told to fail."""

    def __init__(self, clock: Callable[[], float], fail_on: Optional[Set[str]] = None):
        super().__init__()
        self.clock = clock
        self.fail_on = fail_on or set()
        self.calls: List[str] = []
        self.sent: List[Tuple[float, bytes]] = []
        self.peer = None
        self.closed = False

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise TransportError(f"{name} failed")

    def bind(self) -> None:
        self._call("bind")

    def connect(self, address) -> None:
        self._call("connect")
        self.peer = address

    def send(self, payload: bytes) -> int:
        self._call("send")
        self.sent.append((self.clock(), payload))
        return len(payload)

    def close(self) -> None:
        self._call("close")
        self.closed = True

    @property
    def send_times(self) -> List[float]:
        return [t for t, _ in self.sent]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

SINK = (IPv4Address("10.0.2.2"), 1090)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def endpoint(scheduler: FakeScheduler) -> FakeEndpoint:
    return FakeEndpoint(scheduler.now)


@pytest.fixture
def generator_config() -> TrafficGeneratorConfig:
    """Reference configuration: 1000 x 1040 bytes at 1 Mbps."""
    return TrafficGeneratorConfig(
        destination=SINK,
        packet_size=1040,
        total_packets=1000,
        data_rate=1_000_000,
    )


@pytest.fixture
def generator(
    generator_config: TrafficGeneratorConfig,
    endpoint: FakeEndpoint,
    scheduler: FakeScheduler,
) -> TrafficGenerator:
    return TrafficGenerator(generator_config, endpoint, scheduler)


@pytest.fixture
def two_node_network() -> NetworkSimulator:
    """Nodes 0 and 1 joined by a 5 Mbps / 2 ms link on 10.0.0.0/24."""
    simulator = NetworkSimulator()
    simulator.add_node(0)
    simulator.add_node(1)
    simulator.add_link(0, 1, 5e6, 0.002, network="10.0.0.0/24")
    simulator.compute_shortest_paths()
    return simulator
