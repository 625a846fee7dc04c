"""Unit tests for the TrafficGenerator state machine and pacing."""

import pytest

from cwnd_sim.core.exceptions import ConfigError, LifecycleError, TransportError
from cwnd_sim.traffic.application import (
    LifecycleState,
    TrafficGenerator,
    TrafficGeneratorConfig,
)

from conftest import SINK, FakeEndpoint, FakeScheduler


def make_config(**overrides) -> TrafficGeneratorConfig:
    values = dict(destination=SINK, packet_size=1040, total_packets=10, data_rate=1e6)
    values.update(overrides)
    return TrafficGeneratorConfig(**values)


class TestPacing:
    """Tests for the pacing interval and send schedule."""

    def test_reference_interval(self, generator_config: TrafficGeneratorConfig) -> None:
        assert generator_config.interval == pytest.approx(0.00832)

    @pytest.mark.parametrize(
        "packet_size,rate",
        [(1040, 1e6), (64, 10e6), (1500, 5e6), (1, 8)],
    )
    def test_interval_is_size_times_eight_over_rate(self, packet_size: int, rate: float) -> None:
        config = make_config(packet_size=packet_size, data_rate=rate)
        assert config.interval == pytest.approx(packet_size * 8 / rate)

    def test_nth_send_time(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
        scheduler: FakeScheduler,
    ) -> None:
        generator.start()
        scheduler.run()
        times = endpoint.send_times
        assert len(times) == 1000
        for n in (1, 2, 500, 1000):
            assert times[n - 1] == pytest.approx((n - 1) * 0.00832)

    def test_gaps_are_identical(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
        scheduler: FakeScheduler,
    ) -> None:
        generator.start()
        scheduler.run()
        times = endpoint.send_times
        gaps = [b - a for a, b in zip(times, times[1:])]
        assert all(gap == pytest.approx(0.00832) for gap in gaps)

    def test_payload_has_configured_size(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
        scheduler: FakeScheduler,
    ) -> None:
        generator.start()
        scheduler.run(until=0.05)
        assert all(len(payload) == 1040 for _, payload in endpoint.sent)


class TestStart:
    """Tests for the IDLE -> RUNNING transition."""

    def test_start_binds_connects_and_sends_first_packet(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
    ) -> None:
        generator.start()
        assert endpoint.calls == ["bind", "connect", "send"]
        assert endpoint.peer == SINK
        assert generator.state is LifecycleState.RUNNING
        assert generator.packets_sent == 1
        assert endpoint.send_times == [0.0]

    def test_double_start_raises_without_mutation(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
    ) -> None:
        generator.start()
        pending = generator.send_event
        with pytest.raises(LifecycleError):
            generator.start()
        assert generator.state is LifecycleState.RUNNING
        assert generator.packets_sent == 1
        assert generator.send_event == pending
        assert endpoint.calls.count("bind") == 1

    def test_start_after_stop_raises(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
    ) -> None:
        generator.start()
        generator.stop()
        with pytest.raises(LifecycleError):
            generator.start()
        assert generator.state is LifecycleState.STOPPED
        assert generator.packets_sent == 1
        assert generator.send_event is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"data_rate": 0},
            {"data_rate": -1e6},
            {"packet_size": 0},
            {"packet_size": -5},
            {"total_packets": 0},
            {"destination": None},
            {"packet_size": True},
            {"total_packets": True},
            {"data_rate": True},
        ],
    )
    def test_invalid_config_raises_before_any_send(
        self,
        overrides,
        endpoint: FakeEndpoint,
        scheduler: FakeScheduler,
    ) -> None:
        generator = TrafficGenerator(make_config(**overrides), endpoint, scheduler)
        with pytest.raises(ConfigError):
            generator.start()
        assert endpoint.calls == []
        assert generator.state is LifecycleState.IDLE
        assert generator.packets_sent == 0

    @pytest.mark.parametrize("operation", ["bind", "connect", "send"])
    def test_transport_failure_propagates(
        self,
        operation: str,
        scheduler: FakeScheduler,
    ) -> None:
        endpoint = FakeEndpoint(scheduler.now, fail_on={operation})
        generator = TrafficGenerator(make_config(), endpoint, scheduler)
        with pytest.raises(TransportError):
            generator.start()
        assert generator.packets_sent == 0
        assert generator.send_event is None

    def test_send_failure_mid_run_propagates(self, scheduler: FakeScheduler) -> None:
        endpoint = FakeEndpoint(scheduler.now)
        generator = TrafficGenerator(make_config(), endpoint, scheduler)
        generator.start()
        endpoint.fail_on.add("send")
        with pytest.raises(TransportError):
            scheduler.step()
        assert generator.packets_sent == 1


class TestSendPacket:
    """Tests for the self-scheduling send loop."""

    def test_counter_increments_by_one_per_send(
        self,
        scheduler: FakeScheduler,
        endpoint: FakeEndpoint,
    ) -> None:
        generator = TrafficGenerator(make_config(total_packets=5), endpoint, scheduler)
        generator.start()
        counts = [generator.packets_sent]
        while scheduler.step():
            counts.append(generator.packets_sent)
        assert counts == [1, 2, 3, 4, 5]

    def test_never_exceeds_total(
        self,
        scheduler: FakeScheduler,
        endpoint: FakeEndpoint,
    ) -> None:
        generator = TrafficGenerator(make_config(total_packets=3), endpoint, scheduler)
        generator.start()
        scheduler.run()
        generator.send_packet()
        assert generator.packets_sent == 3
        assert len(endpoint.sent) == 3

    def test_pending_event_iff_running_and_not_done(
        self,
        scheduler: FakeScheduler,
        endpoint: FakeEndpoint,
    ) -> None:
        generator = TrafficGenerator(make_config(total_packets=4), endpoint, scheduler)
        assert generator.send_event is None
        generator.start()
        while True:
            expected = generator.packets_sent < generator.config.total_packets
            assert (generator.send_event is not None) == expected
            if not scheduler.step():
                break
        assert generator.send_event is None
        assert generator.state is LifecycleState.RUNNING

    def test_send_packet_is_noop_when_idle(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
    ) -> None:
        generator.send_packet()
        assert endpoint.sent == []
        assert generator.packets_sent == 0


class TestStop:
    """Tests for the -> STOPPED transition and cancellation."""

    def test_stop_cancels_pending_send_and_closes(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
        scheduler: FakeScheduler,
    ) -> None:
        generator.start()
        handle = generator.send_event
        generator.stop()
        assert not scheduler.is_pending(handle)
        assert endpoint.closed
        assert generator.state is LifecycleState.STOPPED
        scheduler.run()
        assert generator.packets_sent == 1

    def test_no_sends_after_stop_even_from_stale_callback(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
        scheduler: FakeScheduler,
    ) -> None:
        generator.start()
        scheduler.schedule(0.001, generator.send_packet)
        scheduler.run(until=0.05)
        sent_before = len(endpoint.sent)
        generator.stop()
        scheduler.schedule(0.0, generator.send_packet)
        scheduler.run()
        generator.send_packet()
        assert len(endpoint.sent) == sent_before

    def test_stop_is_idempotent(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
    ) -> None:
        generator.start()
        generator.stop()
        snapshot = (generator.state, generator.packets_sent, generator.send_event)
        generator.stop()
        assert (generator.state, generator.packets_sent, generator.send_event) == snapshot
        assert endpoint.calls.count("close") == 1

    def test_stop_after_last_send_has_nothing_to_cancel(
        self,
        scheduler: FakeScheduler,
        endpoint: FakeEndpoint,
    ) -> None:
        generator = TrafficGenerator(make_config(total_packets=2), endpoint, scheduler)
        generator.start()
        scheduler.run()
        generator.stop()
        assert generator.state is LifecycleState.STOPPED
        assert endpoint.closed

    def test_stop_from_idle_leaves_endpoint_alone(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
    ) -> None:
        generator.stop()
        assert generator.state is LifecycleState.STOPPED
        assert endpoint.calls == []


class TestInstall:
    """Tests for start/stop times fired through the scheduler."""

    def test_start_and_stop_fire_at_configured_times(
        self,
        generator: TrafficGenerator,
        endpoint: FakeEndpoint,
        scheduler: FakeScheduler,
    ) -> None:
        generator.set_start_time(1.0)
        generator.set_stop_time(1.1)
        generator.install(scheduler)
        scheduler.run()
        assert endpoint.send_times[0] == pytest.approx(1.0)
        assert generator.state is LifecycleState.STOPPED
        # 1.0, 1.00832, ..., last send strictly before 1.1
        assert generator.packets_sent == 13
        assert endpoint.send_times[-1] < 1.1

    def test_stop_before_start_is_rejected(
        self,
        generator: TrafficGenerator,
        scheduler: FakeScheduler,
    ) -> None:
        generator.set_start_time(5.0)
        generator.set_stop_time(1.0)
        with pytest.raises(ConfigError):
            generator.install(scheduler)
