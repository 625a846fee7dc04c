"""Unit tests for the SimPy-backed scheduler and its event table."""

import pytest
import simpy

from cwnd_sim.core.scheduler import EventId, EventTable, SimPyScheduler


@pytest.fixture
def env() -> simpy.Environment:
    return simpy.Environment()


@pytest.fixture
def scheduler(env: simpy.Environment) -> SimPyScheduler:
    return SimPyScheduler(env)


class TestSimPyScheduler:
    """Tests for dispatch order, the virtual clock and cancellation."""

    def test_dispatches_in_time_order(self, env, scheduler) -> None:
        fired = []
        scheduler.schedule(1.0, fired.append, "late")
        scheduler.schedule(0.5, fired.append, "early")
        env.run()
        assert fired == ["early", "late"]

    def test_ties_fire_in_scheduling_order(self, env, scheduler) -> None:
        fired = []
        for name in "abcde":
            scheduler.schedule(1.0, fired.append, name)
        env.run()
        assert fired == list("abcde")

    def test_now_tracks_virtual_time(self, env, scheduler) -> None:
        seen = []
        scheduler.schedule(2.5, lambda: seen.append(scheduler.now()))
        env.run()
        assert seen == [2.5]

    def test_callbacks_can_reschedule(self, env, scheduler) -> None:
        times = []

        def tick(remaining: int) -> None:
            times.append(scheduler.now())
            if remaining:
                scheduler.schedule(0.25, tick, remaining - 1)

        scheduler.schedule(0.0, tick, 3)
        env.run()
        assert times == pytest.approx([0.0, 0.25, 0.5, 0.75])

    def test_cancel_prevents_dispatch(self, env, scheduler) -> None:
        fired = []
        event_id = scheduler.schedule(1.0, fired.append, "x")
        assert scheduler.is_pending(event_id)
        scheduler.cancel(event_id)
        assert not scheduler.is_pending(event_id)
        env.run()
        assert fired == []

    def test_cancel_fired_or_unknown_handle_is_noop(self, env, scheduler) -> None:
        event_id = scheduler.schedule(0.1, lambda: None)
        env.run()
        scheduler.cancel(event_id)
        scheduler.cancel(event_id)
        scheduler.cancel(None)
        scheduler.cancel(EventId(999, 0))
        assert scheduler.pending_count == 0

    def test_stale_handle_does_not_cancel_reused_slot(self, env, scheduler) -> None:
        fired = []
        first = scheduler.schedule(0.1, fired.append, "first")
        env.run()
        second = scheduler.schedule(0.1, fired.append, "second")
        assert second.index == first.index
        assert second.generation != first.generation
        scheduler.cancel(first)
        assert scheduler.is_pending(second)
        env.run()
        assert fired == ["first", "second"]

    def test_negative_delay_rejected(self, scheduler) -> None:
        with pytest.raises(ValueError):
            scheduler.schedule(-1.0, lambda: None)

    def test_callback_exception_propagates_to_run(self, env, scheduler) -> None:
        def fail() -> None:
            raise RuntimeError("boom")

        scheduler.schedule(0.1, fail)
        with pytest.raises(RuntimeError, match="boom"):
            env.run()


class TestEventTable:
    """Tests for the handle arena."""

    def test_release_returns_entry_once(self) -> None:
        table = EventTable()
        event_id = table.allocate(print, ("x",))
        assert table.release(event_id) == (print, ("x",))
        assert table.release(event_id) is None

    def test_len_counts_live_entries(self) -> None:
        table = EventTable()
        ids = [table.allocate(print, ()) for _ in range(3)]
        table.release(ids[1])
        assert len(table) == 2

    def test_out_of_range_handles_are_not_live(self) -> None:
        table = EventTable()
        assert not table.is_live(EventId(0, 0))
        assert not table.is_live(EventId(-1, 0))
