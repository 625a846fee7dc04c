"""Event scheduling for network simulation.

This module defines the Scheduler interface used by applications and
transport endpoints, and a SimPy-backed implementation. Scheduled events
are tracked in a scheduler-owned slot table; callers hold an ``EventId``
that indexes into it, so cancelling is a bounds-checked lookup and a
stale or already-fired handle can never reach a callback.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

import simpy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventId:
    """Handle of a scheduled event.

    Attributes:
        index: Slot index in the scheduler's event table.
        generation: Generation of the slot when the event was scheduled.
    """

    index: int
    generation: int


class Scheduler(ABC):
    """Abstract virtual-time scheduler."""

    @abstractmethod
    def schedule(
        self, delay: float, callback: Callable[..., Any], *args: Any
    ) -> EventId:
        """Schedule ``callback(*args)`` to run ``delay`` seconds from now.

        Args:
            delay: Non-negative delay in seconds.
            callback: Function to call when the event fires.
            *args: Positional arguments for the callback.

        Returns:
            Handle that can be passed to ``cancel``.
        """

    @abstractmethod
    def cancel(self, event_id: Optional[EventId]) -> None:
        """Cancel a scheduled event.

        Cancelling an event that already fired, was already cancelled or
        was never scheduled is a no-op.
        """

    @abstractmethod
    def is_pending(self, event_id: Optional[EventId]) -> bool:
        """Return True if the event is scheduled and has not fired."""

    @abstractmethod
    def now(self) -> float:
        """Return the current virtual time in seconds."""


class EventTable:
    """Arena of pending callbacks addressed by ``EventId``.

    Freed slots are reused; each reuse bumps the slot generation so old
    handles pointing at the same index no longer match.
    """

    def __init__(self) -> None:
        self._slots: List[Optional[Tuple[Callable[..., Any], Tuple[Any, ...]]]] = []
        self._generations: List[int] = []
        self._free: List[int] = []

    def allocate(self, callback: Callable[..., Any], args: Tuple[Any, ...]) -> EventId:
        """Store a callback and return its handle."""
        if self._free:
            index = self._free.pop()
            self._generations[index] += 1
            self._slots[index] = (callback, args)
        else:
            index = len(self._slots)
            self._slots.append((callback, args))
            self._generations.append(0)
        return EventId(index, self._generations[index])

    def release(
        self, event_id: Optional[EventId]
    ) -> Optional[Tuple[Callable[..., Any], Tuple[Any, ...]]]:
        """Remove and return the entry for a live handle, or None."""
        if not self.is_live(event_id):
            return None
        entry = self._slots[event_id.index]
        self._slots[event_id.index] = None
        self._free.append(event_id.index)
        return entry

    def is_live(self, event_id: Optional[EventId]) -> bool:
        """Check whether the handle refers to a pending entry."""
        if event_id is None:
            return False
        if not 0 <= event_id.index < len(self._slots):
            return False
        return (
            self._slots[event_id.index] is not None
            and self._generations[event_id.index] == event_id.generation
        )

    def __len__(self) -> int:
        return len(self._slots) - len(self._free)


class SimPyScheduler(Scheduler):
    """Scheduler that dispatches callbacks from a SimPy environment.

    SimPy processes events in (time, priority, insertion) order, so two
    callbacks scheduled for the same instant fire in scheduling order.

    Attributes:
        env: SimPy environment.
    """

    def __init__(self, env: simpy.Environment):
        """Initialize the scheduler.

        Args:
            env: SimPy environment that provides the virtual clock.
        """
        self.env = env
        self._events = EventTable()

    def schedule(
        self, delay: float, callback: Callable[..., Any], *args: Any
    ) -> EventId:
        if delay < 0:
            raise ValueError(f"Cannot schedule an event in the past: {delay}")
        event_id = self._events.allocate(callback, args)
        timeout = self.env.timeout(delay)
        timeout.callbacks.append(lambda _event: self._fire(event_id))
        return event_id

    def _fire(self, event_id: EventId) -> None:
        entry = self._events.release(event_id)
        if entry is None:
            # cancelled
            return
        callback, args = entry
        callback(*args)

    def cancel(self, event_id: Optional[EventId]) -> None:
        if self._events.release(event_id) is not None:
            logger.debug("Cancelled event %s at t=%.6f", event_id, self.now())

    def is_pending(self, event_id: Optional[EventId]) -> bool:
        return self._events.is_live(event_id)

    def now(self) -> float:
        return float(self.env.now)

    @property
    def pending_count(self) -> int:
        """Number of events scheduled and not yet fired or cancelled."""
        return len(self._events)
