"""Trace sources for network simulation.

Components expose observable events as TraceSource attributes. Observers
subscribe with ``connect`` and get back a Subscription they can use to
unsubscribe; nothing is bound through module-level state.
"""

from typing import Any, Callable, Dict


class Subscription:
    """Handle returned by ``TraceSource.connect``."""

    def __init__(self, source: "TraceSource", token: int):
        self.source = source
        self.token = token

    def disconnect(self) -> None:
        """Stop delivering events to the subscribed callback."""
        self.source.disconnect(self)

    def __repr__(self) -> str:
        return f"Subscription({self.source.name}#{self.token})"


class TraceSource:
    """Named event source delivering positional arguments to its observers.

    Attributes:
        name: Trace source name (e.g. "CongestionWindow", "PhyRxDrop").
    """

    def __init__(self, name: str):
        self.name = name
        self._callbacks: Dict[int, Callable[..., Any]] = {}
        self._next_token = 0

    def connect(self, callback: Callable[..., Any]) -> Subscription:
        """Register a callback for this source.

        Args:
            callback: Function invoked with the source's event arguments.

        Returns:
            Subscription that can be used to disconnect the callback.
        """
        token = self._next_token
        self._next_token += 1
        self._callbacks[token] = callback
        return Subscription(self, token)

    def disconnect(self, subscription: Subscription) -> None:
        """Remove a callback. Unknown subscriptions are ignored."""
        self._callbacks.pop(subscription.token, None)

    def __call__(self, *args: Any) -> None:
        """Deliver an event to every observer in subscription order."""
        for callback in list(self._callbacks.values()):
            callback(*args)

    def __len__(self) -> int:
        return len(self._callbacks)


class TracedValue(TraceSource):
    """A value that notifies observers with ``(old, new)`` when it changes.

    Attributes:
        value: Current value.
    """

    def __init__(self, name: str, initial: Any):
        super().__init__(name)
        self.value = initial

    def set(self, new_value: Any) -> None:
        """Update the value, notifying observers if it changed."""
        old_value = self.value
        if new_value == old_value:
            return
        self.value = new_value
        self(old_value, new_value)

    def get(self) -> Any:
        return self.value
