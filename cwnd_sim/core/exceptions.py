"""Exception hierarchy for the network simulator.

All simulator exceptions inherit from ``SimulationError`` so a host can
catch everything raised by the package with a single clause.

Exception tree::

    SimulationError
    ├── ConfigError
    ├── LifecycleError
    ├── TransportError
    └── SinkError
"""

from typing import Any, Dict, Optional


class SimulationError(Exception):
    """Base exception for all simulator errors.

    Attributes:
        message: Human-readable error description.
        details: Mapping of additional contextual data.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize with a message and optional details.

        Args:
            message: Human-readable error description.
            details: Optional mapping of additional contextual data.
        """
        self.message = message
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the exception message with its details appended."""
        if not self.details:
            return self.message
        detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({detail_str})"


class ConfigError(SimulationError):
    """Raised when a configuration value is invalid.

    Examples:
        - Zero or negative packet size, packet count or data rate
        - Missing destination address
        - Malformed unit string such as ``"5Gbit/fortnight"``
    """


class LifecycleError(SimulationError):
    """Raised on an invalid state transition.

    Examples:
        - Starting an application that is already running
        - Starting an application after it was stopped
    """


class TransportError(SimulationError):
    """Raised when a transport endpoint operation fails.

    Examples:
        - Binding a socket twice
        - Connecting to an address with no route
        - Sending on a socket that is not connected or already closed
    """


class SinkError(SimulationError):
    """Raised when telemetry cannot be persisted.

    Examples:
        - Trace file cannot be opened
        - Disk full while appending a record
    """
