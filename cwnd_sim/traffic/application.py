"""Applications for network simulation.

This module defines the Application base class and the two applications
used by the scenarios:

- TrafficGenerator: sends ``total_packets`` packets of ``packet_size``
  bytes through a transport endpoint, paced at a fixed bit rate.
- PacketSink: listens on a port and counts the bytes it receives.

Applications never schedule anything through global state. The host
installs them with a Scheduler, which fires ``start`` and ``stop`` at the
configured virtual times.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from ipaddress import IPv4Address
from typing import Optional, Tuple

from cwnd_sim.core.exceptions import ConfigError, LifecycleError
from cwnd_sim.core.scheduler import EventId, Scheduler
from cwnd_sim.core.trace import TraceSource
from cwnd_sim.core.transport import StreamListener, TransportEndpoint
from cwnd_sim.traffic.generators import pacing_interval

logger = logging.getLogger(__name__)


def _is_count(value) -> bool:
    """True for a positive int that is not a bool."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class LifecycleState(Enum):
    """Lifecycle of an application. STOPPED is terminal."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class Application:
    """Base class for applications installed on a node.

    Attributes:
        scheduler: Scheduler set by ``install``.
        start_time: Virtual time at which ``start`` is fired.
        stop_time: Virtual time at which ``stop`` is fired, if any.
        state: Current lifecycle state.
    """

    def __init__(self) -> None:
        self.scheduler: Optional[Scheduler] = None
        self.start_time = 0.0
        self.stop_time: Optional[float] = None
        self.state = LifecycleState.IDLE

    def set_start_time(self, start_time: float) -> None:
        self.start_time = start_time

    def set_stop_time(self, stop_time: float) -> None:
        self.stop_time = stop_time

    def install(self, scheduler: Scheduler) -> None:
        """Bind the application to a scheduler and schedule start and stop."""
        if self.stop_time is not None and self.stop_time < self.start_time:
            raise ConfigError(
                "Stop time precedes start time",
                {"start_time": self.start_time, "stop_time": self.stop_time},
            )
        self.scheduler = scheduler
        now = scheduler.now()
        scheduler.schedule(max(0.0, self.start_time - now), self.start)
        if self.stop_time is not None:
            scheduler.schedule(max(0.0, self.stop_time - now), self.stop)

    @property
    def running(self) -> bool:
        return self.state is LifecycleState.RUNNING

    def _check_startable(self) -> None:
        if self.state is not LifecycleState.IDLE:
            raise LifecycleError(
                f"Cannot start {type(self).__name__}",
                {"state": self.state.value},
            )

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class TrafficGeneratorConfig:
    """Configuration for a traffic generator.

    Attributes:
        destination: Remote (address, port) to connect to.
        packet_size: Size of each packet in bytes.
        total_packets: Number of packets to send.
        data_rate: Target rate in bits per second.
    """

    destination: Optional[Tuple[IPv4Address, int]]
    packet_size: int
    total_packets: int
    data_rate: float

    def validate(self) -> None:
        """Check every field.

        Raises:
            ConfigError: If any field is invalid.
        """
        if self.destination is None:
            raise ConfigError("Destination is not set")
        if not _is_count(self.packet_size):
            raise ConfigError(
                "Packet size must be a positive integer",
                {"packet_size": self.packet_size},
            )
        if not _is_count(self.total_packets):
            raise ConfigError(
                "Total packet count must be a positive integer",
                {"total_packets": self.total_packets},
            )
        if isinstance(self.data_rate, bool) or not self.data_rate > 0:
            raise ConfigError("Data rate must be positive", {"data_rate": self.data_rate})

    @property
    def interval(self) -> float:
        """Pacing interval in seconds."""
        return pacing_interval(self.packet_size, self.data_rate)


class TrafficGenerator(Application):
    """Sends fixed-size packets at a fixed rate through a transport endpoint.

    The endpoint is not owned: the generator binds, connects and closes it,
    but the host creates it and keeps it alive.

    Attributes:
        config: Generator configuration.
        endpoint: Transport endpoint used for sending.
        packets_sent: Packets submitted since ``start``.
        tx: Trace source fired with the payload of every packet sent.
    """

    def __init__(
        self,
        config: TrafficGeneratorConfig,
        endpoint: TransportEndpoint,
        scheduler: Optional[Scheduler] = None,
    ):
        """Initialize the generator.

        Args:
            config: Generator configuration.
            endpoint: Transport endpoint to send through.
            scheduler: Scheduler to use; may instead be provided by ``install``.
        """
        super().__init__()
        self.config = config
        self.endpoint = endpoint
        self.scheduler = scheduler
        self.packets_sent = 0
        self.tx = TraceSource("Tx")
        self._send_event: Optional[EventId] = None

    @property
    def send_event(self) -> Optional[EventId]:
        """Handle of the pending send, if one is scheduled."""
        if self.scheduler is None or not self.scheduler.is_pending(self._send_event):
            return None
        return self._send_event

    def start(self) -> None:
        """Connect the endpoint and send the first packet.

        Raises:
            LifecycleError: If the generator is running or stopped.
            ConfigError: If the configuration is invalid.
            TransportError: If the endpoint cannot bind, connect or send.
        """
        self._check_startable()
        self.config.validate()
        if self.scheduler is None:
            raise ConfigError("TrafficGenerator has no scheduler")

        self.endpoint.bind()
        self.endpoint.connect(self.config.destination)
        self.packets_sent = 0
        self.state = LifecycleState.RUNNING
        logger.info(
            "Traffic generator started at t=%.6f: %d x %d bytes, interval %.6fs",
            self.scheduler.now(),
            self.config.total_packets,
            self.config.packet_size,
            self.config.interval,
        )
        self.send_packet()

    def send_packet(self) -> None:
        """Send one packet and schedule the next one.

        Does nothing unless the generator is running.
        """
        if self.state is not LifecycleState.RUNNING:
            return
        if self.packets_sent >= self.config.total_packets:
            return

        payload = bytes(self.config.packet_size)
        self.endpoint.send(payload)
        self.packets_sent += 1
        self.tx(payload)
        logger.debug(
            "Sent packet %d/%d at t=%.6f",
            self.packets_sent,
            self.config.total_packets,
            self.scheduler.now(),
        )

        if self.packets_sent < self.config.total_packets:
            self.schedule_tx()
        else:
            self._send_event = None

    def schedule_tx(self) -> None:
        """Schedule the next send one pacing interval from now."""
        if self.state is LifecycleState.RUNNING:
            self.scheduler.cancel(self._send_event)
            self._send_event = self.scheduler.schedule(
                self.config.interval, self.send_packet
            )

    def stop(self) -> None:
        """Cancel the pending send, close the endpoint and stop for good.

        Calling ``stop`` on a stopped generator is a no-op. Stopping an idle
        generator marks it stopped without touching the endpoint.
        """
        if self.state is LifecycleState.STOPPED:
            return
        was_running = self.state is LifecycleState.RUNNING
        self.state = LifecycleState.STOPPED
        if self._send_event is not None:
            self.scheduler.cancel(self._send_event)
            self._send_event = None
        if was_running:
            self.endpoint.close()
        logger.info(
            "Traffic generator stopped after %d/%d packets",
            self.packets_sent,
            self.config.total_packets,
        )


class PacketSink(Application):
    """Receives stream data on a port and counts it.

    Attributes:
        listener: Stream listener bound on the sink port.
        total_received: Total bytes received.
        rx: Trace source fired with ``(byte_count, peer)`` on every delivery.
    """

    def __init__(self, listener: StreamListener):
        super().__init__()
        self.listener = listener
        self.total_received = 0
        self.rx = TraceSource("Rx")
        listener.rx.connect(self._on_receive)

    def start(self) -> None:
        self._check_startable()
        self.listener.listen()
        self.state = LifecycleState.RUNNING
        logger.info("Packet sink listening on port %d", self.listener.port)

    def stop(self) -> None:
        if self.state is LifecycleState.STOPPED:
            return
        self.listener.close()
        self.state = LifecycleState.STOPPED
        logger.info("Packet sink stopped, %d bytes received", self.total_received)

    def _on_receive(self, byte_count: int, peer) -> None:
        self.total_received += byte_count
        self.rx(byte_count, peer)
