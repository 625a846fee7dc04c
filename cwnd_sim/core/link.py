"""Link class for network simulation.

This module defines the Link class, which represents one direction of a
point-to-point channel between two nodes in the simulated network.
"""

import logging
from typing import Callable, Optional

import simpy

from cwnd_sim.core.error_model import RateErrorModel
from cwnd_sim.core.packet import Segment, ppp_frame
from cwnd_sim.core.trace import Subscription, TraceSource

logger = logging.getLogger(__name__)


class Link:
    """Represents one direction of a point-to-point link.

    Attributes:
        env: SimPy environment.
        source: Source node ID.
        target: Target node ID.
        capacity: Link capacity in bits per second.
        propagation_delay: Propagation delay in seconds.
        buffer_size: Maximum transmit queue size in bytes.
        buffer_usage: Current transmit queue usage in bytes.
        error_model: Receive error model of the target-side device, if any.
        receiver: Callback that delivers a segment to the target node.
        packets_sent: Number of frames put on the wire.
        bytes_sent: Number of frame bytes put on the wire.
        packets_dropped: Number of frames dropped on enqueue.
        packets_corrupted: Number of frames dropped by the error model.
        rx_drop: Trace source fired with the raw frame on a receive drop.
        resource: SimPy resource that serializes transmissions.
    """

    def __init__(
        self,
        env: simpy.Environment,
        source: int,
        target: int,
        capacity: float,
        propagation_delay: float,
        buffer_size: float = float("inf"),
    ):
        """Initialize a network link.

        Args:
            env: SimPy environment.
            source: Source node ID.
            target: Target node ID.
            capacity: Link capacity in bits per second.
            propagation_delay: Propagation delay in seconds.
            buffer_size: Maximum transmit queue in bytes (default: infinite).
        """
        self.env = env
        self.source = source
        self.target = target
        self.capacity = capacity
        self.propagation_delay = propagation_delay
        self.buffer_size = buffer_size
        self.buffer_usage = 0
        self.error_model: Optional[RateErrorModel] = None
        self.receiver: Optional[Callable[[Segment, "Link"], None]] = None
        self.packets_sent = 0
        self.bytes_sent = 0
        self.packets_dropped = 0
        self.packets_corrupted = 0
        self.rx_drop = TraceSource("PhyRxDrop")
        self.resource = simpy.Resource(env, capacity=1)

    def set_receive_error_model(self, error_model: Optional[RateErrorModel]) -> None:
        """Attach an error model to the receiving end of this link."""
        self.error_model = error_model

    def on_receive_drop(self, callback: Callable[[bytes], None]) -> Subscription:
        """Subscribe to frames dropped at the receiving end.

        Args:
            callback: Called with the raw PPP frame bytes.

        Returns:
            Subscription for the callback.
        """
        return self.rx_drop.connect(callback)

    def can_queue_packet(self, segment: Segment) -> bool:
        """Check if there's enough buffer space for the segment."""
        return self.buffer_usage + segment.frame_size <= self.buffer_size

    def calculate_transmission_delay(self, frame_size: int) -> float:
        """Calculate transmission delay based on frame size and link capacity.

        Args:
            frame_size: Size of the frame in bytes.

        Returns:
            Transmission delay in seconds.
        """
        return (frame_size * 8) / self.capacity

    def transmit(self, segment: Segment) -> bool:
        """Queue a segment for transmission.

        Args:
            segment: The segment to send toward the target node.

        Returns:
            True if the segment was queued, False if the queue was full.
        """
        if not self.can_queue_packet(segment):
            self.packets_dropped += 1
            logger.debug("Queue overflow on %r, dropping %r", self, segment)
            return False
        self.buffer_usage += segment.frame_size
        self.env.process(self._transmit(segment))
        return True

    def _transmit(self, segment: Segment):
        with self.resource.request() as request:
            yield request
            yield self.env.timeout(self.calculate_transmission_delay(segment.frame_size))
            self.buffer_usage -= segment.frame_size
            self.packets_sent += 1
            self.bytes_sent += segment.frame_size

        yield self.env.timeout(self.propagation_delay)

        if self.error_model is not None and self.error_model.is_corrupt(
            segment.frame_size
        ):
            self.packets_corrupted += 1
            self.rx_drop(ppp_frame(segment))
            return

        if self.receiver is not None:
            self.receiver(segment, self)

    def __repr__(self) -> str:
        """Return string representation of the link.

        Returns:
            String representation of the link.
        """
        return f"Link({self.source}->{self.target}, {self.capacity/1000000:.1f}Mbps, {self.propagation_delay*1000:.1f}ms)"
