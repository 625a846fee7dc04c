"""Transport endpoints for network simulation.

This module defines the TransportEndpoint interface that applications
send through, plus a compact window-based stream endpoint used by the
bundled scenarios:

- StreamSocket: connection-oriented sender with a congestion window that
  grows on acknowledgements and shrinks on loss. It is a minimal window
  model for producing congestion-window traces, not a TCP implementation.
- StreamListener: receiver that acknowledges every data segment and hands
  in-order bytes to an application callback.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from ipaddress import IPv4Address
from typing import Callable, Dict, List, Optional, Tuple

from cwnd_sim.core.exceptions import TransportError
from cwnd_sim.core.node import Node
from cwnd_sim.core.packet import Segment, TcpFlags
from cwnd_sim.core.scheduler import EventId, Scheduler
from cwnd_sim.core.trace import Subscription, TracedValue, TraceSource

logger = logging.getLogger(__name__)

Address = Tuple[IPv4Address, int]

DEFAULT_SEGMENT_SIZE = 536
DEFAULT_SEND_BUFFER = 131072
DEFAULT_MIN_RTO = 1.0
MAX_RTO = 60.0
DUPACK_THRESHOLD = 3


class SocketState(Enum):
    """Lifecycle of a transport endpoint."""

    INITIAL = "initial"
    BOUND = "bound"
    CONNECTED = "connected"
    CLOSED = "closed"


class TransportEndpoint(ABC):
    """Connection-oriented send abstraction with instrumentation taps.

    Attributes:
        congestion_window: Traced congestion window in bytes.
    """

    def __init__(self) -> None:
        self.congestion_window = TracedValue("CongestionWindow", 0)

    @abstractmethod
    def bind(self) -> None:
        """Bind the endpoint to a local port."""

    @abstractmethod
    def connect(self, address: Address) -> None:
        """Connect the endpoint to a remote address."""

    @abstractmethod
    def send(self, payload: bytes) -> int:
        """Submit payload bytes for transmission.

        Returns:
            Number of bytes accepted.

        Raises:
            TransportError: If the endpoint cannot send.
        """

    @abstractmethod
    def close(self) -> None:
        """Close the endpoint. Closing a closed endpoint is a no-op."""

    def on_congestion_window_change(
        self, callback: Callable[[int, int], None]
    ) -> Subscription:
        """Subscribe to congestion window changes.

        Args:
            callback: Called with ``(old, new)`` window sizes in bytes.

        Returns:
            Subscription for the callback.
        """
        return self.congestion_window.connect(callback)


class StreamSocket(TransportEndpoint):
    """Window-based stream sender.

    Every data segment is acknowledged individually by the receiver. A
    segment is presumed lost once ``DUPACK_THRESHOLD`` segments sent after
    it have been acknowledged, or when the retransmission timer expires.

    Attributes:
        node: Node the socket lives on.
        scheduler: Scheduler used for the retransmission timer.
        segment_size: Maximum payload per segment in bytes.
        send_buffer: Maximum bytes buffered but not yet acknowledged.
        state: Current socket state.
        local: Local (address, port) once connected.
        peer: Remote (address, port) once connected.
        ssthresh: Slow start threshold in bytes.
        bytes_accepted: Total bytes accepted by ``send``.
        bytes_acked: Total bytes acknowledged by the peer.
        segments_sent: Data segments transmitted, retransmissions included.
        retransmissions: Data segments retransmitted.
    """

    def __init__(
        self,
        node: Node,
        scheduler: Scheduler,
        segment_size: int = DEFAULT_SEGMENT_SIZE,
        initial_cwnd_segments: int = 1,
        send_buffer: int = DEFAULT_SEND_BUFFER,
        min_rto: float = DEFAULT_MIN_RTO,
    ):
        """Initialize the socket.

        Args:
            node: Node the socket lives on.
            scheduler: Scheduler for timers.
            segment_size: Maximum payload per segment in bytes.
            initial_cwnd_segments: Initial window in segments.
            send_buffer: Send buffer size in bytes.
            min_rto: Initial retransmission timeout in seconds.
        """
        super().__init__()
        self.node = node
        self.scheduler = scheduler
        self.segment_size = segment_size
        self.initial_cwnd_segments = initial_cwnd_segments
        self.send_buffer = send_buffer
        self.min_rto = min_rto
        self.state = SocketState.INITIAL
        self.local: Optional[Address] = None
        self.peer: Optional[Address] = None
        self.ssthresh = 2**31
        self.rto = min_rto
        self.bytes_accepted = 0
        self.bytes_acked = 0
        self.segments_sent = 0
        self.retransmissions = 0

        self._port: Optional[int] = None
        self._unsent = bytearray()
        self._next_seq = 0
        # end seq -> [start seq, payload, later acks seen, transmit order]
        self._in_flight: Dict[int, List] = {}
        self._retransmit: List[Tuple[int, bytes]] = []
        self._recover = 0
        self._rto_event: Optional[EventId] = None

    @property
    def cwnd(self) -> int:
        return self.congestion_window.value

    @property
    def bytes_in_flight(self) -> int:
        return sum(len(entry[1]) for entry in self._in_flight.values())

    @property
    def bytes_buffered(self) -> int:
        """Bytes accepted but not yet acknowledged."""
        pending = sum(len(payload) for _, payload in self._retransmit)
        return len(self._unsent) + self.bytes_in_flight + pending

    def bind(self) -> None:
        if self.state is not SocketState.INITIAL:
            raise TransportError("Socket already bound", {"state": self.state.value})
        self._port = self.node.allocate_port()
        self.node.register_handler(self._port, self._receive)
        self.state = SocketState.BOUND
        logger.debug("Socket bound on node %s port %s", self.node.id, self._port)

    def connect(self, address: Address) -> None:
        if self.state is not SocketState.BOUND:
            raise TransportError(
                "Socket must be bound before connecting", {"state": self.state.value}
            )
        destination, port = address
        source = self.node.local_address_for(destination)
        self.local = (source, self._port)
        self.peer = (destination, port)
        self.congestion_window.value = self.segment_size * self.initial_cwnd_segments
        self.state = SocketState.CONNECTED
        logger.debug("Socket %s:%s connected to %s:%s", source, self._port, destination, port)

    def send(self, payload: bytes) -> int:
        if self.state is not SocketState.CONNECTED:
            raise TransportError("Socket is not connected", {"state": self.state.value})
        space = self.send_buffer - self.bytes_buffered
        accepted = max(0, min(len(payload), space))
        if accepted < len(payload):
            logger.warning(
                "Send buffer full, accepted %d of %d bytes", accepted, len(payload)
            )
        self._unsent.extend(payload[:accepted])
        self.bytes_accepted += accepted
        self._transmit_pending()
        return accepted

    def close(self) -> None:
        if self.state is SocketState.CLOSED:
            return
        self.scheduler.cancel(self._rto_event)
        self._rto_event = None
        if self._port is not None:
            self.node.unregister_handler(self._port)
        self.state = SocketState.CLOSED
        logger.debug("Socket on node %s closed", self.node.id)

    def _transmit_pending(self) -> None:
        while self.state is SocketState.CONNECTED:
            if self._retransmit:
                seq, payload = self._retransmit[0]
            elif self._unsent:
                seq = self._next_seq
                payload = bytes(self._unsent[: self.segment_size])
            else:
                break
            in_flight = self.bytes_in_flight
            if in_flight and in_flight + len(payload) > self.cwnd:
                break
            if self._retransmit:
                self._retransmit.pop(0)
                self.retransmissions += 1
            else:
                del self._unsent[: len(payload)]
                self._next_seq += len(payload)
            self._send_segment(seq, payload)
        self._arm_timer()

    def _send_segment(self, seq: int, payload: bytes) -> None:
        self._in_flight[seq + len(payload)] = [seq, payload, 0, self.segments_sent]
        segment = Segment(
            source=self.local[0],
            destination=self.peer[0],
            source_port=self.local[1],
            destination_port=self.peer[1],
            seq=seq,
            flags=TcpFlags.PSH | TcpFlags.ACK,
            payload=payload,
            creation_time=self.scheduler.now(),
        )
        self.segments_sent += 1
        self.node.send(segment)

    def _receive(self, segment: Segment) -> None:
        if self.state is not SocketState.CONNECTED or not segment.flags & TcpFlags.ACK:
            return
        entry = self._in_flight.pop(segment.ack, None)
        if entry is None:
            # duplicate or stale acknowledgement
            return
        _, payload, _, order = entry
        self.bytes_acked += len(payload)
        self.rto = self.min_rto
        self._grow_window()
        self._detect_losses(order)
        self.scheduler.cancel(self._rto_event)
        self._rto_event = None
        self._transmit_pending()

    def _grow_window(self) -> None:
        cwnd = self.cwnd
        if cwnd < self.ssthresh:
            cwnd += self.segment_size
        else:
            cwnd += max(1, self.segment_size * self.segment_size // cwnd)
        self.congestion_window.set(cwnd)

    def _detect_losses(self, acked_order: int) -> None:
        """Count the ack against every segment transmitted before the acked one."""
        lost = []
        for end, entry in self._in_flight.items():
            if entry[3] < acked_order:
                entry[2] += 1
                if entry[2] >= DUPACK_THRESHOLD:
                    lost.append(end)
        if not lost:
            return
        episode_start = min(self._in_flight[end][0] for end in lost)
        for end in lost:
            seq, payload, _, _ = self._in_flight.pop(end)
            self._retransmit.append((seq, payload))
        self._retransmit.sort()
        if episode_start >= self._recover:
            self._reduce_window(self._halved_window())
            self._recover = self._next_seq
            logger.debug("Loss detected at seq %d, cwnd %d", episode_start, self.cwnd)

    def _halved_window(self) -> int:
        return max((self.bytes_in_flight + self.segment_size) // 2, 2 * self.segment_size)

    def _reduce_window(self, cwnd: int) -> None:
        self.ssthresh = max(cwnd, 2 * self.segment_size)
        self.congestion_window.set(self.ssthresh)

    def _arm_timer(self) -> None:
        if self._in_flight and not self.scheduler.is_pending(self._rto_event):
            self._rto_event = self.scheduler.schedule(self.rto, self._on_timeout)

    def _on_timeout(self) -> None:
        self._rto_event = None
        if self.state is not SocketState.CONNECTED or not self._in_flight:
            return
        self.ssthresh = self._halved_window()
        for seq, payload, _, _ in self._in_flight.values():
            self._retransmit.append((seq, payload))
        self._in_flight.clear()
        self._retransmit.sort()
        self._recover = self._next_seq
        self.rto = min(self.rto * 2, MAX_RTO)
        self.congestion_window.set(self.segment_size)
        logger.debug("Retransmission timeout, cwnd reset to %d", self.cwnd)
        self._transmit_pending()


class StreamListener:
    """Receiver that acknowledges every data segment.

    Attributes:
        node: Node the listener lives on.
        port: Local port.
        rx: Trace source fired with ``(byte_count, (address, port))`` for
            every run of newly in-order bytes.
        bytes_received: Total in-order bytes delivered.
    """

    def __init__(self, node: Node, port: int):
        self.node = node
        self.port = port
        self.rx = TraceSource("Rx")
        self.bytes_received = 0
        self.listening = False
        # peer -> (next expected seq, out-of-order start -> end)
        self._connections: Dict[Address, Tuple[int, Dict[int, int]]] = {}

    def listen(self) -> None:
        """Start accepting segments on the port."""
        if self.listening:
            return
        self.node.register_handler(self.port, self._receive)
        self.listening = True

    def close(self) -> None:
        if not self.listening:
            return
        self.node.unregister_handler(self.port)
        self.listening = False

    def _receive(self, segment: Segment) -> None:
        if not segment.payload:
            return
        peer = (segment.source, segment.source_port)
        end = segment.seq + segment.payload_size
        self._acknowledge(segment, end)

        expected, pending = self._connections.get(peer, (0, {}))
        if end <= expected:
            return
        start = max(segment.seq, expected)
        pending[start] = max(pending.get(start, start), end)
        delivered = 0
        while expected in pending:
            new_end = pending.pop(expected)
            delivered += new_end - expected
            expected = new_end
        self._connections[peer] = (expected, pending)
        if delivered:
            self.bytes_received += delivered
            self.rx(delivered, peer)

    def _acknowledge(self, segment: Segment, end: int) -> None:
        ack = Segment(
            source=segment.destination,
            destination=segment.source,
            source_port=self.port,
            destination_port=segment.source_port,
            ack=end,
            flags=TcpFlags.ACK,
            creation_time=float(self.node.env.now),
        )
        self.node.send(ack)
