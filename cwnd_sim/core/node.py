"""Node class for network simulation.

This module defines the Node class, which represents a network node
(host or router) in the simulated network.
"""

import logging
from ipaddress import IPv4Address
from typing import Callable, Dict, List, Optional

import simpy

from cwnd_sim.core.exceptions import TransportError
from cwnd_sim.core.link import Link
from cwnd_sim.core.packet import Segment

logger = logging.getLogger(__name__)

EPHEMERAL_PORT_START = 49153
EPHEMERAL_PORT_END = 65535


class Node:
    """Represents a network node (host or router).

    Attributes:
        env: SimPy environment.
        id: Unique identifier for the node.
        links: Outgoing links keyed by neighbour node ID.
        addresses: Interface addresses keyed by neighbour node ID.
        routing_table: Next hop node ID for each destination address.
        handlers: Bound endpoints keyed by local port.
        packets_received: Segments delivered to a local endpoint.
        packets_forwarded: Segments forwarded to another node.
        packets_dropped: Segments dropped at this node.
        applications: Applications installed on this node.
    """

    def __init__(self, env: simpy.Environment, node_id: int) -> None:
        """Initialize a network node.

        Args:
            env: SimPy environment.
            node_id: Unique identifier for the node.
        """
        self.env = env
        self.id = node_id
        self.links: Dict[int, Link] = {}
        self.addresses: Dict[int, IPv4Address] = {}
        self.routing_table: Dict[IPv4Address, int] = {}
        self.handlers: Dict[int, Callable[[Segment], None]] = {}
        self.packets_received = 0
        self.packets_forwarded = 0
        self.packets_dropped = 0
        self.applications: List[object] = []
        self._next_port = EPHEMERAL_PORT_START

    def add_link(self, link: Link) -> None:
        """Add an outgoing link from this node.

        Args:
            link: The link to add.
        """
        if link.source != self.id or link.target == self.id:
            raise ValueError("Link source or destination is incorrect for this node. Verify the link's configuration.")
        self.links[link.target] = link

    def add_address(self, neighbour: int, address: IPv4Address) -> None:
        """Assign an address to the interface facing a neighbour."""
        self.addresses[neighbour] = address

    def owns_address(self, address: IPv4Address) -> bool:
        return address in self.addresses.values()

    def set_routing_table(self, routing_table: Dict[IPv4Address, int]) -> None:
        """Set the routing table for this node.

        Args:
            routing_table: Dictionary mapping destination addresses to next hops.
        """
        self.routing_table = routing_table

    def next_hop(self, destination: IPv4Address) -> Optional[int]:
        """Return the neighbour to forward to for a destination, if any."""
        return self.routing_table.get(destination)

    def local_address_for(self, destination: IPv4Address) -> IPv4Address:
        """Return the source address of the interface used to reach a destination.

        Raises:
            TransportError: If the destination is unreachable.
        """
        hop = self.next_hop(destination)
        if hop is None or hop not in self.addresses:
            raise TransportError(
                "No route to host", {"node": self.id, "destination": destination}
            )
        return self.addresses[hop]

    def allocate_port(self) -> int:
        """Allocate an unused ephemeral port."""
        for _ in range(EPHEMERAL_PORT_END - EPHEMERAL_PORT_START + 1):
            port = self._next_port
            self._next_port += 1
            if self._next_port > EPHEMERAL_PORT_END:
                self._next_port = EPHEMERAL_PORT_START
            if port not in self.handlers:
                return port
        raise TransportError("Ephemeral ports exhausted", {"node": self.id})

    def register_handler(self, port: int, handler: Callable[[Segment], None]) -> None:
        """Bind a segment handler to a local port.

        Raises:
            TransportError: If the port is already bound.
        """
        if port in self.handlers:
            raise TransportError("Port already in use", {"node": self.id, "port": port})
        self.handlers[port] = handler

    def unregister_handler(self, port: int) -> None:
        self.handlers.pop(port, None)

    def send(self, segment: Segment) -> bool:
        """Send a locally originated segment toward its destination.

        Returns:
            True if the segment was handed to a link or delivered locally.
        """
        if self.owns_address(segment.destination):
            self.env.process(self._loopback(segment))
            return True
        return self._forward(segment)

    def _loopback(self, segment: Segment):
        yield self.env.timeout(0)
        self._deliver(segment)

    def receive(self, segment: Segment, link: Link) -> None:
        """Handle a segment arriving over a link.

        Args:
            segment: The segment that arrived.
            link: The link it arrived on.
        """
        if self.owns_address(segment.destination):
            self._deliver(segment)
            return
        segment.ttl -= 1
        if segment.ttl <= 0:
            self.packets_dropped += 1
            logger.debug("TTL expired at node %s for %r", self.id, segment)
            return
        if self._forward(segment):
            self.packets_forwarded += 1

    def _forward(self, segment: Segment) -> bool:
        hop = self.next_hop(segment.destination)
        link = self.links.get(hop) if hop is not None else None
        if link is None:
            self.packets_dropped += 1
            logger.debug("No route at node %s for %r", self.id, segment)
            return False
        return link.transmit(segment)

    def _deliver(self, segment: Segment) -> None:
        handler = self.handlers.get(segment.destination_port)
        if handler is None:
            self.packets_dropped += 1
            logger.debug("No endpoint on node %s for %r", self.id, segment)
            return
        self.packets_received += 1
        handler(segment)

    def __repr__(self) -> str:
        """Return string representation of the node.

        Returns:
            String representation of the node.
        """
        return f"Node({self.id})"
