"""Network simulator class for network simulation.

This module defines the NetworkSimulator class, which provides the main
simulation environment: nodes, point-to-point links, address assignment,
static routing, application installation and the run loop.
"""

import logging
from collections import defaultdict
from ipaddress import IPv4Address, IPv4Network
from typing import Any, Callable, Dict, List, Optional, Tuple

import networkx as nx
import simpy

from cwnd_sim.core.error_model import RateErrorModel
from cwnd_sim.core.exceptions import ConfigError
from cwnd_sim.core.link import Link
from cwnd_sim.core.node import Node
from cwnd_sim.core.scheduler import SimPyScheduler
from cwnd_sim.core.transport import StreamListener, StreamSocket

logger = logging.getLogger(__name__)


class NetworkSimulator:
    """Network simulation environment.

    Attributes:
        env: SimPy environment.
        scheduler: Scheduler shared by every component of this simulation.
        graph: NetworkX graph of the topology.
        nodes: Node objects keyed by node ID.
        links: Link objects keyed by (source, target) tuple.
        sockets: Stream sockets created through ``create_socket``.
        listeners: Stream listeners created through ``create_listener``.
        applications: Installed applications.
        metrics: Metrics computed by the last ``run``.
    """

    def __init__(self, env: Optional[simpy.Environment] = None):
        """Initialize the network simulator.

        Args:
            env: SimPy environment; a new one is created when omitted.
        """
        self.env = env if env is not None else simpy.Environment()
        self.scheduler = SimPyScheduler(self.env)
        self.graph = nx.Graph()
        self.nodes: Dict[int, Node] = {}
        self.links: Dict[Tuple[int, int], Link] = {}
        self.sockets: List[StreamSocket] = []
        self.listeners: List[StreamListener] = []
        self.applications: List[Any] = []
        self.metrics: Dict[str, Any] = {}

        self.hooks: Dict[str, List[Callable[..., Any]]] = {
            "sim_end": [],  # the simulation ends
        }

    def add_node(self, node_id: int) -> Node:
        """Add a node to the network.

        Args:
            node_id: Unique identifier for the node.

        Returns:
            The created Node object.
        """
        if node_id in self.nodes:
            raise ValueError(f"Node {node_id} already exists")
        node = Node(self.env, node_id)
        self.nodes[node_id] = node
        self.graph.add_node(node_id)
        return node

    def add_link(
        self,
        source: int,
        destination: int,
        capacity: float,
        propagation_delay: float,
        network: Optional[str] = None,
        buffer_size: float = float("inf"),
    ) -> Tuple[Link, Link]:
        """Add a point-to-point link between two nodes.

        Args:
            source: First node ID.
            destination: Second node ID.
            capacity: Link capacity in bits per second.
            propagation_delay: Propagation delay in seconds.
            network: Optional IPv4 network (e.g. "10.0.0.0/24"); the first
                host address goes to ``source``, the second to ``destination``.
            buffer_size: Transmit queue size of each direction in bytes.

        Returns:
            The (source->destination, destination->source) Link objects.
        """
        if source not in self.nodes or destination not in self.nodes:
            raise ValueError(f"Nodes {source} and/or {destination} do not exist")
        if capacity <= 0:
            raise ConfigError("Link capacity must be positive", {"capacity": capacity})
        if propagation_delay < 0:
            raise ConfigError(
                "Propagation delay must not be negative",
                {"propagation_delay": propagation_delay},
            )

        link_to = Link(self.env, source, destination, capacity, propagation_delay, buffer_size)
        link_from = Link(self.env, destination, source, capacity, propagation_delay, buffer_size)
        link_to.receiver = self.nodes[destination].receive
        link_from.receiver = self.nodes[source].receive
        self.links[(source, destination)] = link_to
        self.links[(destination, source)] = link_from
        self.nodes[source].add_link(link_to)
        self.nodes[destination].add_link(link_from)
        self.graph.add_edge(
            source,
            destination,
            capacity=capacity,
            delay=propagation_delay,
        )

        if network is not None:
            self.assign_addresses(source, destination, network)

        return link_to, link_from

    def assign_addresses(self, source: int, destination: int, network: str) -> None:
        """Assign the first two host addresses of a network to a link's ends.

        Args:
            source: Node receiving the first host address.
            destination: Node receiving the second host address.
            network: IPv4 network in CIDR notation.
        """
        try:
            hosts = IPv4Network(network).hosts()
            first, second = next(hosts), next(hosts)
        except (ValueError, StopIteration) as exc:
            raise ConfigError("Invalid link network", {"network": network}) from exc
        self.nodes[source].add_address(destination, first)
        self.nodes[destination].add_address(source, second)
        self.graph.edges[source, destination]["network"] = network
        logger.debug("Assigned %s to node %s and %s to node %s", first, source, second, destination)

    def address_of(self, node_id: int, neighbour: int) -> IPv4Address:
        """Return a node's address on the interface facing a neighbour."""
        return self.nodes[node_id].addresses[neighbour]

    def set_receive_error_model(
        self, source: int, destination: int, error_model: Optional[RateErrorModel]
    ) -> Link:
        """Attach an error model to the ``destination`` end of a link.

        Returns:
            The link direction whose receiver now applies the model.
        """
        link = self.links[(source, destination)]
        link.set_receive_error_model(error_model)
        return link

    def compute_shortest_paths(self) -> None:
        """Compute shortest paths and set routing tables for all nodes."""
        shortest_paths = nx.all_pairs_dijkstra_path(self.graph, weight="delay")

        owners: Dict[IPv4Address, int] = {}
        for node in self.nodes.values():
            for address in node.addresses.values():
                owners[address] = node.id

        for source, paths in shortest_paths:
            routing_table: Dict[IPv4Address, int] = {}
            for address, owner in owners.items():
                path = paths.get(owner)
                if owner != source and path is not None and len(path) > 1:
                    routing_table[address] = path[1]
            self.nodes[source].set_routing_table(routing_table)

    def create_socket(self, node_id: int, **kwargs: Any) -> StreamSocket:
        """Create a stream socket on a node.

        Args:
            node_id: Node the socket lives on.
            **kwargs: Passed to the StreamSocket constructor.
        """
        socket = StreamSocket(self.nodes[node_id], self.scheduler, **kwargs)
        self.sockets.append(socket)
        return socket

    def create_listener(self, node_id: int, port: int) -> StreamListener:
        """Create a stream listener on a node port."""
        listener = StreamListener(self.nodes[node_id], port)
        self.listeners.append(listener)
        return listener

    def install_application(self, node_id: int, application: Any) -> None:
        """Install an application on a node and schedule its start and stop.

        Args:
            node_id: Node to install on.
            application: Application with ``install(scheduler)``.
        """
        self.nodes[node_id].applications.append(application)
        self.applications.append(application)
        application.install(self.scheduler)

    def calculate_metrics(self) -> Dict[str, Any]:
        """Calculate performance metrics.

        Returns:
            Dictionary of calculated metrics.
        """
        duration = float(self.env.now)
        bytes_received = sum(listener.bytes_received for listener in self.listeners)

        link_drops: Dict[str, int] = defaultdict(int)
        link_utilization: Dict[str, float] = {}
        for (source, target), link in self.links.items():
            key = f"{source}->{target}"
            if link.packets_corrupted:
                link_drops[key] = link.packets_corrupted
            if duration > 0:
                link_utilization[key] = link.bytes_sent * 8 / (link.capacity * duration)

        self.metrics = {
            "duration": duration,
            "packets_sent": sum(
                getattr(app, "packets_sent", 0) for app in self.applications
            ),
            "bytes_received": bytes_received,
            "throughput": bytes_received * 8 / duration if duration > 0 else 0.0,
            "segments_sent": sum(s.segments_sent for s in self.sockets),
            "retransmissions": sum(s.retransmissions for s in self.sockets),
            "link_drops": dict(link_drops),
            "queue_drops": sum(link.packets_dropped for link in self.links.values()),
            "link_utilization": link_utilization,
        }
        return self.metrics

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Register a callback function for a specific event type.

        Args:
            event_type: The type of event to register for.
            callback: The function to call when the event occurs.
        """
        if event_type not in self.hooks:
            raise ValueError(f"Unknown hook type: {event_type}")
        self.hooks[event_type].append(callback)

    def call_hooks(self, event_type: str, *args: Any, **kwargs: Any) -> None:
        """Call all registered callbacks for the given event type.

        Args:
            event_type: The type of event that occurred.
            *args, **kwargs: Arguments to pass to the callback functions.
        """
        if event_type in self.hooks:
            for callback in self.hooks[event_type]:
                callback(*args, **kwargs)

    def run(self, duration: float) -> Dict[str, Any]:
        """Run the simulation for a specified duration.

        Args:
            duration: Simulation stop time in seconds.

        Returns:
            Dictionary of calculated metrics.
        """
        logger.info("Running simulation until t=%.3fs", duration)
        self.env.run(until=duration)

        self.calculate_metrics()

        self.call_hooks("sim_end", self.metrics)

        return self.metrics
