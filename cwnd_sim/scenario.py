"""Chain scenario construction and execution.

Builds the reference topology: nodes joined in a chain by point-to-point
links, a packet sink on the last node, a rate-paced traffic generator on
the first node, a receive error model on the device in front of the sink,
and a TelemetrySink recording the sender's congestion window and the
frames dropped by that device.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from cwnd_sim.config import ScenarioConfig
from cwnd_sim.core.error_model import ErrorUnit, RateErrorModel
from cwnd_sim.core.exceptions import SinkError
from cwnd_sim.core.link import Link
from cwnd_sim.core.simulator import NetworkSimulator
from cwnd_sim.core.transport import StreamSocket
from cwnd_sim.traffic.application import (
    PacketSink,
    TrafficGenerator,
    TrafficGeneratorConfig,
)
from cwnd_sim.utils.telemetry import TelemetrySink
from cwnd_sim.utils.units import format_data_rate

logger = logging.getLogger(__name__)


@dataclass
class Scenario:
    """A built, not yet run, chain scenario."""

    config: ScenarioConfig
    simulator: NetworkSimulator
    socket: StreamSocket
    generator: TrafficGenerator
    sink: PacketSink
    drop_link: Link
    telemetry: TelemetrySink


def build_chain_scenario(
    config: ScenarioConfig,
    on_sink_error: Optional[Callable[[SinkError], None]] = None,
) -> Scenario:
    """Build a chain scenario from a config.

    Args:
        config: Scenario parameters.
        on_sink_error: Called with every telemetry write failure.

    Returns:
        The assembled scenario.

    Raises:
        ConfigError: If a topology or generator parameter is invalid.
        SinkError: If the trace files cannot be created.
    """
    config.validate()
    simulator = NetworkSimulator()

    for node_id in range(config.num_nodes):
        simulator.add_node(node_id)
    for node_id in range(config.num_nodes - 1):
        simulator.add_link(
            node_id,
            node_id + 1,
            config.link_rate_bps,
            config.link_delay_seconds,
            network=config.networks[node_id],
        )
    simulator.compute_shortest_paths()

    sender = 0
    receiver = config.num_nodes - 1
    sink_address = simulator.address_of(receiver, receiver - 1)
    generator_config = TrafficGeneratorConfig(
        destination=(sink_address, config.sink_port),
        packet_size=config.packet_size,
        total_packets=config.total_packets,
        data_rate=config.data_rate_bps,
    )
    # checked before any application is installed
    generator_config.validate()

    error_model = RateErrorModel(config.error_rate, ErrorUnit.BYTE, seed=config.seed)
    drop_link = simulator.set_receive_error_model(receiver - 1, receiver, error_model)

    listener = simulator.create_listener(receiver, config.sink_port)
    sink = PacketSink(listener)
    sink.set_start_time(0.0)
    sink.set_stop_time(config.duration)
    simulator.install_application(receiver, sink)

    socket = simulator.create_socket(sender, segment_size=config.segment_size)
    generator = TrafficGenerator(generator_config, socket)
    generator.set_start_time(config.app_start)
    generator.set_stop_time(config.app_stop)
    simulator.install_application(sender, generator)

    os.makedirs(config.output_dir, exist_ok=True)
    telemetry = TelemetrySink.open(
        simulator.scheduler,
        congestion_path=config.congestion_trace_path,
        drop_path=config.drop_trace_path,
        on_error=on_sink_error,
    )
    telemetry.attach_congestion(socket)
    telemetry.attach_drops(drop_link)

    def log_summary(metrics: Dict[str, Any]) -> None:
        logger.info(
            "Simulation ended at t=%.3fs: %d bytes delivered, throughput %s",
            metrics["duration"],
            metrics["bytes_received"],
            format_data_rate(metrics["throughput"]),
        )

    simulator.register_hook("sim_end", log_summary)

    logger.info(
        "Built %d-node chain: node %d -> %s:%d, drops captured on %r",
        config.num_nodes,
        sender,
        sink_address,
        config.sink_port,
        drop_link,
    )
    return Scenario(config, simulator, socket, generator, sink, drop_link, telemetry)


def run_scenario(scenario: Scenario) -> Dict[str, Any]:
    """Run a scenario to its configured duration and tear it down.

    Returns:
        Simulator metrics extended with telemetry counts.
    """
    try:
        metrics = scenario.simulator.run(scenario.config.duration)
    finally:
        for application in scenario.simulator.applications:
            application.stop()
        scenario.telemetry.close()

    metrics.update(
        {
            "congestion_samples": len(scenario.telemetry.samples),
            "drop_records": len(scenario.telemetry.drops),
            "sink_errors": len(scenario.telemetry.errors),
            "sink_bytes_received": scenario.sink.total_received,
        }
    )
    return metrics
