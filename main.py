#!/usr/bin/env python3
"""Run the chain scenario and record congestion window and drop traces.

Examples:
    python main.py
    python main.py --error-rate 1e-4 --plot
    python main.py --config scenario.json --output-dir results/lossy
"""

import argparse
import logging
import os
import sys

from cwnd_sim.config import ScenarioConfig
from cwnd_sim.core.exceptions import SimulationError
from cwnd_sim.scenario import build_chain_scenario, run_scenario
from cwnd_sim.utils.metrics import (
    save_metrics_to_json,
    summarize_congestion_trace,
    summarize_drop_trace,
)
from cwnd_sim.utils.pcap import PcapReader
from cwnd_sim.utils.telemetry import read_congestion_trace
from cwnd_sim.utils.units import format_data_rate
from cwnd_sim.utils.visualization import (
    plot_congestion_window,
    save_network_visualization,
)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Congestion window trace simulation")
    parser.add_argument("--config", help="JSON file with scenario parameters")
    parser.add_argument("--packet-size", type=int, help="Packet size in bytes")
    parser.add_argument("--packets", type=int, help="Number of packets to send")
    parser.add_argument("--rate", help='Generator rate, e.g. "1Mbps"')
    parser.add_argument("--link-rate", help='Link capacity, e.g. "5Mbps"')
    parser.add_argument("--link-delay", help='Link delay, e.g. "2ms"')
    parser.add_argument("--error-rate", type=float, help="Per-byte receive error rate")
    parser.add_argument("--duration", type=float, help="Simulation stop time in seconds")
    parser.add_argument("--output-dir", help="Directory for traces and plots")
    parser.add_argument("--seed", type=int, help="Error model seed")
    parser.add_argument("--plot", action="store_true", help="Plot the congestion window")
    parser.add_argument("--topology", action="store_true", help="Draw the topology")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> ScenarioConfig:
    """Build the scenario config from an optional JSON file and CLI overrides."""
    config = ScenarioConfig.from_json(args.config) if args.config else ScenarioConfig()
    return config.with_overrides(
        packet_size=args.packet_size,
        total_packets=args.packets,
        data_rate=args.rate,
        link_rate=args.link_rate,
        link_delay=args.link_delay,
        error_rate=args.error_rate,
        duration=args.duration,
        app_stop=args.duration,
        output_dir=args.output_dir,
        seed=args.seed,
    )


def main(argv=None) -> int:
    """Main function to run the simulation"""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    try:
        config = load_config(args)
        scenario = build_chain_scenario(config)
    except SimulationError as exc:
        print(f"Invalid scenario: {exc}", file=sys.stderr)
        return 2

    if args.topology:
        save_network_visualization(
            scenario.simulator, os.path.join(config.output_dir, "topology.png")
        )

    config.save_json(os.path.join(config.output_dir, "config.json"))
    print(
        f"Running chain simulation for {config.duration:g}s: "
        f"{config.total_packets} x {config.packet_size} bytes at "
        f"{format_data_rate(config.data_rate_bps)} over "
        f"{format_data_rate(config.link_rate_bps)} links..."
    )
    try:
        metrics = run_scenario(scenario)
    except SimulationError as exc:
        print(f"Simulation failed: {exc}", file=sys.stderr)
        return 2

    samples = read_congestion_trace(config.congestion_trace_path)
    drops = PcapReader(config.drop_trace_path).load()
    metrics["congestion"] = summarize_congestion_trace(samples)
    metrics["drops"] = summarize_drop_trace(drops)
    save_metrics_to_json(metrics, os.path.join(config.output_dir, "metrics.json"))

    print(f"  Packets sent:     {metrics['packets_sent']}")
    print(f"  Bytes received:   {metrics['sink_bytes_received']}")
    print(f"  Throughput:       {format_data_rate(metrics['throughput'])}")
    print(f"  cwnd samples:     {metrics['congestion_samples']}")
    print(f"  Link drops:       {metrics['drop_records']}")
    print(f"  Retransmissions:  {metrics['retransmissions']}")
    if metrics["sink_errors"]:
        print(f"  Telemetry errors: {metrics['sink_errors']}")

    if args.plot:
        plot_congestion_window(
            samples,
            os.path.join(config.output_dir, "cwnd.png"),
            drop_times=[record.timestamp for record in drops],
        )

    print(f"\nSimulation complete. Results saved to '{config.output_dir}' directory.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
