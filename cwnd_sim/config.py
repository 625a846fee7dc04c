"""Scenario configuration.

``ScenarioConfig`` holds every host-level parameter of a simulation run:
the traffic generator settings, the chain topology, the induced loss and
where the traces are written. Defaults reproduce the reference run: 1000
packets of 1040 bytes at 1 Mbps over 5 Mbps / 2 ms links with a 1e-5
per-byte error rate.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List

from cwnd_sim.core.exceptions import ConfigError
from cwnd_sim.utils.units import parse_data_rate, parse_time


@dataclass(frozen=True)
class ScenarioConfig:
    """Parameters of a chain scenario.

    Attributes:
        packet_size: Generator packet size in bytes.
        total_packets: Number of packets the generator sends.
        data_rate: Generator rate, in bit/s or as a string like "1Mbps".
        app_start: Generator start time in seconds.
        app_stop: Generator stop time in seconds.
        duration: Simulation stop time in seconds.
        link_rate: Capacity of every link.
        link_delay: Propagation delay of every link.
        error_rate: Per-byte receive error rate on the sink-side device.
        num_nodes: Number of nodes in the chain.
        networks: One IPv4 network per link, in chain order.
        sink_port: Port the packet sink listens on.
        segment_size: Maximum segment payload of the stream socket.
        output_dir: Directory for trace files.
        congestion_trace: Congestion trace file name.
        drop_trace: Drop capture file name.
        seed: Seed of the error model.
    """

    packet_size: int = 1040
    total_packets: int = 1000
    data_rate: Any = "1Mbps"
    app_start: float = 0.0
    app_stop: float = 20.0
    duration: float = 20.0
    link_rate: Any = "5Mbps"
    link_delay: Any = "2ms"
    error_rate: float = 0.00001
    num_nodes: int = 4
    networks: List[str] = field(
        default_factory=lambda: ["10.0.0.0/24", "10.0.1.0/24", "10.0.2.0/24"]
    )
    sink_port: int = 1090
    segment_size: int = 536
    output_dir: str = "results"
    congestion_trace: str = "sixth.cwnd"
    drop_trace: str = "sixth.pcap"
    seed: int = 42

    @property
    def data_rate_bps(self) -> float:
        return parse_data_rate(self.data_rate)

    @property
    def link_rate_bps(self) -> float:
        return parse_data_rate(self.link_rate)

    @property
    def link_delay_seconds(self) -> float:
        return parse_time(self.link_delay)

    @property
    def congestion_trace_path(self) -> str:
        return os.path.join(self.output_dir, self.congestion_trace)

    @property
    def drop_trace_path(self) -> str:
        return os.path.join(self.output_dir, self.drop_trace)

    def validate(self) -> None:
        """Check the topology-level parameters.

        Generator fields are checked by the generator itself when it starts.

        Raises:
            ConfigError: If a parameter is invalid.
        """
        if self.num_nodes < 2:
            raise ConfigError("A chain needs at least two nodes", {"num_nodes": self.num_nodes})
        if len(self.networks) < self.num_nodes - 1:
            raise ConfigError(
                "Not enough networks for the chain links",
                {"num_nodes": self.num_nodes, "networks": len(self.networks)},
            )
        if self.link_rate_bps <= 0:
            raise ConfigError("Link rate must be positive", {"link_rate": self.link_rate})
        if self.link_delay_seconds < 0:
            raise ConfigError("Link delay must not be negative", {"link_delay": self.link_delay})
        if not 0.0 <= self.error_rate <= 1.0:
            raise ConfigError("Error rate must be within [0, 1]", {"error_rate": self.error_rate})
        if self.duration <= 0:
            raise ConfigError("Duration must be positive", {"duration": self.duration})
        if not 0 < self.sink_port < 65536:
            raise ConfigError("Invalid sink port", {"sink_port": self.sink_port})

    def with_overrides(self, **overrides: Any) -> "ScenarioConfig":
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return self.from_dict({**self.to_dict(), **changes})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScenarioConfig":
        """Build a config from a mapping, rejecting unknown keys.

        Raises:
            ConfigError: If the mapping has keys that are not config fields.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError("Unknown configuration keys", {"keys": unknown})
        return replace(cls(), **data)

    @classmethod
    def from_json(cls, filename: str) -> "ScenarioConfig":
        """Load a config from a JSON object file.

        Raises:
            ConfigError: If the file is missing, malformed or has unknown keys.
        """
        try:
            with open(filename) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError("Cannot load configuration", {"file": filename}) from exc
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a JSON object", {"file": filename})
        return cls.from_dict(data)

    def save_json(self, filename: str) -> None:
        os.makedirs(os.path.dirname(filename) or ".", exist_ok=True)
        with open(filename, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
