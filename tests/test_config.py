"""Tests for unit parsing and scenario configuration."""

import json
from pathlib import Path

import pytest

from cwnd_sim.config import ScenarioConfig
from cwnd_sim.core.exceptions import ConfigError
from cwnd_sim.utils.units import format_data_rate, parse_data_rate, parse_time


class TestUnits:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("5Mbps", 5e6),
            ("5mbps", 5e6),
            ("1.5kb/s", 1500.0),
            ("100bps", 100.0),
            ("2Gbps", 2e9),
            ("1MBps", 8e6),
            ("10KB/s", 80e3),
            ("2500", 2500.0),
            (1e6, 1e6),
        ],
    )
    def test_parse_data_rate(self, text, expected) -> None:
        assert parse_data_rate(text) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "text,expected",
        [("2ms", 0.002), ("1.5s", 1.5), ("10us", 1e-5), ("3", 3.0), ("1min", 60.0), (0.25, 0.25)],
    )
    def test_parse_time(self, text, expected) -> None:
        assert parse_time(text) == pytest.approx(expected)

    @pytest.mark.parametrize("text", ["fast", "5 parsecs", "Mbps", "1.2.3Mbps"])
    def test_malformed_rate_raises(self, text) -> None:
        with pytest.raises(ConfigError):
            parse_data_rate(text)

    def test_unknown_time_unit_raises(self) -> None:
        with pytest.raises(ConfigError):
            parse_time("3 days")

    def test_format_data_rate(self) -> None:
        assert format_data_rate(5e6) == "5Mbps"
        assert format_data_rate(1500) == "1.5kbps"
        assert format_data_rate(12) == "12bps"


class TestScenarioConfig:
    def test_defaults_match_reference_run(self) -> None:
        config = ScenarioConfig()
        assert config.packet_size == 1040
        assert config.total_packets == 1000
        assert config.data_rate_bps == 1e6
        assert config.link_rate_bps == 5e6
        assert config.link_delay_seconds == pytest.approx(0.002)
        assert config.error_rate == pytest.approx(1e-5)
        assert config.sink_port == 1090
        config.validate()

    def test_overrides_skip_none(self) -> None:
        config = ScenarioConfig().with_overrides(packet_size=512, seed=None)
        assert config.packet_size == 512
        assert config.seed == 42

    def test_unknown_keys_rejected(self) -> None:
        with pytest.raises(ConfigError, match="Unknown configuration keys"):
            ScenarioConfig.from_dict({"packet_sise": 10})

    def test_json_round_trip(self, tmp_path: Path) -> None:
        path = str(tmp_path / "conf" / "scenario.json")
        config = ScenarioConfig(error_rate=1e-4, output_dir="out", num_nodes=3)
        config.save_json(path)
        assert ScenarioConfig.from_json(path) == config

    def test_malformed_json_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError):
            ScenarioConfig.from_json(str(path))

    def test_json_must_be_object(self, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text(json.dumps([1, 2]))
        with pytest.raises(ConfigError):
            ScenarioConfig.from_json(str(path))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"num_nodes": 1},
            {"num_nodes": 6},
            {"link_rate": "0Mbps"},
            {"error_rate": 1.5},
            {"duration": 0},
            {"sink_port": 70000},
        ],
    )
    def test_validate_rejects(self, overrides) -> None:
        with pytest.raises(ConfigError):
            ScenarioConfig(**overrides).validate()

    def test_trace_paths_join_output_dir(self) -> None:
        config = ScenarioConfig(output_dir="results/run1")
        assert config.congestion_trace_path.endswith("run1/sixth.cwnd")
        assert config.drop_trace_path.endswith("run1/sixth.pcap")
