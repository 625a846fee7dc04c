"""Tests for segment encoding, PPP framing and the error model."""

from ipaddress import IPv4Address

import pytest

from cwnd_sim.core.error_model import ErrorUnit, RateErrorModel
from cwnd_sim.core.exceptions import ConfigError
from cwnd_sim.core.packet import (
    Segment,
    TcpFlags,
    ipv4_checksum,
    ppp_frame,
    ppp_unframe,
)
from cwnd_sim.traffic.generators import pacing_interval


@pytest.fixture
def segment() -> Segment:
    return Segment(
        source=IPv4Address("10.0.0.1"),
        destination=IPv4Address("10.0.2.2"),
        source_port=49153,
        destination_port=1090,
        seq=1072,
        flags=TcpFlags.PSH | TcpFlags.ACK,
        payload=b"x" * 536,
    )


class TestSegment:
    def test_sizes(self, segment: Segment) -> None:
        assert segment.size == 20 + 20 + 536
        assert segment.frame_size == segment.size + 2
        assert len(ppp_frame(segment)) == segment.frame_size

    def test_ids_are_unique(self, segment: Segment) -> None:
        other = Segment(segment.source, segment.destination, 1, 2)
        assert other.id != segment.id

    def test_header_checksum_verifies(self, segment: Segment) -> None:
        header = segment.to_bytes()[:20]
        # summing a header that includes its own checksum yields zero
        assert ipv4_checksum(header) == 0

    def test_known_checksum(self) -> None:
        header = bytes.fromhex("450000730000400040110000c0a80001c0a800c7")
        assert ipv4_checksum(header) == 0xB861

    def test_frame_decodes(self, segment: Segment) -> None:
        frame = ppp_frame(segment)
        assert frame[:2] == b"\x00\x21"
        decoded = ppp_unframe(frame)
        assert decoded.source == segment.source
        assert decoded.destination == segment.destination
        assert decoded.destination_port == 1090
        assert decoded.seq == 1072
        assert decoded.flags == TcpFlags.PSH | TcpFlags.ACK
        assert decoded.payload == segment.payload

    def test_non_ipv4_frame_rejected(self) -> None:
        with pytest.raises(ValueError):
            ppp_unframe(b"\xc0\x21" + bytes(40))

    def test_short_datagram_rejected(self) -> None:
        with pytest.raises(ValueError):
            Segment.from_bytes(bytes(10))


class TestRateErrorModel:
    def test_rate_out_of_range(self) -> None:
        with pytest.raises(ConfigError):
            RateErrorModel(1.5)
        with pytest.raises(ConfigError):
            RateErrorModel(-0.1)

    def test_zero_rate_never_corrupts(self) -> None:
        model = RateErrorModel(0.0)
        assert not any(model.is_corrupt(1500) for _ in range(1000))

    def test_full_packet_rate_always_corrupts(self) -> None:
        model = RateErrorModel(1.0, ErrorUnit.PACKET, seed=1)
        assert all(model.is_corrupt(64) for _ in range(100))
        assert model.frames_corrupted == 100

    def test_byte_probability_scales_with_size(self) -> None:
        model = RateErrorModel(1e-4)
        small = model.corruption_probability(100)
        large = model.corruption_probability(1000)
        assert small < large
        assert large == pytest.approx(1 - (1 - 1e-4) ** 1000)

    def test_disabled_model_passes_everything(self) -> None:
        model = RateErrorModel(1.0, ErrorUnit.PACKET)
        model.enabled = False
        assert not model.is_corrupt(100)

    def test_seed_reproduces_draws(self) -> None:
        first = RateErrorModel(0.3, ErrorUnit.PACKET, seed=5)
        second = RateErrorModel(0.3, ErrorUnit.PACKET, seed=5)
        assert [first.is_corrupt(1) for _ in range(50)] == [
            second.is_corrupt(1) for _ in range(50)
        ]


class TestPacingFunctions:
    def test_pacing_interval(self) -> None:
        assert pacing_interval(1040, 1e6) == pytest.approx(0.00832)

    @pytest.mark.parametrize("size,rate", [(1040, 0), (1040, -1), (0, 1e6)])
    def test_pacing_interval_rejects(self, size, rate) -> None:
        with pytest.raises(ConfigError):
            pacing_interval(size, rate)

