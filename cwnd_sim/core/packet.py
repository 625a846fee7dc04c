"""Segment class for network simulation.

This module defines the Segment class, which represents an IPv4 datagram
carrying a TCP-shaped header, and the PPP framing used on point-to-point
links. Segments travel through the simulator as objects; they are only
encoded to bytes when a frame has to be captured.
"""

import struct
from dataclasses import dataclass, field
from enum import IntFlag
from ipaddress import IPv4Address
from typing import ClassVar

IPV4_HEADER = struct.Struct("!BBHHHBBH4s4s")
TCP_HEADER = struct.Struct("!HHIIBBHHH")

IP_PROTOCOL_TCP = 6
PPP_PROTOCOL_IPV4 = 0x0021
PPP_HEADER = struct.Struct("!H")


class TcpFlags(IntFlag):
    """TCP header flags used by the stream endpoints."""

    NONE = 0
    FIN = 0x01
    SYN = 0x02
    RST = 0x04
    PSH = 0x08
    ACK = 0x10


@dataclass
class Segment:
    """Represents an IPv4 datagram with a TCP-shaped header.

    Attributes:
        source: Source IPv4 address.
        destination: Destination IPv4 address.
        source_port: Source port.
        destination_port: Destination port.
        seq: Sequence number of the first payload byte.
        ack: Acknowledgement number (meaningful when ACK is set).
        flags: TCP flags.
        payload: Payload bytes.
        ttl: Remaining hop count.
        creation_time: Virtual time the segment was created.
        id: Unique identifier, also used as the IPv4 identification field.
    """

    source: IPv4Address
    destination: IPv4Address
    source_port: int
    destination_port: int
    seq: int = 0
    ack: int = 0
    flags: TcpFlags = TcpFlags.NONE
    payload: bytes = b""
    ttl: int = 64
    creation_time: float = 0.0
    id: int = field(init=False)

    _id_counter: ClassVar[int] = 0

    def __post_init__(self):
        """Assign a unique identifier."""
        type(self)._id_counter += 1
        self.id = type(self)._id_counter

    @property
    def size(self) -> int:
        """Size of the IPv4 datagram in bytes."""
        return IPV4_HEADER.size + TCP_HEADER.size + len(self.payload)

    @property
    def frame_size(self) -> int:
        """Size of the PPP frame carrying this segment in bytes."""
        return PPP_HEADER.size + self.size

    @property
    def payload_size(self) -> int:
        return len(self.payload)

    def to_bytes(self) -> bytes:
        """Encode the segment as an IPv4 datagram."""
        tcp = TCP_HEADER.pack(
            self.source_port,
            self.destination_port,
            self.seq % 2**32,
            self.ack % 2**32,
            (TCP_HEADER.size // 4) << 4,
            int(self.flags),
            65535,
            0,
            0,
        )
        header = IPV4_HEADER.pack(
            0x45,
            0,
            self.size,
            self.id & 0xFFFF,
            0,
            self.ttl,
            IP_PROTOCOL_TCP,
            0,
            self.source.packed,
            self.destination.packed,
        )
        checksum = ipv4_checksum(header)
        header = header[:10] + struct.pack("!H", checksum) + header[12:]
        return header + tcp + self.payload

    @classmethod
    def from_bytes(cls, data: bytes) -> "Segment":
        """Decode an IPv4 datagram produced by ``to_bytes``.

        Raises:
            ValueError: If the data is not an IPv4/TCP datagram.
        """
        if len(data) < IPV4_HEADER.size + TCP_HEADER.size:
            raise ValueError(f"Datagram too short: {len(data)} bytes")
        (
            version_ihl,
            _tos,
            total_length,
            _ident,
            _frag,
            ttl,
            protocol,
            _checksum,
            source,
            destination,
        ) = IPV4_HEADER.unpack_from(data)
        if version_ihl >> 4 != 4 or protocol != IP_PROTOCOL_TCP:
            raise ValueError("Not an IPv4/TCP datagram")
        offset = (version_ihl & 0x0F) * 4
        sport, dport, seq, ack, data_offset, flags, _win, _sum, _urg = (
            TCP_HEADER.unpack_from(data, offset)
        )
        payload_start = offset + (data_offset >> 4) * 4
        return cls(
            source=IPv4Address(source),
            destination=IPv4Address(destination),
            source_port=sport,
            destination_port=dport,
            seq=seq,
            ack=ack,
            flags=TcpFlags(flags),
            payload=bytes(data[payload_start:total_length]),
            ttl=ttl,
        )

    def __repr__(self) -> str:
        return (
            f"Segment({self.source}:{self.source_port}->"
            f"{self.destination}:{self.destination_port}, seq={self.seq}, "
            f"ack={self.ack}, flags={self.flags!s}, len={self.payload_size})"
        )


def ipv4_checksum(header: bytes) -> int:
    """Compute the one's complement checksum of an IPv4 header.

    Args:
        header: Header bytes with the checksum field zeroed.

    Returns:
        16-bit checksum.
    """
    total = 0
    for i in range(0, len(header), 2):
        total += (header[i] << 8) + header[i + 1]
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def ppp_frame(segment: Segment) -> bytes:
    """Encode a segment as a PPP frame (protocol field + IPv4 datagram)."""
    return PPP_HEADER.pack(PPP_PROTOCOL_IPV4) + segment.to_bytes()


def ppp_unframe(frame: bytes) -> Segment:
    """Decode a PPP frame produced by ``ppp_frame``.

    Raises:
        ValueError: If the frame does not carry IPv4.
    """
    (protocol,) = PPP_HEADER.unpack_from(frame)
    if protocol != PPP_PROTOCOL_IPV4:
        raise ValueError(f"Unsupported PPP protocol 0x{protocol:04x}")
    return Segment.from_bytes(frame[PPP_HEADER.size :])
