"""libpcap capture files.

Writer and reader for the classic ``.pcap`` format: a 24-byte global
header naming the datalink type, then one 16-byte record header plus the
captured bytes per frame. Timestamps are virtual simulation times.
"""

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)

PCAP_MAGIC = 0xA1B2C3D4
PCAP_MAGIC_SWAPPED = 0xD4C3B2A1
PCAP_VERSION = (2, 4)
DEFAULT_SNAPLEN = 65535

GLOBAL_HEADER = "IHHiIII"
RECORD_HEADER = "IIII"


class DataLinkType(IntEnum):
    """Datalink type identifiers written to the global header."""

    NULL = 0
    ETHERNET = 1
    PPP = 9
    RAW = 101


@dataclass
class PcapRecord:
    """Single frame from a capture file."""

    timestamp: float
    captured_len: int
    original_len: int
    data: bytes

    def __repr__(self):
        return f"<PcapRecord ts={self.timestamp:.6f} len={self.captured_len}>"


def split_timestamp(timestamp: float):
    """Split seconds into whole seconds and microseconds."""
    seconds = int(timestamp)
    micros = int(round((timestamp - seconds) * 1_000_000))
    if micros >= 1_000_000:
        seconds += 1
        micros -= 1_000_000
    return seconds, micros


def write_record(stream: BinaryIO, data: bytes) -> None:
    """Hand a fully encoded record to a stream in a single ``write``.

    Raises:
        OSError: If the stream accepted fewer bytes than given.
    """
    written = stream.write(data)
    if written is not None and written != len(data):
        raise OSError(f"Short write: {written} of {len(data)} bytes")


class PcapWriter:
    """Appends frames to a capture stream.

    Each record is encoded completely and handed to the stream in a single
    ``write``. Files are opened unbuffered, so a record whose write fails is
    never flushed to disk later.

    Attributes:
        stream: Binary stream being written.
        datalink: Datalink type of the capture.
        snaplen: Maximum bytes stored per frame.
        records_written: Number of records written.
    """

    def __init__(
        self,
        stream: BinaryIO,
        datalink: DataLinkType = DataLinkType.PPP,
        snaplen: int = DEFAULT_SNAPLEN,
    ):
        self.stream = stream
        self.datalink = datalink
        self.snaplen = snaplen
        self.records_written = 0
        self._write(
            struct.pack(
                "<" + GLOBAL_HEADER,
                PCAP_MAGIC,
                PCAP_VERSION[0],
                PCAP_VERSION[1],
                0,
                0,
                snaplen,
                int(datalink),
            )
        )

    @classmethod
    def open(
        cls,
        path: str,
        datalink: DataLinkType = DataLinkType.PPP,
        snaplen: int = DEFAULT_SNAPLEN,
    ) -> "PcapWriter":
        """Create (or truncate) a capture file and write its global header."""
        stream = open(path, "wb", buffering=0)
        try:
            return cls(stream, datalink, snaplen)
        except OSError:
            stream.close()
            raise

    def write(self, timestamp: float, frame: bytes) -> None:
        """Append one frame.

        Args:
            timestamp: Capture time in seconds.
            frame: Frame bytes, truncated to ``snaplen`` if longer.
        """
        seconds, micros = split_timestamp(timestamp)
        captured = frame[: self.snaplen]
        record = (
            struct.pack("<" + RECORD_HEADER, seconds, micros, len(captured), len(frame))
            + captured
        )
        self._write(record)
        self.records_written += 1

    def _write(self, data: bytes) -> None:
        write_record(self.stream, data)

    def close(self) -> None:
        self.stream.close()

    def __enter__(self) -> "PcapWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class PcapReader:
    """Reads a capture file written by PcapWriter or any libpcap tool.

    Attributes:
        filename: Path of the capture file.
        datalink: Datalink type from the global header.
        snaplen: Snapshot length from the global header.
        records: Records loaded by ``load``.
    """

    def __init__(self, filename: str):
        self.filename = filename
        self.datalink: Optional[Union[DataLinkType, int]] = None
        self.snaplen = 0
        self.records: List[PcapRecord] = []

    def load(self) -> List[PcapRecord]:
        """Load every record.

        Raises:
            ValueError: If the file is not a pcap capture.
        """
        self.records = list(self)
        logger.debug("Loaded %d records from %s", len(self.records), self.filename)
        return self.records

    def __iter__(self) -> Iterator[PcapRecord]:
        with open(self.filename, "rb") as f:
            header = f.read(struct.calcsize("<" + GLOBAL_HEADER))
            if len(header) < 24:
                raise ValueError(f"Truncated pcap header in {self.filename}")
            (magic,) = struct.unpack("<I", header[:4])
            if magic == PCAP_MAGIC:
                order = "<"
            elif magic == PCAP_MAGIC_SWAPPED:
                order = ">"
            else:
                raise ValueError(f"Invalid pcap magic: {hex(magic)}")
            _, _, _, _, _, self.snaplen, network = struct.unpack(
                order + GLOBAL_HEADER, header
            )
            try:
                self.datalink = DataLinkType(network)
            except ValueError:
                self.datalink = network

            record_size = struct.calcsize(order + RECORD_HEADER)
            while True:
                record_header = f.read(record_size)
                if len(record_header) < record_size:
                    break
                ts_sec, ts_usec, incl_len, orig_len = struct.unpack(
                    order + RECORD_HEADER, record_header
                )
                data = f.read(incl_len)
                if len(data) < incl_len:
                    logger.warning("Truncated record at end of %s", self.filename)
                    break
                yield PcapRecord(ts_sec + ts_usec / 1_000_000, incl_len, orig_len, data)
