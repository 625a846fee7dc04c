"""Telemetry capture for network simulation.

The TelemetrySink records two independent streams:

- a congestion trace: one ``<time>\\t<old>\\t<new>`` line per congestion
  window change of an observed transport endpoint;
- a drop trace: a pcap capture of every frame dropped by an observed link.

Writing telemetry never influences the traffic being measured. A failed
write is logged, kept in ``errors`` and passed to the host's ``on_error``
callback; it is not raised into the component that emitted the event.
"""

import logging
from dataclasses import dataclass
from typing import BinaryIO, Callable, List, Optional

from cwnd_sim.core.exceptions import SinkError
from cwnd_sim.core.link import Link
from cwnd_sim.core.scheduler import Scheduler
from cwnd_sim.core.trace import Subscription
from cwnd_sim.core.transport import TransportEndpoint
from cwnd_sim.utils.pcap import DataLinkType, PcapWriter, write_record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CongestionSample:
    """Congestion window change.

    Attributes:
        timestamp: Virtual time of the change in seconds.
        old_value: Window before the change in bytes.
        new_value: Window after the change in bytes.
    """

    timestamp: float
    old_value: int
    new_value: int

    def to_line(self) -> str:
        return f"{self.timestamp:.9f}\t{self.old_value}\t{self.new_value}\n"

    @classmethod
    def from_line(cls, line: str) -> "CongestionSample":
        timestamp, old_value, new_value = line.split("\t")
        return cls(float(timestamp), int(old_value), int(new_value))


@dataclass(frozen=True)
class LinkDrop:
    """Frame dropped by a link.

    Attributes:
        timestamp: Virtual time of the drop in seconds.
        frame: Exact bytes of the dropped frame.
    """

    timestamp: float
    frame: bytes


class CongestionTrace:
    """Line-oriented congestion window trace.

    Lines are written to an unbuffered binary stream, one ``write`` per
    sample, so a sample whose write fails never reaches the file later.
    """

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.records_written = 0

    @classmethod
    def open(cls, path: str) -> "CongestionTrace":
        return cls(open(path, "wb", buffering=0))

    def write(self, sample: CongestionSample) -> None:
        write_record(self.stream, sample.to_line().encode("ascii"))
        self.records_written += 1

    def close(self) -> None:
        self.stream.close()


class DropTrace:
    """Pcap capture of dropped frames."""

    def __init__(self, writer: PcapWriter):
        self.writer = writer

    @classmethod
    def open(cls, path: str, datalink: DataLinkType = DataLinkType.PPP) -> "DropTrace":
        return cls(PcapWriter.open(path, datalink))

    @property
    def records_written(self) -> int:
        return self.writer.records_written

    def write(self, drop: LinkDrop) -> None:
        self.writer.write(drop.timestamp, drop.frame)

    def close(self) -> None:
        self.writer.close()


class TelemetrySink:
    """Records congestion samples and link drops over virtual time.

    Attributes:
        scheduler: Source of the virtual clock.
        congestion_trace: Congestion channel, if enabled.
        drop_trace: Drop channel, if enabled.
        samples: Every congestion sample observed, in arrival order.
        drops: Every link drop observed, in arrival order.
        errors: Write failures, in the order they happened.
        on_error: Host callback invoked with each SinkError.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        congestion_trace: Optional[CongestionTrace] = None,
        drop_trace: Optional[DropTrace] = None,
        on_error: Optional[Callable[[SinkError], None]] = None,
    ):
        """Initialize the sink.

        Args:
            scheduler: Source of the virtual clock.
            congestion_trace: Channel for congestion samples.
            drop_trace: Channel for link drops.
            on_error: Called with a SinkError whenever a write fails.
        """
        self.scheduler = scheduler
        self.congestion_trace = congestion_trace
        self.drop_trace = drop_trace
        self.on_error = on_error
        self.samples: List[CongestionSample] = []
        self.drops: List[LinkDrop] = []
        self.errors: List[SinkError] = []
        self._subscriptions: List[Subscription] = []
        self.closed = False

    @classmethod
    def open(
        cls,
        scheduler: Scheduler,
        congestion_path: Optional[str] = None,
        drop_path: Optional[str] = None,
        datalink: DataLinkType = DataLinkType.PPP,
        on_error: Optional[Callable[[SinkError], None]] = None,
    ) -> "TelemetrySink":
        """Create a sink writing to files.

        Raises:
            SinkError: If a trace file cannot be created.
        """
        congestion_trace = None
        drop_trace = None
        try:
            if congestion_path is not None:
                congestion_trace = CongestionTrace.open(congestion_path)
            if drop_path is not None:
                drop_trace = DropTrace.open(drop_path, datalink)
        except OSError as exc:
            if congestion_trace is not None:
                congestion_trace.close()
            raise SinkError(
                "Cannot open trace file",
                {"congestion_path": congestion_path, "drop_path": drop_path},
            ) from exc
        return cls(scheduler, congestion_trace, drop_trace, on_error)

    def attach_congestion(self, endpoint: TransportEndpoint) -> Subscription:
        """Record every congestion window change of an endpoint."""
        subscription = endpoint.on_congestion_window_change(self.record_congestion_sample)
        self._subscriptions.append(subscription)
        return subscription

    def attach_drops(self, link: Link) -> Subscription:
        """Record every frame dropped at the receiving end of a link."""
        subscription = link.on_receive_drop(self.record_link_drop)
        self._subscriptions.append(subscription)
        return subscription

    def record_congestion_sample(self, old_value: int, new_value: int) -> None:
        sample = CongestionSample(self.scheduler.now(), old_value, new_value)
        self.samples.append(sample)
        logger.info("%.6f\t%d", sample.timestamp, new_value)
        if self.congestion_trace is not None:
            self._persist("congestion", self.congestion_trace.write, sample)

    def record_link_drop(self, frame: bytes) -> None:
        drop = LinkDrop(self.scheduler.now(), bytes(frame))
        self.drops.append(drop)
        logger.info("RxDrop at %.6f", drop.timestamp)
        if self.drop_trace is not None:
            self._persist("drop", self.drop_trace.write, drop)

    def _persist(self, channel: str, write: Callable, record) -> None:
        try:
            write(record)
        except (OSError, ValueError) as exc:
            error = SinkError(
                f"Failed to write {channel} record",
                {"timestamp": record.timestamp, "reason": exc},
            )
            logger.error("%s", error)
            self.errors.append(error)
            if self.on_error is not None:
                try:
                    self.on_error(error)
                except Exception:
                    logger.exception("Telemetry error callback failed")

    def close(self) -> None:
        """Disconnect from every source and close the trace files."""
        if self.closed:
            return
        self.closed = True
        for subscription in self._subscriptions:
            subscription.disconnect()
        self._subscriptions.clear()
        for trace in (self.congestion_trace, self.drop_trace):
            if trace is None:
                continue
            try:
                trace.close()
            except OSError as exc:
                error = SinkError("Failed to close trace file", {"reason": exc})
                logger.error("%s", error)
                self.errors.append(error)

    def __enter__(self) -> "TelemetrySink":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def read_congestion_trace(path: str) -> List[CongestionSample]:
    """Read a congestion trace written by CongestionTrace.

    Args:
        path: Trace file path.

    Returns:
        Samples in file order.
    """
    with open(path) as f:
        return [CongestionSample.from_line(line) for line in f if line.strip()]
