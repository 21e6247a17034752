"""Data models for hostprobe."""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")

BYTES_IN_KILOBYTE = 1024.0
MIN_ELAPSED_SECONDS = 0.001


@dataclass(slots=True, frozen=True)
class BandwidthSnapshot:
    """Immutable upload/download rate pair from one sampling cycle."""

    upload_kbps: float = 0.0
    download_kbps: float = 0.0

    def as_tuple(self) -> tuple[float, float]:
        """Return the rates as an (upload, download) tuple."""
        return (self.upload_kbps, self.download_kbps)


@dataclass(slots=True, frozen=True)
class InterfaceByteCounters:
    """Cumulative byte totals across all included interfaces at one instant."""

    bytes_sent: int
    bytes_received: int


@dataclass(slots=True, frozen=True)
class SampleWindow:
    """Two counter reads and the wall-clock time measured between them."""

    before: InterfaceByteCounters
    after: InterfaceByteCounters
    elapsed_seconds: float

    def to_snapshot(self) -> BandwidthSnapshot:
        """
        Convert the window into KiB/s rates.

        Negative deltas (counter reset, interface renumbering) are passed
        through unchanged. Elapsed time below one millisecond is clamped.
        """
        elapsed = max(self.elapsed_seconds, MIN_ELAPSED_SECONDS)
        sent = self.after.bytes_sent - self.before.bytes_sent
        received = self.after.bytes_received - self.before.bytes_received
        return BandwidthSnapshot(
            upload_kbps=(sent / BYTES_IN_KILOBYTE) / elapsed,
            download_kbps=(received / BYTES_IN_KILOBYTE) / elapsed,
        )


@dataclass(slots=True, frozen=True)
class ProcessorTopology:
    """Physical and logical core counts for the host."""

    physical_cores: int
    logical_cores: int


@dataclass(slots=True, frozen=True)
class ProbeResult(Generic[T]):
    """A probed value, or the default it collapsed to after a failed probe."""

    value: T
    ok: bool = True
    error: str | None = None

    @classmethod
    def failed(cls, default: T, error: str) -> "ProbeResult[T]":
        """Create a failed result that carries the default value."""
        return cls(value=default, ok=False, error=error)


@dataclass(slots=True, frozen=True)
class CpuTimes:
    """
    Aggregate CPU time counters.

    On Linux these are the jiffy columns of the ``cpu`` line of /proc/stat.
    Other platforms fill the columns they have and leave the rest at zero.
    """

    user: int
    nice: int
    system: int
    idle: int
    iowait: int
    irq: int
    softirq: int
    steal: int
    guest: int
    guest_nice: int

    @classmethod
    def from_line(cls, line: str) -> "CpuTimes":
        """
        Parse a /proc/stat cpu line.

        Guest time is already counted in user/nice by the kernel, so it is
        subtracted here to keep the total from counting it twice.
        """
        columns = line.split()
        if len(columns) < 11 or not columns[0].startswith("cpu"):
            raise ValueError(f"Unable to parse cpu stats: {line!r}")

        user, nice, system, idle, iowait, irq, softirq, steal, guest, guest_nice = (
            int(value) for value in columns[1:11]
        )
        return cls(
            user=user - guest,
            nice=nice - guest_nice,
            system=system,
            idle=idle,
            iowait=iowait,
            irq=irq,
            softirq=softirq,
            steal=steal,
            guest=guest,
            guest_nice=guest_nice,
        )

    @property
    def total_jiffies(self) -> int:
        """Sum of all ten counters."""
        return (
            self.user
            + self.nice
            + self.system
            + self.idle
            + self.iowait
            + self.irq
            + self.softirq
            + self.steal
            + self.guest
            + self.guest_nice
        )

    @property
    def work_jiffies(self) -> int:
        """Jiffies spent neither idle nor waiting on I/O."""
        return self.total_jiffies - self.idle - self.iowait


def cpu_usage_percent(before: CpuTimes, after: CpuTimes) -> float:
    """Busy share of CPU time between two samples, 0.0 - 100.0."""
    total = after.total_jiffies - before.total_jiffies
    if total <= 0:
        return 0.0
    work = after.work_jiffies - before.work_jiffies
    return max(0.0, min(100.0, work * 100.0 / total))
