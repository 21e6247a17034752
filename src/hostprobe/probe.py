"""Platform capability interface for host metrics."""

import sys
from abc import ABC, abstractmethod
from collections.abc import Iterable

from hostprobe.models import CpuTimes, InterfaceByteCounters, ProbeResult, ProcessorTopology

MEM_TOTAL = "MemTotal"
MEM_AVAILABLE = "MemAvailable"


def is_excluded(name: str, prefixes: Iterable[str]) -> bool:
    """Return True if the interface name starts with any of the prefixes."""
    return any(name.startswith(prefix) for prefix in prefixes)


class HostProbe(ABC):
    """
    Reads raw host metrics from one operating system.

    ``read_counters`` raises ``OSError`` when the underlying OS call fails.
    The other methods never raise; failures come back as a failed
    ``ProbeResult`` carrying a zero/None default.
    """

    name: str = "base"

    @abstractmethod
    def read_counters(self, exclude_prefixes: Iterable[str] = ()) -> InterfaceByteCounters:
        """Cumulative bytes sent/received summed across non-excluded interfaces."""
        ...

    @abstractmethod
    def count_cores(self) -> ProbeResult[ProcessorTopology]:
        """Physical and logical core counts."""
        ...

    @abstractmethod
    def read_mem_info(self, metric: str) -> ProbeResult[float]:
        """Memory metric (``MemTotal`` or ``MemAvailable``) in GiB."""
        ...

    @abstractmethod
    def read_kernel_version(self) -> ProbeResult[str | None]:
        """Kernel or OS version string."""
        ...

    @abstractmethod
    def read_cpu_times(self) -> ProbeResult[CpuTimes | None]:
        """Aggregate CPU time counters since boot."""
        ...


def get_probe() -> HostProbe:
    """Return the probe implementation for the running platform."""
    if sys.platform == "win32":
        from hostprobe.win32 import WindowsProbe

        return WindowsProbe()

    from hostprobe.procfs import LinuxProbe

    return LinuxProbe()
