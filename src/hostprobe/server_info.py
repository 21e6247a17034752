"""One-shot host information accessors.

Every accessor catches failures at its boundary and returns a zero/None
default, so callers never see an exception from here.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version

import psutil

from hostprobe.logger import get_logger
from hostprobe.models import CpuTimes, ProcessorTopology, cpu_usage_percent
from hostprobe.probe import MEM_AVAILABLE, MEM_TOTAL, HostProbe, get_probe

logger = get_logger(__name__)

DISTRIBUTION_NAME = "hostprobe"


@lru_cache(maxsize=1)
def _default_probe() -> HostProbe:
    """Probe for the running platform, created once."""
    return get_probe()


def _resolve(probe: HostProbe | None, log: logging.Logger | None) -> tuple[HostProbe, logging.Logger]:
    """Fill in the default probe and module logger."""
    return (probe if probe is not None else _default_probe(), log if log is not None else logger)


def count_cores(probe: HostProbe | None = None, log: logging.Logger | None = None) -> ProcessorTopology:
    """Physical and logical core counts; zeros when the probe fails."""
    try:
        probe, log = _resolve(probe, log)
        return probe.count_cores().value
    except Exception:
        (log or logger).exception("Unable to count processor cores")
        return ProcessorTopology(0, 0)


def get_physical_core_count(probe: HostProbe | None = None, log: logging.Logger | None = None) -> int:
    """Physical core count; 0 when the probe fails."""
    return count_cores(probe, log).physical_cores


def get_logical_core_count() -> int:
    """Number of logical processors the OS reports."""
    try:
        return psutil.cpu_count(logical=True) or 0
    except Exception:
        logger.exception("Unable to query logical processor count")
        return 0


def _memory_gib(metric: str, probe: HostProbe | None, log: logging.Logger | None) -> float:
    """Read one memory metric, returning 0.0 on any failure."""
    try:
        probe, log = _resolve(probe, log)
        return probe.read_mem_info(metric).value
    except Exception:
        (log or logger).exception("Unable to read %s", metric)
        return 0.0


def get_total_memory_gib(probe: HostProbe | None = None, log: logging.Logger | None = None) -> float:
    """Total physical memory in GiB; 0.0 when unknown."""
    return _memory_gib(MEM_TOTAL, probe, log)


def get_available_memory_gib(probe: HostProbe | None = None, log: logging.Logger | None = None) -> float:
    """Available physical memory in GiB; 0.0 when unknown."""
    return _memory_gib(MEM_AVAILABLE, probe, log)


def get_kernel_version(probe: HostProbe | None = None, log: logging.Logger | None = None) -> str | None:
    """Kernel version string, or None when it cannot be read."""
    try:
        probe, log = _resolve(probe, log)
        return probe.read_kernel_version().value
    except Exception:
        (log or logger).exception("Unable to read kernel version")
        return None


def get_cpu_times(probe: HostProbe | None = None, log: logging.Logger | None = None) -> CpuTimes | None:
    """Aggregate CPU time counters, or None when they cannot be read."""
    try:
        probe, log = _resolve(probe, log)
        return probe.read_cpu_times().value
    except Exception:
        (log or logger).exception("Unable to read cpu times")
        return None


class CpuUsageMeter:
    """
    CPU busy percentage between successive readings.

    Each ``sample()`` reads the counters and compares them with the previous
    successful reading. The first call and failed reads return None; a
    failed read keeps the earlier reading as the baseline.
    """

    def __init__(self, probe: HostProbe | None = None, log: logging.Logger | None = None) -> None:
        self._probe = probe
        self._log = log
        self._previous: CpuTimes | None = None

    def sample(self) -> float | None:
        """Read CPU times and return the busy percentage since the last reading."""
        current = get_cpu_times(self._probe, self._log)
        if current is None:
            return None

        previous, self._previous = self._previous, current
        if previous is None:
            return None
        return cpu_usage_percent(previous, current)


def get_package_version() -> str | None:
    """Installed hostprobe version, or None when running from a source tree."""
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return None


@dataclass(slots=True, frozen=True)
class ServerInfo:
    """Static description of the host, gathered once."""

    version: str | None
    logical_core_count: int
    physical_core_count: int
    total_physical_memory_gib: float
    kernel_version: str | None

    @classmethod
    def collect(cls, probe: HostProbe | None = None, log: logging.Logger | None = None) -> "ServerInfo":
        """Gather every field from the probe, falling back to defaults."""
        return cls(
            version=get_package_version(),
            logical_core_count=get_logical_core_count(),
            physical_core_count=get_physical_core_count(probe, log),
            total_physical_memory_gib=get_total_memory_gib(probe, log),
            kernel_version=get_kernel_version(probe, log),
        )
