"""Shared fixtures for hostprobe tests."""

import threading
import time
from collections.abc import Callable, Iterable

import pytest

from hostprobe.models import CpuTimes, InterfaceByteCounters, ProbeResult, ProcessorTopology
from hostprobe.probe import MEM_AVAILABLE, MEM_TOTAL, HostProbe


class FakeProbe(HostProbe):
    """
    In-memory probe.

    ``counters`` is a list of InterfaceByteCounters (or exceptions to raise)
    handed out one per read; the last entry repeats once the list runs out.
    CPU times advance by ``cpu_busy_step`` user and ``cpu_idle_step`` idle
    jiffies on every read.
    """

    name = "fake"

    def __init__(
        self,
        counters: Iterable[InterfaceByteCounters | Exception] = (),
        topology: ProbeResult[ProcessorTopology] | None = None,
        memory: dict[str, ProbeResult[float]] | None = None,
        kernel: ProbeResult[str | None] | None = None,
        cpu_busy_step: int = 50,
        cpu_idle_step: int = 50,
    ) -> None:
        self._counters = list(counters) or [InterfaceByteCounters(0, 0)]
        self._lock = threading.Lock()
        self.reads: list[tuple[str, ...]] = []
        self._topology = topology or ProbeResult(ProcessorTopology(4, 8))
        self._memory = memory or {
            MEM_TOTAL: ProbeResult(16.0),
            MEM_AVAILABLE: ProbeResult(8.0),
        }
        self._kernel = kernel or ProbeResult("6.1.0-test")
        self._cpu_busy_step = cpu_busy_step
        self._cpu_idle_step = cpu_idle_step
        self.cpu_reads = 0

    def read_counters(self, exclude_prefixes=()) -> InterfaceByteCounters:
        with self._lock:
            self.reads.append(tuple(exclude_prefixes))
            item = self._counters.pop(0) if len(self._counters) > 1 else self._counters[0]
        if isinstance(item, Exception):
            raise item
        return item

    def count_cores(self) -> ProbeResult[ProcessorTopology]:
        return self._topology

    def read_mem_info(self, metric: str) -> ProbeResult[float]:
        return self._memory.get(metric, ProbeResult.failed(0.0, "unknown"))

    def read_kernel_version(self) -> ProbeResult[str | None]:
        return self._kernel

    def read_cpu_times(self) -> ProbeResult[CpuTimes | None]:
        with self._lock:
            self.cpu_reads += 1
            n = self.cpu_reads
        return ProbeResult(
            CpuTimes(n * self._cpu_busy_step, 0, 0, n * self._cpu_idle_step, 0, 0, 0, 0, 0, 0)
        )


class RampProbe(FakeProbe):
    """Counters that grow by a fixed amount on every read."""

    def __init__(self, sent_step: int = 1024, received_step: int = 2048) -> None:
        super().__init__()
        self._sent_step = sent_step
        self._received_step = received_step
        self._reads = 0

    def read_counters(self, exclude_prefixes=()) -> InterfaceByteCounters:
        with self._lock:
            self.reads.append(tuple(exclude_prefixes))
            self._reads += 1
            n = self._reads
        return InterfaceByteCounters(n * self._sent_step, n * self._received_step)


class BrokenProbe(HostProbe):
    """Probe whose every method raises."""

    name = "broken"

    def read_counters(self, exclude_prefixes=()):
        raise OSError("counter source unavailable")

    def count_cores(self):
        raise RuntimeError("boom")

    def read_mem_info(self, metric):
        raise RuntimeError("boom")

    def read_kernel_version(self):
        raise RuntimeError("boom")

    def read_cpu_times(self):
        raise RuntimeError("boom")


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def ramp_probe() -> RampProbe:
    return RampProbe()


@pytest.fixture
def proc_root(tmp_path):
    """Fake procfs tree with realistic contents."""
    (tmp_path / "net").mkdir()
    (tmp_path / "net" / "dev").write_text(NET_DEV)
    (tmp_path / "cpuinfo").write_text(CPUINFO)
    (tmp_path / "meminfo").write_text(MEMINFO)
    (tmp_path / "version").write_text(VERSION)
    (tmp_path / "stat").write_text(STAT)
    return tmp_path


NET_DEV = """\
Inter-|   Receive                                                |  Transmit
 face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed
    lo:    5000      50    0    0    0     0          0         0     5000      50    0    0    0     0       0          0
  eth0:  100000     800    0    0    0     0          0         0   200000     900    0    0    0     0       0          0
docker0:    3000      30    0    0    0     0          0         0     4000      40    0    0    0     0       0          0
 wlan0:   10000      80    0    0    0     0          0         0    20000      90    0    0    0     0       0          0
"""

CPUINFO = """\
processor\t: 0
physical id\t: 0
core id\t\t: 0
cpu cores\t: 4

processor\t: 1
physical id\t: 0
core id\t\t: 1
cpu cores\t: 4

processor\t: 2
physical id\t: 1
core id\t\t: 0
cpu cores\t: 4

processor\t: 3
physical id\t: 1
core id\t\t: 1
cpu cores\t: 4
"""

MEMINFO = """\
MemTotal:       16777216 kB
MemFree:         1048576 kB
MemAvailable:    8388608 kB
Buffers:          524288 kB
"""

VERSION = (
    "Linux version 6.5.0-14-generic (buildd@lcy02-amd64-031) "
    "(x86_64-linux-gnu-gcc-12 (Ubuntu 12.3.0-1ubuntu1~23.04) 12.3.0) #14-Ubuntu SMP\n"
)

STAT = """\
cpu  10132153 290696 3084719 46828483 16683 0 25195 0 175628 0
cpu0 1393280 32966 572056 13343292 6130 0 17875 0 23933 0
intr 199292 0 0
"""
