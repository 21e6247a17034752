"""Linux host probe backed by the /proc virtual filesystem."""

import logging
import re
from collections.abc import Iterable
from pathlib import Path

import psutil

from hostprobe.logger import get_logger
from hostprobe.models import (
    CpuTimes,
    InterfaceByteCounters,
    ProbeResult,
    ProcessorTopology,
)
from hostprobe.probe import HostProbe, is_excluded

logger = get_logger(__name__)

KILOBYTES_IN_GIGABYTE = 1048576.0

# /proc/net/dev layout: two header lines, then "name: field1 field2 ..."
NET_DEV_HEADER_LINES = 2
NET_DEV_MIN_FIELDS = 10
SENT_FIELD = 1
RECEIVED_FIELD = 9

_FIELD_SEPARATORS = re.compile(r"[\s,]+")


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def parse_net_dev(text: str, exclude_prefixes: Iterable[str] = ()) -> InterfaceByteCounters:
    """
    Sum the byte counters of /proc/net/dev across non-excluded interfaces.

    Lines with fewer than ten fields or no interface name are skipped, and
    a field that is not an integer counts as zero.
    """
    prefixes = tuple(exclude_prefixes)
    bytes_sent = 0
    bytes_received = 0

    for line in text.splitlines()[NET_DEV_HEADER_LINES:]:
        name, sep, rest = line.partition(":")
        name = name.strip()
        if not sep or not name:
            continue

        fields = [name, *(f for f in _FIELD_SEPARATORS.split(rest.strip()) if f)]
        if len(fields) < NET_DEV_MIN_FIELDS:
            continue
        if is_excluded(name, prefixes):
            continue

        bytes_sent += _to_int(fields[SENT_FIELD])
        bytes_received += _to_int(fields[RECEIVED_FIELD])

    return InterfaceByteCounters(bytes_sent=bytes_sent, bytes_received=bytes_received)


def count_cores_from_cpuinfo(text: str, log: logging.Logger | None = None) -> ProbeResult[int]:
    """
    Physical core total from /proc/cpuinfo: distinct sockets times cores per socket.

    The first ``cpu cores`` line gives the cores per socket; every distinct
    ``physical id`` line counts as one socket.
    """
    log = log or logger
    lines = text.splitlines()

    cores_line = next((line for line in lines if line.startswith("cpu cores")), None)
    if cores_line is None:
        log.error("Unable to find cpu cores line(s) in /proc/cpuinfo")
        return ProbeResult.failed(0, "missing 'cpu cores' line")

    parts = [part.strip() for part in cores_line.split(":")]
    if len(parts) != 2:
        log.error("Unable to parse 'cpu cores' line: %s", cores_line)
        return ProbeResult.failed(0, f"malformed 'cpu cores' line: {cores_line!r}")

    try:
        cores_per_socket = int(parts[1])
    except ValueError:
        log.error("Unable to parse 'cpu cores' value: %s", parts[1])
        return ProbeResult.failed(0, f"malformed 'cpu cores' value: {parts[1]!r}")

    sockets = {line for line in lines if line.startswith("physical id")}
    return ProbeResult(len(sockets) * cores_per_socket)


def parse_meminfo(text: str, metric: str) -> ProbeResult[float]:
    """Value of the first /proc/meminfo line starting with ``metric``, in GiB."""
    line = next((line for line in text.splitlines() if line.startswith(metric)), None)
    if line is None:
        return ProbeResult.failed(0.0, f"no {metric} line in /proc/meminfo")

    digits = "".join(ch for ch in line if ch.isdigit())
    if not digits:
        return ProbeResult.failed(0.0, f"no numeric value in {line!r}")
    return ProbeResult(int(digits) / KILOBYTES_IN_GIGABYTE)


def parse_kernel_version(text: str) -> ProbeResult[str | None]:
    """Third space-separated token of /proc/version."""
    tokens = text.split(" ")
    if len(tokens) < 3 or not tokens[2].strip():
        return ProbeResult.failed(None, f"unexpected /proc/version contents: {text!r}")
    return ProbeResult(tokens[2].strip())


class LinuxProbe(HostProbe):
    """Reads host metrics from procfs text tables."""

    name = "linux"

    def __init__(self, root: str | Path = "/proc", logger: logging.Logger | None = None) -> None:
        """
        Args:
            root: Mount point of procfs. Tests point this at a fake tree.
            logger: Logger for failures; defaults to the module logger.
        """
        self._root = Path(root)
        self._logger = logger if logger is not None else get_logger(__name__)

    def _read(self, relative: str) -> str:
        return (self._root / relative).read_text(encoding="utf-8", errors="replace")

    def read_counters(self, exclude_prefixes: Iterable[str] = ()) -> InterfaceByteCounters:
        try:
            text = self._read("net/dev")
        except OSError as e:
            self._logger.error(
                "Exception happened in getting bytes transferred from %s. Exception : %s",
                self._root / "net/dev",
                e,
            )
            raise
        return parse_net_dev(text, exclude_prefixes)

    def count_cores(self) -> ProbeResult[ProcessorTopology]:
        try:
            text = self._read("cpuinfo")
        except OSError as e:
            self._logger.error("Unable to read %s: %s", self._root / "cpuinfo", e)
            return ProbeResult.failed(ProcessorTopology(0, 0), str(e))

        physical = count_cores_from_cpuinfo(text, self._logger)
        logical = psutil.cpu_count(logical=True) or 0
        topology = ProcessorTopology(physical_cores=physical.value, logical_cores=logical)
        if not physical.ok:
            return ProbeResult.failed(topology, physical.error or "")
        return ProbeResult(topology)

    def read_mem_info(self, metric: str) -> ProbeResult[float]:
        try:
            text = self._read("meminfo")
        except OSError as e:
            self._logger.error("Unable to read %s: %s", self._root / "meminfo", e)
            return ProbeResult.failed(0.0, str(e))

        result = parse_meminfo(text, metric)
        if not result.ok:
            self._logger.warning("Unable to read %s: %s", metric, result.error)
        return result

    def read_kernel_version(self) -> ProbeResult[str | None]:
        try:
            text = self._read("version")
        except OSError as e:
            self._logger.error("Unable to read %s: %s", self._root / "version", e)
            return ProbeResult.failed(None, str(e))

        result = parse_kernel_version(text)
        if not result.ok:
            self._logger.error("Unable to parse kernel version: %s", result.error)
        return result

    def read_cpu_times(self) -> ProbeResult[CpuTimes | None]:
        """Aggregate CPU jiffies from the first line of /proc/stat."""
        try:
            line = next(
                (line for line in self._read("stat").splitlines() if line.startswith("cpu ")),
                None,
            )
            if line is None:
                raise ValueError("no aggregate cpu line in /proc/stat")
            return ProbeResult(CpuTimes.from_line(line))
        except (OSError, ValueError) as e:
            self._logger.error("Unable to read cpu times: %s", e)
            return ProbeResult.failed(None, str(e))
