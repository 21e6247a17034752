"""Windows host probe backed by IP Helper and kernel32 queries.

The native calls only run on Windows. Their raw buffers are handed to the
pure decoders below, which work on plain ``bytes`` on any platform.
"""

import ctypes
import logging
import platform
import struct
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

import psutil

from hostprobe.logger import get_logger
from hostprobe.models import CpuTimes, InterfaceByteCounters, ProbeResult, ProcessorTopology
from hostprobe.probe import MEM_AVAILABLE, MEM_TOTAL, HostProbe, is_excluded

BYTES_IN_GIGABYTE = float(1 << 30)
# psutil reports CPU times in seconds; keep them as integer hundredths
CPU_TICKS_PER_SECOND = 100

NO_ERROR = 0
ERROR_INSUFFICIENT_BUFFER = 122

# ifType values from ipifcons.h
IF_TYPE_ETHERNET_CSMACD = 6
IF_TYPE_PPP = 23
IF_TYPE_SOFTWARE_LOOPBACK = 24
IF_TYPE_IEEE80211 = 71

_INTERFACE_PREFIXES = {
    IF_TYPE_ETHERNET_CSMACD: "en",
    IF_TYPE_PPP: "ppp",
    IF_TYPE_SOFTWARE_LOOPBACK: "lo",
    IF_TYPE_IEEE80211: "wl",
}
UNKNOWN_INTERFACE_PREFIX = "unk"

# MIB_IFTABLE: DWORD dwNumEntries, then MIB_IFROW table[dwNumEntries]
_IF_TABLE_HEADER = struct.Struct("<I")
# MIB_IFROW: wszName, dwIndex..dwPhysAddrLen, bPhysAddr, dwAdminStatus..dwLastChange,
# six inbound DWORDs, six outbound DWORDs, dwDescrLen, bDescr
_IF_ROW = struct.Struct("<512s5I8s3I6I6II256s")
_IF_ROW_TYPE = 2
_IF_ROW_IN_OCTETS = 10
_IF_ROW_OUT_OCTETS = 16

# LOGICAL_PROCESSOR_RELATIONSHIP
RELATION_PROCESSOR_CORE = 0
RELATION_PROCESSOR_PACKAGE = 3
RELATION_ALL = 0xFFFF

# SYSTEM_LOGICAL_PROCESSOR_INFORMATION_EX: DWORD Relationship, DWORD Size, union
_RECORD_HEADER = struct.Struct("<II")
# PROCESSOR_RELATIONSHIP: BYTE Flags, BYTE EfficiencyClass, BYTE Reserved[20],
# WORD GroupCount, then 8-byte aligned GROUP_AFFINITY GroupMask[GroupCount]
_GROUP_COUNT = struct.Struct("<H")
_GROUP_COUNT_OFFSET = 30
# GROUP_AFFINITY: KAFFINITY Mask, WORD Group, WORD Reserved[3]
_GROUP_AFFINITY = struct.Struct("<QH6x")
_GROUP_MASK_OFFSET = 32


@dataclass(slots=True, frozen=True)
class InterfaceRow:
    """The parts of a MIB_IFROW the bandwidth monitor needs."""

    name: str
    if_type: int
    in_octets: int
    out_octets: int


@dataclass(slots=True, frozen=True)
class ProcessorRecord:
    """One SYSTEM_LOGICAL_PROCESSOR_INFORMATION_EX record."""

    relationship: int
    size: int
    group_masks: tuple[int, ...] = ()


def interface_prefix(if_type: int) -> str:
    """Symbolic name used for prefix filtering of a Windows interface type."""
    return _INTERFACE_PREFIXES.get(if_type, UNKNOWN_INTERFACE_PREFIX)


def decode_if_table(buffer: bytes) -> list[InterfaceRow]:
    """
    Decode a MIB_IFTABLE buffer.

    Raises:
        ValueError: The buffer is shorter than its declared entry count.
    """
    if len(buffer) < _IF_TABLE_HEADER.size:
        raise ValueError(f"MIB_IFTABLE buffer too short: {len(buffer)} bytes")

    (count,) = _IF_TABLE_HEADER.unpack_from(buffer, 0)
    needed = _IF_TABLE_HEADER.size + count * _IF_ROW.size
    if needed > len(buffer):
        raise ValueError(f"MIB_IFTABLE declares {count} rows but buffer holds {len(buffer)} bytes")

    rows = []
    for i in range(count):
        fields = _IF_ROW.unpack_from(buffer, _IF_TABLE_HEADER.size + i * _IF_ROW.size)
        name = fields[0].decode("utf-16-le", errors="replace").split("\x00", 1)[0]
        rows.append(
            InterfaceRow(
                name=name,
                if_type=fields[_IF_ROW_TYPE],
                in_octets=fields[_IF_ROW_IN_OCTETS],
                out_octets=fields[_IF_ROW_OUT_OCTETS],
            )
        )
    return rows


def sum_interface_rows(
    rows: Iterable[InterfaceRow], exclude_prefixes: Iterable[str] = ()
) -> InterfaceByteCounters:
    """Sum octet counters of rows whose symbolic type prefix is not excluded."""
    prefixes = tuple(exclude_prefixes)
    bytes_sent = 0
    bytes_received = 0
    for row in rows:
        if is_excluded(interface_prefix(row.if_type), prefixes):
            continue
        bytes_sent += row.out_octets
        bytes_received += row.in_octets
    return InterfaceByteCounters(bytes_sent=bytes_sent, bytes_received=bytes_received)


def decode_processor_records(buffer: bytes) -> Iterator[ProcessorRecord]:
    """
    Walk a buffer of variable-length processor information records.

    The cursor advances by each record's own ``Size`` field. Group masks
    are decoded for core and package records.

    Raises:
        ValueError: A record header is truncated, declares a size smaller
            than its header, or runs past the end of the buffer.
    """
    offset = 0
    end = len(buffer)
    while offset < end:
        if offset + _RECORD_HEADER.size > end:
            raise ValueError(f"truncated record header at offset {offset}")

        relationship, size = _RECORD_HEADER.unpack_from(buffer, offset)
        if size < _RECORD_HEADER.size:
            raise ValueError(f"invalid record size {size} at offset {offset}")
        if offset + size > end:
            raise ValueError(f"record at offset {offset} overruns buffer ({size} > {end - offset})")

        masks: tuple[int, ...] = ()
        if relationship in (RELATION_PROCESSOR_CORE, RELATION_PROCESSOR_PACKAGE):
            if size < _GROUP_COUNT_OFFSET + _GROUP_COUNT.size:
                raise ValueError(f"processor record at offset {offset} too short: {size}")
            (group_count,) = _GROUP_COUNT.unpack_from(buffer, offset + _GROUP_COUNT_OFFSET)
            if _GROUP_MASK_OFFSET + group_count * _GROUP_AFFINITY.size > size:
                raise ValueError(
                    f"processor record at offset {offset} declares {group_count} groups "
                    f"but is only {size} bytes"
                )
            masks = tuple(
                _GROUP_AFFINITY.unpack_from(
                    buffer, offset + _GROUP_MASK_OFFSET + i * _GROUP_AFFINITY.size
                )[0]
                for i in range(group_count)
            )

        yield ProcessorRecord(relationship=relationship, size=size, group_masks=masks)
        offset += size


def count_cores_from_buffer(buffer: bytes) -> ProcessorTopology:
    """
    Count cores from a RelationAll processor information buffer.

    Every core record adds one physical core and the set bits of its
    group masks. The logical figure is physical cores times total set
    bits, which is the value existing consumers of this metric expect.
    """
    physical = 0
    bits = 0
    for record in decode_processor_records(buffer):
        if record.relationship != RELATION_PROCESSOR_CORE:
            continue
        physical += 1
        bits += sum(mask.bit_count() for mask in record.group_masks)
    return ProcessorTopology(physical_cores=physical, logical_cores=physical * bits)


def _query_if_table() -> bytes:
    """Call GetIfTable twice: once for the size, once to fill the buffer."""
    iphlpapi = ctypes.WinDLL("iphlpapi")
    size = ctypes.c_ulong(0)

    rc = iphlpapi.GetIfTable(None, ctypes.byref(size), False)
    if rc not in (NO_ERROR, ERROR_INSUFFICIENT_BUFFER):
        raise ctypes.WinError(rc)

    buffer = ctypes.create_string_buffer(size.value)
    rc = iphlpapi.GetIfTable(buffer, ctypes.byref(size), False)
    if rc != NO_ERROR:
        raise ctypes.WinError(rc)
    return buffer.raw[: size.value]


def _query_processor_information() -> bytes:
    """Call GetLogicalProcessorInformationEx(RelationAll) with a sized buffer."""
    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    length = ctypes.c_ulong(0)

    kernel32.GetLogicalProcessorInformationEx(RELATION_ALL, None, ctypes.byref(length))
    error = ctypes.get_last_error()
    if error != ERROR_INSUFFICIENT_BUFFER:
        raise ctypes.WinError(error)

    buffer = ctypes.create_string_buffer(length.value)
    if not kernel32.GetLogicalProcessorInformationEx(RELATION_ALL, buffer, ctypes.byref(length)):
        raise ctypes.WinError(ctypes.get_last_error())
    return buffer.raw[: length.value]


class WindowsProbe(HostProbe):
    """Reads host metrics from native Windows queries."""

    name = "windows"

    def __init__(
        self,
        logger: logging.Logger | None = None,
        if_table_reader: Callable[[], bytes] = _query_if_table,
        processor_info_reader: Callable[[], bytes] = _query_processor_information,
    ) -> None:
        self._logger = logger if logger is not None else get_logger(__name__)
        self._read_if_table = if_table_reader
        self._read_processor_info = processor_info_reader

    def read_counters(self, exclude_prefixes: Iterable[str] = ()) -> InterfaceByteCounters:
        try:
            rows = decode_if_table(self._read_if_table())
        except (OSError, ValueError) as e:
            self._logger.error(
                "Exception happened in getting bytes transferred from Win32 API. Exception : %s", e
            )
            raise
        return sum_interface_rows(rows, exclude_prefixes)

    def count_cores(self) -> ProbeResult[ProcessorTopology]:
        try:
            return ProbeResult(count_cores_from_buffer(self._read_processor_info()))
        except (OSError, ValueError) as e:
            self._logger.error("Error calling GetLogicalProcessorInformationEx: %s", e)
            return ProbeResult.failed(ProcessorTopology(0, 0), str(e))

    def read_mem_info(self, metric: str) -> ProbeResult[float]:
        try:
            memory = psutil.virtual_memory()
        except Exception as e:
            self._logger.error("Error querying memory status: %s", e)
            return ProbeResult.failed(0.0, str(e))

        if metric == MEM_TOTAL:
            return ProbeResult(memory.total / BYTES_IN_GIGABYTE)
        if metric == MEM_AVAILABLE:
            return ProbeResult(memory.available / BYTES_IN_GIGABYTE)
        return ProbeResult.failed(0.0, f"unknown memory metric {metric!r}")

    def read_kernel_version(self) -> ProbeResult[str | None]:
        """Windows version string as reported by the platform module."""
        version = platform.version()
        if not version:
            self._logger.error("Unable to determine Windows version")
            return ProbeResult.failed(None, "platform.version() returned nothing")
        return ProbeResult(version)

    def read_cpu_times(self) -> ProbeResult[CpuTimes | None]:
        """
        Aggregate CPU times from GetSystemTimes, via psutil.

        Interrupt and DPC time are already part of system time on Windows,
        so only user, system and idle are filled in.
        """
        try:
            times = psutil.cpu_times()
        except Exception as e:
            self._logger.error("Error querying system times: %s", e)
            return ProbeResult.failed(None, str(e))

        def ticks(seconds: float) -> int:
            return int(seconds * CPU_TICKS_PER_SECOND)

        return ProbeResult(
            CpuTimes(
                user=ticks(times.user),
                nice=0,
                system=ticks(times.system),
                idle=ticks(times.idle),
                iowait=0,
                irq=0,
                softirq=0,
                steal=0,
                guest=0,
                guest_nice=0,
            )
        )
