"""Network bandwidth monitoring engine for hostprobe."""

import logging
import threading
import time
from collections.abc import Callable, Iterable

from hostprobe.logger import get_logger
from hostprobe.models import BandwidthSnapshot, InterfaceByteCounters, SampleWindow
from hostprobe.probe import HostProbe, get_probe
from hostprobe.settings import BandwidthMonitorSettings, parse_prefixes

DEFAULT_CADENCE = 1.0


def sample_network_speeds(
    read_counters: Callable[[Iterable[str]], InterfaceByteCounters],
    exclude_prefixes: Iterable[str],
    interval: float,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> BandwidthSnapshot:
    """
    Measure upload/download rates in KiB/s over one sampling window.

    Reads the counters, sleeps for ``interval`` seconds, reads them again and
    divides the deltas by the elapsed time measured on ``clock``, not by the
    nominal interval.

    Args:
        read_counters: Counter reader, usually ``HostProbe.read_counters``.
        exclude_prefixes: Interface name prefixes to leave out of the totals.
        interval: Seconds to sleep between the two reads.
        sleep: Blocking sleep function.
        clock: Monotonic clock in seconds.

    Raises:
        Whatever ``read_counters`` raises; nothing is published in that case.
    """
    prefixes = tuple(exclude_prefixes)

    start = clock()
    before = read_counters(prefixes)
    sleep(interval)
    after = read_counters(prefixes)
    elapsed = clock() - start

    return SampleWindow(before=before, after=after, elapsed_seconds=elapsed).to_snapshot()


class SnapshotPublisher:
    """
    Holds the latest bandwidth snapshot for concurrent readers.

    The snapshot is immutable and swapped as a single reference, so a reader
    always gets both rates from the same cycle. Writers are serialized by a
    lock; readers never take it.
    """

    def __init__(self, initial: BandwidthSnapshot | None = None) -> None:
        self._snapshot = initial if initial is not None else BandwidthSnapshot()
        self._write_lock = threading.Lock()
        self._publish_count = 0

    def publish(self, snapshot: BandwidthSnapshot) -> None:
        """Replace the current snapshot."""
        with self._write_lock:
            self._snapshot = snapshot
            self._publish_count += 1

    def publish_unless(self, stop_event: threading.Event, snapshot: BandwidthSnapshot) -> bool:
        """
        Replace the current snapshot unless ``stop_event`` is set.

        The check and the swap happen under the write lock, so together with
        ``halt()`` no snapshot is published once the event has been set.

        Returns:
            True if the snapshot was published.
        """
        with self._write_lock:
            if stop_event.is_set():
                return False
            self._snapshot = snapshot
            self._publish_count += 1
            return True

    def halt(self, stop_event: threading.Event) -> None:
        """Set ``stop_event`` under the write lock, after any in-progress publish."""
        with self._write_lock:
            stop_event.set()

    def read(self) -> BandwidthSnapshot:
        """Latest snapshot, without locking."""
        return self._snapshot

    @property
    def publish_count(self) -> int:
        """Number of snapshots published so far."""
        return self._publish_count


class BandwidthMonitor:
    """
    Periodically samples NIC bandwidth on a background thread.

    One cycle starts every ``cadence`` seconds and runs the sampler to
    completion, which includes sleeping for the configured sample period.
    Cycles never overlap: ticks missed while a cycle overran are skipped.
    A failed cycle is logged and leaves the previous snapshot in place.

    ``stop()`` detaches by default. It does not wait for or interrupt an
    in-flight cycle, and a cycle that finishes after ``stop()`` discards
    its result.
    """

    def __init__(
        self,
        probe: HostProbe | None = None,
        settings: BandwidthMonitorSettings | None = None,
        logger: logging.Logger | None = None,
        cadence: float = DEFAULT_CADENCE,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the BandwidthMonitor.

        Args:
            probe: Counter source. Defaults to the probe for this platform.
            settings: Ignore-prefix and sample-period settings, read every cycle.
            logger: Logger for cycle failures. Defaults to the module logger.
            cadence: Seconds between cycle starts. Default 1.0s.
            sleep: Sleep used by the sampler between the two counter reads.
            clock: Monotonic clock used for elapsed time and scheduling.
        """
        self._probe = probe if probe is not None else get_probe()
        self._settings = settings if settings is not None else BandwidthMonitorSettings()
        self._logger = logger if logger is not None else get_logger(__name__)
        self._cadence = max(0.01, cadence)
        self._sleep = sleep
        self._clock = clock
        self._publisher = SnapshotPublisher()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._skipped_ticks = 0

    @property
    def cadence(self) -> float:
        """Seconds between cycle starts."""
        return self._cadence

    @property
    def settings(self) -> BandwidthMonitorSettings:
        """Settings read at the start of every cycle."""
        return self._settings

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return (
            self._thread is not None
            and self._thread.is_alive()
            and not self._stop_event.is_set()
        )

    @property
    def snapshot(self) -> BandwidthSnapshot:
        """Latest published snapshot."""
        return self._publisher.read()

    @property
    def cycles_published(self) -> int:
        """Number of cycles whose result was published."""
        return self._publisher.publish_count

    @property
    def skipped_ticks(self) -> int:
        """Ticks dropped because the previous cycle was still running."""
        return self._skipped_ticks

    def get_network_speeds_kbps(self) -> tuple[float, float]:
        """Latest (upload, download) speeds in KiB/s."""
        return self._publisher.read().as_tuple()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._stop_event,),
            daemon=True,
            name="BandwidthMonitor",
        )
        self._thread.start()

    def stop(self, wait: bool = False, timeout: float | None = 5.0) -> None:
        """
        Stop scheduling cycles.

        Args:
            wait: Join the thread instead of detaching from it.
            timeout: How long to wait when ``wait`` is True (seconds).
        """
        self._publisher.halt(self._stop_event)
        if self._thread is not None and wait:
            self._thread.join(timeout=timeout)
        self._thread = None

    def dispose(self) -> None:
        """Stop the monitor without waiting for it."""
        self.stop()

    def __enter__(self) -> "BandwidthMonitor":
        """Start the monitor."""
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        """Stop the monitor."""
        self.stop()

    def run_cycle(self) -> BandwidthSnapshot:
        """
        Run one sampling cycle synchronously and return its snapshot.

        Settings are read fresh so changes apply from the next cycle.
        """
        prefixes = parse_prefixes(self._settings.interface_prefixes_to_ignore)
        return sample_network_speeds(
            self._probe.read_counters,
            prefixes,
            self._settings.sample_period,
            sleep=self._sleep,
            clock=self._clock,
        )

    def _run(self, stop_event: threading.Event) -> None:
        """Main scheduling loop running in the background thread."""
        next_tick = self._clock()
        while not stop_event.is_set():
            try:
                snapshot = self.run_cycle()
            except Exception:
                self._logger.exception("Bandwidth sampling cycle failed; keeping last snapshot")
            else:
                if not self._publisher.publish_unless(stop_event, snapshot):
                    self._logger.debug("Monitor stopped during cycle; discarding result")
                    break

            next_tick += self._cadence
            now = self._clock()
            if next_tick < now:
                missed = int((now - next_tick) // self._cadence) + 1
                self._skipped_ticks += missed
                next_tick += missed * self._cadence
                self._logger.debug("Sampling cycle overran cadence; skipped %d tick(s)", missed)

            stop_event.wait(timeout=max(0.0, next_tick - now))
