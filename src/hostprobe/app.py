"""hostprobe - Textual dashboard and command-line entry point."""

import argparse
import sys
import time

from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import Footer, Static

from hostprobe.logger import get_logger, setup_logger
from hostprobe.models import BandwidthSnapshot
from hostprobe.monitor import BandwidthMonitor
from hostprobe.probe import HostProbe, get_probe
from hostprobe.server_info import CpuUsageMeter, ServerInfo
from hostprobe.settings import BandwidthMonitorSettings, load_settings

logger = get_logger(__name__)

BAR_WIDTH = 20


def format_rate(kbps: float) -> str:
    """Format a KiB/s rate as a human-readable string."""
    size = kbps
    for unit in ["K", "M", "G"]:
        if abs(size) < 1024:
            return f"{size:7.1f}{unit}/s"
        size = size / 1024
    return f"{size:7.1f}T/s"


def _rate_bar(kbps: float, peak: float, color: str) -> str:
    filled = 0 if peak <= 0 else int(min(1.0, max(0.0, kbps / peak)) * BAR_WIDTH)
    return f"[{color}]█[/{color}]" * filled + "[dim]░[/dim]" * (BAR_WIDTH - filled)


class BandwidthPanel(Static):
    """
    Upload and download rates with bars scaled to the peak seen so far.

    On Linux "Up" is field 1 of /proc/net/dev and "Down" is field 9. The
    kernel labels field 1 as receive bytes, so there the two are the
    reverse of the kernel's own naming.
    """

    DEFAULT_CSS = """
    BandwidthPanel {
        width: 1fr;
        height: auto;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._snapshot = BandwidthSnapshot()
        self._peak = 0.0

    @property
    def peak_kbps(self) -> float:
        """Highest rate seen in either direction."""
        return self._peak

    def update_speeds(self, snapshot: BandwidthSnapshot) -> None:
        """Show a new snapshot and raise the peak if needed."""
        self._snapshot = snapshot
        self._peak = max(self._peak, snapshot.upload_kbps, snapshot.download_kbps)
        self.update(self.render_speeds())

    def render_speeds(self) -> str:
        """Render the rate bars as Rich markup."""
        up, down = self._snapshot.as_tuple()
        return (
            f"Up  \\[{_rate_bar(up, self._peak, 'green')}] {format_rate(up)}\n"
            f"Down\\[{_rate_bar(down, self._peak, 'cyan')}] {format_rate(down)}"
        )

    def on_mount(self) -> None:
        """Render the initial state."""
        self.update(self.render_speeds())


class HostInfoPanel(Static):
    """Host description: cores, memory, kernel and current CPU usage."""

    DEFAULT_CSS = """
    HostInfoPanel {
        width: 1fr;
        height: auto;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._info: ServerInfo | None = None
        self._cpu_percent: float | None = None

    def update_info(self, info: ServerInfo) -> None:
        """Show freshly collected host info."""
        self._info = info
        self.update(self.render_info())

    def update_cpu(self, percent: float) -> None:
        """Show the CPU busy percentage from the latest pair of samples."""
        self._cpu_percent = percent
        self.update(self.render_info())

    def render_info(self) -> str:
        """Render the host description as text."""
        info = self._info
        if info is None:
            return "Loading host info..."
        cpu = "--" if self._cpu_percent is None else f"{self._cpu_percent:.1f}%"
        return (
            f"Cores: {info.physical_core_count} physical / {info.logical_core_count} logical\n"
            f"Memory: {info.total_physical_memory_gib:.1f}G\n"
            f"Kernel: {info.kernel_version or 'unknown'}\n"
            f"CPU: {cpu}\n"
            f"hostprobe {info.version or 'dev'}"
        )

    def on_mount(self) -> None:
        """Render the initial state."""
        self.update(self.render_info())


class HostProbeApp(App):
    """Main hostprobe application."""

    TITLE = "hostprobe"
    SUB_TITLE = "Host Resource Probe"

    CSS = """
    Screen {
        layout: vertical;
    }

    Horizontal {
        height: auto;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh_info", "Refresh"),
    ]

    def __init__(
        self,
        probe: HostProbe | None = None,
        settings: BandwidthMonitorSettings | None = None,
    ) -> None:
        super().__init__()
        self._probe = probe if probe is not None else get_probe()
        self._monitor = BandwidthMonitor(self._probe, settings)
        self._cpu_meter = CpuUsageMeter(self._probe)

    @property
    def monitor(self) -> BandwidthMonitor:
        """The bandwidth monitor feeding the dashboard."""
        return self._monitor

    def compose(self) -> ComposeResult:
        """Create child widgets for the app."""
        yield Horizontal(
            BandwidthPanel(id="bandwidth"),
            HostInfoPanel(id="host-info"),
        )
        yield Footer()

    def on_mount(self) -> None:
        """Start the bandwidth monitor and poll its snapshot."""
        self._monitor.start()
        self._cpu_meter.sample()
        self.action_refresh_info()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Refresh the bandwidth and CPU readings."""
        try:
            self.query_one("#bandwidth", BandwidthPanel).update_speeds(self._monitor.snapshot)
            cpu_percent = self._cpu_meter.sample()
            if cpu_percent is not None:
                self.query_one("#host-info", HostInfoPanel).update_cpu(cpu_percent)
        except Exception:
            # Widgets may already be gone during shutdown
            logger.debug("Skipping dashboard refresh", exc_info=True)

    def action_refresh_info(self) -> None:
        """Collect host info again and redraw it."""
        info = ServerInfo.collect(self._probe)
        self.query_one("#host-info", HostInfoPanel).update_info(info)

    def action_quit(self) -> None:
        """Stop the monitor and exit."""
        self._monitor.stop()
        self.exit()


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="hostprobe",
        description="Sample NIC bandwidth and report host CPU/memory/kernel facts.",
    )
    parser.add_argument("--config", metavar="PATH", help="YAML settings file")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    parser.add_argument("--log-file", metavar="PATH", help="Also log to a rotating file")
    parser.add_argument(
        "--ignore",
        metavar="CSV",
        help="Comma-separated interface name prefixes to ignore, e.g. lo,docker,veth,br-",
    )
    parser.add_argument(
        "--sample-period",
        type=float,
        metavar="SECONDS",
        help="Seconds between the two counter reads of a sample",
    )
    parser.add_argument(
        "--once",
        type=float,
        metavar="SECONDS",
        help=(
            "Run headless for SECONDS, print upload/download KiB/s and exit. "
            "On Linux upload is /proc/net/dev field 1, which the kernel labels receive bytes"
        ),
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> BandwidthMonitorSettings:
    """Load settings and apply the command-line overrides."""
    settings = load_settings(args.config)
    if args.ignore is not None:
        settings.interface_prefixes_to_ignore = args.ignore
    if args.sample_period is not None:
        settings.sample_period = max(0.01, args.sample_period)
    return settings


def run_once(seconds: float, probe: HostProbe | None = None, settings=None) -> tuple[float, float]:
    """Run the monitor headless for ``seconds`` and return the last speeds."""
    with BandwidthMonitor(probe, settings) as monitor:
        time.sleep(seconds)
        return monitor.get_network_speeds_kbps()


def main(argv=None) -> int:
    """Entry point for the hostprobe command."""
    args = parse_args(argv)
    setup_logger(args.log_level, args.log_file)

    try:
        settings = build_settings(args)
    except (OSError, ValueError) as e:
        logger.error("Invalid configuration: %s", e)
        print(f"hostprobe: {e}", file=sys.stderr)
        return 2

    if args.once is not None:
        upload, download = run_once(args.once, settings=settings)
        print(f"({upload}, {download})")
        return 0

    HostProbeApp(settings=settings).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
