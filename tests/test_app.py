"""Tests for the hostprobe application."""

import pytest
from conftest import RampProbe

from hostprobe import app as app_module
from hostprobe.app import (
    BandwidthPanel,
    HostInfoPanel,
    HostProbeApp,
    build_settings,
    format_rate,
    main,
    parse_args,
)
from hostprobe.models import BandwidthSnapshot
from hostprobe.server_info import ServerInfo
from hostprobe.settings import CONFIG_ENV, IGNORE_PREFIXES_ENV, SAMPLE_PERIOD_ENV


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (CONFIG_ENV, IGNORE_PREFIXES_ENV, SAMPLE_PERIOD_ENV):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def quiet_logging(monkeypatch):
    monkeypatch.setattr(app_module, "setup_logger", lambda level, log_file=None: None)


def test_format_rate_kilobytes():
    """Test format_rate with KiB/s values."""
    assert "K/s" in format_rate(512.0)


def test_format_rate_megabytes():
    assert "M/s" in format_rate(5 * 1024.0)


def test_format_rate_gigabytes():
    assert "G/s" in format_rate(3 * 1024.0**2)


def test_format_rate_negative():
    assert "-" in format_rate(-2048.0)


class TestArgs:
    def test_defaults(self):
        args = parse_args([])
        assert args.config is None
        assert args.once is None
        assert args.log_level == "WARNING"

    def test_overrides_applied(self):
        args = parse_args(["--ignore", "lo,veth", "--sample-period", "2.5"])
        settings = build_settings(args)
        assert settings.interface_prefixes_to_ignore == "lo,veth"
        assert settings.sample_period == 2.5

    def test_config_file(self, tmp_path):
        path = tmp_path / "hostprobe.yaml"
        path.write_text("sample_period: 7\n")
        assert build_settings(parse_args(["--config", str(path)])).sample_period == 7.0


def test_main_once_prints_speeds(monkeypatch, capsys, quiet_logging):
    calls = []

    def fake_run_once(seconds, probe=None, settings=None):
        calls.append((seconds, settings.interface_prefixes_to_ignore))
        return (1.5, 3.0)

    monkeypatch.setattr(app_module, "run_once", fake_run_once)
    assert main(["--once", "0.1", "--ignore", "lo,docker"]) == 0
    assert calls == [(0.1, "lo,docker")]
    assert capsys.readouterr().out.strip() == "(1.5, 3.0)"


def test_main_bad_config(tmp_path, capsys, quiet_logging):
    path = tmp_path / "bad.yaml"
    path.write_text("unknown: 1\n")
    assert main(["--config", str(path)]) == 2
    assert "Unknown settings" in capsys.readouterr().err


def test_once_help_notes_linux_direction(monkeypatch, capsys):
    monkeypatch.setenv("COLUMNS", "400")
    with pytest.raises(SystemExit):
        parse_args(["--help"])
    assert "field 1, which the kernel labels receive bytes" in capsys.readouterr().out


def test_run_once_with_fake_probe():
    speeds = app_module.run_once(0.0, RampProbe())
    assert len(speeds) == 2


@pytest.mark.asyncio
async def test_app_creation():
    """Test HostProbeApp can be instantiated."""
    app = HostProbeApp(probe=RampProbe())
    assert app.title == "hostprobe"
    assert app.sub_title == "Host Resource Probe"
    assert app.monitor is not None
    assert not app.monitor.is_running


@pytest.mark.asyncio
async def test_app_compose():
    """Test HostProbeApp composes correctly and starts the monitor."""
    app = HostProbeApp(probe=RampProbe())
    async with app.run_test() as pilot:
        assert pilot.app.query_one("#bandwidth") is not None
        assert pilot.app.query_one("#host-info") is not None
        assert app.monitor.is_running
    app.monitor.stop()


@pytest.mark.asyncio
async def test_app_quit_binding():
    """Test that 'q' binding stops the monitor and quits."""
    app = HostProbeApp(probe=RampProbe())
    async with app.run_test() as pilot:
        await pilot.press("q")
        assert not app.monitor.is_running
        assert app.return_code == 0


@pytest.mark.asyncio
async def test_host_info_panel_shows_probe_data():
    app = HostProbeApp(probe=RampProbe())
    async with app.run_test() as pilot:
        panel = pilot.app.query_one(HostInfoPanel)
        text = panel.render_info()
        assert "4 physical" in text
        assert "6.1.0-test" in text
        await pilot.press("r")
        assert "16.0G" in panel.render_info()
    app.monitor.stop()


@pytest.mark.asyncio
async def test_bandwidth_panel_tracks_peak():
    app = HostProbeApp(probe=RampProbe())
    async with app.run_test() as pilot:
        panel = pilot.app.query_one(BandwidthPanel)
        panel.update_speeds(BandwidthSnapshot(100.0, 300.0))
        panel.update_speeds(BandwidthSnapshot(10.0, 20.0))
        assert panel.peak_kbps == 300.0
        assert "Up" in panel.render_speeds()
        assert "Down" in panel.render_speeds()
    app.monitor.stop()


@pytest.mark.asyncio
async def test_host_info_panel_shows_cpu_usage():
    probe = RampProbe()
    app = HostProbeApp(probe=probe)
    async with app.run_test() as pilot:
        panel = pilot.app.query_one(HostInfoPanel)
        await pilot.pause(1.2)
        assert probe.cpu_reads >= 2
        assert "CPU: 50.0%" in panel.render_info()
    app.monitor.stop()


@pytest.mark.asyncio
async def test_refresh_survives_missing_widgets():
    app = HostProbeApp(probe=RampProbe())
    async with app.run_test() as pilot:
        await pilot.app.query_one(BandwidthPanel).remove()
        await pilot.app.query_one(HostInfoPanel).remove()
        app._check_for_updates()
        await pilot.pause(0.6)
        assert app.is_running
    app.monitor.stop()


def test_host_info_without_cpu_sample():
    panel = HostInfoPanel()
    panel._info = ServerInfo(None, 8, 4, 16.0, "6.1.0-test")
    assert "CPU: --" in panel.render_info()
