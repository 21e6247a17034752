"""Bandwidth monitor settings.

Resolution order, later wins:
  1. Built-in defaults
  2. YAML file: explicit path, else the HOSTPROBE_CONFIG environment variable
  3. HOSTPROBE_IGNORE_PREFIXES / HOSTPROBE_SAMPLE_PERIOD environment variables

Example file::

    interface_prefixes_to_ignore: "lo,docker,veth,br-"
    sample_period: 10
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from hostprobe.logger import get_logger

logger = get_logger(__name__)

CONFIG_ENV = "HOSTPROBE_CONFIG"
IGNORE_PREFIXES_ENV = "HOSTPROBE_IGNORE_PREFIXES"
SAMPLE_PERIOD_ENV = "HOSTPROBE_SAMPLE_PERIOD"

MIN_SAMPLE_PERIOD = 0.01


@dataclass(slots=True)
class BandwidthMonitorSettings:
    """
    Settings read by the bandwidth monitor at the start of every cycle.

    Fields may be changed while the monitor runs; the next cycle picks
    them up.
    """

    interface_prefixes_to_ignore: str | None = None
    sample_period: float = 1.0

    def __post_init__(self) -> None:
        self.sample_period = max(MIN_SAMPLE_PERIOD, float(self.sample_period))


def parse_prefixes(csv: str | None) -> tuple[str, ...]:
    """
    Split a comma-separated prefix list.

    Tokens are stripped and empty tokens dropped, since an empty prefix
    would match every interface.
    """
    if not csv:
        return ()
    return tuple(token.strip() for token in csv.split(",") if token.strip())


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config must be a YAML mapping, got {type(data).__name__}: {path}")
    return data


def load_settings(path: str | os.PathLike | None = None) -> BandwidthMonitorSettings:
    """
    Build settings from defaults, an optional YAML file and the environment.

    Raises:
        ValueError: The file is not a mapping, has unknown keys, or a value
            cannot be converted.
        OSError: An explicitly given file cannot be read.
    """
    values: dict[str, Any] = {}

    config_path = path or os.environ.get(CONFIG_ENV)
    if config_path:
        data = _load_yaml(Path(config_path))
        known = {f.name for f in fields(BandwidthMonitorSettings)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown settings in {config_path}: {', '.join(unknown)}")
        values.update(data)
        logger.debug("Loaded settings from %s", config_path)

    if IGNORE_PREFIXES_ENV in os.environ:
        values["interface_prefixes_to_ignore"] = os.environ[IGNORE_PREFIXES_ENV]
    if SAMPLE_PERIOD_ENV in os.environ:
        values["sample_period"] = os.environ[SAMPLE_PERIOD_ENV]

    if "sample_period" in values:
        try:
            values["sample_period"] = float(values["sample_period"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid sample_period: {values['sample_period']!r}") from e

    prefixes = values.get("interface_prefixes_to_ignore")
    if prefixes is not None and not isinstance(prefixes, str):
        # YAML lists are accepted as well as CSV strings
        if isinstance(prefixes, (list, tuple)):
            values["interface_prefixes_to_ignore"] = ",".join(str(p) for p in prefixes)
        else:
            raise ValueError(f"Invalid interface_prefixes_to_ignore: {prefixes!r}")

    return BandwidthMonitorSettings(**values)
