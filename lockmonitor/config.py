"""File and environment configuration for lock monitors.

Monitor options can be kept in a YAML file, either at the top level or under
a ``lockmonitor:`` mapping::

    lockmonitor:
      object_name: Chain
      level: debug
      logger_options:
        depth: 3
        show_loc: false

The file path comes from the caller or ``LOCKMONITOR_CONFIG``;
``LOCKMONITOR_LEVEL`` overrides the level.  The result is a plain option
mapping for :meth:`lockmonitor.options.MonitorOptions.from_options`, which
does the validation.
"""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from lockmonitor.options import ConfigurationError


logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LOCKMONITOR_CONFIG"
LEVEL_ENV_VAR = "LOCKMONITOR_LEVEL"

_DEFAULT_MONITOR_CONFIG: Dict[str, Any] = {
    "object_name": "",
    "property_name": "?prop?",
    "level": "spam",
    "logger_options": {
        "from": 0,
        "show_loc": True,
        "depth": 2,
        "join_str": " called by ",
    },
}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        logger.warning(
            "Lock monitor config file not found; using default values.",
            extra={
                "category": "config",
                "config_path": str(path),
                "error_type": "FileNotFoundError",
            },
        )
        return {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Failed to parse lock monitor config {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        logger.warning(
            "Lock monitor config file did not contain a mapping; using defaults.",
            extra={
                "category": "config",
                "config_path": str(path),
                "error_type": "InvalidMapping",
            },
        )
        return {}

    section = loaded.get("lockmonitor", loaded)
    if not isinstance(section, dict):
        raise ConfigurationError(f"'lockmonitor' section of {path} must be a mapping.")
    return section


def load_monitor_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Return monitor options merged from defaults, a YAML file and the environment."""

    merged = deepcopy(_DEFAULT_MONITOR_CONFIG)

    candidate = path or os.getenv(CONFIG_ENV_VAR)
    if candidate:
        merged = _deep_merge(merged, _read_config_file(Path(candidate)))

    level = os.getenv(LEVEL_ENV_VAR)
    if level:
        merged["level"] = level

    return merged


__all__ = ["CONFIG_ENV_VAR", "LEVEL_ENV_VAR", "load_monitor_config"]
