"""Validated configuration for lock monitors."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
import os
from pathlib import PurePath
from typing import Any, Mapping, Optional

from lockmonitor.utils.common import LockMonitorError
from lockmonitor.utils.logging_helpers import LEVELS, LoggerLike


DEFAULT_LOGGER_NAME = "lockmonitor"


class ConfigurationError(LockMonitorError):
    """Raised when monitor options have the wrong type or an invalid value."""


@dataclass(frozen=True)
class StackOptions:
    """How captured call sites are rendered."""

    depth: int = 2
    root: str = field(default_factory=os.getcwd)
    show_loc: bool = True
    join_str: str = " called by "
    skip_from: int = 0

    def with_overrides(self, **overrides: Any) -> "StackOptions":
        return replace(self, **overrides) if overrides else self

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]]) -> "StackOptions":
        if options is None:
            return cls()
        if not isinstance(options, Mapping):
            raise ConfigurationError("logger_options must be a mapping.")

        values = {}

        depth = options.get("depth")
        if depth is not None:
            if isinstance(depth, bool) or not isinstance(depth, int) or depth <= 1:
                raise ConfigurationError("logger_options.depth must be an integer greater than 1.")
            values["depth"] = depth

        root = options.get("root")
        if root is not None:
            if not isinstance(root, (str, PurePath)):
                raise ConfigurationError("logger_options.root must be a path.")
            values["root"] = str(root)

        show_loc = options.get("show_loc")
        if show_loc is not None:
            if not isinstance(show_loc, bool):
                raise ConfigurationError("logger_options.show_loc must be a boolean.")
            values["show_loc"] = show_loc

        join_str = options.get("join_str")
        if join_str is not None:
            if not isinstance(join_str, str):
                raise ConfigurationError("logger_options.join_str must be a string.")
            values["join_str"] = join_str

        skip_from = options.get("from")
        if skip_from is not None:
            if isinstance(skip_from, bool) or not isinstance(skip_from, int) or skip_from < 0:
                raise ConfigurationError("logger_options.from must be a non-negative integer.")
            values["skip_from"] = skip_from

        return cls(**values)


@dataclass(frozen=True)
class MonitorOptions:
    """Immutable options snapshot taken when a lock is wrapped."""

    object_name: str = ""
    property_name: str = "?prop?"
    level: str = "spam"
    logger: Optional[LoggerLike] = None
    stack: StackOptions = field(default_factory=StackOptions)

    @property
    def level_number(self) -> int:
        return LEVELS[self.level]

    def resolve_logger(self) -> LoggerLike:
        if self.logger is not None:
            return self.logger
        return logging.getLogger(DEFAULT_LOGGER_NAME)

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None) -> "MonitorOptions":
        """Validate an option mapping.

        ``None`` yields the defaults.  Unknown keys are ignored; known keys
        with a wrong type or value raise :class:`ConfigurationError`.
        """

        if options is None:
            return cls()
        if isinstance(options, MonitorOptions):
            return options
        if not isinstance(options, Mapping):
            raise ConfigurationError("Options must be a mapping.")

        values = {}

        for key in ("object_name", "property_name"):
            value = options.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ConfigurationError(f"{key} must be a string.")
            values[key] = value

        level = options.get("level")
        if level is not None:
            if not isinstance(level, str):
                raise ConfigurationError("level must be a string.")
            level = level.lower()
            if level not in LEVELS:
                raise ConfigurationError(
                    "level must be one of: %s." % ", ".join(sorted(LEVELS))
                )
            values["level"] = level

        logger = options.get("logger")
        if logger is not None:
            if not isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
                raise ConfigurationError("logger must be a logging.Logger or LoggerAdapter.")
            values["logger"] = logger

        values["stack"] = StackOptions.from_options(options.get("logger_options"))

        return cls(**values)


__all__ = [
    "ConfigurationError",
    "DEFAULT_LOGGER_NAME",
    "MonitorOptions",
    "StackOptions",
]
