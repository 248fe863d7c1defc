"""Helper utilities for structured, context-scoped lock logging."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, MutableMapping, Optional, Union


LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

#: Verbosity below ``DEBUG`` used for queue dumps.
SPAM = 5
logging.addLevelName(SPAM, "SPAM")

#: Level names accepted in monitor configuration, mapped to ``logging`` levels.
#: ``none`` silences a monitor entirely.
LEVELS: Dict[str, int] = {
    "none": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "spam": SPAM,
}


def resolve_level(name: str) -> int:
    """Return the ``logging`` level for a configured level name."""

    return LEVELS[name.lower()]


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that keeps structured context values attached.

    Besides the merged ``extra`` mapping the adapter carries an optional
    message ``label`` (rendered as a ``[label]`` prefix) and its own minimum
    level, so that several monitors can share one :class:`logging.Logger`
    while logging at different verbosities.
    """

    def __init__(
        self,
        logger: logging.Logger,
        extra: Mapping[str, Any] | None = None,
        *,
        label: Optional[str] = None,
        level: int = logging.NOTSET,
    ):
        super().__init__(logger, dict(extra or {}))
        self.label = label
        self.min_level = level

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        extra = dict(self.extra)
        provided = kwargs.get("extra")
        if provided:
            extra.update(provided)
        kwargs["extra"] = extra
        if self.label:
            msg = f"[{self.label}] {msg}"
        return msg, kwargs

    def isEnabledFor(self, level: int) -> bool:  # noqa: N802 - mirror logging API
        if level < self.min_level:
            return False
        return self.logger.isEnabledFor(level)

    def spam(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(SPAM, msg, *args, **kwargs)

    def setLevel(self, level: Union[int, str]) -> None:  # noqa: N802 - mirror logging API
        if isinstance(level, str):
            level = resolve_level(level)
        self.min_level = level

    def context(self, label: str) -> "ContextLoggerAdapter":
        """Return an adapter scoped to ``label``.

        The label prefixes every message and is recorded as ``lock_context``.
        """

        extra = dict(self.extra)
        extra["lock_context"] = label
        return ContextLoggerAdapter(self.logger, extra, label=label, level=self.min_level)


def _unwrap_logger(logger: LoggerLike) -> tuple[logging.Logger, Mapping[str, Any]]:
    if isinstance(logger, logging.LoggerAdapter):
        base_logger = logger.logger
        base_extra = getattr(logger, "extra", None) or {}
        return base_logger, dict(base_extra)
    return logger, {}


def add_context(logger: LoggerLike, **kwargs: Any) -> ContextLoggerAdapter:
    """Return a :class:`ContextLoggerAdapter` with merged structured context."""

    base_logger, base_extra = _unwrap_logger(logger)
    merged: Dict[str, Any] = dict(base_extra)
    merged.update(kwargs)
    label = getattr(logger, "label", None)
    level = getattr(logger, "min_level", logging.NOTSET)
    return ContextLoggerAdapter(base_logger, merged, label=label, level=level)


__all__ = [
    "ContextLoggerAdapter",
    "LEVELS",
    "LoggerLike",
    "SPAM",
    "add_context",
    "resolve_level",
]
