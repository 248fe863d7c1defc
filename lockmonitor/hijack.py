"""Wrap locks in monitors and swap them into existing objects.

:func:`wrap` turns one recognized lock into the matching monitor.
:func:`hijack` scans an object's own attributes and replaces every recognized
lock in place, so code such as ``await self.map_lock.lock(key)`` is
instrumented without touching the call site.  Attribute scanning relies on
``vars()`` and is best-effort: objects without an instance ``__dict__`` are
left alone.
"""

from __future__ import annotations

from enum import Enum
import logging
from typing import Any, Dict, Mapping, Optional, Type

from lockmonitor.config import load_monitor_config
from lockmonitor.monitor import KeyedLockMonitor, LockMonitorBase, SingleLockMonitor
from lockmonitor.options import ConfigurationError
from lockmonitor.utils.common import LockMonitorError
from lockmonitor.utils.locks import Lock, MapLock


logger = logging.getLogger(__name__)


class UnsupportedLockType(LockMonitorError, TypeError):
    """Raised by :func:`wrap` for values that are not a recognized lock."""


class LockKind(str, Enum):
    SINGLE = "single"
    KEYED = "keyed"


_MONITOR_TYPES: Dict[LockKind, Type[LockMonitorBase]] = {
    LockKind.SINGLE: SingleLockMonitor,
    LockKind.KEYED: KeyedLockMonitor,
}

_LOCK_TYPES: Dict[type, LockKind] = {
    Lock: LockKind.SINGLE,
    MapLock: LockKind.KEYED,
}


def register_lock_type(lock_type: type, kind: LockKind) -> None:
    """Recognize instances of ``lock_type`` (and subclasses) as ``kind`` locks.

    ``lock_type`` must honour the ``lock()/has()/pending()/destroy()`` contract.
    Monitor classes cannot be registered, which keeps double wrapping out.
    """

    if not isinstance(lock_type, type):
        raise ConfigurationError("lock_type must be a class.")
    if issubclass(lock_type, LockMonitorBase):
        raise ConfigurationError("Monitors cannot be registered as lock types.")
    _LOCK_TYPES[lock_type] = LockKind(kind)


def unregister_lock_type(lock_type: type) -> None:
    _LOCK_TYPES.pop(lock_type, None)


def lock_kind(value: Any) -> Optional[LockKind]:
    """Return the kind of lock ``value`` is, or ``None`` when it is not one."""

    if isinstance(value, LockMonitorBase):
        return None
    for klass in type(value).__mro__:
        kind = _LOCK_TYPES.get(klass)
        if kind is not None:
            return kind
    return None


def _merge_options(
    options: Optional[Mapping[str, Any]], overrides: Mapping[str, Any]
) -> Dict[str, Any]:
    if options is None:
        options = {}
    if not isinstance(options, Mapping):
        raise ConfigurationError("Options must be a mapping.")
    merged = dict(options)
    merged.update(overrides)
    return merged


def wrap(
    lock: Any, options: Optional[Mapping[str, Any]] = None, **overrides: Any
) -> LockMonitorBase:
    """Return a monitor wrapping ``lock``.

    Raises :class:`UnsupportedLockType` if ``lock`` is neither a registered
    single lock nor a registered keyed lock.  Existing monitors are not locks.
    """

    merged = _merge_options(options, overrides)
    kind = lock_kind(lock)
    if kind is None:
        raise UnsupportedLockType(f"Unknown type of lock: {type(lock).__name__}")
    return _MONITOR_TYPES[kind](lock, merged)


def hijack(
    target: Any, options: Optional[Mapping[str, Any]] = None, **overrides: Any
) -> Dict[str, LockMonitorBase]:
    """Replace every lock held in ``target``'s own attributes with a monitor.

    Each monitor is named after the attribute it replaces.  Attributes that
    are not locks, monitors included, are left untouched, so hijacking an
    object twice changes nothing the second time.  Returns the monitors that
    were installed, keyed by attribute name.
    """

    merged = _merge_options(options, overrides)
    try:
        attributes = vars(target)
    except TypeError:
        logger.debug(
            "Object has no instance attributes to hijack",
            extra={"event_type": "hijack_skipped", "target_type": type(target).__name__},
        )
        return {}

    installed: Dict[str, LockMonitorBase] = {}
    for name, value in list(attributes.items()):
        if lock_kind(value) is None:
            continue
        monitor = wrap(value, {**merged, "property_name": name})
        setattr(target, name, monitor)
        installed[name] = monitor

    if installed:
        logger.debug(
            "Hijacked %d lock(s) on %s",
            len(installed),
            type(target).__name__,
            extra={"event_type": "hijack", "properties": sorted(installed)},
        )
    return installed


class MonitorFactory:
    """Wrap and hijack locks with a shared set of base options.

    Per-call keyword overrides are merged over the base options, e.g. a
    factory holding a logger and level can hijack several objects, each with
    its own ``object_name``.
    """

    def __init__(self, options: Optional[Mapping[str, Any]] = None, **overrides: Any) -> None:
        self._options = _merge_options(options, overrides)

    @classmethod
    def from_config(cls, path: Optional[str] = None, **overrides: Any) -> "MonitorFactory":
        return cls(load_monitor_config(path), **overrides)

    @property
    def options(self) -> Dict[str, Any]:
        return dict(self._options)

    def wrap(self, lock: Any, **overrides: Any) -> LockMonitorBase:
        return wrap(lock, self._options, **overrides)

    def hijack(self, target: Any, **overrides: Any) -> Dict[str, LockMonitorBase]:
        return hijack(target, self._options, **overrides)


__all__ = [
    "LockKind",
    "MonitorFactory",
    "UnsupportedLockType",
    "hijack",
    "lock_kind",
    "register_lock_type",
    "unregister_lock_type",
    "wrap",
]
