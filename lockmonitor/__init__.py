"""Diagnostic monitors for asyncio locks."""

from lockmonitor.hijack import (
    LockKind,
    MonitorFactory,
    UnsupportedLockType,
    hijack,
    register_lock_type,
    unregister_lock_type,
    wrap,
)
from lockmonitor.monitor import (
    AbstractMethodError,
    KeyedLockMonitor,
    LockMonitorBase,
    SingleLockMonitor,
)
from lockmonitor.options import ConfigurationError, MonitorOptions, StackOptions
from lockmonitor.stackinfo import CallSite, StackInfo
from lockmonitor.status import InvalidTransition, LockStatus
from lockmonitor.utils.common import LockMonitorError, LockState, format_name
from lockmonitor.utils.locks import Lock, LockDestroyedError, LockUsageError, MapLock

__all__ = [
    "AbstractMethodError",
    "CallSite",
    "ConfigurationError",
    "InvalidTransition",
    "KeyedLockMonitor",
    "Lock",
    "LockDestroyedError",
    "LockKind",
    "LockMonitorBase",
    "LockMonitorError",
    "LockState",
    "LockStatus",
    "LockUsageError",
    "MapLock",
    "MonitorFactory",
    "MonitorOptions",
    "SingleLockMonitor",
    "StackInfo",
    "StackOptions",
    "UnsupportedLockType",
    "format_name",
    "hijack",
    "register_lock_type",
    "unregister_lock_type",
    "wrap",
]
