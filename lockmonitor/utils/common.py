"""Shared helpers for lock monitoring."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class LockMonitorError(RuntimeError):
    """Base class for every error raised by the lock monitoring package."""


class LockState(str, Enum):
    WAITING = "waiting"
    PROCESSING = "processing"
    FINISHED = "finished"

    @property
    def successor(self) -> Optional["LockState"]:
        """Return the only state this one may move to, if any."""

        order = _STATE_ORDER
        index = order.index(self)
        if index + 1 < len(order):
            return order[index + 1]
        return None


_STATE_ORDER = (LockState.WAITING, LockState.PROCESSING, LockState.FINISHED)

#: Number of hex characters kept when a binary key is rendered for display.
BINARY_NAME_LENGTH = 6


def format_name(name: Any) -> Optional[str]:
    """Return a compact display form of a lock key or job name.

    Binary keys (``bytes``, ``bytearray`` or ``memoryview``) are rendered as
    lowercase hex truncated to :data:`BINARY_NAME_LENGTH` characters so that
    log lines stay short.  Strings pass through untouched and ``None`` stays
    ``None``; anything else is converted with :func:`str`.
    """

    if name is None:
        return None
    if isinstance(name, (bytes, bytearray, memoryview)):
        return bytes(name).hex()[:BINARY_NAME_LENGTH]
    if isinstance(name, str):
        return name
    return str(name)


__all__ = [
    "BINARY_NAME_LENGTH",
    "LockMonitorError",
    "LockState",
    "format_name",
]
