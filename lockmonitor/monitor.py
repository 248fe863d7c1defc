"""Instrumented drop-in replacements for async locks.

A monitor wraps one lock and keeps its ``lock() -> releaser`` contract while
tracking every request through ``waiting -> processing -> finished``:

1. ``lock()`` captures the caller's stack and creates a :class:`LockStatus`;
2. the status is logged and queued;
3. the wrapped lock is awaited (the only suspension point);
4. the status moves to processing and the caller receives a releaser;
5. the releaser finishes the status and then releases the wrapped lock.

``lock()`` itself is a plain function that performs steps 1 and 2 and returns
the coroutine for steps 3 to 5.  The stack is therefore taken and the request
queued at call time, even when the coroutine is handed to
``asyncio.gather`` or ``asyncio.create_task`` and only stepped later.  A
coroutine that is dropped without ever being awaited withdraws its request
when it is garbage collected.

The monitor only observes exclusion; granting order and mutual exclusion
remain the wrapped lock's business.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Coroutine, Dict, Hashable, List, Optional, Tuple
import weakref

from lockmonitor.options import MonitorOptions
from lockmonitor.stackinfo import StackInfo
from lockmonitor.status import LockStatus
from lockmonitor.utils.common import LockMonitorError, LockState, format_name
from lockmonitor.utils.locks import Releaser
from lockmonitor.utils.logging_helpers import SPAM, add_context


_diagnostics = logging.getLogger("lockmonitor.diagnostics")

#: Frames between :meth:`StackInfo.capture` and the caller of ``lock()``:
#: ``capture`` itself, ``create_status`` and ``lock``.
LOCAL_STACK_N = 3

_EVENT_PREFIXES: Dict[LockState, Tuple[str, str]] = {
    LockState.WAITING: ("new lock", "lock_waiting"),
    LockState.PROCESSING: ("processing", "lock_processing"),
    LockState.FINISHED: ("finished", "lock_finished"),
}


class AbstractMethodError(LockMonitorError, NotImplementedError):
    """Raised when an abstract monitor method is called on the base class."""


class LockMonitorBase:
    """Shared bookkeeping for lock monitors.

    Subclasses implement :meth:`lock` and :meth:`create_status`.  WAITING
    statuses live in :attr:`queue` in call order; PROCESSING statuses live in
    a separate active list whose length is :attr:`progress`.
    """

    type_name = "lock-monitor"
    keyed = False

    def __init__(self, lock: Any, options: Optional[Any] = None) -> None:
        self.options = MonitorOptions.from_options(options)
        self.object_name = self.options.object_name
        self.property_name = self.options.property_name
        self.stack_options = self.options.stack
        self.label = f"<{self.type_name}>{self.object_name}.{self.property_name}"

        self.logger = add_context(self.options.resolve_logger()).context(self.label)
        self.logger.setLevel(self.options.level_number)

        self._lock = lock
        self.destroyed = False

        self._next_id = 0
        self._queue: List[LockStatus] = []
        self._active: List[LockStatus] = []

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._lock, name)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} {self.label} "
            f"waiting={self.waiting} progress={self.progress}>"
        )

    @property
    def wrapped(self) -> Any:
        return self._lock

    @property
    def waiting(self) -> int:
        return len(self._queue)

    @property
    def progress(self) -> int:
        return len(self._active)

    @property
    def queue(self) -> Tuple[LockStatus, ...]:
        return tuple(self._queue)

    @property
    def statuses(self) -> Tuple[LockStatus, ...]:
        return tuple(self._active) + tuple(self._queue)

    def lock(self, name: Optional[Hashable] = None, force: bool = False) -> Awaitable[Releaser]:
        raise AbstractMethodError(f"{type(self).__name__}.lock() is abstract.")

    def create_status(self, name: Optional[str] = None) -> LockStatus:
        raise AbstractMethodError(f"{type(self).__name__}.create_status() is abstract.")

    def has(self, name: Hashable) -> bool:
        return self._lock.has(name)

    def pending(self, name: Hashable) -> bool:
        return self._lock.pending(name)

    def destroy(self) -> Any:
        self.destroyed = True
        return self._lock.destroy()

    def _capture(self) -> StackInfo:
        # Called from create_status, so it costs one more frame to skip.
        request_id = self._next_id
        self._next_id += 1
        skip = LOCAL_STACK_N + 1 + self.stack_options.skip_from
        return StackInfo.capture(request_id, skip=skip)

    def _enqueue(
        self, status: LockStatus, key: Optional[Hashable], force: bool
    ) -> Coroutine[Any, Any, Releaser]:
        """Log and queue ``status`` now; return the coroutine that acquires."""

        self._print_statuses(status)
        self._queue.append(status)

        acquisition = self._acquire(status, key, force)
        finalizer = weakref.finalize(acquisition, self._withdraw, status)
        finalizer.atexit = False
        return acquisition

    def _withdraw(self, status: LockStatus) -> None:
        # The coroutine died before reaching the wrapped lock.
        if status.state is LockState.WAITING and any(s is status for s in self._queue):
            self._abort(status)

    async def _acquire(
        self, status: LockStatus, key: Optional[Hashable], force: bool
    ) -> Releaser:
        try:
            unlocker = await self._lock.lock(key, force)
        except BaseException:
            self._abort(status)
            raise

        status.transition_to(LockState.PROCESSING)
        self._print_statuses(status)

        def release() -> None:
            if status.state is LockState.FINISHED:
                return
            status.transition_to(LockState.FINISHED)
            self._print_statuses(status)
            unlocker()

        return release

    def _status_changed(self, status: LockStatus, previous: LockState) -> None:
        if status.state is LockState.PROCESSING:
            self._discard(self._queue, status)
            self._active.append(status)
        elif status.state is LockState.FINISHED:
            self._discard(self._active, status)

    @staticmethod
    def _discard(statuses: List[LockStatus], status: LockStatus) -> None:
        for index, candidate in enumerate(statuses):
            if candidate is status:
                del statuses[index]
                return

    def _abort(self, status: LockStatus) -> None:
        self._discard(self._queue, status)
        try:
            if self.logger.isEnabledFor(logging.DEBUG):
                self.logger.debug(
                    "aborted%s: %s",
                    status.decorated_name,
                    status.format_stack(),
                    extra=self._status_extra(status, "lock_aborted"),
                )
        except Exception:
            _diagnostics.exception(
                "Failed to log aborted lock request", extra={"lock_context": self.label}
            )

    def _status_extra(self, status: LockStatus, event_type: str) -> Dict[str, Any]:
        return {
            "event_type": event_type,
            "lock_state": status.state.value,
            "lock_name": status.name,
            "request_id": status.id,
            "waiting": self.waiting,
            "progress": self.progress,
            "call_site": status.format_stack(),
        }

    def _print_statuses(self, status: LockStatus) -> None:
        """Log ``status`` and dump the rest of the queue at spam level.

        Logging failures are reported on the diagnostics logger and never
        reach the caller of ``lock()`` or of the releaser.
        """

        try:
            prefix, event_type = _EVENT_PREFIXES[status.state]
            if self.logger.isEnabledFor(logging.DEBUG):
                self.logger.debug(
                    "%s%s: %s",
                    prefix,
                    status.decorated_name,
                    status.format_stack(),
                    extra=self._status_extra(status, event_type),
                )

            if not self.logger.isEnabledFor(SPAM):
                return
            for queued in self._queue:
                if queued is status:
                    continue
                self.logger.spam(
                    "  %s",
                    queued.format_status(),
                    extra=self._status_extra(queued, "lock_queue"),
                )
        except Exception:
            _diagnostics.exception(
                "Failed to log lock status", extra={"lock_context": self.label}
            )


class SingleLockMonitor(LockMonitorBase):
    """Monitor for a single-holder :class:`~lockmonitor.utils.locks.Lock`.

    Job names are only shown when the wrapped lock is ``named``; they are
    rendered as ``(name)``.
    """

    type_name = "Lock"

    def __init__(self, lock: Any, options: Optional[Any] = None) -> None:
        super().__init__(lock, options)
        self.named = bool(getattr(lock, "named", False))

    def create_status(self, name: Optional[str] = None) -> LockStatus:
        return LockStatus(self, self._capture(), self.stack_options, name=name)

    def lock(self, name: Optional[Hashable] = None, force: bool = False) -> Awaitable[Releaser]:
        """Queue a request and return an awaitable for the releaser.

        Same arguments and awaited result as ``Lock.lock``.
        """

        display_name = format_name(name) if self.named and name else None
        status = self.create_status(display_name)
        return self._enqueue(status, name, force)


class KeyedLockMonitor(LockMonitorBase):
    """Monitor for a keyed :class:`~lockmonitor.utils.locks.MapLock`.

    Requests for different keys may be processing at the same time.  Keys are
    rendered as ``<key>``; binary keys are shortened to a hex prefix for
    display while the wrapped lock still receives the original key.
    """

    type_name = "MapLock"
    keyed = True

    def create_status(self, name: Optional[str] = None) -> LockStatus:
        return LockStatus(self, self._capture(), self.stack_options, name=name, keyed=True)

    def lock(self, key: Optional[Hashable] = None, force: bool = False) -> Awaitable[Releaser]:
        """Acquire ``key``; a ``None`` key goes straight to the wrapped lock untracked."""

        if key is None:
            return self._lock.lock(key, force)

        status = self.create_status(format_name(key))
        return self._enqueue(status, key, force)


__all__ = [
    "AbstractMethodError",
    "KeyedLockMonitor",
    "LOCAL_STACK_N",
    "LockMonitorBase",
    "SingleLockMonitor",
]
