"""Async mutual-exclusion primitives with a releaser-returning contract.

Both primitives hand out a *releaser* from ``await lock(...)``: a zero-argument
callable that gives the acquisition back.  Only the first call of a releaser
has an effect, so it is safe to call from ``finally`` blocks.
"""

from __future__ import annotations

import asyncio
from collections import deque
import logging
from typing import Any, Callable, Deque, Dict, Hashable, Optional, Set

from lockmonitor.utils.common import LockMonitorError


logger = logging.getLogger(__name__)

Releaser = Callable[[], None]


class LockDestroyedError(LockMonitorError):
    """Raised when a destroyed lock is used or a waiter is dropped by ``destroy``."""


class LockUsageError(LockMonitorError):
    """Raised when a lock is used in a way its contract does not allow."""


def _noop() -> None:
    return None


class _Releaser:
    """Single-shot releaser bound to one granted acquisition."""

    __slots__ = ("_callback", "released")

    def __init__(self, callback: Callable[[], None]) -> None:
        self._callback = callback
        self.released = False

    def __call__(self) -> None:
        if self.released:
            return
        self.released = True
        self._callback()


class _Job:
    __slots__ = ("future", "name")

    def __init__(self, future: "asyncio.Future[Releaser]", name: Optional[Hashable]) -> None:
        self.future = future
        self.name = name


async def _wait_for_grant(job: _Job, on_cancel: Callable[[_Job], None]) -> Releaser:
    try:
        return await job.future
    except asyncio.CancelledError:
        if job.future.done() and not job.future.cancelled():
            # Granted while the waiter was being cancelled; hand it on.
            job.future.result()()
        else:
            on_cancel(job)
        raise


class Lock:
    """A single-holder FIFO lock for asyncio.

    When ``named`` is true every acquisition may carry a job name, and the
    lock keeps track of the running job and of pending names so that
    :meth:`has` and :meth:`pending` can answer questions about them.
    """

    def __init__(self, named: bool = False) -> None:
        self.named = named
        self.busy = False
        self.current: Optional[Hashable] = None
        self.destroyed = False
        self._jobs: Deque[_Job] = deque()
        self._pending: Dict[Hashable, int] = {}

    def has(self, name: Hashable) -> bool:
        """Return whether ``name`` is running or waiting for this lock."""

        self._require_named()
        if self.current == name:
            return True
        return self.pending(name)

    def pending(self, name: Hashable) -> bool:
        """Return whether a job called ``name`` is waiting for this lock."""

        self._require_named()
        return self._pending.get(name, 0) > 0

    async def lock(self, name: Optional[Hashable] = None, force: bool = False) -> Releaser:
        if self.destroyed:
            raise LockDestroyedError("Lock is destroyed.")

        if not self.named:
            name = None

        if force:
            if not self.busy:
                raise LockUsageError("Lock can only be forced while it is held.")
            return _noop

        if self.busy:
            if name is not None:
                self._pending[name] = self._pending.get(name, 0) + 1
            job = _Job(asyncio.get_running_loop().create_future(), name)
            self._jobs.append(job)
            return await _wait_for_grant(job, self._drop_job)

        self.busy = True
        self.current = name
        return _Releaser(self._unlock)

    def _unlock(self) -> None:
        self.busy = False
        self.current = None

        while self._jobs:
            job = self._jobs.popleft()
            self._pop_name(job.name)
            if job.future.done():
                continue
            self.busy = True
            self.current = job.name
            job.future.set_result(_Releaser(self._unlock))
            return

    def _drop_job(self, job: _Job) -> None:
        try:
            self._jobs.remove(job)
        except ValueError:
            return
        self._pop_name(job.name)

    def _pop_name(self, name: Optional[Hashable]) -> None:
        if name is None:
            return
        count = self._pending.get(name, 0) - 1
        if count > 0:
            self._pending[name] = count
        else:
            self._pending.pop(name, None)

    def _require_named(self) -> None:
        if not self.named:
            raise LockUsageError("Job names are only tracked by named locks.")

    def destroy(self) -> None:
        """Destroy the lock and reject every queued waiter."""

        if self.destroyed:
            raise LockUsageError("Lock is already destroyed.")

        self.destroyed = True
        jobs = list(self._jobs)
        self._jobs.clear()
        self._pending.clear()
        self.busy = False
        self.current = None

        if jobs:
            logger.debug(
                "Rejecting waiters of destroyed lock",
                extra={"event_type": "lock_destroyed", "waiting": len(jobs)},
            )
        for job in jobs:
            if not job.future.done():
                job.future.set_exception(LockDestroyedError("Lock was destroyed."))


class MapLock:
    """A keyed lock: each key is an independent FIFO lock.

    Distinct keys may be held concurrently.  ``None`` is not a key; locking it
    returns a no-op releaser at once, which lets callers opt out of
    coordination.
    """

    def __init__(self) -> None:
        self.destroyed = False
        self._busy: Set[Hashable] = set()
        self._jobs: Dict[Hashable, Deque[_Job]] = {}

    def has(self, key: Hashable) -> bool:
        """Return whether ``key`` is currently held."""

        return key in self._busy

    def pending(self, key: Hashable) -> bool:
        """Return whether there are waiters queued on ``key``."""

        return key in self._jobs

    async def lock(self, key: Optional[Hashable] = None, force: bool = False) -> Releaser:
        if self.destroyed:
            raise LockDestroyedError("Lock is destroyed.")

        if key is None:
            return _noop

        if force:
            if key not in self._busy:
                raise LockUsageError("Key can only be forced while it is held.")
            return _noop

        if key in self._busy:
            job = _Job(asyncio.get_running_loop().create_future(), key)
            self._jobs.setdefault(key, deque()).append(job)
            return await _wait_for_grant(job, self._drop_job)

        self._busy.add(key)
        return self._make_releaser(key)

    def _make_releaser(self, key: Hashable) -> Releaser:
        return _Releaser(lambda: self._unlock(key))

    def _unlock(self, key: Hashable) -> None:
        self._busy.discard(key)

        jobs = self._jobs.get(key)
        while jobs:
            job = jobs.popleft()
            if job.future.done():
                continue
            if not jobs:
                del self._jobs[key]
            self._busy.add(key)
            job.future.set_result(self._make_releaser(key))
            return

        self._jobs.pop(key, None)

    def _drop_job(self, job: _Job) -> None:
        jobs = self._jobs.get(job.name)
        if not jobs:
            return
        try:
            jobs.remove(job)
        except ValueError:
            return
        if not jobs:
            del self._jobs[job.name]

    def destroy(self) -> None:
        """Destroy the lock and reject every queued waiter on every key."""

        if self.destroyed:
            raise LockUsageError("Lock is already destroyed.")

        self.destroyed = True
        queues = list(self._jobs.values())
        self._jobs.clear()
        self._busy.clear()

        for jobs in queues:
            for job in jobs:
                if not job.future.done():
                    job.future.set_exception(LockDestroyedError("Lock was destroyed."))


__all__ = [
    "Lock",
    "LockDestroyedError",
    "LockUsageError",
    "MapLock",
    "Releaser",
]
