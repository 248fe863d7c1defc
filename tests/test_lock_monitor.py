import asyncio
import gc
import logging
from typing import List, Tuple

import pytest

from lockmonitor.monitor import (
    AbstractMethodError,
    KeyedLockMonitor,
    LockMonitorBase,
    SingleLockMonitor,
)
from lockmonitor.status import LockStatus
from lockmonitor.utils.common import LockState
from lockmonitor.utils.locks import Lock, LockDestroyedError, MapLock


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def _options(logger: logging.Logger, **extra):
    options = {"logger": logger, "logger_options": {"show_loc": False}}
    options.update(extra)
    return options


@pytest.mark.asyncio
async def test_single_lock_waiting_counts_down_and_one_holder_at_a_time(monitor_logger) -> None:
    monitor = SingleLockMonitor(Lock(), _options(monitor_logger, object_name="A"))
    order: List[int] = []
    gates = [asyncio.Event() for _ in range(3)]

    holder = await monitor.lock()
    assert (monitor.waiting, monitor.progress) == (0, 1)

    async def worker(index: int) -> None:
        release = await monitor.lock()
        try:
            order.append(index)
            await gates[index].wait()
        finally:
            release()

    tasks = [asyncio.create_task(worker(i)) for i in range(3)]
    await _settle()

    observed: List[Tuple[int, int]] = []
    release = holder
    for index in range(3):
        observed.append((monitor.waiting, monitor.progress))
        release()
        await _settle()
        assert monitor.progress == 1
        assert [s.state for s in monitor.statuses].count(LockState.PROCESSING) == 1
        release = gates[index].set

    release()
    await asyncio.gather(*tasks)

    assert observed == [(3, 1), (2, 1), (1, 1)]
    assert order == [0, 1, 2]
    assert (monitor.waiting, monitor.progress) == (0, 0)


@pytest.mark.asyncio
async def test_single_lock_logs_lifecycle_with_call_site(log_handler, monitor_logger) -> None:
    monitor = SingleLockMonitor(Lock(), _options(monitor_logger, object_name="Chain", property_name="locker"))

    release = await monitor.lock()
    release()

    waiting, processing, finished = log_handler.records
    assert waiting.getMessage().startswith(
        "[<Lock>Chain.locker] new lock: #0 test_single_lock_logs_lifecycle_with_call_site"
    )
    assert waiting.event_type == "lock_waiting"
    assert processing.event_type == "lock_processing"
    assert finished.event_type == "lock_finished"
    assert processing.getMessage().startswith("[<Lock>Chain.locker] processing: #0 ")
    assert finished.getMessage().startswith("[<Lock>Chain.locker] finished: #0 ")
    assert all(record.levelno == logging.DEBUG for record in log_handler.records)
    assert all(record.request_id == 0 for record in log_handler.records)
    assert waiting.call_site.startswith("#0 test_single_lock_logs_lifecycle_with_call_site")
    assert waiting.lock_context == "<Lock>Chain.locker"
    assert (processing.waiting, processing.progress) == (0, 1)
    assert (finished.waiting, finished.progress) == (0, 0)


@pytest.mark.asyncio
async def test_caller_is_captured_before_suspension(monitor_logger) -> None:
    monitor = SingleLockMonitor(Lock(), _options(monitor_logger))
    holder = await monitor.lock()

    async def queued_caller() -> None:
        release = await monitor.lock()
        release()

    task = asyncio.create_task(queued_caller())
    await _settle()

    (status,) = monitor.queue
    assert status.state is LockState.WAITING
    assert status.stack.frames[0].function_name == "queued_caller"
    assert status.id == 1

    holder()
    await task


@pytest.mark.asyncio
async def test_gathered_requests_record_the_gathering_function(monitor_logger) -> None:
    monitor = SingleLockMonitor(Lock(), _options(monitor_logger))
    holder = await monitor.lock()

    async def fan_out():
        return await asyncio.gather(monitor.lock(), monitor.lock())

    task = asyncio.create_task(fan_out())
    await _settle()

    assert [status.stack.frames[0].function_name for status in monitor.queue] == [
        "fan_out",
        "fan_out",
    ]

    holder()
    first, second = await task
    first()
    second()
    assert (monitor.waiting, monitor.progress) == (0, 0)


@pytest.mark.asyncio
async def test_request_is_queued_when_lock_is_called(monitor_logger) -> None:
    monitor = KeyedLockMonitor(MapLock(), _options(monitor_logger))
    holder = await monitor.lock("x")

    pending = monitor.lock("x")

    assert monitor.waiting == 1
    assert monitor.queue[0].stack.frames[0].function_name == (
        "test_request_is_queued_when_lock_is_called"
    )

    task = asyncio.create_task(pending)
    await _settle()
    assert monitor.waiting == 1

    holder()
    (await task)()
    assert (monitor.waiting, monitor.progress) == (0, 0)


@pytest.mark.asyncio
async def test_queue_keeps_call_order_when_scheduled_in_reverse(monitor_logger) -> None:
    monitor = SingleLockMonitor(Lock(), _options(monitor_logger))
    holder = await monitor.lock()

    earlier = monitor.lock()
    later = monitor.lock()
    later_task = asyncio.create_task(later)
    earlier_task = asyncio.create_task(earlier)
    await _settle()

    assert [status.id for status in monitor.queue] == [1, 2]

    holder()
    (await later_task)()
    (await earlier_task)()
    assert (monitor.waiting, monitor.progress) == (0, 0)


@pytest.mark.asyncio
async def test_unawaited_request_is_withdrawn(log_handler, monitor_logger) -> None:
    monitor = SingleLockMonitor(Lock(), _options(monitor_logger))
    holder = await monitor.lock()

    pending = monitor.lock()
    assert monitor.waiting == 1

    pending.close()
    del pending
    gc.collect()

    assert monitor.waiting == 0
    assert len(log_handler.events("lock_aborted")) == 1
    holder()
    assert not monitor.wrapped.busy


@pytest.mark.asyncio
async def test_skip_from_walks_past_wrapping_helpers(monitor_logger) -> None:
    monitor = SingleLockMonitor(
        Lock(), {"logger": monitor_logger, "logger_options": {"from": 1, "show_loc": False}}
    )

    async def acquire_for(owner: str):
        return await monitor.lock()

    async def business_logic() -> None:
        release = await acquire_for("job")
        release()

    holder = await monitor.lock()
    task = asyncio.create_task(business_logic())
    await _settle()

    assert monitor.queue[0].stack.frames[0].function_name == "business_logic"

    holder()
    await task


@pytest.mark.asyncio
async def test_spam_dump_lists_other_queued_statuses(log_handler, monitor_logger) -> None:
    monitor = SingleLockMonitor(Lock(), _options(monitor_logger))
    holder = await monitor.lock()

    async def waiter() -> None:
        release = await monitor.lock()
        release()

    tasks = [asyncio.create_task(waiter()) for _ in range(2)]
    await _settle()

    dumps = log_handler.events("lock_queue")
    assert len(dumps) == 1
    assert "]   waiting - #1 waiter" in dumps[0].getMessage()
    assert dumps[0].request_id == 1

    holder()
    await asyncio.gather(*tasks)


@pytest.mark.asyncio
async def test_monitor_level_filters_records(log_handler, monitor_logger) -> None:
    monitor = SingleLockMonitor(Lock(), _options(monitor_logger, level="debug"))
    holder = await monitor.lock()

    async def waiter() -> None:
        release = await monitor.lock()
        release()

    tasks = [asyncio.create_task(waiter()) for _ in range(2)]
    await _settle()
    holder()
    await asyncio.gather(*tasks)

    assert log_handler.events("lock_queue") == []
    assert len(log_handler.events("lock_finished")) == 3

    quiet = SingleLockMonitor(Lock(), _options(monitor_logger, level="none"))
    before = len(log_handler.records)
    release = await quiet.lock()
    release()
    assert len(log_handler.records) == before


@pytest.mark.asyncio
async def test_named_single_lock_shows_job_names_and_passes_through(log_handler, monitor_logger) -> None:
    lock = Lock(named=True)
    monitor = SingleLockMonitor(lock, _options(monitor_logger))

    holder = await monitor.lock("sync")
    task = asyncio.create_task(monitor.lock("flush"))
    await _settle()

    assert monitor.named
    assert monitor.has("sync")
    assert monitor.pending("flush")
    assert monitor.queue[0].decorated_name == "(flush)"
    assert log_handler.records[0].getMessage().startswith("[<Lock>.?prop?] new lock(sync): ")

    holder()
    release = await task
    assert lock.current == "flush"
    release()


@pytest.mark.asyncio
async def test_unnamed_single_lock_ignores_names(monitor_logger) -> None:
    monitor = SingleLockMonitor(Lock(), _options(monitor_logger))
    holder = await monitor.lock()
    task = asyncio.create_task(monitor.lock("ignored"))
    await _settle()

    assert monitor.queue[0].name is None
    assert monitor.queue[0].decorated_name == ""

    holder()
    (await task)()


@pytest.mark.asyncio
async def test_releaser_is_idempotent(monitor_logger) -> None:
    lock = Lock()
    monitor = SingleLockMonitor(lock, _options(monitor_logger))

    first = await monitor.lock()
    task = asyncio.create_task(monitor.lock())
    await _settle()

    first()
    second = await task
    assert monitor.progress == 1

    first()
    assert lock.busy
    assert monitor.progress == 1

    second()
    second()
    assert not lock.busy
    assert monitor.progress == 0


@pytest.mark.asyncio
async def test_keyed_monitor_tracks_concurrent_keys(log_handler, monitor_logger) -> None:
    lock = MapLock()
    monitor = KeyedLockMonitor(lock, _options(monitor_logger, object_name="pool"))

    release_x = await monitor.lock("X")
    release_y = await monitor.lock("Y")

    assert monitor.progress == 2
    assert monitor.waiting == 0
    assert [status.decorated_name for status in monitor.statuses] == ["<X>", "<Y>"]
    processing = [r.getMessage() for r in log_handler.events("lock_processing")]
    assert processing[0].startswith("[<MapLock>pool.?prop?] processing<X>: #0 ")
    assert processing[1].startswith("[<MapLock>pool.?prop?] processing<Y>: #1 ")

    release_x()
    assert monitor.progress == 1
    release_y()
    assert monitor.progress == 0


@pytest.mark.asyncio
async def test_keyed_release_removes_its_own_status(monitor_logger) -> None:
    monitor = KeyedLockMonitor(MapLock(), _options(monitor_logger))

    release_x = await monitor.lock("X")
    release_y = await monitor.lock("Y")
    waiter = asyncio.create_task(monitor.lock("X"))
    await _settle()

    (queued,) = monitor.queue
    assert queued.name == "X"

    release_y()
    assert monitor.queue == (queued,)
    assert monitor.progress == 1

    release_x()
    release_next = await waiter
    assert monitor.queue == ()
    assert monitor.progress == 1
    assert queued.state is LockState.PROCESSING

    release_next()
    assert monitor.progress == 0


@pytest.mark.asyncio
async def test_keyed_progress_never_exceeds_held_keys(monitor_logger) -> None:
    lock = MapLock()
    monitor = KeyedLockMonitor(lock, _options(monitor_logger))
    keys = ["a", "b", "a", "c", "b", "a"]
    samples: List[Tuple[int, int]] = []

    async def worker(key: str) -> None:
        release = await monitor.lock(key)
        try:
            held = sum(lock.has(k) for k in set(keys))
            samples.append((monitor.progress, held))
            await asyncio.sleep(0)
        finally:
            release()

    await asyncio.gather(*(worker(key) for key in keys))

    assert len(samples) == len(keys)
    assert all(0 <= progress <= held for progress, held in samples)
    assert (monitor.waiting, monitor.progress) == (0, 0)


@pytest.mark.asyncio
async def test_keyed_binary_key_is_shortened_for_display_only(log_handler, monitor_logger) -> None:
    lock = MapLock()
    monitor = KeyedLockMonitor(lock, _options(monitor_logger))
    key = b"\xde\xad\xbe\xef"

    release = await monitor.lock(key)

    (status,) = monitor.statuses
    assert status.name == "deadbe"
    assert status.decorated_name == "<deadbe>"
    assert lock.has(key)
    assert log_handler.records[0].lock_name == "deadbe"
    release()
    assert not lock.has(key)


@pytest.mark.asyncio
async def test_keyed_none_key_bypasses_instrumentation(log_handler, monitor_logger) -> None:
    class RecordingMapLock:
        def __init__(self) -> None:
            self.calls = []

        def releaser(self) -> None:
            self.calls.append("released")

        async def lock(self, key=None, force=False):
            self.calls.append((key, force))
            return self.releaser

    wrapped = RecordingMapLock()
    monitor = KeyedLockMonitor(wrapped, _options(monitor_logger))

    release = await monitor.lock(None, True)

    assert release == wrapped.releaser
    assert wrapped.calls == [(None, True)]
    assert (monitor.waiting, monitor.progress) == (0, 0)
    assert log_handler.records == []
    release()
    assert wrapped.calls[-1] == "released"


@pytest.mark.asyncio
async def test_wrapped_failure_propagates_and_clears_queue(log_handler, monitor_logger) -> None:
    lock = Lock()
    monitor = SingleLockMonitor(lock, _options(monitor_logger))
    await monitor.lock()

    task = asyncio.create_task(monitor.lock())
    await _settle()
    assert monitor.waiting == 1

    monitor.destroy()
    assert monitor.destroyed
    assert lock.destroyed

    with pytest.raises(LockDestroyedError):
        await task
    assert monitor.waiting == 0
    assert len(log_handler.events("lock_aborted")) == 1

    with pytest.raises(LockDestroyedError):
        await monitor.lock()
    assert monitor.waiting == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_queue(monitor_logger) -> None:
    monitor = KeyedLockMonitor(MapLock(), _options(monitor_logger))
    release = await monitor.lock("K")

    task = asyncio.create_task(monitor.lock("K"))
    await _settle()
    assert monitor.waiting == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert monitor.waiting == 0
    assert monitor.progress == 1
    release()
    assert monitor.progress == 0


@pytest.mark.asyncio
async def test_logging_failures_do_not_break_locking(monkeypatch, caplog, monitor_logger) -> None:
    def explode(self, **overrides):
        raise RuntimeError("formatter exploded")

    monkeypatch.setattr(LockStatus, "format_stack", explode)
    monitor = SingleLockMonitor(Lock(), _options(monitor_logger))

    with caplog.at_level(logging.ERROR, logger="lockmonitor.diagnostics"):
        release = await monitor.lock()
        assert monitor.progress == 1
        release()

    assert monitor.progress == 0
    assert not monitor.wrapped.busy
    assert any(record.name == "lockmonitor.diagnostics" for record in caplog.records)


@pytest.mark.asyncio
async def test_base_monitor_methods_are_abstract(monitor_logger) -> None:
    monitor = LockMonitorBase(Lock(), _options(monitor_logger))

    with pytest.raises(AbstractMethodError):
        await monitor.lock()
    with pytest.raises(AbstractMethodError):
        monitor.create_status()
    with pytest.raises(NotImplementedError):
        await monitor.lock("x", True)

    assert (monitor.waiting, monitor.progress) == (0, 0)
    assert monitor.statuses == ()
    assert monitor._next_id == 0
    assert not monitor.wrapped.busy


def test_monitor_forwards_unknown_attributes(monitor_logger) -> None:
    lock = Lock(named=True)
    monitor = SingleLockMonitor(lock, _options(monitor_logger))

    assert monitor.busy is False
    assert monitor.current is None
    assert monitor.wrapped is lock
    with pytest.raises(AttributeError):
        monitor._missing
    assert "waiting=0 progress=0" in repr(monitor)
