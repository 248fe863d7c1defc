#!/usr/bin/env python3
"""Hijack a keyed lock on a worker object and watch its lifecycle logs."""

from __future__ import annotations

import asyncio
import logging

from lockmonitor import MapLock, hijack
from lockmonitor.logging_config import setup_logging


class Worker:
    def __init__(self) -> None:
        self.map_lock = MapLock()

    async def do_work_a(self) -> None:
        unlock = await self.map_lock.lock("A")
        try:
            await self._work("A")
        finally:
            unlock()

    async def do_work_b(self) -> None:
        unlock = await self.map_lock.lock("B")
        try:
            await self._work("B")
        finally:
            unlock()

    async def _work(self, name: str) -> None:
        logging.getLogger("lockmonitor.demo").info("%s done", name)
        await asyncio.sleep(0.2)


async def main() -> None:
    setup_logging("spam")
    worker = Worker()
    hijack(worker, object_name="Worker")

    await asyncio.gather(*(worker.do_work_a() for _ in range(3)))

    jobs = []
    for _ in range(5):
        jobs.append(worker.do_work_a())
        jobs.append(worker.do_work_b())
    await asyncio.gather(*jobs)


if __name__ == "__main__":
    asyncio.run(main())
