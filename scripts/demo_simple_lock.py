#!/usr/bin/env python3
"""Hijack a single lock through a shared factory and queue several callers."""

from __future__ import annotations

import argparse
import asyncio
from typing import Optional

from lockmonitor import Lock, MapLock, MonitorFactory
from lockmonitor.logging_config import setup_logging


class Worker:
    def __init__(self) -> None:
        self.normal_lock = Lock()
        self.map_lock = MapLock()

    async def do_work(self) -> None:
        unlock = await self.normal_lock.lock()
        try:
            await asyncio.sleep(1)
        finally:
            unlock()


async def main(config_path: Optional[str]) -> None:
    factory = MonitorFactory.from_config(config_path)
    worker = Worker()
    factory.hijack(worker, object_name="Worker")
    setup_logging("spam")

    first = asyncio.ensure_future(worker.do_work())
    others = [asyncio.ensure_future(worker.do_work()) for _ in range(3)]
    await worker.do_work()
    await asyncio.gather(first, *others)
    print("done.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", help="YAML file with lock monitor options")
    args = parser.parse_args()
    asyncio.run(main(args.config))
