"""Pytest configuration shared across the test suite."""

import logging
import sys
from pathlib import Path
from typing import List

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import pytest

from lockmonitor.utils.logging_helpers import SPAM


class ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.NOTSET)
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - trivial
        self.records.append(record)

    def messages(self) -> List[str]:
        return [record.getMessage() for record in self.records]

    def events(self, event_type: str) -> List[logging.LogRecord]:
        return [
            record
            for record in self.records
            if record.__dict__.get("event_type") == event_type
        ]


@pytest.fixture
def log_handler(request) -> ListHandler:
    """Collect every record of a per-test logger at spam verbosity."""

    logger = logging.getLogger(f"tests.lockmonitor.{request.node.name}")
    handler = ListHandler()
    logger.addHandler(handler)
    logger.setLevel(SPAM)
    logger.propagate = False
    handler.logger = logger
    yield handler
    logger.removeHandler(handler)


@pytest.fixture
def monitor_logger(log_handler: ListHandler) -> logging.Logger:
    return log_handler.logger

