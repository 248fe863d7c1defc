import datetime as dt
import json
import logging
from typing import Any, Dict, Optional, Union

from lockmonitor.utils.logging_helpers import resolve_level


#: Record attributes set by lock monitors, and their key under ``"lock"``.
_LOCK_FIELDS = {
    "lock_context": "context",
    "lock_state": "state",
    "lock_name": "name",
    "request_id": "id",
    "waiting": "waiting",
    "progress": "progress",
    "call_site": "stack",
}


class ContextJsonFormatter(logging.Formatter):
    """Serialise lock lifecycle records into JSON lines.

    Monitor fields are grouped under ``"lock"`` together with a one-line
    ``summary`` such as ``<Lock>Chain.locker #3 waiting (waiting=2 progress=1)``.
    Any other ``extra`` values end up under ``"extra"``.
    """

    _STANDARD_ATTRS = frozenset(
        vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
    ) | {"message", "asctime", "event_type"}

    @staticmethod
    def _coerce_value(value: Any) -> Any:
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, (list, tuple, set)):
            return [ContextJsonFormatter._coerce_value(item) for item in value]
        return repr(value)

    @staticmethod
    def _summary(lock: Dict[str, Any]) -> Optional[str]:
        if "context" not in lock or "id" not in lock:
            return None
        summary = f"{lock['context']} #{lock['id']}"
        if lock.get("state"):
            summary += f" {lock['state']}"
        if lock.get("name") is not None:
            summary += f" [{lock['name']}]"
        if "waiting" in lock and "progress" in lock:
            summary += f" (waiting={lock['waiting']} progress={lock['progress']})"
        return summary

    def format(self, record: logging.LogRecord) -> str:
        attrs = record.__dict__
        payload: Dict[str, Any] = {
            "timestamp": dt.datetime.fromtimestamp(record.created, dt.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if attrs.get("event_type") is not None:
            payload["event_type"] = attrs["event_type"]

        lock = {
            key: self._coerce_value(attrs[attr])
            for attr, key in _LOCK_FIELDS.items()
            if attr in attrs
        }
        if lock:
            summary = self._summary(lock)
            if summary:
                lock["summary"] = summary
            payload["lock"] = lock

        extra = {
            key: self._coerce_value(value)
            for key, value in attrs.items()
            if not key.startswith("_")
            and key not in self._STANDARD_ATTRS
            and key not in _LOCK_FIELDS
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    *,
    logger_name: Optional[str] = "lockmonitor",
) -> logging.Logger:
    """Attach a JSON handler to ``logger_name`` and set its level.

    ``level`` accepts a ``logging`` level or one of the monitor level names
    (``spam``, ``debug``, ...).  Unless configured otherwise the diagnostics
    logger reports warnings and above.
    """

    if isinstance(level, str):
        level = resolve_level(level)

    target = logging.getLogger(logger_name)
    if not target.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(ContextJsonFormatter())
        target.addHandler(handler)
    target.setLevel(level)

    diagnostics = logging.getLogger("lockmonitor.diagnostics")
    if diagnostics.level == logging.NOTSET:
        diagnostics.setLevel(logging.WARNING)

    return target
