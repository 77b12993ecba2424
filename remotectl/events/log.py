"""Append-only event sinks for connection and authentication events."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Protocol

import orjson

from ..config import EventLogConfig
from ..transport.timestamps import now_ms

_ORJSON_OPTIONS = orjson.OPT_APPEND_NEWLINE | orjson.OPT_NON_STR_KEYS

event_logger = logging.getLogger("remotectl.events")


class EventLog(Protocol):
    def add_event(self, message: str, **fields: Any) -> None: ...


class LoggingEventLog:
    """Forwards events to the ``remotectl.events`` logger."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    def add_event(self, message: str, **fields: Any) -> None:
        if fields:
            detail = " ".join(f"{key}={value}" for key, value in fields.items())
            event_logger.log(self._level, "%s %s", message, detail)
        else:
            event_logger.log(self._level, "%s", message)


class JsonLinesEventLog:
    """Writes one JSON object per event to ``path``."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def add_event(self, message: str, **fields: Any) -> None:
        record = {"ts_ms": now_ms(), "event": message, **fields}
        line = orjson.dumps(record, default=str, option=_ORJSON_OPTIONS)
        with self._lock:
            with self._path.open("ab") as handle:
                handle.write(line)


def build_event_log(config: EventLogConfig) -> EventLog:
    if config.path:
        return JsonLinesEventLog(config.path)
    return LoggingEventLog()
