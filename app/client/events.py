import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import event

from app.client.errors import ValidationError

logger = logging.getLogger("database")

LOG_LEVELS = ("query", "info", "warn", "error")
EMIT_TARGETS = ("stdout", "event")

_PYTHON_LEVELS = {
    "query": logging.INFO,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class QueryEvent:
    query: str
    params: Any
    duration: float  # milliseconds
    target: str = "database"
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class LogEvent:
    message: str
    target: str = "client"
    timestamp: datetime = field(default_factory=datetime.utcnow)


def parse_log_definitions(log) -> Dict[str, str]:
    """Normalise the ``log`` option into ``{level: emit}``."""
    definitions = {}
    for entry in log or []:
        if isinstance(entry, str):
            level, emit = entry, "stdout"
        elif isinstance(entry, dict):
            level, emit = entry.get("level"), entry.get("emit", "stdout")
        else:
            raise ValidationError(f"Invalid log definition: {entry!r}")
        if level not in LOG_LEVELS:
            raise ValidationError(f"Invalid log level `{level}`, expected one of {', '.join(LOG_LEVELS)}")
        if emit not in EMIT_TARGETS:
            raise ValidationError(f"Invalid log emit `{emit}`, expected stdout or event")
        definitions[level] = emit
    return definitions


class EventHub:
    """Routes client log output to the `database` logger or to subscribers."""

    def __init__(self, log=None):
        self.definitions = parse_log_definitions(log)
        self._subscribers: Dict[str, List[Callable]] = {level: [] for level in LOG_LEVELS}

    def enabled(self, level: str) -> bool:
        return level in self.definitions

    def subscribe(self, level: str, callback: Callable) -> None:
        if level not in LOG_LEVELS:
            raise ValidationError(f"Invalid log level `{level}`")
        if self.definitions.get(level) != "event":
            raise ValidationError(f"Log level `{level}` is not configured with emit='event'")
        self._subscribers[level].append(callback)

    def emit(self, level: str, payload) -> None:
        emit = self.definitions.get(level)
        if emit is None:
            return
        if emit == "event":
            for callback in self._subscribers[level]:
                callback(payload)
            return
        if isinstance(payload, QueryEvent):
            logger.log(
                _PYTHON_LEVELS[level],
                "query: %s params=%s duration=%.2fms",
                payload.query, payload.params, payload.duration,
            )
        else:
            logger.log(_PYTHON_LEVELS[level], "%s: %s", payload.target, payload.message)

    def info(self, message: str, target: str = "client") -> None:
        self.emit("info", LogEvent(message=message, target=target))

    def warn(self, message: str, target: str = "client") -> None:
        self.emit("warn", LogEvent(message=message, target=target))

    def error(self, message: str, target: str = "client") -> None:
        self.emit("error", LogEvent(message=message, target=target))

    def instrument(self, engine) -> None:
        """Time every statement the engine executes and emit query events."""

        @event.listens_for(engine, "before_cursor_execute")
        def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            conn.info.setdefault("query_start_time", []).append(time.perf_counter())

        @event.listens_for(engine, "after_cursor_execute")
        def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            started = conn.info["query_start_time"].pop()
            if not self.enabled("query"):
                return
            duration = (time.perf_counter() - started) * 1000
            self.emit("query", QueryEvent(query=statement, params=parameters, duration=duration))

        @event.listens_for(engine, "handle_error")
        def handle_error(context):
            # failed statements never reach after_cursor_execute
            if context.cursor is not None and context.connection is not None:
                starts = context.connection.info.get("query_start_time")
                if starts:
                    starts.pop()
