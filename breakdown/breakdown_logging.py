"""Logging and editor activity tracking for the breakdown editor.

Everything logs under the ``breakdown`` logger namespace. Two in-process
recorders sit beside the loggers: ``operation_timings`` aggregates the
durations of instrumented operations, and ``editor_events`` keeps a bounded
history of editor events. The ``editor_activity`` tool reports both.
"""

from __future__ import annotations

import json
import time
import logging as std_logging
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Deque, Dict, Iterator, List, Optional, Union

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s"
EVENT_HISTORY = 200


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Attach a console handler and, when ``log_file`` is given, a JSON file handler."""

    logger = std_logging.getLogger("breakdown")
    logger.setLevel(log_level)
    logger.handlers.clear()

    # stdout carries the MCP stdio transport
    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(std_logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = std_logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info(f"Breakdown logging initialized at {std_logging.getLevelName(logger.level)}")


class JsonFormatter(std_logging.Formatter):
    """One JSON object per record, merged with the record's ``extra_fields``."""

    def format(self, record: std_logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        # Paths and other non-JSON values are stored as their string form
        return json.dumps(log_entry, default=str)


@dataclass
class OperationTiming:
    """Running totals for one operation name."""

    count: int = 0
    failures: int = 0
    total_seconds: float = 0.0
    slowest_seconds: float = 0.0

    def add(self, duration: float, failed: bool) -> None:
        self.count += 1
        self.failures += int(failed)
        self.total_seconds += duration
        self.slowest_seconds = max(self.slowest_seconds, duration)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "failures": self.failures,
            "total_seconds": round(self.total_seconds, 6),
            "mean_seconds": round(self.total_seconds / self.count, 6) if self.count else 0.0,
            "slowest_seconds": round(self.slowest_seconds, 6),
        }


class OperationTimings:
    """Aggregate durations of instrumented operations by name."""

    def __init__(self):
        self._timings: Dict[str, OperationTiming] = {}

    def record(self, operation: str, duration: float, error: Optional[BaseException] = None) -> None:
        self._timings.setdefault(operation, OperationTiming()).add(duration, failed=error is not None)
        std_logging.getLogger("breakdown.performance").debug(
            f"Timing recorded: {operation}={duration:.6f}s",
            extra={"extra_fields": {
                "operation": operation,
                "duration": duration,
                "error_type": type(error).__name__ if error is not None else None,
            }},
        )

    def get(self, operation: str) -> Optional[OperationTiming]:
        return self._timings.get(operation)

    def summary(self) -> Dict[str, Dict[str, Any]]:
        return {name: self._timings[name].to_dict() for name in sorted(self._timings)}

    def clear(self) -> None:
        self._timings.clear()


operation_timings = OperationTimings()


@contextmanager
def _timed(operation: str, logger: std_logging.Logger, success_level: int, fields: Dict[str, Any]) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - start
        operation_timings.record(operation, duration, error=e)
        logger.error(
            f"Failed operation: {operation} after {duration:.3f}s - {e}",
            extra={"extra_fields": {
                "operation": operation,
                "status": "failed",
                "duration": duration,
                "error_type": type(e).__name__,
                "error_message": str(e),
                **fields,
            }},
        )
        raise

    duration = time.perf_counter() - start
    operation_timings.record(operation, duration)
    logger.log(
        success_level,
        f"Completed operation: {operation} in {duration:.3f}s",
        extra={"extra_fields": {"operation": operation, "status": "completed", "duration": duration, **fields}},
    )


def log_performance(operation_name: str):
    """Time every call of the decorated function under ``operation_name``."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = std_logging.getLogger("breakdown.performance")
            with _timed(operation_name, logger, std_logging.DEBUG, {}):
                return func(*args, **kwargs)

        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Log the start and outcome of a block and record its duration."""
    logger = std_logging.getLogger("breakdown.operations")
    logger.debug(f"Starting operation: {operation_name}", extra={"extra_fields": {
        "operation": operation_name,
        "status": "started",
        **extra_fields
    }})

    with _timed(operation_name, logger, std_logging.INFO, extra_fields):
        yield


class EditorEventLog:
    """Log editor events and keep the most recent ones for inspection."""

    def __init__(self, capacity: int = EVENT_HISTORY):
        self._events: Deque[Dict[str, Any]] = deque(maxlen=capacity)
        self.logger = std_logging.getLogger("breakdown.events")

    def log_editor_event(self, event_type: str, task_id: Optional[str] = None, **data) -> Dict[str, Any]:
        event = {"timestamp": _utc_now(), "event_type": event_type, "task_id": task_id, **data}
        self._events.append(event)
        self.logger.info(f"Editor event: {event_type}", extra={"extra_fields": event})
        return event

    def recent(self, task_id: Optional[str] = None, limit: int = 20) -> List[Dict[str, Any]]:
        """Newest-last events, optionally only those of one task."""
        if limit <= 0:
            return []
        matching = [event for event in self._events if task_id is None or event["task_id"] == task_id]
        return matching[-limit:]

    def clear(self) -> None:
        self._events.clear()


editor_events = EditorEventLog()


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields):
    """Log an error with rich context information."""
    logger = std_logging.getLogger("breakdown.errors")

    error_data = {
        "timestamp": _utc_now(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context,
        **extra_fields
    }

    logger.error(
        f"Error in {context.get('operation', 'unknown operation')}: {str(error)}",
        extra={"extra_fields": error_data},
        exc_info=error
    )


# Convenience functions for common editor events
def log_sub_step_event(event_type: str, task_id: Optional[str], sub_step_id: str, **extra_fields):
    """Log a sub-step lifecycle event."""
    editor_events.log_editor_event(
        f"sub_step_{event_type.lower()}",
        task_id=task_id,
        sub_step_id=sub_step_id,
        **extra_fields
    )


def log_action_item_event(event_type: str, task_id: Optional[str], action_item_id: str, **extra_fields):
    """Log an action item lifecycle event."""
    editor_events.log_editor_event(
        f"action_item_{event_type.lower()}",
        task_id=task_id,
        action_item_id=action_item_id,
        **extra_fields
    )


def log_proposals_merged(task_id: Optional[str], sub_step_count: int, action_item_count: int, dropped: int):
    editor_events.log_editor_event(
        "proposals_merged",
        task_id=task_id,
        sub_step_count=sub_step_count,
        action_item_count=action_item_count,
        dropped_action_items=dropped,
    )


def log_session_event(event_type: str, task_id: Optional[str], **extra_fields):
    """Log a session open/save/close event."""
    editor_events.log_editor_event(
        f"session_{event_type.lower()}",
        task_id=task_id,
        **extra_fields
    )
