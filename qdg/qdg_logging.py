"""Logging utilities for QDG.

Everything logs under the ``qdg`` logger hierarchy. Store and workflow
events are emitted as structured records on ``qdg.events`` so a JSON log
file carries their fields.
"""

from __future__ import annotations

import json
import time
import logging as std_logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Configure the ``qdg`` logger.

    Console output goes to stderr; stdout belongs to the MCP stdio transport.
    With ``log_file`` every record down to DEBUG is also written as JSON lines.
    """
    logger = std_logging.getLogger("qdg")
    logger.setLevel(log_level)
    logger.handlers.clear()

    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(std_logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = std_logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info("QDG logging initialized")


class JsonFormatter(std_logging.Formatter):
    """One JSON object per record, merged with any ``extra_fields``."""

    def format(self, record: std_logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(getattr(record, "extra_fields", {}))
        return json.dumps(entry, default=str)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_performance(operation_name: str):
    """Decorator logging how long ``operation_name`` took and whether it failed."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = std_logging.getLogger("qdg.performance")
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed = time.perf_counter() - started
                logger.error(
                    f"{operation_name} failed after {elapsed:.3f}s: {e}",
                    extra={"extra_fields": {
                        "operation": operation_name,
                        "duration": elapsed,
                        "status": "error",
                        "error_type": type(e).__name__,
                    }},
                )
                raise
            elapsed = time.perf_counter() - started
            logger.debug(
                f"{operation_name} finished in {elapsed:.3f}s",
                extra={"extra_fields": {"operation": operation_name, "duration": elapsed, "status": "success"}},
            )
            return result

        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Log the start, completion or failure of a block of I/O."""
    logger = std_logging.getLogger("qdg.operations")
    started = time.perf_counter()
    logger.debug(f"Starting {operation_name}", extra={"extra_fields": {
        "operation": operation_name, "status": "started", **extra_fields,
    }})
    try:
        yield
    except Exception as e:
        logger.error(f"{operation_name} failed: {e}", extra={"extra_fields": {
            "operation": operation_name,
            "status": "failed",
            "duration": time.perf_counter() - started,
            "error_type": type(e).__name__,
            **extra_fields,
        }})
        raise
    logger.info(f"Completed {operation_name}", extra={"extra_fields": {
        "operation": operation_name,
        "status": "completed",
        "duration": time.perf_counter() - started,
        **extra_fields,
    }})


def log_event(event_type: str, task_id: Optional[str] = None, **data) -> Dict[str, Any]:
    """Emit a structured store or workflow event and return its payload."""
    event = {"timestamp": _utcnow(), "event_type": event_type, "task_id": task_id, **data}
    std_logging.getLogger("qdg.events").info(f"Event: {event_type}", extra={"extra_fields": event})
    return event


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields):
    """Log ``error`` with the operation context that produced it."""
    std_logging.getLogger("qdg.errors").error(
        f"Error in {context.get('operation', 'unknown operation')}: {error}",
        extra={"extra_fields": {
            "timestamp": _utcnow(),
            "error_type": type(error).__name__,
            "error_message": str(error),
            "context": context,
            **extra_fields,
        }},
        exc_info=error,
    )


def log_workflow_stage(stage: int, task_id: Optional[str] = None, **extra_fields):
    log_event(f"workflow_stage_{stage}", task_id=task_id, stage=stage, **extra_fields)


def log_store_initialized(root: str, created: List[str], existed: List[str], failed: List[str]):
    log_event("store_initialized", root=root, created=created, existed=existed, failed=failed)


def log_task_record_saved(task_id: str, path: str, size: int, **extra_fields):
    log_event("task_record_saved", task_id=task_id, path=path, size=size, **extra_fields)


def log_task_record_replaced(task_id: str, path: str):
    log_event("task_record_replaced", task_id=task_id, path=path)


def log_settings_updated(root: str, settings: Dict[str, Any]):
    log_event("settings_updated", root=root, settings=settings)


def log_duplicate_task(task_id: str, fingerprint: str):
    log_event("duplicate_task_found", task_id=task_id, fingerprint=fingerprint)
