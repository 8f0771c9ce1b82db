"""
Logging subsystem for the perk boost engine.

Purpose
-------
One logging stack for the whole process:

- ``LogContext`` carries player/game/operation fields and a correlation id
  through a ContextVar, so every record of one activation, resolution or
  sweep can be tied together.
- Records are handed to a bounded queue and written by a QueueListener
  thread; a full queue drops the record instead of blocking the event loop.
- Console output is JSON in production and colored text in development; a
  daily rotating JSON file is kept under ``LOGS_DIR``.

Design Decisions
----------------
- `setup_logging()` is called by the process entry point, never at import
  time, so library users and tests keep their own handlers.
- Fields passed via ``logger.info("msg", extra={...})`` land in the JSON
  ``extra`` object.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from perkboost.core.config.config import Config

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-36s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DAILY_LOG_FILE = "perkboost_daily.json.log"
QUEUE_MAX_SIZE = 10_000

# Fields every record gets from the active LogContext ("N/A" when unset).
CONTEXT_FIELDS = ("player_id", "game_id", "correlation_id", "component", "operation")

_log_context: ContextVar[Dict[str, Any]] = ContextVar("perkboost_log_context", default={})


# ============================================================================
# Context
# ============================================================================


class LogContext:
    """
    Scoped logging context, usable with ``with`` and ``async with``.

    Fields are layered over the enclosing context and restored on exit. A
    correlation id is generated unless one is given.

    Example
    -------
    >>> async with LogContext(player_id="p1", game_id="g1", operation="boost.activate"):
    ...     logger.info("Activating perk")
    """

    def __init__(
        self,
        player_id: Optional[str] = None,
        game_id: Optional[str] = None,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        fields: Dict[str, Any] = {
            "player_id": player_id,
            "game_id": game_id,
            "component": component,
            "operation": operation,
        }
        self.context: Dict[str, Any] = dict(_log_context.get())
        self.context["correlation_id"] = correlation_id or uuid.uuid4().hex[:8]
        self.context.update(extra)
        for key, value in fields.items():
            if value is not None:
                self.context[key] = str(value) if key in ("player_id", "game_id") else value
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> LogContext:
        self._token = _log_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def get_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """
    Copy the active LogContext onto the record; runs on the producing task.

    Fields passed explicitly through ``extra`` win over the context.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _log_context.get()
        for key, value in context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        for field in CONTEXT_FIELDS:
            if getattr(record, field, None) is None:
                setattr(record, field, "N/A")
        if record.component == "N/A":
            record.component = record.name.split(".", 1)[0]
        return True


class ColoredFormatter(logging.Formatter):
    LEVEL_COLORS: Dict[int, str] = {
        logging.DEBUG: "\033[90m",
        logging.INFO: "\033[94m",
        logging.WARNING: "\033[93m",
        logging.ERROR: "\033[91m",
        logging.CRITICAL: "\033[91m\033[1m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class JSONFormatter(logging.Formatter):
    """One JSON object per record: fixed fields, context fields, then ``extra``."""

    # Attributes every LogRecord has; anything else came from ``extra`` or context.
    RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value not in (None, "N/A"):
                data[field] = value

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in self.RESERVED and key not in CONTEXT_FIELDS and not key.startswith("_")
        }
        if extra:
            data["extra"] = extra

        return json.dumps(data, ensure_ascii=False, default=str)


# ============================================================================
# Queue
# ============================================================================


@dataclass(slots=True)
class _QueueStats:
    enqueued: int = 0
    dropped: int = 0
    handler_errors: int = 0


_stats = _QueueStats()
_log_queue: Optional["queue.Queue[logging.LogRecord]"] = None
_listener: Optional[QueueListener] = None


class DroppingQueueHandler(QueueHandler):
    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _stats.enqueued += 1
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _stats.dropped += 1
            sys.stderr.write("perkboost logging queue full; record dropped\n")


class CountingQueueListener(QueueListener):
    def handleError(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _stats.handler_errors += 1
        sys.stderr.write("perkboost logging handler failed to write a record\n")


# ============================================================================
# Setup
# ============================================================================


def _log_level() -> int:
    name = Config.LOG_LEVEL if isinstance(Config.LOG_LEVEL, str) else "INFO"
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _use_json() -> bool:
    return bool(Config.LOG_JSON) or str(Config.ENVIRONMENT).lower() == "production"


def _build_handlers(level: int, *, file_logging: bool) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    if _use_json():
        console.setFormatter(JSONFormatter())
    elif sys.stdout.isatty():
        console.setFormatter(ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT))
    else:
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT, DATE_FORMAT))
    handlers: List[logging.Handler] = [console]

    if file_logging:
        logs_dir = Path(Config.LOGS_DIR).resolve()
        logs_dir.mkdir(parents=True, exist_ok=True)
        daily = TimedRotatingFileHandler(
            logs_dir / DAILY_LOG_FILE,
            when="midnight",
            backupCount=1,
            encoding="utf-8",
            utc=True,
        )
        daily.setFormatter(JSONFormatter())
        handlers.append(daily)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


def _is_initialized() -> bool:
    return bool(getattr(logging.getLogger(), "_perkboost_logging", False))


def setup_logging(*, file_logging: bool = True) -> None:
    """Install the queue-backed handlers on the root logger. Idempotent."""
    global _log_queue, _listener, _stats

    if _is_initialized():
        return

    root = logging.getLogger()
    level = _log_level()
    _stats = _QueueStats()

    root.setLevel(level)
    root.handlers.clear()
    root.filters.clear()

    _log_queue = queue.Queue(QUEUE_MAX_SIZE)
    _listener = CountingQueueListener(
        _log_queue, *_build_handlers(level, file_logging=file_logging), respect_handler_level=True
    )
    _listener.start()

    queue_handler = DroppingQueueHandler(_log_queue)
    queue_handler.setLevel(level)
    queue_handler.addFilter(ContextFilter())
    root.addHandler(queue_handler)

    for noisy in ("sqlalchemy.engine", "aiosqlite", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root._perkboost_logging = True  # type: ignore[attr-defined]
    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": Config.ENVIRONMENT,
            "log_level": logging.getLevelName(level),
            "json": _use_json(),
            "file_logging": file_logging,
        },
    )


def shutdown_logging() -> None:
    """Flush the queue, stop the listener thread and detach root handlers."""
    global _log_queue, _listener

    if not _is_initialized():
        return

    root = logging.getLogger()
    logging.getLogger(__name__).info("Shutting down logging")

    if _listener is not None:
        _listener.stop()
        _listener = None

    for handler in list(root.handlers):
        handler.flush()
        handler.close()
        root.removeHandler(handler)

    root._perkboost_logging = False  # type: ignore[attr-defined]
    _log_queue = None


def get_logging_health() -> Dict[str, Any]:
    return {
        "initialized": _is_initialized(),
        "queue_size": _log_queue.qsize() if _log_queue is not None else 0,
        "queue_max_size": _log_queue.maxsize if _log_queue is not None else 0,
        "records_enqueued": _stats.enqueued,
        "records_dropped": _stats.dropped,
        "handler_errors": _stats.handler_errors,
    }
