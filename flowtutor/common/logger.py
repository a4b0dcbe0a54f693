"""
Application Logger

Every module logs through a child of ``app_logger`` ("flowtutor.<area>").
Handlers are installed once from ``LoggingConfig``: plain text for local
runs, one JSON object per line when ``use_json`` is set. Per-user context
travels on the record as ``record.context`` and is flattened into the
JSON output.
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
import asyncio
from typing import Any, Callable, Dict, Optional, TypeVar

from flowtutor.common.config import LoggingConfig

F = TypeVar('F', bound=Callable[..., Any])

__all__ = [
    'configure_logger',
    'LoggerAdapter',
    'JsonFormatter',
    'with_context',
    'app_logger',
    'log_execution_time'
]

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Marks handlers owned by configure_logger so reconfiguring leaves others alone
_OWNED = "_flowtutor_handler"


class JsonFormatter(logging.Formatter):
    """Render a record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.datetime.fromtimestamp(record.created, datetime.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "context", None) or {})

        if record.exc_info and record.exc_info[0] is not None:
            payload["error"] = {
                "type": record.exc_info[0].__name__,
                "detail": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(payload, default=str)


def configure_logger(settings: Optional[LoggingConfig] = None, name: str = "flowtutor") -> logging.Logger:
    """
    Install handlers on the named logger.

    Args:
        settings: Level, format, JSON switch and optional file path
        name: Logger to configure

    Returns:
        The configured logger
    """
    settings = settings or LoggingConfig()
    logger = logging.getLogger(name)
    logger.setLevel(settings.level)

    for handler in [h for h in logger.handlers if getattr(h, _OWNED, False)]:
        logger.removeHandler(handler)
        handler.close()

    formatter = JsonFormatter() if settings.use_json else logging.Formatter(settings.format, DATE_FORMAT)

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.file_path:
        directory = os.path.dirname(settings.file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handlers.append(logging.FileHandler(settings.file_path, encoding="utf-8"))

    for handler in handlers:
        setattr(handler, _OWNED, True)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


class LoggerAdapter(logging.LoggerAdapter):
    """Attach a fixed context (user id, plant id) to every record."""

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        super().__init__(logger, dict(context or {}))

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get("extra") or {})
        extra["context"] = {**self.extra, **(extra.get("context") or {})}
        return msg, {**kwargs, "extra": extra}

    def with_context(self, **context) -> 'LoggerAdapter':
        return LoggerAdapter(self.logger, {**self.extra, **context})


def with_context(name: Optional[str] = None, **context) -> LoggerAdapter:
    """Adapter over ``name`` (default: the application logger) carrying ``context``."""
    return LoggerAdapter(logging.getLogger(name) if name else app_logger, context)


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Log how long each call of the decorated function takes.

    Successful calls are logged at DEBUG, failures at ERROR before the
    exception propagates. Works for plain and async functions.
    """
    def report(func: Callable, started: float, error: Optional[BaseException] = None) -> None:
        elapsed = time.perf_counter() - started
        target = logger or app_logger
        if error is None:
            target.debug(f"{func.__qualname__} took {elapsed:.3f}s")
        else:
            target.error(f"{func.__qualname__} failed after {elapsed:.3f}s: {error}")

    def decorator(func: F) -> F:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                started = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    report(func, started, e)
                    raise
                report(func, started)
                return result
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                report(func, started, e)
                raise
            report(func, started)
            return result
        return wrapper
    return decorator


app_logger = logging.getLogger("flowtutor")
if not app_logger.handlers:
    configure_logger()
