"""
Error Handling System for FlowTutor

This module provides the error framework shared by the adaptive engine and
the gamification ledger:
1. Exception hierarchy (validation, not-found, conflict, transient)
2. Retry mechanism with backoff for lost optimistic-concurrency races
3. Structured error logging and reporting
"""

import time
import logging
import traceback
import asyncio
import random
import functools
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar, Union, cast
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

F = TypeVar('F', bound=Callable)

logger = logging.getLogger("flowtutor.errors")


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Standard error codes for FlowTutor"""
    UNKNOWN_ERROR = "unknown_error"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND_ERROR = "not_found_error"
    CONFLICT_ERROR = "conflict_error"
    TRANSIENT_ERROR = "transient_error"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    CONFIGURATION_ERROR = "configuration_error"


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    exception_message: Optional[str] = None
    stack_trace: Optional[List[str]] = None
    context: Optional[Dict[str, Any]] = None

    @field_validator('stack_trace', mode='before')
    @classmethod
    def validate_stack_trace(cls, v):
        """Format stack trace if it's a string"""
        if isinstance(v, str):
            return v.splitlines()
        return v


class FlowTutorError(Exception):
    """Base exception class for all FlowTutor errors"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.severity = severity
        self.details = dict(details or {})
        self.cause = cause
        self.context = context or {}
        self.timestamp = datetime.now()

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        """Convert the exception to an ErrorInfo object"""
        stack_trace = None
        if include_stack_trace:
            stack_trace = traceback.format_exc().splitlines()

        details = dict(self.details)
        if self.cause is not None:
            details["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }

        return ErrorInfo(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            severity=self.severity,
            details=details or None,
            exception_type=type(self).__name__,
            exception_message=str(self),
            stack_trace=stack_trace,
            context=self.context or None
        )

    def to_dict(self, include_stack_trace: bool = False) -> Dict[str, Any]:
        """Convert the exception to a dictionary"""
        return self.to_error_info(include_stack_trace).model_dump(mode="json")

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


class ValidationError(FlowTutorError):
    """Caller input is missing or out of range. Never retried."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, code=ErrorCode.VALIDATION_ERROR, severity=ErrorSeverity.WARNING, **kwargs)
        if field:
            self.details["field"] = field
        self.field = field


class NotFoundError(FlowTutorError):
    """A referenced record (plant, user) does not exist."""

    def __init__(self, resource_type: str, resource_id: Any, **kwargs):
        super().__init__(
            f"{resource_type} with ID {resource_id} not found",
            code=ErrorCode.NOT_FOUND_ERROR,
            severity=ErrorSeverity.WARNING,
            **kwargs
        )
        self.details.update(resource_type=resource_type, resource_id=str(resource_id))
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(FlowTutorError):
    """An optimistic commit lost the race for ``key``; the store retries these."""

    def __init__(self, resource_type: str, key: Any, **kwargs):
        super().__init__(
            f"Concurrent modification of {resource_type} {key}",
            code=ErrorCode.CONFLICT_ERROR,
            severity=ErrorSeverity.INFO,
            **kwargs
        )
        self.details.update(resource_type=resource_type, key=str(key))
        self.resource_type = resource_type
        self.key = key


class TransientError(FlowTutorError):
    """The operation did not complete but may succeed if the caller tries again."""

    def __init__(
        self,
        operation: str,
        attempts: int = 0,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.TRANSIENT_ERROR,
        **kwargs
    ):
        super().__init__(
            message or f"Operation {operation} did not commit after {attempts} attempts",
            code=code,
            **kwargs
        )
        self.details.update(operation=operation, attempts=attempts)
        self.operation = operation
        self.attempts = attempts


class StorageUnavailableError(TransientError):
    """The record store could not be reached."""

    def __init__(self, operation: str, **kwargs):
        super().__init__(
            operation,
            message=f"Storage unavailable during {operation}",
            code=ErrorCode.STORAGE_UNAVAILABLE,
            **kwargs
        )


class ConfigurationError(FlowTutorError):
    """Settings could not be loaded."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(
            f"Configuration error: {message}",
            code=ErrorCode.CONFIGURATION_ERROR,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )
        if config_key:
            self.details["config_key"] = config_key
        self.config_key = config_key


def convert_exception(
    exception: Exception,
    default_message: str = "An unexpected error occurred",
    default_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
    default_severity: ErrorSeverity = ErrorSeverity.ERROR,
    context: Optional[Dict[str, Any]] = None
) -> FlowTutorError:
    """
    Convert a standard exception to a FlowTutorError.

    Args:
        exception: The exception to convert
        default_message: Default message if the exception has no message
        default_code: Default error code
        default_severity: Default error severity
        context: Optional additional context

    Returns:
        Converted FlowTutorError
    """
    if isinstance(exception, FlowTutorError):
        if context:
            exception.context.update(context)
        return exception

    return FlowTutorError(
        message=str(exception) or default_message,
        code=default_code,
        severity=default_severity,
        cause=exception,
        context=context
    )


def retry(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_factor: float = 2.0,
    jitter: float = 0.1,
    retry_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ignore_exceptions: Tuple[Type[Exception], ...] = (),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None
):
    """
    Decorator that re-runs a function while it raises ``retry_exceptions``.

    The n-th retry waits ``retry_delay * backoff_factor ** (n - 1)`` seconds,
    scaled by a random factor in ``[1 - jitter, 1 + jitter]``. After
    ``max_retries`` retries the last exception propagates unchanged.
    Exceptions in ``ignore_exceptions`` are never retried.

    Args:
        max_retries: Retries allowed after the first call
        retry_delay: Delay before the first retry, in seconds
        backoff_factor: Multiplier applied to the delay per retry
        jitter: Relative random spread of each delay
        retry_exceptions: Exception types that trigger a retry
        ignore_exceptions: Exception types that propagate immediately
        on_retry: Called as ``on_retry(retry_number, error, delay)`` before sleeping
    """
    def plan(func: Callable, failures: int, error: Exception) -> float:
        delay = retry_delay * backoff_factor ** (failures - 1)
        delay = max(0.0, delay * (1 + random.uniform(-jitter, jitter)))
        if on_retry:
            on_retry(failures, error, delay)
        logger.warning(
            f"{func.__qualname__} failed ({type(error).__name__}: {error}); "
            f"retry {failures}/{max_retries} in {delay:.2f}s"
        )
        return delay

    def decorator(func: F) -> F:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                failures = 0
                while True:
                    try:
                        return await func(*args, **kwargs)
                    except ignore_exceptions:
                        raise
                    except retry_exceptions as e:
                        failures += 1
                        if failures > max_retries:
                            raise
                        await asyncio.sleep(plan(func, failures, e))

            return cast(F, async_wrapper)

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            failures = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except ignore_exceptions:
                    raise
                except retry_exceptions as e:
                    failures += 1
                    if failures > max_retries:
                        raise
                    time.sleep(plan(func, failures, e))

        return cast(F, sync_wrapper)

    return decorator


def log_error(
    error: Union[FlowTutorError, Exception],
    level: int = logging.ERROR,
    include_stack_trace: bool = True,
    context: Optional[Dict[str, Any]] = None
) -> FlowTutorError:
    """
    Log an error on the ``flowtutor.errors`` logger.

    Plain exceptions are wrapped with ``convert_exception`` first. The line
    carries the error code, the message, any context as ``key=value`` pairs
    and the underlying cause.

    Returns:
        The logged FlowTutorError, so callers can raise it
    """
    error = convert_exception(error, context=context)

    parts = [f"[{error.code.value}] {error.message}"]
    if error.context:
        parts.append(" ".join(f"{k}={v}" for k, v in error.context.items()))
    if error.cause is not None:
        parts.append(f"cause={type(error.cause).__name__}: {error.cause}")

    logger.log(level, " | ".join(parts), exc_info=include_stack_trace)
    return error
