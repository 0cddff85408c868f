"""
HostForge result envelope.

Every public operation returns an :class:`OperationResult` instead of
raising. Internally, operations raise :class:`OperationError` subclasses at
the point a check fails; the :func:`operation` decorator converts those (and
any OS exception) into the envelope at the public boundary.
"""

from __future__ import annotations

import dataclasses
import functools
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import PurePath
from typing import Any, Generic, TypeVar

import psutil

from hostforge.core.logging import OperationLogger, get_logger

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])
logger = get_logger(__name__)


class ResultCode(IntEnum):
    """Envelope codes."""

    SUCCESS = 0
    PARTIAL = 1
    FAILURE = -1


class ErrorKind(Enum):
    """Why an operation did not fully succeed."""

    VALIDATION = "validation"  # bad or missing parameter, no OS access made
    PRECONDITION = "precondition"  # target missing, wrong type, conflict, blocklisted
    ACCESS_DENIED = "access_denied"
    OS_ERROR = "os_error"
    TIMEOUT = "timeout"
    VERIFICATION = "verification"  # OS call succeeded but the follow-up check disagrees
    UNSUPPORTED = "unsupported"
    PARTIAL = "partial"


@dataclass
class OperationResult(Generic[T]):
    """Uniform result of a HostForge operation."""

    code: int
    message: str = ""
    data: T | None = None
    error_kind: ErrorKind | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.code == ResultCode.SUCCESS

    @property
    def partial(self) -> bool:
        return self.code == ResultCode.PARTIAL

    @property
    def failed(self) -> bool:
        return self.code < 0

    @classmethod
    def ok(cls, data: T | None = None, warnings: list[str] | None = None) -> OperationResult[T]:
        return cls(code=ResultCode.SUCCESS, data=data, warnings=list(warnings or []))

    @classmethod
    def fail(
        cls,
        kind: ErrorKind,
        message: str,
        data: T | None = None,
        warnings: list[str] | None = None,
    ) -> OperationResult[T]:
        return cls(
            code=ResultCode.FAILURE,
            message=message,
            data=data,
            error_kind=kind,
            warnings=list(warnings or []),
        )

    @classmethod
    def partial_success(
        cls,
        message: str,
        data: T | None = None,
        warnings: list[str] | None = None,
    ) -> OperationResult[T]:
        return cls(
            code=ResultCode.PARTIAL,
            message=message,
            data=data,
            error_kind=ErrorKind.PARTIAL,
            warnings=list(warnings or []),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "code": int(self.code),
            "msg": self.message,
            "data": to_jsonable(self.data),
        }
        if self.error_kind is not None:
            result["errorKind"] = self.error_kind.value
        if self.warnings:
            result["warnings"] = list(self.warnings)
        return result


def to_jsonable(value: Any) -> Any:
    """Convert result payloads into JSON-friendly structures."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, PurePath):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return list(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return str(value)


class OperationError(Exception):
    """Raised inside an operation to abort it with a structured failure."""

    kind = ErrorKind.OS_ERROR

    def __init__(self, message: str, data: Any = None, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data
        if kind is not None:
            self.kind = kind


class ValidationError(OperationError):
    kind = ErrorKind.VALIDATION


class PreconditionError(OperationError):
    kind = ErrorKind.PRECONDITION


class VerificationError(OperationError):
    kind = ErrorKind.VERIFICATION


class OperationTimeout(OperationError):
    kind = ErrorKind.TIMEOUT


class UnsupportedOperation(OperationError):
    kind = ErrorKind.UNSUPPORTED


def require(**params: Any) -> None:
    """Raise ValidationError naming the first missing mandatory parameter."""
    for name, value in params.items():
        if value is None:
            raise ValidationError(f"Parameter '{name}' is required")
        if isinstance(value, str) and not value.strip():
            raise ValidationError(f"Parameter '{name}' must not be empty")
        if isinstance(value, (list, tuple, set)) and not value:
            raise ValidationError(f"Parameter '{name}' must not be empty")


def describe_os_error(exc: OSError) -> str:
    """Render an OSError with the offending path and the OS reason."""
    reason = exc.strerror or str(exc)
    target = exc.filename
    if isinstance(exc, PermissionError):
        prefix = "Access denied"
    else:
        prefix = "I/O error"
    if target is not None:
        if exc.filename2 is not None:
            return f"{prefix}: '{target}' -> '{exc.filename2}': {reason}"
        return f"{prefix}: '{target}': {reason}"
    return f"{prefix}: {reason}"


def result_from_exception(exc: BaseException) -> OperationResult[Any]:
    """Translate an exception raised inside an operation into a failure envelope."""
    if isinstance(exc, OperationError):
        return OperationResult.fail(exc.kind, exc.message, exc.data)
    if isinstance(exc, psutil.AccessDenied):
        return OperationResult.fail(
            ErrorKind.ACCESS_DENIED, f"Access denied to process {exc.pid}"
        )
    if isinstance(exc, psutil.NoSuchProcess):
        return OperationResult.fail(
            ErrorKind.PRECONDITION, f"Process {exc.pid} no longer exists"
        )
    if isinstance(exc, (psutil.TimeoutExpired, subprocess.TimeoutExpired)):
        return OperationResult.fail(ErrorKind.TIMEOUT, f"Timed out: {exc}")
    if isinstance(exc, PermissionError):
        return OperationResult.fail(ErrorKind.ACCESS_DENIED, describe_os_error(exc))
    if isinstance(exc, OSError):
        return OperationResult.fail(ErrorKind.OS_ERROR, describe_os_error(exc))
    return OperationResult.fail(ErrorKind.OS_ERROR, f"Unexpected error: {exc}")


def operation(name: str) -> Callable[[F], F]:
    """Turn a method into a public operation that always returns an envelope.

    The wrapped method may return an :class:`OperationResult` directly or
    raise; nothing escapes the wrapper. Results are forwarded to the owning
    object's ``_notify`` hook when it has one.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> OperationResult[Any]:
            op_logger = OperationLogger(name, getattr(self, "logger", None) or logger)
            with op_logger:
                try:
                    result = func(self, *args, **kwargs)
                except Exception as exc:
                    result = result_from_exception(exc)
                    if not isinstance(exc, OperationError):
                        op_logger.update(error_type=type(exc).__name__)
                op_logger.finish(result.code, result.message)

            notify = getattr(self, "_notify", None)
            if notify is not None:
                notify(name, result)
            return result

        return wrapper  # type: ignore[return-value]

    return decorator


def advisory(step: str, func: Callable[[], Any]) -> str | None:
    """Run a nice-to-have sub-step; return a warning instead of raising."""
    try:
        func()
    except Exception as exc:
        logger.debug("Advisory step failed", step=step, error=str(exc))
        return f"{step} failed: {exc}"
    return None


@dataclass
class FailedItem:
    """One failed entry of a batch."""

    path: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "error": self.error}


@dataclass
class BatchResult(Generic[T]):
    """Per-item outcome of a batch operation.

    The counts are derived from the item lists so they cannot disagree.
    """

    succeeded_items: list[T] = field(default_factory=list)
    failed_items: list[FailedItem] = field(default_factory=list)
    skipped_count: int = 0
    stopped_early: bool = False

    @property
    def success_count(self) -> int:
        return len(self.succeeded_items)

    @property
    def failure_count(self) -> int:
        return len(self.failed_items)

    def add_success(self, item: T) -> None:
        self.succeeded_items.append(item)

    def add_failure(self, path: str, error: str) -> None:
        self.failed_items.append(FailedItem(path=path, error=error))

    def to_dict(self) -> dict[str, Any]:
        return {
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "succeededItems": [to_jsonable(item) for item in self.succeeded_items],
            "failedItems": [item.to_dict() for item in self.failed_items],
            "skippedCount": self.skipped_count,
            "stoppedEarly": self.stopped_early,
        }


def batch_outcome(batch: BatchResult[T], noun: str = "items") -> OperationResult[BatchResult[T]]:
    """Apply the partial-success rule to a finished batch.

    All succeeded: code 0. None succeeded: code -1. Otherwise: code 1.
    """
    if batch.failure_count == 0:
        return OperationResult.ok(batch)
    total = batch.success_count + batch.failure_count
    summary = f"{batch.failure_count} of {total} {noun} failed"
    if batch.stopped_early:
        summary += "; stopped after the first failure"
    first = batch.failed_items[0]
    summary += f" (first: {first.path}: {first.error})"
    if batch.success_count == 0:
        return OperationResult.fail(ErrorKind.OS_ERROR, summary, batch)
    return OperationResult.partial_success(summary, batch)
