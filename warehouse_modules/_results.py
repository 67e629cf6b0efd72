"""
Caller-facing operation results (``warehouse_modules._results``).

Responsibility
--------------
Every operation a caller can invoke (create box, add item, assemble, ...)
returns an ``OperationResult`` instead of raising.  ``run_operation`` is the
one place where a module service turns typed kernel exceptions into failed
results, owns the transaction boundary (commit on success, rollback on
failure) and logs the outcome.

Invariants
----------
- A typed ``WarehouseKernelError`` never crosses the boundary; it becomes
  ``OperationStatus.FAILED`` carrying the exception's ``code`` and details.
- A ``StaleDataError`` from the commit flush is a lost optimistic race and is
  reported as ``CONCURRENT_MODIFICATION``.
- Programming errors (``TypeError``, ``AttributeError``...) and database
  infrastructure errors are rolled back and re-raised, never masked.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from warehouse_kernel.exceptions import ConcurrentModificationError, WarehouseKernelError
from warehouse_kernel.logging_config import LogContext, get_logger

logger = get_logger("modules.operations")

T = TypeVar("T")


class OperationStatus(Enum):
    """Outcome of a caller-facing operation."""
    SUCCEEDED = "succeeded"
    ALREADY_APPLIED = "already_applied"
    FAILED = "failed"


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """
    Result/error pair returned by every caller-facing operation.

    ``ALREADY_APPLIED`` is an idempotent success: the request was seen
    before and ``value`` is what the first attempt produced.
    """

    status: OperationStatus
    value: T | None = None
    error_code: str | None = None
    error_message: str | None = None
    details: dict[str, str] = field(default_factory=dict)

    @classmethod
    def succeeded(cls, value: T) -> OperationResult[T]:
        return cls(status=OperationStatus.SUCCEEDED, value=value)

    @classmethod
    def already_applied(cls, value: T) -> OperationResult[T]:
        return cls(status=OperationStatus.ALREADY_APPLIED, value=value)

    @classmethod
    def failed(cls, error: WarehouseKernelError) -> OperationResult[T]:
        return cls(
            status=OperationStatus.FAILED,
            error_code=error.code,
            error_message=str(error),
            details=error.details,
        )

    @property
    def is_success(self) -> bool:
        """Succeeded, including idempotent replays."""
        return self.status in (OperationStatus.SUCCEEDED, OperationStatus.ALREADY_APPLIED)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """What an operation body hands back to ``run_operation``."""

    value: T
    replayed: bool = False


def run_operation(
    session: Session,
    operation: str,
    body: Callable[[], Outcome[T]],
    *,
    resource: str = "aggregate",
    resource_id: Any = None,
    commit: bool = True,
    **log_context: Any,
) -> OperationResult[T]:
    """
    Execute ``body`` inside one transaction and convert its outcome.

    Args:
        session: Session the body works in.
        operation: snake_case operation name for logs.
        body: Does the work; raises typed exceptions on refusal.
        resource: Name reported when the commit loses an optimistic race.
        resource_id: Id reported with it.
        commit: False for read-only operations and dry runs (rolled back).
        log_context: Extra LogContext fields (box_id, run_id, actor...).
    """
    start = time.monotonic()
    with LogContext.bind(operation=operation, **log_context):
        logger.info(f"{operation}_started")
        try:
            outcome = body()
            if commit:
                session.commit()
            else:
                session.rollback()
        except StaleDataError as exc:
            session.rollback()
            error = ConcurrentModificationError(resource, str(resource_id))
            _log_failure(operation, error, start, exc)
            return OperationResult.failed(error)
        except WarehouseKernelError as exc:
            session.rollback()
            _log_failure(operation, exc, start, exc)
            return OperationResult.failed(exc)
        except Exception:
            session.rollback()
            logger.error(f"{operation}_crashed", exc_info=True)
            raise

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        logger.info(
            f"{operation}_completed",
            extra={"replayed": outcome.replayed, "duration_ms": duration_ms},
        )
        if outcome.replayed:
            return OperationResult.already_applied(outcome.value)
        return OperationResult.succeeded(outcome.value)


def _log_failure(operation: str, error: WarehouseKernelError, start: float, cause) -> None:
    logger.warning(
        f"{operation}_failed",
        extra={
            "error_code": error.code,
            "error_message": str(error),
            "cause": type(cause).__name__,
            "duration_ms": round((time.monotonic() - start) * 1000, 2),
        },
    )
