"""
Picking list generator boundary (``warehouse_modules.transport.picking``).

The generator is an external collaborator (print service, WMS).  The box
service only calls it through ``generate_picking_list``, which bounds the
call with a timeout and turns every failure into
``ExternalDependencyFailureError`` before any box state is touched.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Protocol

from warehouse_kernel.exceptions import ExternalDependencyFailureError
from warehouse_kernel.logging_config import get_logger
from warehouse_modules.transport.models import PickingListRequest, PrintPickingListResult

logger = get_logger("modules.transport.picking")

DEPENDENCY_NAME = "picking_list_generator"


class PickingListGenerator(Protocol):
    """Produces the list of items to pick for a box."""

    def create_picking_list(self, request: PickingListRequest) -> PrintPickingListResult:
        ...


class PickingListGeneratorError(Exception):
    """Raised by generator adapters for failures they detect themselves."""


def generate_picking_list(
    generator: PickingListGenerator,
    request: PickingListRequest,
    timeout_seconds: float,
) -> PrintPickingListResult:
    """
    Call the generator with a timeout.

    Raises:
        ExternalDependencyFailureError: timeout, any error raised by the
            generator, a malformed result, or a result without lines.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="picking-list")
    try:
        future = executor.submit(generator.create_picking_list, request)
        try:
            result = future.result(timeout=timeout_seconds)
        except FutureTimeoutError as exc:
            future.cancel()
            _log_failure(request, "timeout")
            raise ExternalDependencyFailureError(
                DEPENDENCY_NAME, f"no answer within {timeout_seconds}s"
            ) from exc
        except Exception as exc:
            # Anything the adapter raises is the collaborator failing.
            _log_failure(request, f"{type(exc).__name__}: {exc}")
            raise ExternalDependencyFailureError(DEPENDENCY_NAME, str(exc)) from exc
    finally:
        # A timed-out call may still be running; do not wait for it.
        executor.shutdown(wait=False, cancel_futures=True)

    if not isinstance(result, PrintPickingListResult):
        _log_failure(request, "malformed response")
        raise ExternalDependencyFailureError(
            DEPENDENCY_NAME, f"returned {type(result).__name__}, not a picking list"
        )
    if not result.lines:
        _log_failure(request, "empty picking list")
        raise ExternalDependencyFailureError(DEPENDENCY_NAME, "returned an empty picking list")

    logger.info(
        "picking_list_generated",
        extra={
            "box_id": str(request.box_id),
            "line_count": len(result.lines),
            "document_reference": result.document_reference,
        },
    )
    return result


def _log_failure(request: PickingListRequest, reason: str) -> None:
    logger.warning(
        "picking_list_generation_failed",
        extra={"box_id": str(request.box_id), "reason": reason},
    )
