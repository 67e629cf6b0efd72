"""
Stock Taking Service (``warehouse_modules.stock_taking.service``).

Responsibility
--------------
Reconciles counted amounts against the ledger.  Each line is an
independent observation: it is read, corrected and recorded in its own
transaction, and a line that fails is recorded with its error instead of
aborting the run.

Architecture
------------
Layer: **Modules** -- stateful orchestration wrapper over
``StockLedgerService``.  Unlike the other module services this one does
not go through ``run_operation`` for ``reconcile``: a run is a sequence of
transactions, not one.

Invariants
----------
- One result per input line, yielded in input order as each line commits.
- A failed line never rolls back or stops its siblings.
- Corrections are ``is_correction`` entries checked against the balance
  snapshot they were computed from.
- Re-running a run id re-reads current balances; old values are never
  replayed.
- A dry run writes nothing.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterator
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from warehouse_kernel.db.types import normalize_quantity, quantity_from
from warehouse_kernel.domain.clock import Clock, SystemClock
from warehouse_kernel.domain.dtos import LedgerEntryDraft, SourceType
from warehouse_kernel.domain.movement_validator import raise_for_result, validate_quantity
from warehouse_kernel.exceptions import ConcurrentModificationError, WarehouseKernelError
from warehouse_kernel.logging_config import LogContext, get_logger
from warehouse_kernel.services.stock_ledger_service import StockLedgerService
from warehouse_kernel.utils.idempotency import generate_idempotency_key
from warehouse_modules._results import OperationResult, Outcome, run_operation
from warehouse_modules.catalog import CatalogResolver, require_known_product
from warehouse_modules.stock_taking.models import (
    StockTakingLine,
    StockTakingResult,
    StockTakingRun,
)
from warehouse_modules.stock_taking.orm import StockTakingResultModel

logger = get_logger("modules.stock_taking.service")


class StockTakingService:
    """
    Per-line reconciliation of stock-taking runs.

    Contract
    --------
    ``reconcile`` is a generator; nothing happens until it is iterated, and
    stopping early leaves the remaining lines untouched.  Every yielded
    line is already committed (or rolled back for dry runs).
    """

    def __init__(
        self,
        session: Session,
        catalog: CatalogResolver,
        clock: Clock | None = None,
        ledger: StockLedgerService | None = None,
        quantity_places: int | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._ledger = ledger or StockLedgerService(session, clock=self._clock)
        self._catalog = catalog
        self._quantity_places = quantity_places

    def reconcile(self, run: StockTakingRun) -> Iterator[StockTakingResult]:
        """Yield one ``StockTakingResult`` per line of ``run``."""
        with LogContext.bind(run_id=run.run_id, actor=run.actor, operation="reconcile"):
            logger.info(
                "stock_taking_run_started",
                extra={
                    "line_count": len(run.lines),
                    "stock_taking_type": run.stock_taking_type.value,
                    "dry_run": run.dry_run,
                },
            )
            failed = 0
            for line in run.lines:
                result = self._reconcile_line(run, line)
                if not result.succeeded:
                    failed += 1
                yield result
            logger.info(
                "stock_taking_run_completed",
                extra={"line_count": len(run.lines), "failed_lines": failed},
            )

    def history(
        self,
        product_code: str,
        lot_code: str | None = None,
    ) -> OperationResult[tuple[StockTakingResult, ...]]:
        """Past results for a product, newest first.  All lots unless one is named."""

        def body() -> Outcome[tuple[StockTakingResult, ...]]:
            stmt = (
                select(StockTakingResultModel)
                .where(StockTakingResultModel.product_code == product_code)
                .order_by(
                    StockTakingResultModel.recorded_at.desc(),
                    StockTakingResultModel.id,
                )
            )
            if lot_code is not None:
                stmt = stmt.where(StockTakingResultModel.lot_code == lot_code)
            return Outcome(tuple(m.to_dto() for m in self._session.scalars(stmt)))

        return run_operation(self._session, "stock_taking_history", body, commit=False)

    def run_results(self, run_id: UUID) -> OperationResult[tuple[StockTakingResult, ...]]:
        """Every result recorded under ``run_id``, including re-runs."""

        def body() -> Outcome[tuple[StockTakingResult, ...]]:
            stmt = (
                select(StockTakingResultModel)
                .where(StockTakingResultModel.run_id == run_id)
                .order_by(StockTakingResultModel.recorded_at, StockTakingResultModel.id)
            )
            return Outcome(tuple(m.to_dto() for m in self._session.scalars(stmt)))

        return run_operation(self._session, "stock_taking_run_results", body, commit=False)

    # =========================================================================
    # Internal
    # =========================================================================

    def _reconcile_line(self, run: StockTakingRun, line: StockTakingLine) -> StockTakingResult:
        result_id = uuid4()
        amount_old: Decimal | None = None
        try:
            raise_for_result(
                validate_quantity(
                    line.counted_amount,
                    field="counted_amount",
                    places=self._quantity_places,
                    allow_zero=True,
                )
            )
            counted = normalize_quantity(quantity_from(line.counted_amount))
            require_known_product(self._catalog, line.product_code)

            snapshot = self._ledger.read_balance(line.product_code, line.lot_code)
            amount_old = snapshot.quantity
            if (
                line.observed_system_amount is not None
                and quantity_from(line.observed_system_amount) != snapshot.quantity
            ):
                raise ConcurrentModificationError(
                    resource="stock_balance",
                    resource_id=str(line.key),
                    expected=str(line.observed_system_amount),
                    actual=str(snapshot.quantity),
                )

            entry_id = None
            delta = counted - snapshot.quantity
            if delta != 0 and not run.dry_run:
                appended = self._ledger.append(
                    LedgerEntryDraft(
                        product_code=line.product_code,
                        lot_code=line.lot_code,
                        delta=delta,
                        source_type=SourceType.STOCK_TAKING,
                        source_id=result_id,
                        idempotency_key=generate_idempotency_key(
                            "stock-taking", "correct", run.run_id, result_id
                        ),
                        actor=run.actor,
                        is_correction=True,
                    ),
                    expected=snapshot,
                )
                entry_id = appended.entry.id

            result = self._result(run, line, result_id, counted, amount_old, entry_id=entry_id)
            self._finish(run, result)
            logger.info(
                "stock_taking_line_reconciled",
                extra={
                    "product_code": line.product_code,
                    "lot_code": line.lot_code,
                    "amount_old": str(amount_old),
                    "amount_new": str(counted),
                    "corrected": entry_id is not None,
                },
            )
            return result
        except WarehouseKernelError as exc:
            self._session.rollback()
            logger.warning(
                "stock_taking_line_failed",
                extra={
                    "product_code": line.product_code,
                    "lot_code": line.lot_code,
                    "error_code": exc.code,
                    "error_message": str(exc),
                },
            )
            result = self._result(
                run,
                line,
                result_id,
                _amount_or_zero(line.counted_amount),
                amount_old,
                error=str(exc),
                error_code=exc.code,
            )
            self._finish(run, result)
            return result
        except Exception:
            self._session.rollback()
            logger.error("stock_taking_line_crashed", exc_info=True)
            raise

    def _result(
        self,
        run: StockTakingRun,
        line: StockTakingLine,
        result_id: UUID,
        amount_new: Decimal,
        amount_old: Decimal | None,
        entry_id: UUID | None = None,
        error: str | None = None,
        error_code: str | None = None,
    ) -> StockTakingResult:
        return StockTakingResult(
            id=result_id,
            run_id=run.run_id,
            stock_taking_type=run.stock_taking_type,
            product_code=line.product_code,
            lot_code=line.lot_code,
            amount_new=amount_new,
            amount_old=amount_old,
            recorded_at=self._clock.now(),
            actor=run.actor,
            error=error,
            error_code=error_code,
            ledger_entry_id=entry_id,
            dry_run=run.dry_run,
        )

    def _finish(self, run: StockTakingRun, result: StockTakingResult) -> None:
        """Persist and commit the line, or discard it for a dry run."""
        if run.dry_run:
            self._session.rollback()
            return
        self._session.add(StockTakingResultModel.from_dto(result))
        self._session.commit()


def _amount_or_zero(value) -> Decimal:
    # A rejected counted amount is still recorded; keep what can be kept.
    try:
        return normalize_quantity(quantity_from(value))
    except (TypeError, ValueError, ArithmeticError):
        return Decimal(0)
