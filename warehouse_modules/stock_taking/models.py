"""
Stock Taking Domain Models (``warehouse_modules.stock_taking.models``).

A run is a batch of independent observations.  Each line produces exactly
one result; a result carrying ``error`` is a line that did not reconcile
and can be re-run on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from warehouse_kernel.domain.values import BalanceKey


class StockTakingType(Enum):
    """Where the counted amount came from."""
    PHYSICAL_COUNT = "physical_count"
    SYSTEM_TRIGGERED = "system_triggered"


@dataclass(frozen=True)
class StockTakingLine:
    """
    One counted product/lot.

    ``observed_system_amount`` is the balance the counter saw when the count
    started.  When given and the ledger has moved on since, the line is not
    corrected.
    """
    product_code: str
    counted_amount: Decimal
    lot_code: str | None = None
    observed_system_amount: Decimal | None = None

    @property
    def key(self) -> BalanceKey:
        return BalanceKey(self.product_code, self.lot_code)


@dataclass(frozen=True)
class StockTakingRun:
    """A batch of lines reconciled under one run id."""
    run_id: UUID
    stock_taking_type: StockTakingType
    lines: tuple[StockTakingLine, ...]
    actor: str
    dry_run: bool = False

    def only(self, *product_codes: str) -> StockTakingRun:
        """The same run restricted to some products, for re-running failed lines."""
        return replace(
            self,
            lines=tuple(line for line in self.lines if line.product_code in product_codes),
        )


@dataclass(frozen=True)
class StockTakingResult:
    """Outcome of reconciling one line.  Immutable audit record."""
    id: UUID
    run_id: UUID
    stock_taking_type: StockTakingType
    product_code: str
    amount_new: Decimal
    amount_old: Decimal | None
    recorded_at: datetime
    actor: str
    lot_code: str | None = None
    error: str | None = None
    error_code: str | None = None
    ledger_entry_id: UUID | None = None
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def delta(self) -> Decimal | None:
        if self.amount_old is None:
            return None
        return self.amount_new - self.amount_old
