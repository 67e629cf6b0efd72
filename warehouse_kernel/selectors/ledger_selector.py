"""
Module: warehouse_kernel.selectors.ledger_selector
Responsibility: Read-only queries over the stock ledger: balances, movement
    history per product/lot, movements caused by one operation, and replay of
    a balance from its entries.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - replay_balance() sums entry deltas; for every key it equals the stored
      StockBalance quantity.  Tests use this to prove the derived balance
      never drifts from the movement log.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from warehouse_kernel.db.types import normalize_quantity
from warehouse_kernel.domain.dtos import LedgerEntryRecord, SourceType
from warehouse_kernel.models.stock_ledger import StockBalanceModel, StockLedgerEntryModel
from warehouse_kernel.selectors.base import BaseSelector


class LedgerSelector(BaseSelector[StockLedgerEntryModel]):
    """Query side of the stock ledger."""

    def balance_of(self, product_code: str, lot_code: str | None = None) -> Decimal:
        """Stored on-hand quantity; zero when nothing was ever recorded."""
        stmt = select(StockBalanceModel.quantity).where(
            StockBalanceModel.product_code == product_code,
            StockBalanceModel.has_lot == (lot_code is not None),
            StockBalanceModel.lot_code == (lot_code or ""),
        )
        quantity = self.session.scalars(stmt).one_or_none()
        return normalize_quantity(quantity) if quantity is not None else Decimal(0)

    def movements(
        self,
        product_code: str,
        lot_code: str | None = None,
    ) -> list[LedgerEntryRecord]:
        """All entries of one product/lot in commit order."""
        stmt = (
            select(StockLedgerEntryModel)
            .where(
                StockLedgerEntryModel.product_code == product_code,
                _lot_filter(lot_code),
            )
            .order_by(StockLedgerEntryModel.balance_version)
        )
        return [row.to_dto() for row in self.session.scalars(stmt)]

    def entries_for_source(
        self,
        source_type: SourceType,
        source_id: UUID,
    ) -> list[LedgerEntryRecord]:
        """Entries written by one box, gift package log or stock-taking result."""
        stmt = (
            select(StockLedgerEntryModel)
            .where(
                StockLedgerEntryModel.source_type == source_type.value,
                StockLedgerEntryModel.source_id == source_id,
            )
            .order_by(
                StockLedgerEntryModel.occurred_at,
                StockLedgerEntryModel.product_code,
                StockLedgerEntryModel.balance_version,
            )
        )
        return [row.to_dto() for row in self.session.scalars(stmt)]

    def reversals_of(self, entry_id: UUID) -> list[LedgerEntryRecord]:
        stmt = (
            select(StockLedgerEntryModel)
            .where(StockLedgerEntryModel.reversal_of_id == entry_id)
            .order_by(StockLedgerEntryModel.balance_version)
        )
        return [row.to_dto() for row in self.session.scalars(stmt)]

    def replay_balance(self, product_code: str, lot_code: str | None = None) -> Decimal:
        """Balance recomputed from the movement log alone."""
        stmt = select(func.coalesce(func.sum(StockLedgerEntryModel.delta), 0)).where(
            StockLedgerEntryModel.product_code == product_code,
            _lot_filter(lot_code),
        )
        return normalize_quantity(Decimal(str(self.session.scalar(stmt))))


def _lot_filter(lot_code: str | None):
    if lot_code is None:
        return StockLedgerEntryModel.lot_code.is_(None)
    return StockLedgerEntryModel.lot_code == lot_code
