"""
Module: warehouse_modules.stock_taking.orm
Responsibility: SQLAlchemy ORM persistence for stock-taking results.

Architecture position: Modules > Stock Taking > ORM.

Invariants enforced:
    - Results are immutable once flushed (db/immutability.py).  A failed
      line is kept with its error; re-running it writes a new result.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from warehouse_kernel.db.base import Base
from warehouse_kernel.db.types import QUANTITY_DECIMAL_PLACES


class StockTakingResultModel(Base):
    """
    ORM model for one reconciled (or failed) stock-taking line.

    Maps to: warehouse_modules.stock_taking.models.StockTakingResult.
    """

    __tablename__ = "stock_taking_results"

    __table_args__ = (
        Index("idx_stock_taking_result_product", "product_code", "recorded_at"),
        Index("idx_stock_taking_result_run", "run_id"),
    )

    run_id: Mapped[UUID] = mapped_column(nullable=False)
    stock_taking_type: Mapped[str] = mapped_column(String(50), nullable=False)
    product_code: Mapped[str] = mapped_column(String(100), nullable=False)
    lot_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount_new: Mapped[Decimal] = mapped_column(
        Numeric(38, QUANTITY_DECIMAL_PLACES), nullable=False
    )
    amount_old: Mapped[Decimal | None] = mapped_column(
        Numeric(38, QUANTITY_DECIMAL_PLACES), nullable=True
    )
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)
    actor: Mapped[str] = mapped_column(String(200), nullable=False)
    error: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ledger_entry_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def to_dto(self):
        from warehouse_kernel.db.types import normalize_quantity
        from warehouse_modules.stock_taking.models import StockTakingResult, StockTakingType

        return StockTakingResult(
            id=self.id,
            run_id=self.run_id,
            stock_taking_type=StockTakingType(self.stock_taking_type),
            product_code=self.product_code,
            lot_code=self.lot_code,
            amount_new=normalize_quantity(self.amount_new),
            amount_old=(
                normalize_quantity(self.amount_old) if self.amount_old is not None else None
            ),
            recorded_at=self.recorded_at,
            actor=self.actor,
            error=self.error,
            error_code=self.error_code,
            ledger_entry_id=self.ledger_entry_id,
        )

    @classmethod
    def from_dto(cls, result) -> StockTakingResultModel:
        return cls(
            id=result.id,
            run_id=result.run_id,
            stock_taking_type=result.stock_taking_type.value,
            product_code=result.product_code,
            lot_code=result.lot_code,
            amount_new=result.amount_new,
            amount_old=result.amount_old,
            recorded_at=result.recorded_at,
            actor=result.actor,
            error=result.error,
            error_code=result.error_code,
            ledger_entry_id=result.ledger_entry_id,
        )
