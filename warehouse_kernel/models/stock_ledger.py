"""
Module: warehouse_kernel.models.stock_ledger
Responsibility: ORM persistence for the stock ledger: the append-only
    movement log (StockLedgerEntryModel) and the derived per-key balance
    (StockBalanceModel).
Architecture position: Kernel > Models.  May import from db/ and domain DTOs
    (for to_dto).  MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - idempotency_key is UNIQUE: a movement is recorded at most once.
    - Ledger entries are immutable (db/immutability.py listeners).
    - Balance rows carry a version_id_col; every UPDATE is conditioned on the
      version that was read, so a concurrent writer makes the loser fail with
      StaleDataError instead of overwriting.
    - "No lot" and "empty lot" are distinct balance keys: has_lot is part of
      the unique key and lot_code is '' when has_lot is False.

Failure modes:
    - IntegrityError on duplicate idempotency_key or on two first-time
      inserts of the same balance key racing each other.
    - StaleDataError on a balance UPDATE whose version no longer matches.

Audit relevance:
    Replaying all entries of a key in balance_version order reproduces the
    stored balance exactly (LedgerSelector.replay_balance).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from warehouse_kernel.db.base import Base
from warehouse_kernel.db.types import QUANTITY_DECIMAL_PLACES


class StockLedgerEntryModel(Base):
    """
    One recorded stock movement.

    Contract:
        Rows are inserted once by StockLedgerService and never updated or
        deleted.  Mistakes are compensated by a new entry whose
        reversal_of_id points here.
    """

    __tablename__ = "stock_ledger_entries"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_stock_ledger_idempotency_key"),
        Index("idx_stock_ledger_key_version", "product_code", "lot_code", "balance_version"),
        Index("idx_stock_ledger_source", "source_type", "source_id"),
        Index("idx_stock_ledger_reversal_of", "reversal_of_id"),
    )

    product_code: Mapped[str] = mapped_column(String(100), nullable=False)
    lot_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    delta: Mapped[Decimal] = mapped_column(
        Numeric(38, QUANTITY_DECIMAL_PLACES), nullable=False
    )
    balance_after: Mapped[Decimal] = mapped_column(
        Numeric(38, QUANTITY_DECIMAL_PLACES), nullable=False
    )
    # Version of the balance row this entry produced; orders entries per key
    balance_version: Mapped[int] = mapped_column(Integer, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    source_type: Mapped[str] = mapped_column(String(50), nullable=False)
    source_id: Mapped[UUID] = mapped_column(nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    is_correction: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reversal_of_id: Mapped[UUID | None] = mapped_column(nullable=True)
    actor: Mapped[str] = mapped_column(String(200), nullable=False)

    def to_dto(self):
        """Convert ORM model to frozen LedgerEntryRecord DTO."""
        from warehouse_kernel.db.types import normalize_quantity
        from warehouse_kernel.domain.dtos import LedgerEntryRecord, SourceType

        return LedgerEntryRecord(
            id=self.id,
            product_code=self.product_code,
            lot_code=self.lot_code,
            delta=normalize_quantity(self.delta),
            balance_after=normalize_quantity(self.balance_after),
            occurred_at=self.occurred_at,
            source_type=SourceType(self.source_type),
            source_id=self.source_id,
            idempotency_key=self.idempotency_key,
            actor=self.actor,
            is_correction=self.is_correction,
            reversal_of_id=self.reversal_of_id,
        )

    def __repr__(self) -> str:
        return (
            f"<StockLedgerEntry {self.id} {self.product_code} "
            f"lot={self.lot_code!r} delta={self.delta} key={self.idempotency_key}>"
        )


class StockBalanceModel(Base):
    """
    Current on-hand quantity of one product/lot.

    Contract:
        Only StockLedgerService writes this row, always together with the
        ledger entry that explains the change.
    """

    __tablename__ = "stock_balances"

    __table_args__ = (
        UniqueConstraint("product_code", "has_lot", "lot_code", name="uq_stock_balance_key"),
    )

    product_code: Mapped[str] = mapped_column(String(100), nullable=False)
    has_lot: Mapped[bool] = mapped_column(Boolean, nullable=False)
    lot_code: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, QUANTITY_DECIMAL_PLACES), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def lot(self) -> str | None:
        return self.lot_code if self.has_lot else None

    @staticmethod
    def key_columns(lot_code: str | None) -> dict:
        """Column values encoding an optional lot."""
        return {"has_lot": lot_code is not None, "lot_code": lot_code or ""}

    def to_dto(self):
        from warehouse_kernel.db.types import normalize_quantity
        from warehouse_kernel.domain.dtos import BalanceSnapshot

        return BalanceSnapshot(
            product_code=self.product_code,
            lot_code=self.lot,
            quantity=normalize_quantity(self.quantity),
            version=self.version,
        )

    def __repr__(self) -> str:
        return (
            f"<StockBalance {self.product_code} lot={self.lot!r} "
            f"qty={self.quantity} v{self.version}>"
        )
