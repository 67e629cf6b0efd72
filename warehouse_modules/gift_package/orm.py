"""
Module: warehouse_modules.gift_package.orm
Responsibility: SQLAlchemy ORM persistence for gift package manufacture logs
    and their consumed items.

Architecture position: Modules > Gift Package > ORM.  Inherits from Base
    (warehouse_kernel.db.base).

Invariants enforced:
    - gift_package_manufacture_logs.idempotency_key is UNIQUE, so a retried
      assembly can never record a second log.
    - Logs and items are immutable once flushed (db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from warehouse_kernel.db.base import Base
from warehouse_kernel.db.types import QUANTITY_DECIMAL_PLACES


class GiftPackageManufactureLogModel(Base):
    """
    ORM model for one recorded assembly.

    Maps to: warehouse_modules.gift_package.models.GiftPackageManufactureLog.
    """

    __tablename__ = "gift_package_manufacture_logs"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_gift_package_log_idempotency_key"),
        Index("idx_gift_package_log_target", "target_code", "manufactured_at"),
    )

    target_code: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, QUANTITY_DECIMAL_PLACES), nullable=False
    )
    manufactured_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by: Mapped[str] = mapped_column(String(200), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    produced_entry_id: Mapped[UUID | None] = mapped_column(nullable=True)

    items: Mapped[list[GiftPackageManufactureItemModel]] = relationship(
        back_populates="log",
        cascade="save-update, merge",
        order_by="GiftPackageManufactureItemModel.position",
    )

    def to_dto(self):
        from warehouse_kernel.db.types import normalize_quantity
        from warehouse_kernel.domain.values import AuditTrail
        from warehouse_modules.gift_package.models import GiftPackageManufactureLog

        return GiftPackageManufactureLog(
            id=self.id,
            target_code=self.target_code,
            quantity=normalize_quantity(self.quantity),
            manufactured_at=self.manufactured_at,
            audit=AuditTrail.created(self.manufactured_at, self.created_by),
            items=tuple(item.to_dto() for item in self.items),
            idempotency_key=self.idempotency_key,
            produced_entry_id=self.produced_entry_id,
        )

    def __repr__(self) -> str:
        return f"<GiftPackageManufactureLogModel {self.id} {self.target_code} x{self.quantity}>"


class GiftPackageManufactureItemModel(Base):
    """ORM model for a consumed item.  Immutable."""

    __tablename__ = "gift_package_manufacture_items"

    __table_args__ = (
        Index("idx_gift_package_item_log", "log_id", "position"),
    )

    log_id: Mapped[UUID] = mapped_column(
        ForeignKey("gift_package_manufacture_logs.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_code: Mapped[str] = mapped_column(String(100), nullable=False)
    lot_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, QUANTITY_DECIMAL_PLACES), nullable=False
    )
    ledger_entry_id: Mapped[UUID] = mapped_column(nullable=False)

    log: Mapped[GiftPackageManufactureLogModel] = relationship(back_populates="items")

    def to_dto(self):
        from warehouse_kernel.db.types import normalize_quantity
        from warehouse_modules.gift_package.models import GiftPackageManufactureItem

        return GiftPackageManufactureItem(
            product_code=self.product_code,
            quantity=normalize_quantity(self.quantity),
            lot_code=self.lot_code,
            ledger_entry_id=self.ledger_entry_id,
        )
