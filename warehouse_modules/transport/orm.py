"""
Module: warehouse_modules.transport.orm
Responsibility: SQLAlchemy ORM persistence for transport boxes, their items,
    picking lines and state history.  Maps the frozen dataclasses of
    transport.models to relational tables.

Architecture position: Modules > Transport > ORM.  Inherits from Base
    (warehouse_kernel.db.base).  Product codes reference catalog master data
    via String columns with NO foreign key constraints.

Invariants enforced:
    - transport_boxes.version is a version_id_col: every box UPDATE is
      conditioned on the version that was read (optimistic concurrency).
      Item and picking changes touch the box so they bump it too.
    - active_code is UNIQUE and holds the upper-cased code only while the
      box is non-terminal, so a code is unique among active boxes and free
      again once a box is shipped or cancelled.
    - transport_box_items.idempotency_key is UNIQUE.
    - State log rows are immutable (db/immutability.py).

Failure modes:
    - StaleDataError when the box changed since it was loaded.
    - IntegrityError on a duplicate idempotency key or active code race.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from warehouse_kernel.db.base import Base
from warehouse_kernel.db.types import QUANTITY_DECIMAL_PLACES


class TransportBoxModel(Base):
    """
    ORM model for transport boxes.

    Maps to: warehouse_modules.transport.models.TransportBox.
    Boxes are never deleted; terminal boxes are retained for audit.
    """

    __tablename__ = "transport_boxes"

    __table_args__ = (
        UniqueConstraint("active_code", name="uq_transport_box_active_code"),
        Index("idx_transport_box_state", "state"),
    )

    state: Mapped[str] = mapped_column(String(50), nullable=False)
    code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    active_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state_changed_at: Mapped[datetime] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by: Mapped[str] = mapped_column(String(200), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(200), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    items: Mapped[list[TransportBoxItemModel]] = relationship(
        back_populates="box",
        cascade="all, delete-orphan",
        order_by="TransportBoxItemModel.position",
    )
    picking_lines: Mapped[list[TransportBoxPickingLineModel]] = relationship(
        back_populates="box",
        cascade="all",
        order_by="TransportBoxPickingLineModel.line_no",
    )
    state_log: Mapped[list[TransportBoxStateLogModel]] = relationship(
        back_populates="box",
        cascade="save-update, merge",
        order_by="TransportBoxStateLogModel.position",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        """Convert ORM model to frozen TransportBox DTO."""
        from warehouse_kernel.domain.values import AuditTrail
        from warehouse_modules.transport.models import BoxState, TransportBox

        return TransportBox(
            id=self.id,
            state=BoxState(self.state),
            audit=AuditTrail(
                created_at=self.created_at,
                created_by=self.created_by,
                updated_at=self.updated_at,
                updated_by=self.updated_by,
            ),
            state_changed_at=self.state_changed_at,
            version=self.version,
            code=self.code,
            description=self.description,
            location=self.location,
            items=tuple(item.to_dto() for item in self.items),
            picking_lines=tuple(line.to_dto() for line in self.picking_lines),
            state_log=tuple(entry.to_dto() for entry in self.state_log),
        )

    def __repr__(self) -> str:
        return f"<TransportBoxModel {self.id} code={self.code} state={self.state} v{self.version}>"


class TransportBoxItemModel(Base):
    """
    ORM model for items loaded into a box.

    Maps to: warehouse_modules.transport.models.TransportBoxItem.
    ledger_entry_id is the stock ledger entry that reserved the quantity.
    """

    __tablename__ = "transport_box_items"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_transport_box_item_idempotency_key"),
        Index("idx_transport_box_item_box", "box_id", "position"),
        Index("idx_transport_box_item_product", "product_code", "lot_code"),
    )

    box_id: Mapped[UUID] = mapped_column(ForeignKey("transport_boxes.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_code: Mapped[str] = mapped_column(String(100), nullable=False)
    lot_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, QUANTITY_DECIMAL_PLACES), nullable=False
    )
    added_by: Mapped[str] = mapped_column(String(200), nullable=False)
    added_at: Mapped[datetime] = mapped_column(nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    ledger_entry_id: Mapped[UUID] = mapped_column(nullable=False)

    box: Mapped[TransportBoxModel] = relationship(back_populates="items")

    def to_dto(self):
        from warehouse_kernel.db.types import normalize_quantity
        from warehouse_modules.transport.models import TransportBoxItem

        return TransportBoxItem(
            id=self.id,
            product_code=self.product_code,
            quantity=normalize_quantity(self.quantity),
            added_by=self.added_by,
            added_at=self.added_at,
            lot_code=self.lot_code,
            idempotency_key=self.idempotency_key,
            ledger_entry_id=self.ledger_entry_id,
        )


class TransportBoxPickingLineModel(Base):
    """
    ORM model for picking list lines produced by the external generator.

    Maps to: warehouse_modules.transport.models.PickingLine.
    """

    __tablename__ = "transport_box_picking_lines"

    __table_args__ = (
        UniqueConstraint("box_id", "line_no", name="uq_transport_box_picking_line"),
    )

    box_id: Mapped[UUID] = mapped_column(ForeignKey("transport_boxes.id"), nullable=False)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_code: Mapped[str] = mapped_column(String(100), nullable=False)
    lot_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, QUANTITY_DECIMAL_PLACES), nullable=False
    )
    picked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    picked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    picked_by: Mapped[str | None] = mapped_column(String(200), nullable=True)

    box: Mapped[TransportBoxModel] = relationship(back_populates="picking_lines")

    def to_dto(self):
        from warehouse_kernel.db.types import normalize_quantity
        from warehouse_modules.transport.models import PickingLine

        return PickingLine(
            line_no=self.line_no,
            product_code=self.product_code,
            quantity=normalize_quantity(self.quantity),
            lot_code=self.lot_code,
            picked=self.picked,
            picked_at=self.picked_at,
            picked_by=self.picked_by,
        )


class TransportBoxStateLogModel(Base):
    """
    ORM model for the box state history.  Append-only.

    Maps to: warehouse_modules.transport.models.BoxStateChange.
    """

    __tablename__ = "transport_box_state_log"

    __table_args__ = (
        Index("idx_transport_box_state_log_box", "box_id", "position"),
    )

    box_id: Mapped[UUID] = mapped_column(ForeignKey("transport_boxes.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    from_state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_state: Mapped[str] = mapped_column(String(50), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(nullable=False)
    changed_by: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    box: Mapped[TransportBoxModel] = relationship(back_populates="state_log")

    def to_dto(self):
        from warehouse_modules.transport.models import BoxState, BoxStateChange

        return BoxStateChange(
            from_state=BoxState(self.from_state) if self.from_state else None,
            to_state=BoxState(self.to_state),
            changed_at=self.changed_at,
            changed_by=self.changed_by,
            description=self.description,
        )
