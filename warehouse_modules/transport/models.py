"""
Transport Box Domain Models (``warehouse_modules.transport.models``).

Responsibility
--------------
Frozen value objects for transport boxes: the box itself, its items, its
picking list and its state history, plus the request/result contract of
the external picking-list generator.

Architecture
------------
Layer: **Modules** -- pure domain data structures.  All dataclasses are
``frozen=True``; they carry no database identity beyond ids and no I/O.

Invariants
----------
- ``TransportBoxItem.quantity`` is a positive Decimal.
- A box owns its items exclusively; item tuples are never shared.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from warehouse_kernel.domain.values import AuditTrail, BalanceKey
from warehouse_kernel.logging_config import get_logger

logger = get_logger("modules.transport.models")


class BoxState(Enum):
    """Transport box lifecycle states."""
    NEW = "new"
    ITEMS_LOADING = "items_loading"
    PICKING_REQUESTED = "picking_requested"
    PACKED = "packed"
    SHIPPED = "shipped"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({BoxState.SHIPPED, BoxState.CANCELLED})


@dataclass(frozen=True)
class TransportBoxItem:
    """A quantity of one product (and lot) loaded into a box."""
    id: UUID
    product_code: str
    quantity: Decimal
    added_by: str
    added_at: datetime
    lot_code: str | None = None
    idempotency_key: str | None = None
    ledger_entry_id: UUID | None = None

    @property
    def key(self) -> BalanceKey:
        return BalanceKey(self.product_code, self.lot_code)


@dataclass(frozen=True)
class PickingLine:
    """One line of the picking list generated for a box."""
    line_no: int
    product_code: str
    quantity: Decimal
    lot_code: str | None = None
    picked: bool = False
    picked_at: datetime | None = None
    picked_by: str | None = None


@dataclass(frozen=True)
class BoxStateChange:
    """One recorded state transition."""
    from_state: BoxState | None
    to_state: BoxState
    changed_at: datetime
    changed_by: str
    description: str | None = None


@dataclass(frozen=True)
class TransportBox:
    """A physical shipping container and everything loaded into it."""
    id: UUID
    state: BoxState
    audit: AuditTrail
    state_changed_at: datetime
    version: int
    code: str | None = None
    description: str | None = None
    location: str | None = None
    items: tuple[TransportBoxItem, ...] = ()
    picking_lines: tuple[PickingLine, ...] = ()
    state_log: tuple[BoxStateChange, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def last_modified_at(self) -> datetime:
        return self.audit.last_modified_at

    def quantity_of(self, product_code: str, lot_code: str | None = None) -> Decimal:
        return sum(
            (
                i.quantity
                for i in self.items
                if i.product_code == product_code and i.lot_code == lot_code
            ),
            Decimal(0),
        )

    def item_totals(self) -> dict[BalanceKey, Decimal]:
        """Net quantity held per product/lot."""
        totals: dict[BalanceKey, Decimal] = {}
        for item in self.items:
            totals[item.key] = totals.get(item.key, Decimal(0)) + item.quantity
        return totals

    @property
    def open_picking_lines(self) -> tuple[PickingLine, ...]:
        return tuple(line for line in self.picking_lines if not line.picked)


# -----------------------------------------------------------------------------
# Picking list generator contract
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PickingListRequestItem:
    product_code: str
    quantity: Decimal
    lot_code: str | None = None


@dataclass(frozen=True)
class PickingListRequest:
    """What the picking-list generator is asked to produce a list for."""
    box_id: UUID
    items: tuple[PickingListRequestItem, ...]
    box_code: str | None = None


@dataclass(frozen=True)
class PickingListResultLine:
    product_code: str
    quantity: Decimal
    lot_code: str | None = None
    picked: bool = False


@dataclass(frozen=True)
class PrintPickingListResult:
    """Generated picking list with per-line pick status."""
    lines: tuple[PickingListResultLine, ...] = field(default_factory=tuple)
    document_reference: str | None = None
