"""
Gift Package Domain Models (``warehouse_modules.gift_package.models``).

Responsibility
--------------
Frozen value objects for gift package assembly: the request lines naming
what is consumed, the immutable manufacture log with its consumed items,
and the bill-of-materials contract used to derive consumption from a
produced quantity.

Invariants
----------
- A manufacture log always has at least one consumed item.
- Logs are immutable; a correction is a new log, never an edit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol, Sequence
from uuid import UUID

from warehouse_kernel.domain.values import AuditTrail, BalanceKey
from warehouse_kernel.logging_config import get_logger

logger = get_logger("modules.gift_package.models")


@dataclass(frozen=True)
class ConsumedItem:
    """One raw item requested for consumption by an assembly."""
    product_code: str
    quantity: Decimal
    lot_code: str | None = None

    @property
    def key(self) -> BalanceKey:
        return BalanceKey(self.product_code, self.lot_code)


@dataclass(frozen=True)
class GiftPackageManufactureItem:
    """A raw item consumed by a recorded assembly."""
    product_code: str
    quantity: Decimal
    lot_code: str | None = None
    ledger_entry_id: UUID | None = None


@dataclass(frozen=True)
class GiftPackageManufactureLog:
    """
    Record of one assembly: what was produced and what it consumed.

    ``produced_entry_id`` is the ledger entry that stocked up the produced
    gift packages.
    """
    id: UUID
    target_code: str
    quantity: Decimal
    manufactured_at: datetime
    audit: AuditTrail
    items: tuple[GiftPackageManufactureItem, ...]
    idempotency_key: str | None = None
    produced_entry_id: UUID | None = None

    def __post_init__(self) -> None:
        if not self.items:
            raise ValueError("A manufacture log needs at least one consumed item")

    def consumed_quantity_of(self, product_code: str, lot_code: str | None = None) -> Decimal:
        return sum(
            (
                i.quantity
                for i in self.items
                if i.product_code == product_code and i.lot_code == lot_code
            ),
            Decimal(0),
        )


# -----------------------------------------------------------------------------
# Bill of materials contract
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class BillOfMaterialsPart:
    """Amount of one part needed per produced gift package."""
    product_code: str
    amount: Decimal
    lot_code: str | None = None


class BillOfMaterialsSource(Protocol):
    """Resolves the parts a gift package is assembled from."""

    def parts_of(self, target_code: str) -> Sequence[BillOfMaterialsPart]:
        ...
