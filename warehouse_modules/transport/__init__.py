"""
Transport Box Module (``warehouse_modules.transport``).

Responsibility
--------------
Physical shipping containers tracked from creation to shipment: item
loading backed by ledger reservations, picking-list generation through an
external generator, packing, shipping and cancellation.

Architecture
------------
Layer: **Modules** -- frozen domain models, the box workflow declared as
data, ORM persistence, the picking-list boundary and one orchestration
service.  Imports from ``warehouse_kernel`` but never the reverse.

Invariants
----------
- Items are added only in ``new``/``items_loading`` and removed only in
  ``items_loading``.
- Every transition is version-checked and recorded in the state log.
- Cancellation releases reservations with compensating ledger entries.
"""

from warehouse_modules.transport.models import (
    BoxState,
    BoxStateChange,
    PickingLine,
    PickingListRequest,
    PickingListRequestItem,
    PickingListResultLine,
    PrintPickingListResult,
    TransportBox,
    TransportBoxItem,
)
from warehouse_modules.transport.picking import (
    PickingListGenerator,
    PickingListGeneratorError,
)
from warehouse_modules.transport.service import TransportBoxService
from warehouse_modules.transport.workflows import BOX_WORKFLOW

__all__ = [
    "BoxState",
    "BoxStateChange",
    "PickingLine",
    "PickingListRequest",
    "PickingListRequestItem",
    "PickingListResultLine",
    "PrintPickingListResult",
    "TransportBox",
    "TransportBoxItem",
    "PickingListGenerator",
    "PickingListGeneratorError",
    "TransportBoxService",
    "BOX_WORKFLOW",
]
