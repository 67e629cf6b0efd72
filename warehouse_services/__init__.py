"""
warehouse_services -- Package init and public API.

Responsibility:
    The caller-facing surface of the inventory engine.  ``InventoryEngine``
    wires the ledger and the module services for one session.

Architecture position:
    Services -- top layer.  Depends on warehouse_modules, warehouse_kernel
    and warehouse_config; nothing depends on it.
"""

from warehouse_services.inventory_engine import InventoryEngine

__all__ = ["InventoryEngine"]
