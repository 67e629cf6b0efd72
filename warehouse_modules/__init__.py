"""
Warehouse Modules.

Aggregates built on the warehouse kernel.  Each module contains:
- Domain models (frozen dataclasses)
- ORM persistence
- One orchestration service returning OperationResult values

Modules:
- Transport: box lifecycle, item loading, picking, shipping
- Gift package: assembly of gift packages from raw items
- Stock taking: per-line reconciliation of counted amounts

Shared:
- catalog: product code resolver boundary
- _results: OperationResult and the transaction wrapper
"""

from warehouse_modules import (
    gift_package,
    stock_taking,
    transport,
)
from warehouse_modules._results import OperationResult, OperationStatus
from warehouse_modules.catalog import CatalogResolver, InMemoryCatalog

__all__ = [
    "gift_package",
    "stock_taking",
    "transport",
    "OperationResult",
    "OperationStatus",
    "CatalogResolver",
    "InMemoryCatalog",
]
