"""
Stock Taking Module (``warehouse_modules.stock_taking``).

Reconciliation of counted amounts against the ledger, one independent
transaction per counted line.  Failed lines are kept as results carrying
their error so they can be re-run on their own.
"""

from warehouse_modules.stock_taking.models import (
    StockTakingLine,
    StockTakingResult,
    StockTakingRun,
    StockTakingType,
)
from warehouse_modules.stock_taking.service import StockTakingService

__all__ = [
    "StockTakingLine",
    "StockTakingResult",
    "StockTakingRun",
    "StockTakingType",
    "StockTakingService",
]
