"""ORM models owned by the kernel."""

from warehouse_kernel.models.stock_ledger import StockBalanceModel, StockLedgerEntryModel

__all__ = [
    "StockLedgerEntryModel",
    "StockBalanceModel",
]
