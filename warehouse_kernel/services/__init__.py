"""Kernel services: the write side of the stock ledger."""

from warehouse_kernel.services.stock_ledger_service import StockLedgerService

__all__ = ["StockLedgerService"]
