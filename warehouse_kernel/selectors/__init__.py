"""Read-only selectors."""

from warehouse_kernel.selectors.ledger_selector import LedgerSelector

__all__ = ["LedgerSelector"]
