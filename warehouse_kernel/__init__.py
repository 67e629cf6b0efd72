"""
Warehouse Kernel - inventory-movement engine core.

An append-only stock ledger with:
- Idempotent movement appends
- Optimistic concurrency on derived balances
- Immutable ledger entries with compensating reversals
- Pure movement validation shared by every aggregate
"""

__version__ = "0.1.0"
