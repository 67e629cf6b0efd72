"""
Pure domain layer.

Value objects, DTOs, the workflow types and the item movement validator.
Nothing here touches the ORM, the database, or I/O (SystemClock aside).
"""

from warehouse_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from warehouse_kernel.domain.dtos import (
    BalanceSnapshot,
    LedgerAppendResult,
    LedgerAppendStatus,
    LedgerEntryDraft,
    LedgerEntryRecord,
    SourceType,
    ValidationError,
    ValidationResult,
)
from warehouse_kernel.domain.values import AuditTrail, BalanceKey
from warehouse_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "AuditTrail",
    "BalanceKey",
    "SourceType",
    "BalanceSnapshot",
    "LedgerEntryDraft",
    "LedgerEntryRecord",
    "LedgerAppendStatus",
    "LedgerAppendResult",
    "ValidationError",
    "ValidationResult",
    "Guard",
    "Transition",
    "Workflow",
]
