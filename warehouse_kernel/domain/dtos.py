"""
Data Transfer Objects for the stock ledger.

Responsibility:
    Immutable carriers that cross the boundary between the ledger service,
    the validator and the aggregate modules.  No ORM objects ever leave the
    kernel; callers only see these frozen dataclasses.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.

Invariants enforced:
    - LedgerEntryDraft deltas are non-zero Decimals (no floats).
    - ValidationResult.is_valid is True only when there are no errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from warehouse_kernel.db.types import quantity_from
from warehouse_kernel.domain.values import BalanceKey


class SourceType(Enum):
    """Kind of operation that produced a ledger entry."""
    TRANSPORT_BOX = "transport_box"
    GIFT_PACKAGE = "gift_package"
    STOCK_TAKING = "stock_taking"
    RECEIPT = "receipt"


@dataclass(frozen=True)
class ValidationError:
    """
    A single validation error.

    Contract:
        Carries a machine-readable code, human-readable message, optional field
        name, and optional details dict.  ``details`` holds the keyword
        arguments of the typed exception matching ``code``.

    Non-goals:
        - Does NOT raise exceptions -- it IS the error representation.
    """

    code: str
    message: str
    field: str | None = None
    details: dict[str, Any] | None = None


@dataclass(frozen=True)
class ValidationResult:
    """
    Result of validation.

    Guarantees:
        - errors is always a tuple (never None)
        - bool(result) == result.is_valid for convenience
    """

    is_valid: bool
    errors: tuple[ValidationError, ...] = field(default_factory=tuple)

    @classmethod
    def success(cls) -> ValidationResult:
        """Create a successful validation result."""
        return cls(is_valid=True, errors=())

    @classmethod
    def failure(cls, *errors: ValidationError) -> ValidationResult:
        """Create a failed validation result."""
        return cls(is_valid=False, errors=tuple(errors))

    def __bool__(self) -> bool:
        return self.is_valid

    @property
    def first_error(self) -> ValidationError | None:
        return self.errors[0] if self.errors else None


@dataclass(frozen=True)
class BalanceSnapshot:
    """
    Balance of one product/lot as read at a point in time.

    ``version`` is the optimistic-concurrency token of the balance row; it is
    0 when no movement was ever recorded for the key.  Passing the snapshot
    back to ``StockLedgerService.append(expected=...)`` makes the append fail
    if anything committed in between.
    """

    product_code: str
    lot_code: str | None
    quantity: Decimal
    version: int

    @property
    def key(self) -> BalanceKey:
        return BalanceKey(self.product_code, self.lot_code)


@dataclass(frozen=True)
class LedgerEntryDraft:
    """
    A movement requested by an operation, not yet recorded.

    ``is_correction`` marks stock-taking corrections, which bypass the
    non-negative guard.  ``reversal_of_id`` links a compensating entry to the
    entry it undoes.
    """

    product_code: str
    delta: Decimal
    source_type: SourceType
    source_id: UUID
    idempotency_key: str
    actor: str
    lot_code: str | None = None
    is_correction: bool = False
    reversal_of_id: UUID | None = None

    def __post_init__(self) -> None:
        delta = quantity_from(self.delta)
        if delta == 0:
            raise ValueError("Ledger entry delta must be non-zero")
        object.__setattr__(self, "delta", delta)
        if not self.idempotency_key:
            raise ValueError("Ledger entry requires an idempotency key")
        if not self.product_code:
            raise ValueError("Ledger entry requires a product code")

    @property
    def key(self) -> BalanceKey:
        return BalanceKey(self.product_code, self.lot_code)


@dataclass(frozen=True)
class LedgerEntryRecord:
    """A recorded, immutable ledger entry."""

    id: UUID
    product_code: str
    lot_code: str | None
    delta: Decimal
    balance_after: Decimal
    occurred_at: datetime
    source_type: SourceType
    source_id: UUID
    idempotency_key: str
    actor: str
    is_correction: bool = False
    reversal_of_id: UUID | None = None

    def same_movement_as(self, draft: LedgerEntryDraft) -> bool:
        """True when ``draft`` describes the movement this entry recorded."""
        return (
            self.product_code == draft.product_code
            and self.lot_code == draft.lot_code
            and self.delta == draft.delta
            and self.source_type == draft.source_type
            and self.source_id == draft.source_id
        )


class LedgerAppendStatus(Enum):
    """Outcome of StockLedgerService.append()."""
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


@dataclass(frozen=True)
class LedgerAppendResult:
    """
    Result of appending a ledger entry.

    ``ALREADY_APPLIED`` carries the entry recorded by the first attempt, so a
    retried call sees exactly the balance that attempt computed.
    """

    status: LedgerAppendStatus
    entry: LedgerEntryRecord

    @property
    def balance(self) -> Decimal:
        return self.entry.balance_after

    @property
    def is_replay(self) -> bool:
        return self.status == LedgerAppendStatus.ALREADY_APPLIED
