"""
Values -- Immutable domain value objects shared by every aggregate.

Responsibility:
    AuditTrail is embedded by composition in every persisted aggregate DTO
    (boxes, manufacture logs, stock-taking results) instead of inheriting
    audit columns from a common base.  BalanceKey identifies one ledger
    balance.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A lot of ``None`` (no lot) and a lot of ``""`` (empty lot) are distinct
      balance keys.  Neither is ever coerced into the other.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class AuditTrail:
    """
    Who created / last changed a record, and when.

    Guarantees:
        - Immutable.  A change produces a new AuditTrail via ``touched()``.
        - ``updated_at`` is never earlier than ``created_at``.
    """

    created_at: datetime
    created_by: str
    updated_at: datetime | None = None
    updated_by: str | None = None

    def __post_init__(self) -> None:
        if self.updated_at is not None and self.updated_at < self.created_at:
            raise ValueError("updated_at cannot precede created_at")

    @classmethod
    def created(cls, at: datetime, by: str) -> AuditTrail:
        return cls(created_at=at, created_by=by)

    def touched(self, at: datetime, by: str) -> AuditTrail:
        return AuditTrail(
            created_at=self.created_at,
            created_by=self.created_by,
            updated_at=at,
            updated_by=by,
        )

    @property
    def last_modified_at(self) -> datetime:
        return self.updated_at or self.created_at


@dataclass(frozen=True, slots=True)
class BalanceKey:
    """Product plus optional lot; the unit the ledger keeps a balance for."""

    product_code: str
    lot_code: str | None = None

    def __post_init__(self) -> None:
        if not self.product_code or not self.product_code.strip():
            raise ValueError("product_code must be non-empty")

    def __str__(self) -> str:
        if self.lot_code is None:
            return self.product_code
        return f"{self.product_code}@{self.lot_code!r}"
