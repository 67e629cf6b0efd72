"""
Item Movement Validator -- pure legality checks for stock movements.

Responsibility:
    Decides whether an item add/remove on a transport box, or a consumption
    of raw items, is legal given the box state and a ledger balance snapshot.
    Returns ValidationResult values; never raises for business failures and
    never touches the database.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Items are added only while a box is ``new`` or ``items_loading`` and
      removed only while it is ``items_loading``.
    - A consumption, box load or box removal never drives a balance below
      zero.  Stock-taking corrections do not pass through here.
    - Quantities are positive Decimals.

Usage:
    Services read a BalanceSnapshot, validate against it, then append with
    ``expected=snapshot`` so a commit in between is detected as a conflict:

        snapshot = ledger.read_balance(product, lot)
        raise_for_result(validate_consumption(product, qty, snapshot))
        ledger.append(draft, expected=snapshot)
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Protocol
from uuid import UUID

from warehouse_kernel.domain.dtos import (
    BalanceSnapshot,
    ValidationError,
    ValidationResult,
)
from warehouse_kernel.exceptions import (
    InsufficientStockError,
    InvalidBoxStateError,
    InvalidQuantityError,
    UnknownProductError,
    WarehouseKernelError,
)

ITEM_ADD_STATES: tuple[str, ...] = ("new", "items_loading")
ITEM_REMOVE_STATES: tuple[str, ...] = ("items_loading",)

# Numeric(38, 9) columns hold at most 29 integer digits; stay well inside.
MAX_QUANTITY = Decimal(10) ** 18


class BoxItemLike(Protocol):
    product_code: str
    lot_code: str | None
    quantity: Decimal


class BoxLike(Protocol):
    id: UUID
    state: Enum
    items: Iterable[BoxItemLike]


def validate_quantity(
    quantity: Any,
    field: str = "quantity",
    places: int | None = None,
    allow_zero: bool = False,
) -> ValidationResult:
    """Quantity must be a finite, strictly positive Decimal or int.

    With ``places`` set, at most that many decimal places are accepted.
    ``allow_zero`` admits zero (a counted amount may be nothing).
    """
    if isinstance(quantity, bool) or not isinstance(quantity, (Decimal, int)):
        return _invalid_quantity(quantity, f"must be Decimal, got {type(quantity).__name__}", field)
    if isinstance(quantity, Decimal) and not quantity.is_finite():
        return _invalid_quantity(quantity, "must be finite", field)
    if quantity < 0 or (quantity == 0 and not allow_zero):
        reason = "must not be negative" if allow_zero else "must be positive"
        return _invalid_quantity(quantity, reason, field)
    if quantity >= MAX_QUANTITY:
        return _invalid_quantity(quantity, f"must be below {MAX_QUANTITY}", field)
    if places is not None and isinstance(quantity, Decimal):
        if quantity.normalize().as_tuple().exponent < -places:
            return _invalid_quantity(
                quantity, f"more than {places} decimal places", field
            )
    return ValidationResult.success()


def validate_add(
    box: BoxLike,
    item: BoxItemLike,
    balance: BalanceSnapshot,
) -> ValidationResult:
    """Adding reserves stock: the box must accept items and stock must cover it."""
    state_check = _require_state(box, "add item", ITEM_ADD_STATES)
    if not state_check:
        return state_check
    quantity_check = validate_quantity(item.quantity)
    if not quantity_check:
        return quantity_check
    return _require_available(item.product_code, item.lot_code, item.quantity, balance.quantity)


def validate_remove(box: BoxLike, item: BoxItemLike) -> ValidationResult:
    """Removal can only take back what the box holds for that product/lot."""
    state_check = _require_state(box, "remove item", ITEM_REMOVE_STATES)
    if not state_check:
        return state_check
    quantity_check = validate_quantity(item.quantity)
    if not quantity_check:
        return quantity_check
    held = sum(
        (
            i.quantity
            for i in box.items
            if i.product_code == item.product_code and i.lot_code == item.lot_code
        ),
        Decimal(0),
    )
    return _require_available(item.product_code, item.lot_code, item.quantity, held)


def validate_consumption(
    product_code: str,
    quantity: Decimal,
    balance: BalanceSnapshot,
) -> ValidationResult:
    quantity_check = validate_quantity(quantity)
    if not quantity_check:
        return quantity_check
    return _require_available(product_code, balance.lot_code, quantity, balance.quantity)


def unknown_product(product_code: str) -> ValidationResult:
    return ValidationResult.failure(
        ValidationError(
            code=UnknownProductError.code,
            message=f"Unknown product: {product_code}",
            field="product_code",
            details={"product_code": product_code},
        )
    )


_EXCEPTION_BY_CODE: dict[str, type[WarehouseKernelError]] = {
    InvalidBoxStateError.code: InvalidBoxStateError,
    InsufficientStockError.code: InsufficientStockError,
    InvalidQuantityError.code: InvalidQuantityError,
    UnknownProductError.code: UnknownProductError,
}


def raise_for_result(result: ValidationResult) -> None:
    """
    Raise the typed exception matching the first error of a failed result.

    Raises:
        InvalidBoxStateError, InsufficientStockError, InvalidQuantityError,
        UnknownProductError: depending on the error code.
        ValueError: for an error code with no exception mapping.
    """
    if result.is_valid:
        return
    error = result.errors[0]
    exc_class = _EXCEPTION_BY_CODE.get(error.code)
    if exc_class is None:
        raise ValueError(f"{error.code}: {error.message}")
    raise exc_class(**(error.details or {}))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_state(
    box: BoxLike,
    operation: str,
    allowed: tuple[str, ...],
) -> ValidationResult:
    state = box.state.value
    if state in allowed:
        return ValidationResult.success()
    return ValidationResult.failure(
        ValidationError(
            code=InvalidBoxStateError.code,
            message=f"Cannot {operation} in state {state}",
            field="state",
            details={
                "box_id": str(box.id),
                "current_state": state,
                "operation": operation,
                "allowed_states": allowed,
            },
        )
    )


def _require_available(
    product_code: str,
    lot_code: str | None,
    requested: Decimal,
    available: Decimal,
) -> ValidationResult:
    if available >= requested:
        return ValidationResult.success()
    return ValidationResult.failure(
        ValidationError(
            code=InsufficientStockError.code,
            message=(
                f"Insufficient stock for {product_code}: "
                f"requested {requested}, available {available}"
            ),
            field="quantity",
            details={
                "product_code": product_code,
                "lot_code": lot_code,
                "requested": str(requested),
                "available": str(available),
            },
        )
    )


def _invalid_quantity(quantity: Any, reason: str, field: str) -> ValidationResult:
    return ValidationResult.failure(
        ValidationError(
            code=InvalidQuantityError.code,
            message=f"Invalid quantity {quantity}: {reason}",
            field=field,
            details={"quantity": str(quantity), "reason": reason},
        )
    )
