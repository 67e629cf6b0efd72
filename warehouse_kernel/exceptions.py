"""
Typed Exception Hierarchy for the Warehouse Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every quantity-affecting operation can be refused for a small, well known set
of reasons. Callers (the API layer, operator tooling, automated jobs) branch on
those reasons: a ConcurrentModificationError is re-read and retried, an
InsufficientStockError is shown to a warehouse worker, an
ExternalDependencyFailureError is retried later.

Every exception therefore carries:
  1. A TYPE (catch by class, not by message text)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA as attributes (product_code, box_id, states, ...)

Example:
    try:
        ledger.append(draft, expected=snapshot)
    except ConcurrentModificationError as e:
        log.info("retrying", extra={"resource": e.resource})
    except InsufficientStockError as e:
        api_response(code=e.code, product=e.product_code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WarehouseKernelError (base)
    |
    +-- MovementError
    |   +-- InsufficientStockError
    |   +-- InvalidQuantityError
    |   +-- UnknownProductError
    |   +-- IdempotencyKeyReusedError
    |   +-- EmptyAssemblyError
    |   +-- LedgerEntryNotFoundError
    |   +-- EntryAlreadyReversedError
    |   +-- ManufactureLogNotFoundError
    |
    +-- TransportBoxError
    |   +-- TransportBoxNotFoundError
    |   +-- InvalidBoxStateError
    |   +-- IncompletePickingError
    |   +-- InvalidBoxCodeError
    |   +-- DuplicateBoxCodeError
    |   +-- PickingLineNotFoundError
    |   +-- EmptyBoxError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ExternalDependencyFailureError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                         | When Raised
-------------|------------------------------|--------------------------------------
Movement     | INSUFFICIENT_STOCK           | Balance would go negative
             | INVALID_QUANTITY             | Zero / negative / non-Decimal amount
             | UNKNOWN_PRODUCT              | Catalog does not know the code
             | IDEMPOTENCY_KEY_REUSED       | Same key, different payload
             | EMPTY_ASSEMBLY               | Gift package with no consumed items
             | LEDGER_ENTRY_NOT_FOUND       | Reversal of an unknown entry
             | ENTRY_ALREADY_REVERSED       | Reversal exceeds what is left to undo
             | MANUFACTURE_LOG_NOT_FOUND    | No gift package log with that id
-------------|------------------------------|--------------------------------------
Box          | TRANSPORT_BOX_NOT_FOUND      | No box with that id
             | INVALID_BOX_STATE            | Operation illegal in current state
             | INCOMPLETE_PICKING           | Picking list not fully acknowledged
             | INVALID_BOX_CODE             | Code does not match the pattern
             | DUPLICATE_BOX_CODE           | Code used by another active box
             | PICKING_LINE_NOT_FOUND       | No picking line with that number
             | EMPTY_BOX                    | Picking requested for a box without items
-------------|------------------------------|--------------------------------------
Concurrency  | CONCURRENT_MODIFICATION      | Optimistic check lost a race
-------------|------------------------------|--------------------------------------
Immutability | IMMUTABILITY_VIOLATION       | Update/delete of a ledger entry
-------------|------------------------------|--------------------------------------
External     | EXTERNAL_DEPENDENCY_FAILURE  | Picking generator / catalog failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CONCURRENCY IS THE CALLER'S RETRY:

    The engine never retries on its own. A ConcurrentModificationError means
    "re-read state, decide again". The correct new state cannot be predicted
    from inside the failed attempt.

2. GUARD FAILURES ARE FINAL FOR THAT REQUEST:

    InvalidBoxStateError, IncompletePickingError and InsufficientStockError
    describe the world as it is. Retrying without a change will fail again.

3. EXTERNAL FAILURES LEAVE AGGREGATES UNTOUCHED:

    ExternalDependencyFailureError is raised before any state change is
    flushed, so the same request is always safe to retry.
"""


class WarehouseKernelError(Exception):
    """
    Base exception for all warehouse kernel errors.

    All subclasses must define a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "WAREHOUSE_KERNEL_ERROR"

    @property
    def details(self) -> dict[str, str]:
        """Structured attributes as strings, for result payloads."""
        return {
            key: str(value)
            for key, value in vars(self).items()
            if not key.startswith("_") and value is not None
        }


# Movement-related exceptions


class MovementError(WarehouseKernelError):
    """Base exception for stock movement errors."""

    code: str = "MOVEMENT_ERROR"


class InsufficientStockError(MovementError):
    """Movement would drive the balance of a product/lot negative."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_code: str,
        requested: str,
        available: str,
        lot_code: str | None = None,
    ):
        self.product_code = product_code
        self.lot_code = lot_code
        self.requested = requested
        self.available = available
        lot_part = f" lot {lot_code}" if lot_code is not None else ""
        super().__init__(
            f"Insufficient stock for {product_code}{lot_part}: "
            f"requested {requested}, available {available}"
        )


class InvalidQuantityError(MovementError):
    """Quantity is not a positive Decimal."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: str, reason: str):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


class UnknownProductError(MovementError):
    """Product code does not resolve against catalog master data."""

    code: str = "UNKNOWN_PRODUCT"

    def __init__(self, product_code: str):
        self.product_code = product_code
        super().__init__(f"Unknown product: {product_code}")


class IdempotencyKeyReusedError(MovementError):
    """Idempotency key already used for a different movement."""

    code: str = "IDEMPOTENCY_KEY_REUSED"

    def __init__(self, idempotency_key: str, existing_entry_id: str):
        self.idempotency_key = idempotency_key
        self.existing_entry_id = existing_entry_id
        super().__init__(
            f"Idempotency key {idempotency_key} already used by entry "
            f"{existing_entry_id} with a different payload"
        )


class EmptyAssemblyError(MovementError):
    """Gift package assembly requested without consumed items."""

    code: str = "EMPTY_ASSEMBLY"

    def __init__(self, target_code: str):
        self.target_code = target_code
        super().__init__(
            f"Gift package {target_code} cannot be assembled without consumed items"
        )


class LedgerEntryNotFoundError(MovementError):
    """Ledger entry to reverse does not exist."""

    code: str = "LEDGER_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Ledger entry not found: {entry_id}")


class EntryAlreadyReversedError(MovementError):
    """Reversal quantity exceeds the part of the entry not yet reversed."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, entry_id: str, requested: str, remaining: str):
        self.entry_id = entry_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Cannot reverse {requested} of entry {entry_id}: only {remaining} left"
        )


class ManufactureLogNotFoundError(MovementError):
    """Gift package manufacture log with given ID was not found."""

    code: str = "MANUFACTURE_LOG_NOT_FOUND"

    def __init__(self, log_id: str):
        self.log_id = log_id
        super().__init__(f"Manufacture log not found: {log_id}")


# Transport box exceptions


class TransportBoxError(WarehouseKernelError):
    """Base exception for transport box errors."""

    code: str = "TRANSPORT_BOX_ERROR"


class TransportBoxNotFoundError(TransportBoxError):
    """Transport box with given ID was not found."""

    code: str = "TRANSPORT_BOX_NOT_FOUND"

    def __init__(self, box_id: str):
        self.box_id = box_id
        super().__init__(f"Transport box not found: {box_id}")


class InvalidBoxStateError(TransportBoxError):
    """Operation is not permitted in the box's current state."""

    code: str = "INVALID_BOX_STATE"

    def __init__(
        self,
        box_id: str,
        current_state: str,
        operation: str,
        allowed_states: tuple[str, ...] = (),
    ):
        self.box_id = box_id
        self.current_state = current_state
        self.operation = operation
        self.allowed_states = ",".join(allowed_states) if allowed_states else None
        required = (
            f" ({', '.join(allowed_states)} required)" if allowed_states else ""
        )
        super().__init__(
            f"Cannot {operation} box {box_id} in state {current_state}{required}"
        )


class IncompletePickingError(TransportBoxError):
    """Picking list has lines that were not acknowledged as picked."""

    code: str = "INCOMPLETE_PICKING"

    def __init__(self, box_id: str, open_lines: int, total_lines: int):
        self.box_id = box_id
        self.open_lines = open_lines
        self.total_lines = total_lines
        super().__init__(
            f"Box {box_id} has {open_lines} of {total_lines} picking lines not picked"
        )


class InvalidBoxCodeError(TransportBoxError):
    """Box code does not match the configured pattern."""

    code: str = "INVALID_BOX_CODE"

    def __init__(self, box_code: str, pattern: str):
        self.box_code = box_code
        self.pattern = pattern
        super().__init__(f"Box code {box_code!r} does not match {pattern}")


class DuplicateBoxCodeError(TransportBoxError):
    """Box code is already assigned to another active box."""

    code: str = "DUPLICATE_BOX_CODE"

    def __init__(self, box_code: str, existing_box_id: str):
        self.box_code = box_code
        self.existing_box_id = existing_box_id
        super().__init__(
            f"Box code {box_code} is already used by active box {existing_box_id}"
        )


class PickingLineNotFoundError(TransportBoxError):
    """Picking line number does not exist for the box."""

    code: str = "PICKING_LINE_NOT_FOUND"

    def __init__(self, box_id: str, line_no: int):
        self.box_id = box_id
        self.line_no = line_no
        super().__init__(f"Picking line {line_no} not found for box {box_id}")


class EmptyBoxError(TransportBoxError):
    """Box has no items to pick."""

    code: str = "EMPTY_BOX"

    def __init__(self, box_id: str):
        self.box_id = box_id
        super().__init__(f"Box {box_id} must contain at least one item")


# Concurrency exceptions


class ConcurrencyError(WarehouseKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """
    Optimistic check lost a race against another writer.

    Designed to be retried by the caller after re-reading state.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        resource: str,
        resource_id: str,
        expected: str | None = None,
        actual: str | None = None,
    ):
        self.resource = resource
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        detail = ""
        if expected is not None or actual is not None:
            detail = f" (expected {expected}, found {actual})"
        super().__init__(
            f"Concurrent modification of {resource} {resource_id}{detail}"
        )


# Immutability exceptions


class ImmutabilityError(WarehouseKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# External collaborators


class ExternalDependencyFailureError(WarehouseKernelError):
    """Picking-list generator or catalog was unreachable or returned an error."""

    code: str = "EXTERNAL_DEPENDENCY_FAILURE"

    def __init__(self, dependency: str, reason: str):
        self.dependency = dependency
        self.reason = reason
        super().__init__(f"{dependency} failed: {reason}")
