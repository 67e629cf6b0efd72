"""
Item movement validator tests.

Pure functions, no database: every check takes a box DTO and a balance
snapshot and answers with a ValidationResult.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from warehouse_kernel.domain.dtos import BalanceSnapshot, ValidationError, ValidationResult
from warehouse_kernel.domain.movement_validator import (
    ITEM_ADD_STATES,
    ITEM_REMOVE_STATES,
    MAX_QUANTITY,
    raise_for_result,
    unknown_product,
    validate_add,
    validate_consumption,
    validate_quantity,
    validate_remove,
)
from warehouse_kernel.domain.values import AuditTrail
from warehouse_kernel.exceptions import (
    InsufficientStockError,
    InvalidBoxStateError,
    InvalidQuantityError,
    UnknownProductError,
)
from warehouse_modules.transport.models import BoxState, TransportBox, TransportBoxItem

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _box(state: BoxState, *items: TransportBoxItem) -> TransportBox:
    return TransportBox(
        id=uuid4(),
        state=state,
        audit=AuditTrail.created(NOW, "alice"),
        state_changed_at=NOW,
        version=1,
        items=items,
    )


def _item(product_code="SKU-9", quantity="4", lot_code=None) -> TransportBoxItem:
    return TransportBoxItem(
        id=uuid4(),
        product_code=product_code,
        quantity=Decimal(quantity),
        added_by="alice",
        added_at=NOW,
        lot_code=lot_code,
    )


def _balance(quantity, product_code="SKU-9", lot_code=None) -> BalanceSnapshot:
    return BalanceSnapshot(
        product_code=product_code,
        lot_code=lot_code,
        quantity=Decimal(quantity),
        version=1,
    )


# =============================================================================
# Quantities
# =============================================================================


class TestValidateQuantity:

    @pytest.mark.parametrize("quantity", [Decimal("1"), Decimal("0.001"), 7])
    def test_positive_quantities_are_valid(self, quantity):
        assert validate_quantity(quantity).is_valid

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-1"), -3])
    def test_zero_and_negative_rejected(self, quantity):
        result = validate_quantity(quantity)

        assert not result
        assert result.first_error.code == "INVALID_QUANTITY"
        assert result.first_error.details["reason"] == "must be positive"

    @pytest.mark.parametrize("quantity", [1.5, "3", None, True])
    def test_non_decimal_types_rejected(self, quantity):
        result = validate_quantity(quantity)

        assert not result
        assert "must be Decimal" in result.first_error.message

    @pytest.mark.parametrize("quantity", [Decimal("NaN"), Decimal("Infinity")])
    def test_non_finite_rejected(self, quantity):
        assert validate_quantity(quantity).first_error.details["reason"] == "must be finite"

    def test_zero_allowed_when_counting(self):
        assert validate_quantity(Decimal("0"), allow_zero=True).is_valid

    def test_negative_rejected_even_when_zero_allowed(self):
        result = validate_quantity(Decimal("-1"), allow_zero=True)
        assert result.first_error.details["reason"] == "must not be negative"

    def test_quantity_beyond_column_range_rejected(self):
        assert validate_quantity(MAX_QUANTITY - 1).is_valid
        assert not validate_quantity(MAX_QUANTITY).is_valid
        assert not validate_quantity(Decimal("1E+20"), allow_zero=True).is_valid

    def test_decimal_places_limit(self):
        assert validate_quantity(Decimal("1.125"), places=3).is_valid
        assert not validate_quantity(Decimal("1.1255"), places=3).is_valid

    def test_trailing_zeros_do_not_count_as_places(self):
        assert validate_quantity(Decimal("2.500000"), places=1).is_valid

    def test_field_name_reported(self):
        result = validate_quantity(Decimal("0"), field="counted_amount")
        assert result.first_error.field == "counted_amount"


# =============================================================================
# Box item moves
# =============================================================================


class TestValidateAdd:

    @pytest.mark.parametrize("state", [BoxState.NEW, BoxState.ITEMS_LOADING])
    def test_add_allowed_while_loading(self, state):
        assert validate_add(_box(state), _item(quantity="4"), _balance("10")).is_valid

    @pytest.mark.parametrize(
        "state",
        [BoxState.PICKING_REQUESTED, BoxState.PACKED, BoxState.SHIPPED, BoxState.CANCELLED],
    )
    def test_add_refused_after_loading(self, state):
        result = validate_add(_box(state), _item(), _balance("10"))

        assert result.first_error.code == "INVALID_BOX_STATE"
        assert result.first_error.details["allowed_states"] == ITEM_ADD_STATES

    def test_add_of_exact_balance_allowed(self):
        assert validate_add(_box(BoxState.NEW), _item(quantity="10"), _balance("10")).is_valid

    def test_add_above_balance_refused(self):
        result = validate_add(_box(BoxState.NEW), _item(quantity="12"), _balance("10"))

        error = result.first_error
        assert error.code == "INSUFFICIENT_STOCK"
        assert error.details["requested"] == "12"
        assert error.details["available"] == "10"

    def test_state_checked_before_stock(self):
        result = validate_add(_box(BoxState.PACKED), _item(quantity="12"), _balance("10"))
        assert result.first_error.code == "INVALID_BOX_STATE"


class TestValidateRemove:

    def test_remove_only_while_items_loading(self):
        assert ITEM_REMOVE_STATES == ("items_loading",)
        box = _box(BoxState.NEW)
        assert validate_remove(box, _item()).first_error.code == "INVALID_BOX_STATE"

    def test_remove_up_to_what_box_holds(self):
        box = _box(BoxState.ITEMS_LOADING, _item(quantity="3"), _item(quantity="2"))

        assert validate_remove(box, _item(quantity="5")).is_valid
        assert validate_remove(box, _item(quantity="6")).first_error.code == "INSUFFICIENT_STOCK"

    def test_lots_are_held_separately(self):
        box = _box(
            BoxState.ITEMS_LOADING,
            _item(quantity="3", lot_code="L1"),
            _item(quantity="3"),
        )

        result = validate_remove(box, _item(quantity="4", lot_code="L1"))

        assert result.first_error.details["available"] == "3"
        assert result.first_error.details["lot_code"] == "L1"

    def test_empty_lot_is_not_no_lot(self):
        box = _box(BoxState.ITEMS_LOADING, _item(quantity="3", lot_code=""))
        assert not validate_remove(box, _item(quantity="1", lot_code=None)).is_valid


class TestValidateConsumption:

    def test_consumption_within_balance(self):
        assert validate_consumption("RAW-A", Decimal("2"), _balance("2", "RAW-A")).is_valid

    def test_consumption_above_balance(self):
        result = validate_consumption("RAW-A", Decimal("3"), _balance("2", "RAW-A"))
        assert result.first_error.details["product_code"] == "RAW-A"


# =============================================================================
# raise_for_result
# =============================================================================


class TestRaiseForResult:

    def test_success_does_not_raise(self):
        raise_for_result(ValidationResult.success())

    def test_insufficient_stock_raised_with_details(self):
        result = validate_add(_box(BoxState.NEW), _item(quantity="12", lot_code="L7"), _balance("10"))

        with pytest.raises(InsufficientStockError) as exc_info:
            raise_for_result(result)

        assert exc_info.value.product_code == "SKU-9"
        assert exc_info.value.lot_code == "L7"
        assert exc_info.value.available == "10"

    def test_invalid_state_raised(self):
        with pytest.raises(InvalidBoxStateError) as exc_info:
            raise_for_result(validate_add(_box(BoxState.SHIPPED), _item(), _balance("1")))
        assert exc_info.value.current_state == "shipped"

    def test_invalid_quantity_raised(self):
        with pytest.raises(InvalidQuantityError):
            raise_for_result(validate_quantity(Decimal("-2")))

    def test_unknown_product_raised(self):
        with pytest.raises(UnknownProductError) as exc_info:
            raise_for_result(unknown_product("NOPE"))
        assert exc_info.value.product_code == "NOPE"

    def test_unmapped_code_is_value_error(self):
        result = ValidationResult.failure(ValidationError(code="SOMETHING_ELSE", message="x"))
        with pytest.raises(ValueError, match="SOMETHING_ELSE"):
            raise_for_result(result)
