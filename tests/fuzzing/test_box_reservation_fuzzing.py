"""
Property-based tests for transport box reservations.

Random sequences of add/remove requests are replayed against a box and
checked against a simple model: a box never holds more than was reserved,
the ledger never goes negative and the stored balance always equals the
replayed movements.
"""

from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from warehouse_kernel.domain.movement_validator import validate_quantity
from warehouse_modules.transport.models import BoxState

from tests.fakes import TEST_ACTOR, unique_product

INITIAL_STOCK = Decimal("50")

quantities = st.decimals(
    min_value=Decimal("0.001"),
    max_value=Decimal("30"),
    places=3,
    allow_nan=False,
    allow_infinity=False,
)

operations = st.lists(
    st.tuples(st.sampled_from(["add", "remove"]), quantities),
    min_size=1,
    max_size=12,
)


class TestBoxReservationModel:

    @given(ops=operations)
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_box_and_ledger_agree_with_model(self, ops, engine, catalog):
        product = unique_product(catalog)
        assert engine.receive_stock(product, INITIAL_STOCK, actor=TEST_ACTOR).is_success
        box_id = engine.create_box(actor=TEST_ACTOR).value.id

        available = INITIAL_STOCK
        held = Decimal(0)
        loading = False

        for action, quantity in ops:
            if action == "add":
                result = engine.add_item(box_id, product, quantity, actor=TEST_ACTOR)
                if quantity <= available:
                    assert result.is_success, result.error_message
                    available -= quantity
                    held += quantity
                    loading = True
                else:
                    assert result.error_code == "INSUFFICIENT_STOCK"
            else:
                result = engine.remove_item(box_id, product, quantity, actor=TEST_ACTOR)
                if not loading:
                    assert result.error_code == "INVALID_BOX_STATE"
                elif quantity <= held:
                    assert result.is_success, result.error_message
                    available += quantity
                    held -= quantity
                else:
                    assert result.error_code == "INSUFFICIENT_STOCK"

        box = engine.get_box(box_id).value
        assert box.state == (BoxState.ITEMS_LOADING if loading else BoxState.NEW)
        assert box.quantity_of(product) == held
        assert all(item.quantity > 0 for item in box.items)
        assert engine.balance_of(product).value == available
        assert engine.ledger_selector.replay_balance(product) == available
        assert min(m.balance_after for m in engine.movements(product).value) >= 0

    @given(ops=operations)
    @settings(
        max_examples=15,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_cancel_always_restores_stock(self, ops, engine, catalog):
        product = unique_product(catalog)
        engine.receive_stock(product, INITIAL_STOCK, actor=TEST_ACTOR)
        box_id = engine.create_box(actor=TEST_ACTOR).value.id
        for action, quantity in ops:
            if action == "add":
                engine.add_item(box_id, product, quantity, actor=TEST_ACTOR)
            else:
                engine.remove_item(box_id, product, quantity, actor=TEST_ACTOR)

        result = engine.cancel(box_id, actor=TEST_ACTOR)

        assert result.value.state == BoxState.CANCELLED
        assert engine.balance_of(product).value == INITIAL_STOCK
        assert engine.ledger_selector.replay_balance(product) == INITIAL_STOCK


class TestQuantityValidationFuzzing:

    @given(
        value=st.one_of(
            st.decimals(min_value=Decimal("-1000000"), max_value=Decimal("1000000")),
            st.sampled_from([Decimal("NaN"), Decimal("sNaN"), Decimal("Infinity"), Decimal("-Infinity")]),
        )
    )
    @settings(max_examples=200)
    def test_never_raises(self, value):
        result = validate_quantity(value, places=9)
        if result.is_valid:
            assert value.is_finite() and value > 0

    @given(value=st.one_of(st.floats(), st.text(max_size=10), st.none(), st.booleans()))
    @settings(max_examples=100)
    def test_non_decimal_rejected(self, value):
        result = validate_quantity(value)
        assert not result.is_valid
        assert result.errors[0].code == "INVALID_QUANTITY"


@pytest.mark.parametrize("places", [0, 3, 9])
def test_places_boundary(places):
    exact = Decimal(1).scaleb(-places)
    finer = Decimal(1).scaleb(-(places + 1))

    assert validate_quantity(exact, places=places).is_valid
    assert not validate_quantity(finer, places=places).is_valid
