"""
Transport box lifecycle tests.

Covers the workflow from creation to shipment or cancellation, the stock
reservations made by loading items, picking-list handling, box codes and
the optimistic checks on transition requests.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from warehouse_config.schema import TransportConfig
from warehouse_kernel.domain.dtos import SourceType
from warehouse_kernel.exceptions import IncompletePickingError
from warehouse_modules._results import OperationStatus
from warehouse_modules.transport.models import BoxState
from warehouse_modules.transport.service import GUARD_CHECKS
from warehouse_modules.transport.workflows import PICKING_COMPLETE

from tests.fakes import TEST_ACTOR, FailingPickingListGenerator, FakePickingListGenerator


def _balance(engine, product_code="SKU-9", lot_code=None):
    return engine.balance_of(product_code, lot_code).value


# =============================================================================
# Creation
# =============================================================================


class TestCreateBox:

    def test_new_box(self, engine, deterministic_clock):
        result = engine.create_box(actor="alice", description="Store 12", location="DOCK-1")

        assert result.status == OperationStatus.SUCCEEDED
        box = result.value
        assert box.state == BoxState.NEW
        assert box.items == ()
        assert box.version == 1
        assert box.location == "DOCK-1"
        assert box.audit.created_by == "alice"
        assert box.audit.created_at == deterministic_clock.now()

    def test_creation_recorded_in_state_log(self, engine):
        box = engine.create_box(actor="alice").value

        assert len(box.state_log) == 1
        assert box.state_log[0].from_state is None
        assert box.state_log[0].to_state == BoxState.NEW

    def test_get_unknown_box(self, engine):
        result = engine.get_box(uuid4())

        assert result.status == OperationStatus.FAILED
        assert result.error_code == "TRANSPORT_BOX_NOT_FOUND"


# =============================================================================
# Items
# =============================================================================


class TestAddItem:

    def test_first_add_reserves_stock_and_starts_loading(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()

        result = engine.add_item(box_id, "SKU-9", Decimal("4"), actor=TEST_ACTOR)

        assert result.status == OperationStatus.SUCCEEDED
        box = result.value
        assert box.state == BoxState.ITEMS_LOADING
        assert box.quantity_of("SKU-9") == Decimal("4")
        assert _balance(engine) == Decimal("6")
        assert [c.to_state for c in box.state_log] == [BoxState.NEW, BoxState.ITEMS_LOADING]
        assert box.state_log[-1].description == "first item added"

    def test_reservation_entry_points_at_box(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()

        box = engine.add_item(box_id, "SKU-9", Decimal("4"), actor=TEST_ACTOR).value

        entries = engine.ledger_selector.entries_for_source(SourceType.TRANSPORT_BOX, box_id)
        assert len(entries) == 1
        assert entries[0].delta == Decimal("-4")
        assert entries[0].id == box.items[0].ledger_entry_id

    def test_second_add_keeps_state(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("4"), actor=TEST_ACTOR)

        box = engine.add_item(box_id, "SKU-9", Decimal("5"), actor=TEST_ACTOR).value

        assert box.state == BoxState.ITEMS_LOADING
        assert len(box.items) == 2
        assert len(box.state_log) == 2
        assert _balance(engine) == Decimal("1")

    def test_add_beyond_balance_refused_without_side_effects(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()

        result = engine.add_item(box_id, "SKU-9", Decimal("12"), actor=TEST_ACTOR)

        assert result.status == OperationStatus.FAILED
        assert result.error_code == "INSUFFICIENT_STOCK"
        assert result.details["product_code"] == "SKU-9"
        assert result.details["requested"] == "12"
        assert result.details["available"] == "10"
        box = engine.get_box(box_id).value
        assert box.state == BoxState.NEW
        assert box.items == ()
        assert _balance(engine) == Decimal("10")

    def test_lots_are_reserved_separately(self, engine, stock, new_box):
        stock("SKU-9", 3, lot_code="L1")
        stock("SKU-9", 10)
        box_id = new_box()

        result = engine.add_item(box_id, "SKU-9", Decimal("4"), actor=TEST_ACTOR, lot_code="L1")

        assert result.error_code == "INSUFFICIENT_STOCK"
        assert result.details["lot_code"] == "L1"

    def test_unknown_product(self, engine, new_box):
        result = engine.add_item(new_box(), "NOPE", Decimal("1"), actor=TEST_ACTOR)
        assert result.error_code == "UNKNOWN_PRODUCT"

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-1"), 1.5])
    def test_invalid_quantity(self, engine, stock, new_box, quantity):
        stock("SKU-9", 10)
        result = engine.add_item(new_box(), "SKU-9", quantity, actor=TEST_ACTOR)
        assert result.error_code == "INVALID_QUANTITY"

    def test_unknown_box(self, engine, stock):
        stock("SKU-9", 10)
        result = engine.add_item(uuid4(), "SKU-9", Decimal("1"), actor=TEST_ACTOR)

        assert result.error_code == "TRANSPORT_BOX_NOT_FOUND"
        assert _balance(engine) == Decimal("10")

    def test_retry_with_same_key_is_applied_once(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()

        first = engine.add_item(box_id, "SKU-9", Decimal("4"), actor=TEST_ACTOR, idempotency_key="scan-1")
        again = engine.add_item(box_id, "SKU-9", Decimal("4"), actor=TEST_ACTOR, idempotency_key="scan-1")

        assert first.status == OperationStatus.SUCCEEDED
        assert again.status == OperationStatus.ALREADY_APPLIED
        assert len(again.value.items) == 1
        assert _balance(engine) == Decimal("6")

    def test_same_key_for_other_quantity_refused(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("4"), actor=TEST_ACTOR, idempotency_key="scan-1")

        result = engine.add_item(box_id, "SKU-9", Decimal("5"), actor=TEST_ACTOR, idempotency_key="scan-1")

        assert result.error_code == "IDEMPOTENCY_KEY_REUSED"
        assert _balance(engine) == Decimal("6")

    def test_same_key_on_other_box_is_independent(self, engine, stock, new_box):
        stock("SKU-9", 10)

        engine.add_item(new_box(), "SKU-9", Decimal("4"), actor=TEST_ACTOR, idempotency_key="scan-1")
        result = engine.add_item(new_box(), "SKU-9", Decimal("4"), actor=TEST_ACTOR, idempotency_key="scan-1")

        assert result.status == OperationStatus.SUCCEEDED
        assert _balance(engine) == Decimal("2")


class TestRemoveItem:

    @pytest.fixture
    def loaded_box(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("3"), actor=TEST_ACTOR)
        engine.add_item(box_id, "SKU-9", Decimal("2"), actor=TEST_ACTOR)
        return box_id

    def test_partial_remove_takes_newest_first(self, engine, loaded_box):
        box = engine.remove_item(loaded_box, "SKU-9", Decimal("1"), actor=TEST_ACTOR).value

        assert [i.quantity for i in box.items] == [Decimal("3"), Decimal("1")]
        assert _balance(engine) == Decimal("6")

    def test_remove_spanning_items_deletes_emptied_ones(self, engine, loaded_box):
        box = engine.remove_item(loaded_box, "SKU-9", Decimal("4"), actor=TEST_ACTOR).value

        assert [i.quantity for i in box.items] == [Decimal("1")]
        assert _balance(engine) == Decimal("9")

    def test_release_entries_reverse_the_reservations(self, engine, loaded_box):
        before = engine.get_box(loaded_box).value
        engine.remove_item(loaded_box, "SKU-9", Decimal("5"), actor=TEST_ACTOR)

        for item in before.items:
            reversals = engine.ledger_selector.reversals_of(item.ledger_entry_id)
            assert sum(r.delta for r in reversals) == item.quantity
        assert engine.get_box(loaded_box).value.items == ()
        assert _balance(engine) == Decimal("10")

    def test_box_stays_loading_when_emptied(self, engine, loaded_box):
        box = engine.remove_item(loaded_box, "SKU-9", Decimal("5"), actor=TEST_ACTOR).value
        assert box.state == BoxState.ITEMS_LOADING

    def test_remove_more_than_held(self, engine, loaded_box):
        result = engine.remove_item(loaded_box, "SKU-9", Decimal("6"), actor=TEST_ACTOR)

        assert result.error_code == "INSUFFICIENT_STOCK"
        assert result.details["available"] == "5"
        assert _balance(engine) == Decimal("5")

    def test_remove_other_lot_than_loaded(self, engine, loaded_box):
        result = engine.remove_item(loaded_box, "SKU-9", Decimal("1"), actor=TEST_ACTOR, lot_code="L1")
        assert result.error_code == "INSUFFICIENT_STOCK"

    def test_remove_from_new_box_refused(self, engine, new_box):
        result = engine.remove_item(new_box(), "SKU-9", Decimal("1"), actor=TEST_ACTOR)

        assert result.error_code == "INVALID_BOX_STATE"
        assert result.details["current_state"] == "new"

    def test_retried_remove_is_applied_once(self, engine, loaded_box):
        engine.remove_item(loaded_box, "SKU-9", Decimal("1"), actor=TEST_ACTOR, idempotency_key="undo-1")
        again = engine.remove_item(loaded_box, "SKU-9", Decimal("1"), actor=TEST_ACTOR, idempotency_key="undo-1")

        assert again.status == OperationStatus.ALREADY_APPLIED
        assert again.value.quantity_of("SKU-9") == Decimal("4")
        assert _balance(engine) == Decimal("6")

    def test_retried_remove_spanning_items_is_applied_once(self, engine, loaded_box):
        engine.remove_item(loaded_box, "SKU-9", Decimal("4"), actor=TEST_ACTOR, idempotency_key="undo-2")
        again = engine.remove_item(loaded_box, "SKU-9", Decimal("4"), actor=TEST_ACTOR, idempotency_key="undo-2")

        assert again.status == OperationStatus.ALREADY_APPLIED
        assert again.value.quantity_of("SKU-9") == Decimal("1")
        assert _balance(engine) == Decimal("9")

    def test_key_reused_for_other_product(self, engine, stock, loaded_box):
        stock("SKU-1", 10)
        engine.add_item(loaded_box, "SKU-1", Decimal("4"), actor=TEST_ACTOR)
        engine.remove_item(loaded_box, "SKU-9", Decimal("1"), actor=TEST_ACTOR, idempotency_key="undo-1")

        result = engine.remove_item(loaded_box, "SKU-1", Decimal("3"), actor=TEST_ACTOR, idempotency_key="undo-1")

        assert result.error_code == "IDEMPOTENCY_KEY_REUSED"
        assert engine.get_box(loaded_box).value.quantity_of("SKU-1") == Decimal("4")
        assert engine.balance_of("SKU-1").value == Decimal("6")

    def test_key_reused_for_other_quantity(self, engine, loaded_box):
        engine.remove_item(loaded_box, "SKU-9", Decimal("1"), actor=TEST_ACTOR, idempotency_key="undo-1")

        result = engine.remove_item(loaded_box, "SKU-9", Decimal("2"), actor=TEST_ACTOR, idempotency_key="undo-1")

        assert result.error_code == "IDEMPOTENCY_KEY_REUSED"
        assert engine.get_box(loaded_box).value.quantity_of("SKU-9") == Decimal("4")
        assert _balance(engine) == Decimal("6")


# =============================================================================
# Picking
# =============================================================================


class TestRequestPicking:

    def test_picking_list_generated(self, engine, stock, new_box, picking_generator):
        stock("SKU-9", 10)
        stock("SKU-1", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("2"), actor=TEST_ACTOR)
        engine.add_item(box_id, "SKU-9", Decimal("1"), actor=TEST_ACTOR)
        engine.add_item(box_id, "SKU-1", Decimal("1"), actor=TEST_ACTOR)

        box = engine.request_picking(box_id, actor=TEST_ACTOR).value

        assert box.state == BoxState.PICKING_REQUESTED
        assert [(line.line_no, line.product_code, line.quantity) for line in box.picking_lines] == [
            (1, "SKU-9", Decimal("3")),
            (2, "SKU-1", Decimal("1")),
        ]
        assert box.state_log[-1].description == "picking list PL-0001"
        request = picking_generator.requests[0]
        assert request.box_id == box_id
        assert len(request.items) == 2

    def test_new_box_cannot_request_picking(self, engine, new_box):
        result = engine.request_picking(new_box(), actor=TEST_ACTOR)

        assert result.error_code == "INVALID_BOX_STATE"
        assert result.details["allowed_states"] == "items_loading"

    def test_emptied_box_cannot_request_picking(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("2"), actor=TEST_ACTOR)
        engine.remove_item(box_id, "SKU-9", Decimal("2"), actor=TEST_ACTOR)

        result = engine.request_picking(box_id, actor=TEST_ACTOR)

        assert result.error_code == "EMPTY_BOX"

    def test_items_frozen_after_picking_requested(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("2"), actor=TEST_ACTOR)
        engine.request_picking(box_id, actor=TEST_ACTOR)

        added = engine.add_item(box_id, "SKU-9", Decimal("1"), actor=TEST_ACTOR)
        removed = engine.remove_item(box_id, "SKU-9", Decimal("1"), actor=TEST_ACTOR)

        assert added.error_code == "INVALID_BOX_STATE"
        assert removed.error_code == "INVALID_BOX_STATE"
        assert _balance(engine) == Decimal("8")

    def test_generator_failure_leaves_box_untouched(self, engine, make_engine, session, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()
        before = engine.add_item(box_id, "SKU-9", Decimal("2"), actor=TEST_ACTOR).value
        failing = FailingPickingListGenerator()
        offline = make_engine(session, generator=failing)

        result = offline.request_picking(box_id, actor=TEST_ACTOR)

        assert result.error_code == "EXTERNAL_DEPENDENCY_FAILURE"
        assert result.details["dependency"] == "picking_list_generator"
        after = engine.get_box(box_id).value
        assert after.state == BoxState.ITEMS_LOADING
        assert after.picking_lines == ()
        assert after.version == before.version
        assert failing.calls == 1

    def test_request_picking_retry_after_failure(self, engine, make_engine, session, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("2"), actor=TEST_ACTOR)
        make_engine(session, generator=FailingPickingListGenerator()).request_picking(box_id, actor=TEST_ACTOR)

        result = engine.request_picking(box_id, actor=TEST_ACTOR)

        assert result.status == OperationStatus.SUCCEEDED
        assert result.value.state == BoxState.PICKING_REQUESTED


class TestAcknowledgeAndPack:

    @pytest.fixture
    def requested_box(self, engine, stock, new_box):
        stock("SKU-9", 10)
        stock("SKU-1", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("2"), actor=TEST_ACTOR)
        engine.add_item(box_id, "SKU-1", Decimal("1"), actor=TEST_ACTOR)
        engine.request_picking(box_id, actor=TEST_ACTOR)
        return box_id

    def test_acknowledge_line(self, engine, requested_box, deterministic_clock):
        box = engine.acknowledge_picking_line(requested_box, 1, actor="picker").value

        line = box.picking_lines[0]
        assert line.picked
        assert line.picked_by == "picker"
        assert line.picked_at == deterministic_clock.now()
        assert [line.line_no for line in box.open_picking_lines] == [2]

    def test_acknowledging_twice_is_replay(self, engine, requested_box):
        engine.acknowledge_picking_line(requested_box, 1, actor="picker")
        again = engine.acknowledge_picking_line(requested_box, 1, actor="picker")
        assert again.status == OperationStatus.ALREADY_APPLIED

    def test_unknown_line(self, engine, requested_box):
        result = engine.acknowledge_picking_line(requested_box, 99, actor="picker")

        assert result.error_code == "PICKING_LINE_NOT_FOUND"
        assert result.details["line_no"] == "99"

    def test_acknowledge_outside_picking(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("2"), actor=TEST_ACTOR)

        result = engine.acknowledge_picking_line(box_id, 1, actor="picker")
        assert result.error_code == "INVALID_BOX_STATE"

    def test_pack_with_open_lines_refused(self, engine, requested_box):
        engine.acknowledge_picking_line(requested_box, 1, actor="picker")

        result = engine.mark_packed(requested_box, actor=TEST_ACTOR)

        assert result.error_code == "INCOMPLETE_PICKING"
        assert result.details["open_lines"] == "1"
        assert result.details["total_lines"] == "2"
        assert engine.get_box(requested_box).value.state == BoxState.PICKING_REQUESTED

    def test_pack_when_all_picked(self, engine, requested_box):
        engine.acknowledge_picking_line(requested_box, 1, actor="picker")
        engine.acknowledge_picking_line(requested_box, 2, actor="picker")

        box = engine.mark_packed(requested_box, actor=TEST_ACTOR).value

        assert box.state == BoxState.PACKED

    def test_pack_refusal_comes_from_guard_check(self, engine, requested_box, monkeypatch):
        engine.acknowledge_picking_line(requested_box, 1, actor="picker")
        engine.acknowledge_picking_line(requested_box, 2, actor="picker")
        monkeypatch.setitem(
            GUARD_CHECKS, PICKING_COMPLETE.name,
            lambda model: IncompletePickingError(str(model.id), 1, 2),
        )

        result = engine.mark_packed(requested_box, actor=TEST_ACTOR)

        assert result.error_code == "INCOMPLETE_PICKING"
        assert engine.get_box(requested_box).value.state == BoxState.PICKING_REQUESTED

    def test_guard_without_check_raises(self, engine, requested_box, monkeypatch):
        monkeypatch.delitem(GUARD_CHECKS, PICKING_COMPLETE.name)

        with pytest.raises(ValueError, match="picking_complete"):
            engine.mark_packed(requested_box, actor=TEST_ACTOR)

    def test_pre_picked_lines_pack_immediately(self, make_engine, session, stock, new_box):
        engine = make_engine(session, generator=FakePickingListGenerator(picked=True, document_reference=None))
        stock("SKU-9", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("2"), actor=TEST_ACTOR)

        requested = engine.request_picking(box_id, actor=TEST_ACTOR).value
        packed = engine.mark_packed(box_id, actor=TEST_ACTOR)

        assert requested.state_log[-1].description == "picking list generated"
        assert packed.value.state == BoxState.PACKED


# =============================================================================
# Terminal transitions
# =============================================================================


class TestShip:

    def test_ship_packed_box(self, engine, packed_box):
        box_id = packed_box()

        box = engine.ship(box_id, actor="driver").value

        assert box.state == BoxState.SHIPPED
        assert box.is_terminal
        assert box.state_log[-1].changed_by == "driver"
        # Shipping consumes the reservation; nothing is released
        assert _balance(engine) == Decimal("6")

    def test_ship_requires_packed(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("2"), actor=TEST_ACTOR)

        result = engine.ship(box_id, actor="driver")

        assert result.error_code == "INVALID_BOX_STATE"
        assert result.details["allowed_states"] == "packed"

    def test_shipped_box_is_frozen(self, engine, packed_box):
        box_id = packed_box()
        engine.ship(box_id, actor="driver")

        for result in (
            engine.add_item(box_id, "SKU-9", Decimal("1"), actor=TEST_ACTOR),
            engine.remove_item(box_id, "SKU-9", Decimal("1"), actor=TEST_ACTOR),
            engine.cancel(box_id, actor=TEST_ACTOR),
            engine.ship(box_id, actor="driver"),
            engine.assign_box_code(box_id, "B001", actor=TEST_ACTOR),
        ):
            assert result.error_code == "INVALID_BOX_STATE"
        assert _balance(engine) == Decimal("6")


class TestCancel:

    def test_cancel_releases_every_reservation(self, engine, stock, new_box):
        stock("SKU-9", 10)
        stock("SKU-1", 5)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("4"), actor=TEST_ACTOR)
        engine.add_item(box_id, "SKU-1", Decimal("5"), actor=TEST_ACTOR)

        box = engine.cancel(box_id, actor="supervisor", reason="order withdrawn").value

        assert box.state == BoxState.CANCELLED
        assert box.state_log[-1].description == "order withdrawn"
        assert _balance(engine, "SKU-9") == Decimal("10")
        assert _balance(engine, "SKU-1") == Decimal("5")
        # Items stay on the box as a record of what was loaded
        assert len(box.items) == 2

    def test_cancel_after_partial_remove(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()
        engine.add_item(box_id, "SKU-9", Decimal("4"), actor=TEST_ACTOR)
        engine.remove_item(box_id, "SKU-9", Decimal("1"), actor=TEST_ACTOR)

        engine.cancel(box_id, actor=TEST_ACTOR)

        assert _balance(engine) == Decimal("10")

    def test_cancel_packed_box(self, engine, packed_box):
        box_id = packed_box()

        assert engine.cancel(box_id, actor=TEST_ACTOR).value.state == BoxState.CANCELLED
        assert _balance(engine) == Decimal("10")

    def test_cancel_new_box_moves_no_stock(self, engine, new_box):
        box_id = new_box()

        result = engine.cancel(box_id, actor=TEST_ACTOR)

        assert result.value.state == BoxState.CANCELLED
        assert engine.ledger_selector.entries_for_source(SourceType.TRANSPORT_BOX, box_id) == []

    def test_cancel_twice_refused(self, engine, new_box):
        box_id = new_box()
        engine.cancel(box_id, actor=TEST_ACTOR)

        result = engine.cancel(box_id, actor=TEST_ACTOR)

        assert result.error_code == "INVALID_BOX_STATE"
        assert result.details["current_state"] == "cancelled"


# =============================================================================
# Box codes
# =============================================================================


class TestBoxCodes:

    def test_code_normalized(self, engine, new_box):
        box = engine.assign_box_code(new_box(), " b001 ", actor=TEST_ACTOR).value
        assert box.code == "B001"

    def test_code_must_match_pattern(self, engine, new_box):
        result = engine.assign_box_code(new_box(), "X-1", actor=TEST_ACTOR)
        assert result.error_code == "INVALID_BOX_CODE"

    def test_code_unique_among_active_boxes(self, engine, new_box):
        first = new_box()
        engine.assign_box_code(first, "B001", actor=TEST_ACTOR)

        result = engine.assign_box_code(new_box(), "B001", actor=TEST_ACTOR)

        assert result.error_code == "DUPLICATE_BOX_CODE"
        assert result.details["existing_box_id"] == str(first)

    def test_code_reusable_after_cancel(self, engine, new_box):
        first = new_box()
        engine.assign_box_code(first, "B001", actor=TEST_ACTOR)
        engine.cancel(first, actor=TEST_ACTOR)

        result = engine.assign_box_code(new_box(), "B001", actor=TEST_ACTOR)

        assert result.status == OperationStatus.SUCCEEDED
        assert engine.get_box(first).value.code == "B001"

    def test_same_code_again_is_replay(self, engine, new_box):
        box_id = new_box()
        engine.assign_box_code(box_id, "B001", actor=TEST_ACTOR)

        again = engine.assign_box_code(box_id, "b001", actor=TEST_ACTOR)

        assert again.status == OperationStatus.ALREADY_APPLIED

    def test_custom_pattern(self, make_engine, session, new_box):
        engine = make_engine(session, transport_config=TransportConfig(box_code_pattern=r"^T\d{4}$"))

        assert engine.assign_box_code(new_box(), "T0001", actor=TEST_ACTOR).is_success
        assert engine.assign_box_code(new_box(), "B001", actor=TEST_ACTOR).error_code == "INVALID_BOX_CODE"


# =============================================================================
# Optimistic checks and queries
# =============================================================================


class TestTransitionPreconditions:

    def test_version_bumped_by_every_change(self, engine, stock, new_box):
        stock("SKU-9", 10)
        box_id = new_box()

        v1 = engine.get_box(box_id).value.version
        v2 = engine.add_item(box_id, "SKU-9", Decimal("1"), actor=TEST_ACTOR).value.version
        v3 = engine.add_item(box_id, "SKU-9", Decimal("1"), actor=TEST_ACTOR).value.version

        assert v1 < v2 < v3

    def test_expected_state_mismatch(self, engine, packed_box):
        box_id = packed_box()

        result = engine.cancel(box_id, actor=TEST_ACTOR, expected_state=BoxState.ITEMS_LOADING)

        assert result.error_code == "CONCURRENT_MODIFICATION"
        assert result.details["expected"] == "items_loading"
        assert result.details["actual"] == "packed"
        assert engine.get_box(box_id).value.state == BoxState.PACKED

    def test_expected_version_mismatch(self, engine, packed_box):
        box_id = packed_box()
        stale = engine.get_box(box_id).value.version - 1

        result = engine.transport.ship(box_id, actor="driver", expected_version=stale)

        assert result.error_code == "CONCURRENT_MODIFICATION"

    def test_expected_version_match(self, engine, packed_box):
        box_id = packed_box()
        current = engine.get_box(box_id).value.version

        result = engine.transport.ship(
            box_id, actor="driver", expected_state=BoxState.PACKED, expected_version=current,
        )

        assert result.status == OperationStatus.SUCCEEDED


class TestQueries:

    def test_list_boxes_by_state(self, engine, stock, new_box, deterministic_clock):
        stock("SKU-9", 10)
        empty = new_box()
        deterministic_clock.advance(1)
        loading = new_box()
        engine.add_item(loading, "SKU-9", Decimal("1"), actor=TEST_ACTOR)

        assert [b.id for b in engine.list_boxes().value] == [empty, loading]
        assert [b.id for b in engine.list_boxes(BoxState.ITEMS_LOADING).value] == [loading]
        assert engine.list_boxes(BoxState.SHIPPED).value == ()


class TestLogging:

    def test_operations_logged_with_box_context(self, engine, stock, new_box, captured_logs):
        stock("SKU-9", 10)
        box_id = new_box()

        engine.add_item(box_id, "SKU-9", Decimal("4"), actor="alice")

        records = captured_logs()
        changed = [r for r in records if r["message"] == "box_state_changed"]
        assert changed[-1]["to_state"] == "items_loading"
        assert changed[-1]["box_id"] == str(box_id)
        completed = [r for r in records if r["message"] == "add_item_completed"]
        assert completed[-1]["actor"] == "alice"
        assert completed[-1]["replayed"] is False

    def test_failures_logged_with_code(self, engine, new_box, captured_logs):
        engine.ship(new_box(), actor="driver")

        failed = [r for r in captured_logs() if r["message"] == "ship_failed"]
        assert failed[0]["error_code"] == "INVALID_BOX_STATE"
        assert failed[0]["level"] == "WARNING"
