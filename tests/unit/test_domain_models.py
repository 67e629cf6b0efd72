"""
Domain Model Tests.

All domain models are frozen dataclasses.  These tests cover their
immutability and the small amount of logic they carry.
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from warehouse_kernel.domain.values import AuditTrail, BalanceKey
from warehouse_modules.gift_package.models import (
    ConsumedItem,
    GiftPackageManufactureItem,
    GiftPackageManufactureLog,
)
from warehouse_modules.gift_package.service import aggregate_consumption
from warehouse_modules.stock_taking.models import (
    StockTakingLine,
    StockTakingResult,
    StockTakingRun,
    StockTakingType,
)
from warehouse_modules.transport.models import (
    BoxState,
    PickingLine,
    TransportBox,
    TransportBoxItem,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _item(product_code, quantity, lot_code=None):
    return TransportBoxItem(
        id=uuid4(),
        product_code=product_code,
        quantity=Decimal(quantity),
        added_by="alice",
        added_at=NOW,
        lot_code=lot_code,
    )


class TestTransportBox:

    def _box(self, state=BoxState.ITEMS_LOADING, items=(), picking_lines=()):
        return TransportBox(
            id=uuid4(),
            state=state,
            audit=AuditTrail.created(NOW, "alice"),
            state_changed_at=NOW,
            version=1,
            items=tuple(items),
            picking_lines=tuple(picking_lines),
        )

    def test_immutable(self):
        box = self._box()
        with pytest.raises(FrozenInstanceError):
            box.state = BoxState.SHIPPED

    def test_item_totals_merge_same_key(self):
        box = self._box(items=[
            _item("SKU-1", "2"),
            _item("SKU-1", "3"),
            _item("SKU-1", "1", lot_code="L1"),
        ])

        assert box.item_totals() == {
            BalanceKey("SKU-1"): Decimal("5"),
            BalanceKey("SKU-1", "L1"): Decimal("1"),
        }
        assert box.quantity_of("SKU-1") == Decimal("5")
        assert box.quantity_of("SKU-2") == Decimal("0")

    @pytest.mark.parametrize(
        "state,terminal",
        [(BoxState.PACKED, False), (BoxState.SHIPPED, True), (BoxState.CANCELLED, True)],
    )
    def test_terminal(self, state, terminal):
        assert self._box(state=state).is_terminal is terminal

    def test_open_picking_lines(self):
        box = self._box(picking_lines=[
            PickingLine(1, "SKU-1", Decimal("1"), picked=True),
            PickingLine(2, "SKU-2", Decimal("1")),
        ])
        assert [line.line_no for line in box.open_picking_lines] == [2]

    def test_last_modified_falls_back_to_creation(self):
        assert self._box().last_modified_at == NOW


class TestGiftPackageModels:

    def test_log_requires_items(self):
        with pytest.raises(ValueError, match="at least one"):
            GiftPackageManufactureLog(
                id=uuid4(),
                target_code="GP-1",
                quantity=Decimal("1"),
                manufactured_at=NOW,
                audit=AuditTrail.created(NOW, "alice"),
                items=(),
            )

    def test_consumed_quantity_of(self):
        log = GiftPackageManufactureLog(
            id=uuid4(),
            target_code="GP-1",
            quantity=Decimal("1"),
            manufactured_at=NOW,
            audit=AuditTrail.created(NOW, "alice"),
            items=(
                GiftPackageManufactureItem("RAW-A", Decimal("2")),
                GiftPackageManufactureItem("RAW-A", Decimal("1"), lot_code="L1"),
            ),
        )
        assert log.consumed_quantity_of("RAW-A") == Decimal("2")
        assert log.consumed_quantity_of("RAW-A", "L1") == Decimal("1")

    def test_aggregate_consumption_keeps_first_seen_order(self):
        merged = aggregate_consumption([
            ConsumedItem("RAW-B", Decimal("1")),
            ConsumedItem("RAW-A", Decimal("2")),
            ConsumedItem("RAW-B", Decimal("0.5")),
            ConsumedItem("RAW-A", Decimal("1"), lot_code="L1"),
        ])

        assert merged == (
            ConsumedItem("RAW-B", Decimal("1.5")),
            ConsumedItem("RAW-A", Decimal("2")),
            ConsumedItem("RAW-A", Decimal("1"), lot_code="L1"),
        )


class TestStockTakingModels:

    def _run(self):
        return StockTakingRun(
            run_id=uuid4(),
            stock_taking_type=StockTakingType.PHYSICAL_COUNT,
            lines=(
                StockTakingLine("SKU-1", Decimal("7")),
                StockTakingLine("SKU-2", Decimal("3")),
                StockTakingLine("SKU-2", Decimal("1"), lot_code="L1"),
            ),
            actor="counter",
        )

    def test_only_restricts_lines_and_keeps_run_id(self):
        run = self._run()
        rerun = run.only("SKU-2")

        assert rerun.run_id == run.run_id
        assert [line.key for line in rerun.lines] == [
            BalanceKey("SKU-2"),
            BalanceKey("SKU-2", "L1"),
        ]

    def test_result_delta_and_success(self):
        result = StockTakingResult(
            id=uuid4(),
            run_id=uuid4(),
            stock_taking_type=StockTakingType.SYSTEM_TRIGGERED,
            product_code="SKU-1",
            amount_new=Decimal("7"),
            amount_old=Decimal("10"),
            recorded_at=NOW,
            actor="counter",
        )
        assert result.succeeded
        assert result.delta == Decimal("-3")

    def test_failed_result_without_read_has_no_delta(self):
        result = StockTakingResult(
            id=uuid4(),
            run_id=uuid4(),
            stock_taking_type=StockTakingType.PHYSICAL_COUNT,
            product_code="NOPE",
            amount_new=Decimal("1"),
            amount_old=None,
            recorded_at=NOW,
            actor="counter",
            error="Unknown product: NOPE",
            error_code="UNKNOWN_PRODUCT",
        )
        assert not result.succeeded
        assert result.delta is None
