"""
warehouse_services.inventory_engine -- Caller-facing inventory engine.

Responsibility:
    Creates the ledger and every module service exactly once for one
    session and wires them together.  Exposes the caller-facing operations
    (create box, add/remove item, request picking, mark packed, ship,
    cancel, assemble gift package, run stock-taking) plus receipts and
    balance queries.  Every operation returns an ``OperationResult``.

Architecture position:
    Services -- top of the stack.  The only place where module services
    are constructed and composed, and the only consumer of
    ``warehouse_config`` values.

Invariants enforced:
    - Single-instance lifecycle: one StockLedgerService shared by every
      module service, so all of them see one Session and one Clock.
    - DI transparency: all collaborators (catalog resolver, picking-list
      generator, bill-of-materials source, clock) are constructor
      parameters.  Nothing is looked up from a global container.

Usage:
    from warehouse_services import InventoryEngine

    engine = InventoryEngine.from_config(
        get_active_config(), session, catalog=catalog, picking_generator=printer,
    )
    box = engine.create_box(actor="alice").value
    engine.add_item(box.id, "SKU-9", Decimal("4"), actor="alice")
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterator, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from warehouse_config.schema import EngineConfig, LedgerConfig, TransportConfig
from warehouse_kernel.domain.clock import Clock, SystemClock
from warehouse_kernel.domain.dtos import LedgerEntryRecord
from warehouse_kernel.domain.movement_validator import raise_for_result, validate_quantity
from warehouse_kernel.logging_config import get_logger
from warehouse_kernel.selectors.ledger_selector import LedgerSelector
from warehouse_kernel.services.stock_ledger_service import StockLedgerService
from warehouse_modules._results import OperationResult, Outcome, run_operation
from warehouse_modules.catalog import CatalogResolver, require_known_product
from warehouse_modules.gift_package.models import (
    BillOfMaterialsSource,
    ConsumedItem,
    GiftPackageManufactureLog,
)
from warehouse_modules.gift_package.service import GiftPackageService
from warehouse_modules.stock_taking.models import StockTakingResult, StockTakingRun
from warehouse_modules.stock_taking.service import StockTakingService
from warehouse_modules.transport.models import BoxState, TransportBox
from warehouse_modules.transport.picking import PickingListGenerator
from warehouse_modules.transport.service import TransportBoxService

logger = get_logger("services.inventory_engine")


class InventoryEngine:
    """Explicitly wired facade over the ledger and the module services.

    Contract:
        Receives a Session and every collaborator.  Constructs the ledger
        and module services once, in dependency order, and exposes them as
        public attributes as well as through the caller-facing methods.

    Non-goals:
        - Does NOT own the Session lifecycle beyond the per-operation
          commit/rollback performed by the module services.
        - Does NOT retry failed operations.
    """

    def __init__(
        self,
        session: Session,
        catalog: CatalogResolver,
        picking_generator: PickingListGenerator,
        clock: Clock | None = None,
        bom_source: BillOfMaterialsSource | None = None,
        ledger_config: LedgerConfig | None = None,
        transport_config: TransportConfig | None = None,
    ) -> None:
        ledger_config = ledger_config or LedgerConfig()
        transport_config = transport_config or TransportConfig()

        self._session = session
        self._clock = clock or SystemClock()
        self._catalog = catalog
        self._bom_source = bom_source
        self._quantity_places = ledger_config.quantity_places

        # Kernel
        self.ledger = StockLedgerService(
            session,
            clock=self._clock,
            allow_negative_stock=ledger_config.allow_negative_stock,
        )
        self.ledger_selector = LedgerSelector(session)

        # Modules (all share the one ledger)
        self.transport = TransportBoxService(
            session,
            catalog=catalog,
            picking_generator=picking_generator,
            clock=self._clock,
            ledger=self.ledger,
            picking_timeout_seconds=transport_config.picking_timeout_seconds,
            box_code_pattern=transport_config.box_code_pattern,
            quantity_places=self._quantity_places,
        )
        self.gift_packages = GiftPackageService(
            session,
            catalog=catalog,
            clock=self._clock,
            ledger=self.ledger,
            quantity_places=self._quantity_places,
        )
        self.stock_taking = StockTakingService(
            session,
            catalog=catalog,
            clock=self._clock,
            ledger=self.ledger,
            quantity_places=self._quantity_places,
        )

        logger.info(
            "inventory_engine_wired",
            extra={
                "allow_negative_stock": ledger_config.allow_negative_stock,
                "quantity_places": self._quantity_places,
                "picking_timeout_seconds": transport_config.picking_timeout_seconds,
            },
        )

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        session: Session,
        catalog: CatalogResolver,
        picking_generator: PickingListGenerator,
        clock: Clock | None = None,
        bom_source: BillOfMaterialsSource | None = None,
    ) -> InventoryEngine:
        return cls(
            session,
            catalog=catalog,
            picking_generator=picking_generator,
            clock=clock,
            bom_source=bom_source,
            ledger_config=config.ledger,
            transport_config=config.transport,
        )

    # =========================================================================
    # Transport boxes
    # =========================================================================

    def create_box(
        self,
        actor: str,
        description: str | None = None,
        location: str | None = None,
    ) -> OperationResult[TransportBox]:
        return self.transport.create_box(actor, description=description, location=location)

    def assign_box_code(self, box_id: UUID, code: str, actor: str) -> OperationResult[TransportBox]:
        return self.transport.assign_code(box_id, code, actor)

    def add_item(
        self,
        box_id: UUID,
        product_code: str,
        quantity: Decimal,
        actor: str,
        lot_code: str | None = None,
        idempotency_key: str | None = None,
    ) -> OperationResult[TransportBox]:
        return self.transport.add_item(
            box_id, product_code, quantity, actor,
            lot_code=lot_code, idempotency_key=idempotency_key,
        )

    def remove_item(
        self,
        box_id: UUID,
        product_code: str,
        quantity: Decimal,
        actor: str,
        lot_code: str | None = None,
        idempotency_key: str | None = None,
    ) -> OperationResult[TransportBox]:
        return self.transport.remove_item(
            box_id, product_code, quantity, actor,
            lot_code=lot_code, idempotency_key=idempotency_key,
        )

    def request_picking(
        self,
        box_id: UUID,
        actor: str,
        expected_state: BoxState | None = None,
    ) -> OperationResult[TransportBox]:
        return self.transport.request_picking(box_id, actor, expected_state=expected_state)

    def acknowledge_picking_line(
        self,
        box_id: UUID,
        line_no: int,
        actor: str,
    ) -> OperationResult[TransportBox]:
        return self.transport.acknowledge_picking_line(box_id, line_no, actor)

    def mark_packed(
        self,
        box_id: UUID,
        actor: str,
        expected_state: BoxState | None = None,
    ) -> OperationResult[TransportBox]:
        return self.transport.mark_packed(box_id, actor, expected_state=expected_state)

    def ship(
        self,
        box_id: UUID,
        actor: str,
        expected_state: BoxState | None = None,
    ) -> OperationResult[TransportBox]:
        return self.transport.ship(box_id, actor, expected_state=expected_state)

    def cancel(
        self,
        box_id: UUID,
        actor: str,
        reason: str | None = None,
        expected_state: BoxState | None = None,
    ) -> OperationResult[TransportBox]:
        return self.transport.cancel(box_id, actor, reason=reason, expected_state=expected_state)

    def get_box(self, box_id: UUID) -> OperationResult[TransportBox]:
        return self.transport.get_box(box_id)

    def list_boxes(self, state: BoxState | None = None) -> OperationResult[tuple[TransportBox, ...]]:
        return self.transport.list_boxes(state)

    # =========================================================================
    # Gift packages
    # =========================================================================

    def assemble_gift_package(
        self,
        target_code: str,
        quantity: Decimal,
        consumed_items: Sequence[ConsumedItem] | None,
        actor: str,
        idempotency_key: str | None = None,
    ) -> OperationResult[GiftPackageManufactureLog]:
        """
        Assemble gift packages.

        With ``consumed_items`` omitted the consumption is derived from the
        configured bill-of-materials source.
        """
        if consumed_items is None and self._bom_source is not None:
            return self.gift_packages.assemble_from_bill_of_materials(
                target_code, quantity, self._bom_source, actor,
                idempotency_key=idempotency_key,
            )
        return self.gift_packages.assemble(
            target_code, quantity, consumed_items or (), actor,
            idempotency_key=idempotency_key,
        )

    def get_manufacture_log(self, log_id: UUID) -> OperationResult[GiftPackageManufactureLog]:
        return self.gift_packages.get_log(log_id)

    def list_manufacture_logs(
        self,
        target_code: str | None = None,
    ) -> OperationResult[tuple[GiftPackageManufactureLog, ...]]:
        return self.gift_packages.list_logs(target_code)

    # =========================================================================
    # Stock taking
    # =========================================================================

    def run_stock_taking(self, run: StockTakingRun) -> Iterator[StockTakingResult]:
        """Lazily reconcile ``run``; failed lines are results, not exceptions."""
        return self.stock_taking.reconcile(run)

    def stock_taking_history(
        self,
        product_code: str,
        lot_code: str | None = None,
    ) -> OperationResult[tuple[StockTakingResult, ...]]:
        return self.stock_taking.history(product_code, lot_code)

    # =========================================================================
    # Ledger
    # =========================================================================

    def receive_stock(
        self,
        product_code: str,
        quantity: Decimal,
        actor: str,
        lot_code: str | None = None,
        idempotency_key: str | None = None,
    ) -> OperationResult[LedgerEntryRecord]:
        """Put received goods on hand."""

        def body() -> Outcome[LedgerEntryRecord]:
            raise_for_result(validate_quantity(quantity, places=self._quantity_places))
            require_known_product(self._catalog, product_code)
            appended = self.ledger.receive(
                product_code, quantity,
                lot_code=lot_code, idempotency_key=idempotency_key, actor=actor,
            )
            return Outcome(appended.entry, replayed=appended.is_replay)

        return run_operation(
            self._session, "receive_stock", body,
            resource="stock_balance", resource_id=product_code,
            actor=actor, idempotency_key=idempotency_key,
        )

    def balance_of(self, product_code: str, lot_code: str | None = None) -> OperationResult[Decimal]:
        def body() -> Outcome[Decimal]:
            return Outcome(self.ledger_selector.balance_of(product_code, lot_code))

        return run_operation(self._session, "balance_of", body, commit=False)

    def movements(
        self,
        product_code: str,
        lot_code: str | None = None,
    ) -> OperationResult[list[LedgerEntryRecord]]:
        def body() -> Outcome[list[LedgerEntryRecord]]:
            return Outcome(self.ledger_selector.movements(product_code, lot_code))

        return run_operation(self._session, "ledger_movements", body, commit=False)
