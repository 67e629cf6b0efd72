"""
Gift Package Service (``warehouse_modules.gift_package.service``).

Responsibility
--------------
Records the assembly of gift packages from raw items.  One assembly is one
business event: every consumed line is decremented, the produced packages
are stocked up and the manufacture log is written, all in one transaction.

Architecture
------------
Layer: **Modules** -- stateful orchestration wrapper over
``StockLedgerService`` and ``validate_consumption``.

Invariants
----------
- All-or-nothing.  Every consumed line is validated against a balance
  snapshot before the first ledger write, and each write is checked
  against that snapshot.  Any failure rolls the whole assembly back.
- The first failing line (in request order) names the product reported in
  ``InsufficientStockError``.
- A log is recorded at most once per idempotency key.

Failure Modes
-------------
- ``EmptyAssemblyError``: nothing to consume.
- ``InsufficientStockError``: a consumed line exceeds its balance.
- ``UnknownProductError`` / ``ExternalDependencyFailureError``: catalog or
  bill-of-materials lookup failed.
- ``ConcurrentModificationError``: a consumed balance changed after it was
  validated.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from warehouse_kernel.db.types import normalize_quantity, quantity_from
from warehouse_kernel.domain.clock import Clock, SystemClock
from warehouse_kernel.domain.dtos import BalanceSnapshot, LedgerEntryDraft, SourceType
from warehouse_kernel.domain.movement_validator import (
    raise_for_result,
    validate_consumption,
    validate_quantity,
)
from warehouse_kernel.domain.values import BalanceKey
from warehouse_kernel.exceptions import (
    EmptyAssemblyError,
    ExternalDependencyFailureError,
    IdempotencyKeyReusedError,
    ManufactureLogNotFoundError,
)
from warehouse_kernel.logging_config import get_logger
from warehouse_kernel.services.stock_ledger_service import StockLedgerService
from warehouse_kernel.utils.idempotency import (
    derive_idempotency_key,
    generate_idempotency_key,
)
from warehouse_modules._results import OperationResult, Outcome, run_operation
from warehouse_modules.catalog import CatalogResolver, require_known_product
from warehouse_modules.gift_package.models import (
    BillOfMaterialsSource,
    ConsumedItem,
    GiftPackageManufactureLog,
)
from warehouse_modules.gift_package.orm import (
    GiftPackageManufactureItemModel,
    GiftPackageManufactureLogModel,
)

logger = get_logger("modules.gift_package.service")


def aggregate_consumption(items: Sequence[ConsumedItem]) -> tuple[ConsumedItem, ...]:
    """Merge lines of the same product/lot, keeping first-seen order."""
    totals: dict[BalanceKey, Decimal] = {}
    for item in items:
        totals[item.key] = totals.get(item.key, Decimal(0)) + quantity_from(item.quantity)
    return tuple(
        ConsumedItem(
            product_code=key.product_code,
            quantity=normalize_quantity(total),
            lot_code=key.lot_code,
        )
        for key, total in totals.items()
    )


class GiftPackageService:
    """
    Assembles gift packages and keeps their manufacture logs.

    Contract
    --------
    Public methods return ``OperationResult`` and own their transaction.
    """

    def __init__(
        self,
        session: Session,
        catalog: CatalogResolver,
        clock: Clock | None = None,
        ledger: StockLedgerService | None = None,
        quantity_places: int | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._ledger = ledger or StockLedgerService(session, clock=self._clock)
        self._catalog = catalog
        self._quantity_places = quantity_places

    def assemble(
        self,
        target_code: str,
        quantity: Decimal,
        consumed_items: Sequence[ConsumedItem],
        actor: str,
        idempotency_key: str | None = None,
    ) -> OperationResult[GiftPackageManufactureLog]:
        """
        Produce ``quantity`` of ``target_code`` consuming ``consumed_items``.

        Lines naming the same product and lot are merged before validation.
        """
        return run_operation(
            self._session,
            "assemble_gift_package",
            lambda: self._assemble(
                target_code, quantity, lambda: consumed_items, actor, idempotency_key
            ),
            resource="stock_balance",
            resource_id=target_code,
            actor=actor,
            idempotency_key=idempotency_key,
        )

    def assemble_from_bill_of_materials(
        self,
        target_code: str,
        quantity: Decimal,
        bom_source: BillOfMaterialsSource,
        actor: str,
        idempotency_key: str | None = None,
    ) -> OperationResult[GiftPackageManufactureLog]:
        """Assemble consuming ``part.amount * quantity`` of every listed part."""

        def consumption() -> Sequence[ConsumedItem]:
            try:
                parts = list(bom_source.parts_of(target_code))
            except Exception as exc:
                logger.warning(
                    "bill_of_materials_unreachable",
                    extra={
                        "target_code": target_code,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                raise ExternalDependencyFailureError("bill_of_materials", str(exc)) from exc
            return [
                ConsumedItem(
                    product_code=part.product_code,
                    quantity=normalize_quantity(
                        quantity_from(part.amount) * quantity_from(quantity)
                    ),
                    lot_code=part.lot_code,
                )
                for part in parts
            ]

        return run_operation(
            self._session,
            "assemble_gift_package",
            lambda: self._assemble(target_code, quantity, consumption, actor, idempotency_key),
            resource="stock_balance",
            resource_id=target_code,
            actor=actor,
            idempotency_key=idempotency_key,
        )

    def get_log(self, log_id: UUID) -> OperationResult[GiftPackageManufactureLog]:
        def body() -> Outcome[GiftPackageManufactureLog]:
            model = self._session.get(GiftPackageManufactureLogModel, log_id)
            if model is None:
                raise ManufactureLogNotFoundError(str(log_id))
            return Outcome(model.to_dto())

        return run_operation(self._session, "get_manufacture_log", body, commit=False)

    def list_logs(
        self,
        target_code: str | None = None,
    ) -> OperationResult[tuple[GiftPackageManufactureLog, ...]]:
        """Manufacture logs newest first, optionally for one gift package."""

        def body() -> Outcome[tuple[GiftPackageManufactureLog, ...]]:
            stmt = select(GiftPackageManufactureLogModel).order_by(
                GiftPackageManufactureLogModel.manufactured_at.desc(),
                GiftPackageManufactureLogModel.id,
            )
            if target_code is not None:
                stmt = stmt.where(GiftPackageManufactureLogModel.target_code == target_code)
            return Outcome(tuple(m.to_dto() for m in self._session.scalars(stmt)))

        return run_operation(self._session, "list_manufacture_logs", body, commit=False)

    # =========================================================================
    # Internal
    # =========================================================================

    def _assemble(
        self,
        target_code: str,
        quantity: Decimal,
        consumption: Callable[[], Sequence[ConsumedItem]],
        actor: str,
        idempotency_key: str | None,
    ) -> Outcome[GiftPackageManufactureLog]:
        raise_for_result(validate_quantity(quantity, places=self._quantity_places))
        produced = quantity_from(quantity)
        key = generate_idempotency_key(
            "gift_package", "assemble", target_code, idempotency_key or uuid4()
        )

        previous = self._session.scalars(
            select(GiftPackageManufactureLogModel).where(
                GiftPackageManufactureLogModel.idempotency_key == key
            )
        ).one_or_none()
        if previous is not None:
            if previous.target_code != target_code or previous.quantity != produced:
                raise IdempotencyKeyReusedError(key, str(previous.id))
            logger.info("gift_package_assembly_replayed", extra={"log_id": str(previous.id)})
            return Outcome(previous.to_dto(), replayed=True)

        requested = list(consumption())
        if not requested:
            raise EmptyAssemblyError(target_code)
        for n, item in enumerate(requested):
            raise_for_result(
                validate_quantity(
                    item.quantity,
                    field=f"consumed_items[{n}].quantity",
                    places=self._quantity_places,
                )
            )
        lines = aggregate_consumption(requested)

        require_known_product(self._catalog, target_code)
        for line in lines:
            require_known_product(self._catalog, line.product_code)

        # Validate every line before the first write.
        snapshots: list[BalanceSnapshot] = []
        for line in lines:
            snapshot = self._ledger.read_balance(line.product_code, line.lot_code)
            raise_for_result(validate_consumption(line.product_code, line.quantity, snapshot))
            snapshots.append(snapshot)

        log_id = uuid4()
        items: list[GiftPackageManufactureItemModel] = []
        for n, (line, snapshot) in enumerate(zip(lines, snapshots)):
            consumed = self._ledger.append(
                LedgerEntryDraft(
                    product_code=line.product_code,
                    lot_code=line.lot_code,
                    delta=-line.quantity,
                    source_type=SourceType.GIFT_PACKAGE,
                    source_id=log_id,
                    idempotency_key=derive_idempotency_key(key, "consume", n),
                    actor=actor,
                ),
                expected=snapshot,
            )
            items.append(
                GiftPackageManufactureItemModel(
                    position=n,
                    product_code=line.product_code,
                    lot_code=line.lot_code,
                    quantity=line.quantity,
                    ledger_entry_id=consumed.entry.id,
                )
            )

        stocked = self._ledger.append(
            LedgerEntryDraft(
                product_code=target_code,
                delta=produced,
                source_type=SourceType.GIFT_PACKAGE,
                source_id=log_id,
                idempotency_key=derive_idempotency_key(key, "produce"),
                actor=actor,
            )
        )

        model = GiftPackageManufactureLogModel(
            id=log_id,
            target_code=target_code,
            quantity=produced,
            manufactured_at=self._clock.now(),
            created_by=actor,
            idempotency_key=key,
            produced_entry_id=stocked.entry.id,
            items=items,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "gift_package_assembled",
            extra={
                "log_id": str(log_id),
                "target_code": target_code,
                "quantity": str(produced),
                "consumed_lines": len(items),
            },
        )
        return Outcome(model.to_dto())
