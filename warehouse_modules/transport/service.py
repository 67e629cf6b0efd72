"""
Transport Box Service (``warehouse_modules.transport.service``).

Responsibility
--------------
Drives transport boxes through ``BOX_WORKFLOW`` and keeps the stock ledger
in step with what the boxes hold.  Loading an item reserves stock (a
negative ledger entry), removing it or cancelling the box releases it with
compensating entries that point back at the reservation.

Architecture
------------
Layer: **Modules** -- stateful orchestration wrapper.

1. ``movement_validator`` decides whether an item change is legal.
2. ``StockLedgerService`` writes the movements (flush only).
3. ``generate_picking_list`` calls the external generator with a timeout.
4. ``run_operation`` owns the transaction and turns typed errors into
   ``OperationResult`` values.

Invariants
----------
- Every transition is looked up in ``BOX_WORKFLOW`` and recorded in the
  box state log.
- Every mutation touches the box, so its ``version`` is bumped and a
  concurrent writer fails on the version-checked UPDATE.
- A transition request may carry ``expected_state`` / ``expected_version``;
  a mismatch is a ``ConcurrentModificationError``, never an overwrite.
- A failed picking-list call leaves the box exactly as it was.

Failure Modes
-------------
- ``TransportBoxNotFoundError``, ``InvalidBoxStateError``, ``EmptyBoxError``,
  ``IncompletePickingError``, ``PickingLineNotFoundError``.
- ``InsufficientStockError`` from validation of adds and removes.
- ``ExternalDependencyFailureError`` from the picking-list generator or
  the catalog.
- ``ConcurrentModificationError`` from stale snapshots or lost races.

Usage::

    service = TransportBoxService(session, catalog, generator, clock=clock)
    box = service.create_box(actor="alice").value
    service.add_item(box.id, "SKU-9", Decimal("4"), actor="alice",
                     idempotency_key="scan-0001")
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from warehouse_config.schema import DEFAULT_BOX_CODE_PATTERN
from warehouse_kernel.db.types import normalize_quantity, quantity_from
from warehouse_kernel.domain.clock import Clock, SystemClock
from warehouse_kernel.domain.dtos import LedgerEntryDraft, LedgerEntryRecord, SourceType
from warehouse_kernel.domain.movement_validator import (
    ITEM_ADD_STATES,
    raise_for_result,
    validate_add,
    validate_quantity,
    validate_remove,
)
from warehouse_kernel.domain.workflow import Transition
from warehouse_kernel.exceptions import (
    ConcurrentModificationError,
    DuplicateBoxCodeError,
    EmptyBoxError,
    IdempotencyKeyReusedError,
    IncompletePickingError,
    InvalidBoxCodeError,
    InvalidBoxStateError,
    PickingLineNotFoundError,
    TransportBoxNotFoundError,
    WarehouseKernelError,
)
from warehouse_kernel.logging_config import get_logger
from warehouse_kernel.services.stock_ledger_service import StockLedgerService
from warehouse_kernel.utils.idempotency import (
    derive_idempotency_key,
    generate_idempotency_key,
)
from warehouse_modules._results import OperationResult, Outcome, run_operation
from warehouse_modules.catalog import CatalogResolver, require_known_product
from warehouse_modules.transport.models import (
    BoxState,
    PickingListRequest,
    PickingListRequestItem,
    TransportBox,
    TransportBoxItem,
)
from warehouse_modules.transport.orm import (
    TransportBoxItemModel,
    TransportBoxModel,
    TransportBoxPickingLineModel,
    TransportBoxStateLogModel,
)
from warehouse_modules.transport.picking import PickingListGenerator, generate_picking_list
from warehouse_modules.transport.workflows import BOX_WORKFLOW, HAS_ITEMS, PICKING_COMPLETE

logger = get_logger("modules.transport.service")

_RESOURCE = "transport_box"


def _require_items(model: TransportBoxModel) -> WarehouseKernelError | None:
    if not model.items:
        return EmptyBoxError(str(model.id))
    return None


def _require_picking_complete(model: TransportBoxModel) -> WarehouseKernelError | None:
    open_lines = [line for line in model.picking_lines if not line.picked]
    if open_lines:
        return IncompletePickingError(str(model.id), len(open_lines), len(model.picking_lines))
    return None


# Guard name -> check over the loaded box, returning the refusal or None.
GUARD_CHECKS: dict[str, Callable[[TransportBoxModel], WarehouseKernelError | None]] = {
    HAS_ITEMS.name: _require_items,
    PICKING_COMPLETE.name: _require_picking_complete,
}


class TransportBoxService:
    """
    Caller-facing operations on transport boxes.

    Contract
    --------
    Every public method returns an ``OperationResult`` and owns its
    transaction: commit on success, rollback on any failure.  Read
    operations roll back.

    Non-goals
    ---------
    - Does NOT retry.  A ``CONCURRENT_MODIFICATION`` result is for the
      caller to retry from a fresh read.
    - Does NOT own product master data; the catalog only answers whether
      a product code exists.
    """

    def __init__(
        self,
        session: Session,
        catalog: CatalogResolver,
        picking_generator: PickingListGenerator,
        clock: Clock | None = None,
        ledger: StockLedgerService | None = None,
        picking_timeout_seconds: float = 30.0,
        box_code_pattern: str = DEFAULT_BOX_CODE_PATTERN,
        quantity_places: int | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._ledger = ledger or StockLedgerService(session, clock=self._clock)
        self._catalog = catalog
        self._generator = picking_generator
        self._picking_timeout = picking_timeout_seconds
        self._code_pattern = re.compile(box_code_pattern)
        self._quantity_places = quantity_places

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_box(
        self,
        actor: str,
        description: str | None = None,
        location: str | None = None,
    ) -> OperationResult[TransportBox]:
        """Create an empty box in the initial workflow state."""

        def body() -> Outcome[TransportBox]:
            now = self._clock.now()
            model = TransportBoxModel(
                id=uuid4(),
                state=BOX_WORKFLOW.initial_state,
                description=description,
                location=location,
                state_changed_at=now,
                created_at=now,
                created_by=actor,
            )
            model.state_log.append(
                TransportBoxStateLogModel(
                    position=0,
                    from_state=None,
                    to_state=BOX_WORKFLOW.initial_state,
                    changed_at=now,
                    changed_by=actor,
                    description="created",
                )
            )
            self._session.add(model)
            self._session.flush()
            logger.info(
                "transport_box_created",
                extra={"box_id": str(model.id), "location": location},
            )
            return Outcome(model.to_dto())

        return run_operation(self._session, "create_box", body, resource=_RESOURCE, actor=actor)

    def assign_code(
        self,
        box_id: UUID,
        code: str,
        actor: str,
    ) -> OperationResult[TransportBox]:
        """
        Give the box its printed label code.

        Codes are stored upper-cased and must be unique among boxes that
        are not shipped or cancelled.
        """

        def body() -> Outcome[TransportBox]:
            model = self._load(box_id)
            if model.state not in ITEM_ADD_STATES:
                raise InvalidBoxStateError(
                    box_id=str(box_id),
                    current_state=model.state,
                    operation="assign code",
                    allowed_states=ITEM_ADD_STATES,
                )
            normalized = code.strip().upper()
            if not self._code_pattern.fullmatch(normalized):
                raise InvalidBoxCodeError(code, self._code_pattern.pattern)
            if model.active_code == normalized:
                return Outcome(model.to_dto(), replayed=True)

            holder = self._session.scalars(
                select(TransportBoxModel).where(
                    TransportBoxModel.active_code == normalized,
                    TransportBoxModel.id != box_id,
                )
            ).one_or_none()
            if holder is not None:
                raise DuplicateBoxCodeError(normalized, str(holder.id))

            model.code = normalized
            model.active_code = normalized
            self._touch(model, actor)
            self._flush(model)
            return Outcome(model.to_dto())

        return run_operation(
            self._session, "assign_code", body,
            resource=_RESOURCE, resource_id=box_id, box_id=box_id, actor=actor,
        )

    # =========================================================================
    # Items
    # =========================================================================

    def add_item(
        self,
        box_id: UUID,
        product_code: str,
        quantity: Decimal,
        actor: str,
        lot_code: str | None = None,
        idempotency_key: str | None = None,
    ) -> OperationResult[TransportBox]:
        """
        Load ``quantity`` of a product into the box, reserving it in the ledger.

        The first add moves a ``new`` box to ``items_loading``.  Re-sending
        the same ``idempotency_key`` returns ALREADY_APPLIED without a
        second reservation.
        """

        def body() -> Outcome[TransportBox]:
            raise_for_result(validate_quantity(quantity, places=self._quantity_places))
            require_known_product(self._catalog, product_code)
            model = self._load(box_id)

            key = generate_idempotency_key(
                "box", "add", box_id, idempotency_key or uuid4()
            )
            draft = LedgerEntryDraft(
                product_code=product_code,
                lot_code=lot_code,
                delta=-quantity_from(quantity),
                source_type=SourceType.TRANSPORT_BOX,
                source_id=box_id,
                idempotency_key=key,
                actor=actor,
            )
            previous = self._ledger.find_entry(key)
            if previous is not None:
                if not previous.same_movement_as(draft):
                    raise IdempotencyKeyReusedError(key, str(previous.id))
                logger.info("box_item_add_replayed", extra={"idempotency_key": key})
                return Outcome(model.to_dto(), replayed=True)

            now = self._clock.now()
            item = TransportBoxItem(
                id=uuid4(),
                product_code=product_code,
                quantity=-draft.delta,
                added_by=actor,
                added_at=now,
                lot_code=lot_code,
                idempotency_key=key,
            )
            snapshot = self._ledger.read_balance(product_code, lot_code)
            raise_for_result(validate_add(model.to_dto(), item, snapshot))
            appended = self._ledger.append(draft, expected=snapshot)

            model.items.append(
                TransportBoxItemModel(
                    id=item.id,
                    position=max((i.position for i in model.items), default=-1) + 1,
                    product_code=item.product_code,
                    lot_code=item.lot_code,
                    quantity=item.quantity,
                    added_by=actor,
                    added_at=now,
                    idempotency_key=key,
                    ledger_entry_id=appended.entry.id,
                )
            )
            if model.state == BoxState.NEW.value:
                self._apply(model, self._transition(model, "load"), actor, "first item added")
            self._touch(model, actor)
            self._flush(model)
            logger.info(
                "box_item_added",
                extra={
                    "product_code": product_code,
                    "lot_code": lot_code,
                    "quantity": str(item.quantity),
                    "balance_after": str(appended.balance),
                },
            )
            return Outcome(model.to_dto())

        return run_operation(
            self._session, "add_item", body,
            resource=_RESOURCE, resource_id=box_id,
            box_id=box_id, actor=actor, idempotency_key=idempotency_key,
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
        """
        Take ``quantity`` of a product back out of the box.

        The newest items of the product are reduced first; an item that
        reaches zero is deleted.  Each reduction releases the matching part
        of that item's reservation.
        """

        def body() -> Outcome[TransportBox]:
            raise_for_result(validate_quantity(quantity, places=self._quantity_places))
            model = self._load(box_id)

            base_key = generate_idempotency_key(
                "box", "remove", box_id, idempotency_key or uuid4()
            )
            recorded = self._recorded_removal(base_key)
            if recorded:
                released = sum((e.delta for e in recorded), Decimal(0))
                if released != quantity_from(quantity) or any(
                    e.product_code != product_code
                    or e.lot_code != lot_code
                    or e.source_id != box_id
                    for e in recorded
                ):
                    raise IdempotencyKeyReusedError(base_key, str(recorded[0].id))
                logger.info("box_item_remove_replayed", extra={"idempotency_key": base_key})
                return Outcome(model.to_dto(), replayed=True)

            requested = TransportBoxItem(
                id=uuid4(),
                product_code=product_code,
                quantity=quantity_from(quantity),
                added_by=actor,
                added_at=self._clock.now(),
                lot_code=lot_code,
            )
            raise_for_result(validate_remove(model.to_dto(), requested))

            outstanding = requested.quantity
            matching = [
                i for i in model.items
                if i.product_code == product_code and i.lot_code == lot_code
            ]
            for n, item in enumerate(sorted(matching, key=lambda i: i.position, reverse=True)):
                if outstanding <= 0:
                    break
                take = min(item.quantity, outstanding)
                self._ledger.reverse(
                    item.ledger_entry_id,
                    derive_idempotency_key(base_key, n),
                    actor,
                    quantity=normalize_quantity(take),
                )
                outstanding -= take
                remaining = normalize_quantity(item.quantity - take)
                if remaining == 0:
                    model.items.remove(item)
                else:
                    item.quantity = remaining

            self._touch(model, actor)
            self._flush(model)
            logger.info(
                "box_item_removed",
                extra={
                    "product_code": product_code,
                    "lot_code": lot_code,
                    "quantity": str(requested.quantity),
                },
            )
            return Outcome(model.to_dto())

        return run_operation(
            self._session, "remove_item", body,
            resource=_RESOURCE, resource_id=box_id,
            box_id=box_id, actor=actor, idempotency_key=idempotency_key,
        )

    # =========================================================================
    # Picking
    # =========================================================================

    def request_picking(
        self,
        box_id: UUID,
        actor: str,
        expected_state: BoxState | None = None,
        expected_version: int | None = None,
    ) -> OperationResult[TransportBox]:
        """
        Ask the generator for a picking list and move to ``picking_requested``.

        The generator is called before anything is written; on failure the
        box stays in ``items_loading``.
        """

        def body() -> Outcome[TransportBox]:
            model = self._load(box_id, expected_state, expected_version)
            transition = self._transition(model, "request_picking")

            box = model.to_dto()
            request = PickingListRequest(
                box_id=box.id,
                box_code=box.code,
                items=tuple(
                    PickingListRequestItem(
                        product_code=key.product_code,
                        quantity=normalize_quantity(total),
                        lot_code=key.lot_code,
                    )
                    for key, total in box.item_totals().items()
                ),
            )
            result = generate_picking_list(self._generator, request, self._picking_timeout)

            now = self._clock.now()
            for line_no, line in enumerate(result.lines, start=1):
                model.picking_lines.append(
                    TransportBoxPickingLineModel(
                        line_no=line_no,
                        product_code=line.product_code,
                        lot_code=line.lot_code,
                        quantity=line.quantity,
                        picked=line.picked,
                        picked_at=now if line.picked else None,
                        picked_by=actor if line.picked else None,
                    )
                )
            description = (
                f"picking list {result.document_reference}"
                if result.document_reference else "picking list generated"
            )
            self._apply(model, transition, actor, description)
            self._touch(model, actor)
            self._flush(model)
            return Outcome(model.to_dto())

        return run_operation(
            self._session, "request_picking", body,
            resource=_RESOURCE, resource_id=box_id, box_id=box_id, actor=actor,
        )

    def acknowledge_picking_line(
        self,
        box_id: UUID,
        line_no: int,
        actor: str,
    ) -> OperationResult[TransportBox]:
        """Mark one picking line as picked.  Acknowledging twice is a replay."""

        def body() -> Outcome[TransportBox]:
            model = self._load(box_id)
            if model.state != BoxState.PICKING_REQUESTED.value:
                raise InvalidBoxStateError(
                    box_id=str(box_id),
                    current_state=model.state,
                    operation="acknowledge picking line",
                    allowed_states=(BoxState.PICKING_REQUESTED.value,),
                )
            line = next(
                (c for c in model.picking_lines if c.line_no == line_no), None
            )
            if line is None:
                raise PickingLineNotFoundError(str(box_id), line_no)
            if line.picked:
                return Outcome(model.to_dto(), replayed=True)

            line.picked = True
            line.picked_at = self._clock.now()
            line.picked_by = actor
            self._touch(model, actor)
            self._flush(model)
            logger.info("picking_line_acknowledged", extra={"line_no": line_no})
            return Outcome(model.to_dto())

        return run_operation(
            self._session, "acknowledge_picking_line", body,
            resource=_RESOURCE, resource_id=box_id, box_id=box_id, actor=actor,
        )

    def mark_packed(
        self,
        box_id: UUID,
        actor: str,
        expected_state: BoxState | None = None,
        expected_version: int | None = None,
    ) -> OperationResult[TransportBox]:
        """Move to ``packed`` once every picking line is acknowledged."""

        def body() -> Outcome[TransportBox]:
            model = self._load(box_id, expected_state, expected_version)
            transition = self._transition(model, "mark_packed")
            self._apply(model, transition, actor)
            self._touch(model, actor)
            self._flush(model)
            return Outcome(model.to_dto())

        return run_operation(
            self._session, "mark_packed", body,
            resource=_RESOURCE, resource_id=box_id, box_id=box_id, actor=actor,
        )

    def ship(
        self,
        box_id: UUID,
        actor: str,
        expected_state: BoxState | None = None,
        expected_version: int | None = None,
    ) -> OperationResult[TransportBox]:
        """Ship a packed box.  Nothing about the box can change afterwards."""

        def body() -> Outcome[TransportBox]:
            model = self._load(box_id, expected_state, expected_version)
            self._apply(model, self._transition(model, "ship"), actor)
            self._touch(model, actor)
            self._flush(model)
            return Outcome(model.to_dto())

        return run_operation(
            self._session, "ship", body,
            resource=_RESOURCE, resource_id=box_id, box_id=box_id, actor=actor,
        )

    def cancel(
        self,
        box_id: UUID,
        actor: str,
        reason: str | None = None,
        expected_state: BoxState | None = None,
        expected_version: int | None = None,
    ) -> OperationResult[TransportBox]:
        """
        Cancel a box that has not shipped.

        Every remaining reservation is released with a compensating entry.
        The items stay on the box as a record of what was loaded.
        """

        def body() -> Outcome[TransportBox]:
            model = self._load(box_id, expected_state, expected_version)
            transition = self._transition(model, "cancel")
            for item in model.items:
                self._ledger.reverse(
                    item.ledger_entry_id,
                    generate_idempotency_key("box", "cancel", box_id, item.id),
                    actor,
                    quantity=normalize_quantity(item.quantity),
                )
            self._apply(model, transition, actor, reason)
            self._touch(model, actor)
            self._flush(model)
            logger.info(
                "transport_box_cancelled",
                extra={"released_items": len(model.items), "reason": reason},
            )
            return Outcome(model.to_dto())

        return run_operation(
            self._session, "cancel", body,
            resource=_RESOURCE, resource_id=box_id, box_id=box_id, actor=actor,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_box(self, box_id: UUID) -> OperationResult[TransportBox]:
        def body() -> Outcome[TransportBox]:
            return Outcome(self._load(box_id).to_dto())

        return run_operation(self._session, "get_box", body, commit=False, box_id=box_id)

    def list_boxes(
        self,
        state: BoxState | None = None,
    ) -> OperationResult[tuple[TransportBox, ...]]:
        """Boxes in creation order, optionally only those in ``state``."""

        def body() -> Outcome[tuple[TransportBox, ...]]:
            stmt = select(TransportBoxModel).order_by(
                TransportBoxModel.created_at, TransportBoxModel.id
            )
            if state is not None:
                stmt = stmt.where(TransportBoxModel.state == state.value)
            return Outcome(tuple(m.to_dto() for m in self._session.scalars(stmt)))

        return run_operation(self._session, "list_boxes", body, commit=False)

    # =========================================================================
    # Internal
    # =========================================================================

    def _load(
        self,
        box_id: UUID,
        expected_state: BoxState | None = None,
        expected_version: int | None = None,
    ) -> TransportBoxModel:
        # Collections loaded by an earlier operation of this session may be stale.
        self._session.expire_all()
        model = self._session.get(TransportBoxModel, box_id)
        if model is None:
            raise TransportBoxNotFoundError(str(box_id))
        if expected_state is not None and model.state != expected_state.value:
            raise ConcurrentModificationError(
                resource=_RESOURCE,
                resource_id=str(box_id),
                expected=expected_state.value,
                actual=model.state,
            )
        if expected_version is not None and model.version != expected_version:
            raise ConcurrentModificationError(
                resource=_RESOURCE,
                resource_id=str(box_id),
                expected=str(expected_version),
                actual=str(model.version),
            )
        return model

    def _recorded_removal(self, base_key: str) -> list[LedgerEntryRecord]:
        """Release entries an earlier removal wrote under ``base_key``."""
        recorded: list[LedgerEntryRecord] = []
        while True:
            entry = self._ledger.find_entry(derive_idempotency_key(base_key, len(recorded)))
            if entry is None:
                return recorded
            recorded.append(entry)

    def _transition(self, model: TransportBoxModel, action: str) -> Transition:
        transition = BOX_WORKFLOW.find_transition(model.state, action)
        if transition is None:
            raise InvalidBoxStateError(
                box_id=str(model.id),
                current_state=model.state,
                operation=action,
                allowed_states=BOX_WORKFLOW.states_allowing(action),
            )
        guard = transition.guard
        if guard is not None:
            check = GUARD_CHECKS.get(guard.name)
            if check is None:
                raise ValueError(f"No check registered for guard {guard.name!r}")
            refusal = check(model)
            if refusal is not None:
                logger.info(
                    "box_guard_not_satisfied",
                    extra={"guard": guard.name, "action": action, "box_id": str(model.id)},
                )
                raise refusal
        return transition

    def _apply(
        self,
        model: TransportBoxModel,
        transition: Transition,
        actor: str,
        description: str | None = None,
    ) -> None:
        now = self._clock.now()
        model.state_log.append(
            TransportBoxStateLogModel(
                position=len(model.state_log),
                from_state=transition.from_state,
                to_state=transition.to_state,
                changed_at=now,
                changed_by=actor,
                description=description,
            )
        )
        model.state = transition.to_state
        model.state_changed_at = now
        if BOX_WORKFLOW.is_terminal(transition.to_state):
            model.active_code = None
        logger.info(
            "box_state_changed",
            extra={
                "from_state": transition.from_state,
                "to_state": transition.to_state,
                "action": transition.action,
            },
        )

    def _touch(self, model: TransportBoxModel, actor: str) -> None:
        model.updated_at = self._clock.now()
        model.updated_by = actor
        # Force the version-checked UPDATE even when nothing else on the row changed.
        flag_modified(model, "updated_by")

    def _flush(self, model: TransportBoxModel) -> None:
        try:
            self._session.flush()
        except (StaleDataError, IntegrityError) as exc:
            logger.warning("transport_box_write_conflict", extra={"box_id": str(model.id)})
            raise ConcurrentModificationError(_RESOURCE, str(model.id)) from exc
