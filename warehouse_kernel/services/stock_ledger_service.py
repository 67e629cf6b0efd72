"""
StockLedgerService -- the single write path for on-hand stock.

Responsibility:
    Appends movements to the append-only ledger and keeps the derived
    per-product/lot balance in step with them, inside the caller's
    transaction.  Every quantity-affecting operation of the engine (box
    loading, gift package assembly, stock-taking corrections, receipts)
    ends up in ``append()``.

Architecture position:
    Kernel > Services -- imperative shell, owns the ledger write path.

Invariants enforced:
    - Idempotency: an entry is recorded at most once per idempotency key.
      A replay returns the entry (and balance) computed by the first attempt.
    - Non-negative balances: a movement that would drive a balance below zero
      is refused with InsufficientStockError unless it is a correction.
    - Optimistic concurrency: the balance row is version-checked on UPDATE,
      and an optional ``expected`` snapshot must still be current.  A lost
      race surfaces as ConcurrentModificationError; the service never retries.

Failure modes:
    - IdempotencyKeyReusedError: key already recorded for a different movement.
    - ConcurrentModificationError: snapshot stale, balance row changed under
      us, or a concurrent insert of the same key / balance row.
    - InsufficientStockError: non-correction movement below zero.
    - LedgerEntryNotFoundError / EntryAlreadyReversedError: from reverse().

    After ConcurrentModificationError the session must be rolled back by the
    caller before it is used again.

Audit relevance:
    Entries are immutable (db/immutability.py).  Compensation is always a new
    entry whose reversal_of_id points at the original.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import NAMESPACE_URL, UUID, uuid4, uuid5

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from warehouse_kernel.db.types import normalize_quantity
from warehouse_kernel.domain.clock import Clock, SystemClock
from warehouse_kernel.domain.dtos import (
    BalanceSnapshot,
    LedgerAppendResult,
    LedgerAppendStatus,
    LedgerEntryDraft,
    LedgerEntryRecord,
    SourceType,
)
from warehouse_kernel.domain.movement_validator import raise_for_result, validate_quantity
from warehouse_kernel.exceptions import (
    ConcurrentModificationError,
    EntryAlreadyReversedError,
    IdempotencyKeyReusedError,
    InsufficientStockError,
    LedgerEntryNotFoundError,
)
from warehouse_kernel.logging_config import get_logger
from warehouse_kernel.models.stock_ledger import StockBalanceModel, StockLedgerEntryModel
from warehouse_kernel.services.base import BaseService
from warehouse_kernel.utils.idempotency import generate_idempotency_key

logger = get_logger("services.stock_ledger")


class StockLedgerService(BaseService[StockLedgerEntryModel]):
    """
    Append-only stock ledger with derived balances.

    Contract:
        Flushes, never commits.  The caller owns the transaction, so several
        appends made by one operation commit or roll back together.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        allow_negative_stock: bool = False,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._allow_negative_stock = allow_negative_stock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_balance(self, product_code: str, lot_code: str | None = None) -> BalanceSnapshot:
        """
        Latest committed balance of one product/lot and its version.

        The row is re-read from the database even when already loaded in this
        session, so the snapshot reflects commits made by other sessions.
        """
        row = self._load_balance(product_code, lot_code)
        if row is None:
            return BalanceSnapshot(
                product_code=product_code,
                lot_code=lot_code,
                quantity=Decimal(0),
                version=0,
            )
        return row.to_dto()

    def find_entry(self, idempotency_key: str) -> LedgerEntryRecord | None:
        """Entry recorded under ``idempotency_key``, if any."""
        row = self._find_by_key(idempotency_key)
        return row.to_dto() if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(
        self,
        draft: LedgerEntryDraft,
        expected: BalanceSnapshot | None = None,
    ) -> LedgerAppendResult:
        """
        Record one movement and update the balance it affects.

        Args:
            draft: The movement to record.
            expected: Snapshot the caller validated against.  When given, the
                append fails if the balance changed since it was read.

        Returns:
            LedgerAppendResult with status APPLIED, or ALREADY_APPLIED carrying
            the entry of the first attempt when the key was seen before.
        """
        existing = self._find_by_key(draft.idempotency_key)
        if existing is not None:
            record = existing.to_dto()
            if not record.same_movement_as(draft):
                logger.warning(
                    "ledger_idempotency_key_reused",
                    extra={
                        "idempotency_key": draft.idempotency_key,
                        "existing_entry_id": str(existing.id),
                    },
                )
                raise IdempotencyKeyReusedError(draft.idempotency_key, str(existing.id))
            logger.info(
                "ledger_append_replayed",
                extra={
                    "idempotency_key": draft.idempotency_key,
                    "entry_id": str(existing.id),
                },
            )
            return LedgerAppendResult(status=LedgerAppendStatus.ALREADY_APPLIED, entry=record)

        balance = self._load_balance(draft.product_code, draft.lot_code)
        current_quantity = balance.quantity if balance is not None else Decimal(0)
        current_version = balance.version if balance is not None else 0

        if expected is not None and expected.version != current_version:
            logger.warning(
                "ledger_snapshot_stale",
                extra={
                    "product_code": draft.product_code,
                    "lot_code": draft.lot_code,
                    "expected_version": expected.version,
                    "actual_version": current_version,
                },
            )
            raise ConcurrentModificationError(
                resource="stock_balance",
                resource_id=str(draft.key),
                expected=str(expected.version),
                actual=str(current_version),
            )

        new_quantity = normalize_quantity(current_quantity + draft.delta)
        if new_quantity < 0 and not (draft.is_correction or self._allow_negative_stock):
            raise InsufficientStockError(
                product_code=draft.product_code,
                requested=str(-draft.delta),
                available=str(normalize_quantity(current_quantity)),
                lot_code=draft.lot_code,
            )

        now = self._clock.now()
        if balance is None:
            balance = StockBalanceModel(
                product_code=draft.product_code,
                quantity=new_quantity,
                updated_at=now,
                **StockBalanceModel.key_columns(draft.lot_code),
            )
            self.session.add(balance)
        else:
            balance.quantity = new_quantity
            balance.updated_at = now
        self._flush_or_conflict("stock_balance", str(draft.key))

        entry = StockLedgerEntryModel(
            product_code=draft.product_code,
            lot_code=draft.lot_code,
            delta=draft.delta,
            balance_after=new_quantity,
            balance_version=balance.version,
            occurred_at=now,
            source_type=draft.source_type.value,
            source_id=draft.source_id,
            idempotency_key=draft.idempotency_key,
            is_correction=draft.is_correction,
            reversal_of_id=draft.reversal_of_id,
            actor=draft.actor,
        )
        self.session.add(entry)
        self._flush_or_conflict("stock_ledger_entry", draft.idempotency_key)

        logger.info(
            "ledger_entry_appended",
            extra={
                "entry_id": str(entry.id),
                "product_code": draft.product_code,
                "lot_code": draft.lot_code,
                "delta": str(draft.delta),
                "balance_after": str(new_quantity),
                "source_type": draft.source_type.value,
                "is_correction": draft.is_correction,
            },
        )
        return LedgerAppendResult(status=LedgerAppendStatus.APPLIED, entry=entry.to_dto())

    def receive(
        self,
        product_code: str,
        quantity: Decimal,
        lot_code: str | None = None,
        idempotency_key: str | None = None,
        actor: str = "system",
        source_id: UUID | None = None,
    ) -> LedgerAppendResult:
        """Inbound movement that puts stock on hand (goods receipt)."""
        raise_for_result(validate_quantity(quantity))
        if source_id is None:
            # A retried receipt must name the same source to be a replay.
            source_id = uuid5(NAMESPACE_URL, idempotency_key) if idempotency_key else uuid4()
        draft = LedgerEntryDraft(
            product_code=product_code,
            lot_code=lot_code,
            delta=quantity,
            source_type=SourceType.RECEIPT,
            source_id=source_id,
            idempotency_key=idempotency_key
            or generate_idempotency_key("receipt", "stock_in", source_id),
            actor=actor,
        )
        return self.append(draft)

    def reverse(
        self,
        entry_id: UUID,
        idempotency_key: str,
        actor: str,
        quantity: Decimal | None = None,
    ) -> LedgerAppendResult:
        """
        Compensate an entry with one of opposite sign.

        Args:
            entry_id: Entry to compensate.
            idempotency_key: Key of the compensating entry.
            actor: Who reverses.
            quantity: Part of the entry to reverse; the whole remainder
                when omitted.

        Raises:
            LedgerEntryNotFoundError: No such entry.
            EntryAlreadyReversedError: Nothing (or not enough) left to reverse.
        """
        original = self.session.get(StockLedgerEntryModel, entry_id)
        if original is None:
            raise LedgerEntryNotFoundError(str(entry_id))

        replay = self._find_by_key(idempotency_key)
        if replay is not None and replay.reversal_of_id == entry_id:
            return LedgerAppendResult(
                status=LedgerAppendStatus.ALREADY_APPLIED, entry=replay.to_dto()
            )

        reversed_so_far = sum(
            (
                abs(row.delta)
                for row in self.session.scalars(
                    select(StockLedgerEntryModel).where(
                        StockLedgerEntryModel.reversal_of_id == entry_id
                    )
                )
            ),
            Decimal(0),
        )
        remaining = normalize_quantity(abs(original.delta) - reversed_so_far)
        amount = remaining if quantity is None else quantity
        if remaining == 0:
            raise EntryAlreadyReversedError(
                entry_id=str(entry_id),
                requested=str(amount),
                remaining=str(remaining),
            )
        raise_for_result(validate_quantity(amount))
        if amount > remaining:
            raise EntryAlreadyReversedError(
                entry_id=str(entry_id),
                requested=str(amount),
                remaining=str(remaining),
            )

        sign = Decimal(-1) if original.delta > 0 else Decimal(1)
        draft = LedgerEntryDraft(
            product_code=original.product_code,
            lot_code=original.lot_code,
            delta=sign * amount,
            source_type=SourceType(original.source_type),
            source_id=original.source_id,
            idempotency_key=idempotency_key,
            actor=actor,
            is_correction=original.is_correction,
            reversal_of_id=original.id,
        )
        return self.append(draft)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _find_by_key(self, idempotency_key: str) -> StockLedgerEntryModel | None:
        return self.session.scalars(
            select(StockLedgerEntryModel).where(
                StockLedgerEntryModel.idempotency_key == idempotency_key
            )
        ).one_or_none()

    def _load_balance(
        self,
        product_code: str,
        lot_code: str | None,
    ) -> StockBalanceModel | None:
        stmt = (
            select(StockBalanceModel)
            .where(
                StockBalanceModel.product_code == product_code,
                StockBalanceModel.has_lot == (lot_code is not None),
                StockBalanceModel.lot_code == (lot_code or ""),
            )
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).one_or_none()

    def _flush_or_conflict(self, resource: str, resource_id: str) -> None:
        try:
            self.session.flush()
        except (StaleDataError, IntegrityError) as exc:
            logger.warning(
                "ledger_write_conflict",
                extra={"resource": resource, "resource_id": resource_id},
            )
            raise ConcurrentModificationError(
                resource=resource,
                resource_id=resource_id,
            ) from exc
