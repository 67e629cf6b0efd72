"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock ledger is the audit trail of every physical movement. A movement
that was recorded must never be edited or removed; mistakes are undone with a
new compensating entry that points back at the original (reversal_of_id).
The same holds for the other audit artifacts the engine writes: gift package
manufacture logs, stock-taking results and transport box state logs.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements are emitted:

    session.flush()
         |
         v
    [before_update event] --> _reject_update() --> ImmutabilityViolationError
         |                                                ^
         v                                                |
    [before_delete event] --> _reject_delete() -----------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, ImmutabilityViolationError aborts the flush and the caller's
transaction is rolled back. The database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                         | When Immutable
-------------------------------|------------------------------------
StockLedgerEntry               | ALWAYS (from creation)
GiftPackageManufactureLog      | ALWAYS (from creation)
GiftPackageManufactureItem     | ALWAYS (from creation)
StockTakingResult              | ALWAYS (from creation)
TransportBoxStateLog           | ALWAYS (from creation)

StockBalance, TransportBox and their items are regular updatable aggregates
guarded by optimistic version checks instead.

===============================================================================
USAGE
===============================================================================

Called by create_tables(), or once at startup:

    from warehouse_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    from warehouse_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event

from warehouse_kernel.exceptions import ImmutabilityViolationError
from warehouse_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _protected_models() -> dict[type, str]:
    """Map each append-only model to the reason reported on violation."""
    # Inline imports: models import from db, db must not import models at load.
    from warehouse_kernel.models.stock_ledger import StockLedgerEntryModel
    from warehouse_modules.gift_package.orm import (
        GiftPackageManufactureItemModel,
        GiftPackageManufactureLogModel,
    )
    from warehouse_modules.stock_taking.orm import StockTakingResultModel
    from warehouse_modules.transport.orm import TransportBoxStateLogModel

    return {
        StockLedgerEntryModel: (
            "Ledger entries are immutable; post a compensating entry instead"
        ),
        GiftPackageManufactureLogModel: (
            "Manufacture logs are immutable; corrections are new logs"
        ),
        GiftPackageManufactureItemModel: (
            "Manufacture log items are immutable"
        ),
        StockTakingResultModel: "Stock-taking results are an audit trail",
        TransportBoxStateLogModel: "Box state history is an audit trail",
    }


def _reject(target, operation: str) -> None:
    entity_type = type(target).__name__.removesuffix("Model")
    reason = _protected_models().get(type(target), "Record is immutable")
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _reject_update(mapper, connection, target):
    _reject(target, "UPDATE")


def _reject_delete(mapper, connection, target):
    _reject(target, "DELETE")


def register_immutability_listeners():
    """
    Register immutability enforcement event listeners.

    Safe to call more than once; already registered listeners are skipped.
    Call after all models are imported and before database work begins.
    """
    for model in _protected_models():
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for model in _protected_models():
        _safe_remove_listener(model, "before_update", _reject_update)
        _safe_remove_listener(model, "before_delete", _reject_delete)
