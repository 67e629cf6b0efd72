"""Database layer - engine, base classes, column types, and immutability."""

from warehouse_kernel.db.base import UUID, Base, UUIDString
from warehouse_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from warehouse_kernel.db.types import QUANTITY_DECIMAL_PLACES, UTCDateTime

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "UUIDString",
    "UUID",
    "UTCDateTime",
    "QUANTITY_DECIMAL_PLACES",
]
