"""
Module ORM Registry (``warehouse_modules._orm_registry``).

Responsibility
--------------
Ensure every SQLAlchemy ORM model is imported so that ``Base.metadata``
contains its table definition before tables are created, and so that the
immutability listeners find the module models they protect.

Architecture position
---------------------
**Modules layer** -- utility.  Imports from sibling ``warehouse_modules``
packages.  The kernel reaches it only through inline imports in
``create_tables()``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``warehouse_modules.*.orm`` module.

    Idempotent -- repeated calls are harmless.
    """
    import warehouse_kernel.models  # noqa: F401
    # fmt: off
    import warehouse_modules.gift_package.orm  # noqa: F401
    import warehouse_modules.stock_taking.orm  # noqa: F401
    import warehouse_modules.transport.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """Create kernel and module tables and register immutability listeners.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from warehouse_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
