"""
Pytest fixtures for the warehouse engine test suite.

Provides:
- A file-backed SQLite database per test (fresh schema, no cleanup needed)
- Independent sessions for two-actor interleaving tests
- Deterministic clock, seeded catalog and fake picking-list generators
- Structured-log capture

Environment Variables:
- WAREHOUSE_TEST_DATABASE_URL: run against another database (e.g. PostgreSQL)
  instead of the per-test SQLite file.  The schema is dropped and recreated
  for every test.
"""

import json
import logging
import os
from decimal import Decimal
from io import StringIO

import pytest

from warehouse_kernel.db.engine import (
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from warehouse_kernel.domain.clock import DeterministicClock
from warehouse_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from warehouse_kernel.selectors.ledger_selector import LedgerSelector
from warehouse_kernel.services.stock_ledger_service import StockLedgerService
from warehouse_modules._orm_registry import create_all_tables
from warehouse_modules.catalog import InMemoryCatalog
from warehouse_services.inventory_engine import InventoryEngine

from tests.fakes import SEEDED_PRODUCTS, TEST_ACTOR, FakePickingListGenerator


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture warehouse_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.create_box(actor="alice")
            logs = captured_logs()
            assert any(r["message"] == "create_box_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("warehouse_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


@pytest.fixture
def db_engine(tmp_path):
    """Engine with a fresh schema for one test."""
    url = os.environ.get("WAREHOUSE_TEST_DATABASE_URL") or f"sqlite:///{tmp_path / 'warehouse.db'}"
    eng = init_engine_from_url(url, echo=False, pool_timeout=10)
    drop_tables()
    create_all_tables()
    yield eng
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """Primary session.  Services commit per operation."""
    sess = session_factory()
    yield sess
    sess.close()


@pytest.fixture
def other_session(session_factory):
    """Second, independent session playing a concurrent actor."""
    sess = session_factory()
    yield sess
    sess.close()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def catalog():
    return InMemoryCatalog(SEEDED_PRODUCTS)


@pytest.fixture
def picking_generator():
    return FakePickingListGenerator()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def ledger(session, deterministic_clock):
    return StockLedgerService(session, clock=deterministic_clock)


@pytest.fixture
def ledger_selector(session):
    return LedgerSelector(session)


@pytest.fixture
def make_engine(catalog, picking_generator, deterministic_clock):
    """Factory for an InventoryEngine bound to a given session."""

    def _make(session, generator=None, **kwargs):
        return InventoryEngine(
            session,
            catalog=catalog,
            picking_generator=generator or picking_generator,
            clock=deterministic_clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def engine(session, make_engine):
    return make_engine(session)


@pytest.fixture
def stock(engine):
    """Receive stock: ``stock("SKU-9", 10)``."""

    def _receive(product_code, quantity, lot_code=None):
        result = engine.receive_stock(
            product_code, Decimal(quantity), actor=TEST_ACTOR, lot_code=lot_code,
        )
        assert result.is_success, result.error_message
        return result.value

    return _receive


@pytest.fixture
def new_box(engine):
    """Create a box in ``new`` and return its id."""

    def _create(**kwargs):
        result = engine.create_box(actor=TEST_ACTOR, **kwargs)
        assert result.is_success, result.error_message
        return result.value.id

    return _create


@pytest.fixture
def packed_box(engine, stock, new_box):
    """A box holding 4 x SKU-9, picked and packed.  Returns its id."""

    def _pack():
        stock("SKU-9", 10)
        box_id = new_box()
        assert engine.add_item(box_id, "SKU-9", Decimal("4"), actor=TEST_ACTOR).is_success
        requested = engine.request_picking(box_id, actor=TEST_ACTOR)
        assert requested.is_success, requested.error_message
        for line in requested.value.picking_lines:
            assert engine.acknowledge_picking_line(box_id, line.line_no, actor=TEST_ACTOR).is_success
        packed = engine.mark_packed(box_id, actor=TEST_ACTOR)
        assert packed.is_success, packed.error_message
        return box_id

    return _pack

