"""
Pytest fixtures for the stock kernel test suite.

Provides:
- A deterministic clock
- A key-value store parametrized over the in-memory and SQLite backends
- Wired services (part store, ledger, engine, registry, record manager)
- Structured-log capture
- Small data builders for parts, models and records

The SQL backend runs against a file-backed SQLite database in tmp_path so
multiple threads share one database, the same way a deployed instance does.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from io import StringIO

import pytest

from stock_config.schema import StockLedgerSettings
from stock_kernel.bootstrap import build_stock_kernel
from stock_kernel.db.engine import create_store_engine
from stock_kernel.domain.allocation import AllocationSet
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.domain.records import ServiceOrder, VehicleSale
from stock_kernel.domain.values import new_id
from stock_kernel.exceptions import StoreUnavailableError
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_kernel.store.base import KeyValueStore
from stock_kernel.store.memory import InMemoryKeyValueStore
from stock_kernel.store.sql import SqlKeyValueStore


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
    Capture stock_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, part_store):
            part_store.apply_delta(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_delta_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as running many threads against one store"
    )


# =============================================================================
# Clock and store
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 6, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def memory_store():
    return InMemoryKeyValueStore(timeout_seconds=2.0)


@pytest.fixture
def sql_store(tmp_path):
    engine = create_store_engine(f"sqlite:///{tmp_path / 'stock.db'}", timeout_seconds=10.0)
    store = SqlKeyValueStore(engine, timeout_seconds=10.0)
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    """Every store-level test runs against both backends."""
    if request.param == "memory":
        return request.getfixturevalue("memory_store")
    return request.getfixturevalue("sql_store")


# =============================================================================
# Kernel wiring
# =============================================================================


@pytest.fixture
def settings():
    return StockLedgerSettings(cas_max_attempts=20, allocation_max_attempts=3)


@pytest.fixture
def kernel(memory_store, clock, settings):
    with build_stock_kernel(settings, clock=clock, store=memory_store) as k:
        yield k


@pytest.fixture
def part_store(kernel):
    return kernel.parts


@pytest.fixture
def ledger(kernel):
    return kernel.ledger


@pytest.fixture
def engine(kernel):
    return kernel.allocations


@pytest.fixture
def registry(kernel):
    return kernel.vehicles


@pytest.fixture
def records(kernel):
    return kernel.records


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def make_part(part_store):
    """Create a part with the given opening quantity."""

    def _make(quantity=10, name=None, unit_price="100.00", **kwargs):
        return part_store.create_part(
            name=name or f"Part {new_id()[:6]}",
            quantity=quantity,
            unit_price=unit_price,
            **kwargs,
        )

    return _make


@pytest.fixture
def parts_ab(make_part):
    """Part A with 10 on hand, part B with 5."""
    return make_part(10, name="Brake Pad"), make_part(5, name="Chain Set")


@pytest.fixture
def make_service_order():
    def _make(allocation: dict[str, int] | None = None, record_id=None, **kwargs):
        return ServiceOrder(
            id=record_id or new_id(),
            customer_name=kwargs.pop("customer_name", "R. Sharma"),
            allocations=AllocationSet.of(allocation or {}),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_vehicle_sale():
    def _make(model_id, quantity=1, unit_ids=(), allocation=None, record_id=None, **kwargs):
        return VehicleSale(
            id=record_id or new_id(),
            vehicle_model_id=model_id,
            quantity=quantity,
            unit_ids=tuple(unit_ids),
            customer_name=kwargs.pop("customer_name", "A. Verma"),
            allocations=AllocationSet.of(allocation or {}),
            **kwargs,
        )

    return _make


# =============================================================================
# Fault injection
# =============================================================================


class FlakyStore(KeyValueStore):
    """
    Wraps a store and raises StoreUnavailableError on chosen writes.

    ``fail_on(predicate)`` arms the store: the first ``compare_and_set`` or
    ``create`` whose (operation, key, value) satisfies the predicate fails,
    and so does every write after it until ``heal()`` is called.
    """

    def __init__(self, inner: KeyValueStore):
        super().__init__(inner.timeout_seconds)
        self.inner = inner
        self._predicate = None
        self._down = False
        self._lock = threading.Lock()

    def fail_on(self, predicate) -> None:
        self._predicate = predicate

    def heal(self) -> None:
        self._predicate = None
        self._down = False

    def _check(self, operation, key, value=None) -> None:
        with self._lock:
            if not self._down and self._predicate is not None and self._predicate(operation, key, value):
                self._down = True
            if self._down:
                raise StoreUnavailableError(operation, key, self.timeout_seconds, reason="injected")

    def get(self, key):
        return self.inner.get(key)

    def list(self, prefix):
        return self.inner.list(prefix)

    def create(self, key, value):
        self._check("create", key, value)
        return self.inner.create(key, value)

    def compare_and_set(self, key, value, expected_version):
        self._check("compare_and_set", key, value)
        return self.inner.compare_and_set(key, value, expected_version)

    def delete(self, key, expected_version=None):
        self._check("delete", key)
        return self.inner.delete(key, expected_version)


@pytest.fixture
def flaky_kernel(clock, settings):
    """A kernel whose store can be made to fail mid-operation."""
    flaky = FlakyStore(InMemoryKeyValueStore(timeout_seconds=2.0))
    with build_stock_kernel(settings, clock=clock, store=flaky) as k:
        yield k, flaky
