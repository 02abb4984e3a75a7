"""
Kernel wiring.

``build_stock_kernel`` assembles the store, event bus, services and
selectors from a StockLedgerSettings object.  Everything that needs a
store shares the one instance built here.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from stock_config.schema import StockLedgerSettings
from stock_kernel.db.engine import create_store_engine
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.logging_config import configure_logging, get_logger
from stock_kernel.selectors import InventorySelector, ReconciliationSelector, VehicleSelector
from stock_kernel.services import (
    AllocationEngine,
    PartStore,
    RecordManager,
    SequenceService,
    StockEventBus,
    StockTransactionService,
    TransactionLedger,
    VehicleUnitRegistry,
)
from stock_kernel.store import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore

logger = get_logger("bootstrap")


@dataclass
class StockKernel:
    """Container for one wired kernel instance."""

    settings: StockLedgerSettings
    store: KeyValueStore
    clock: Clock
    event_bus: StockEventBus
    parts: PartStore
    ledger: TransactionLedger
    transactions: StockTransactionService
    allocations: AllocationEngine
    vehicles: VehicleUnitRegistry
    records: RecordManager
    inventory: InventorySelector
    reconciliation: ReconciliationSelector
    vehicle_search: VehicleSelector
    _closed: bool = field(default=False, repr=False)

    def close(self) -> None:
        if not self._closed:
            self.store.close()
            self._closed = True

    def __enter__(self) -> StockKernel:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def build_store(settings: StockLedgerSettings) -> KeyValueStore:
    """Create the configured store backend."""
    if settings.store_backend == "sql":
        engine = create_store_engine(
            settings.database_url,
            echo=settings.sql_echo,
            timeout_seconds=settings.store_timeout_seconds,
        )
        return SqlKeyValueStore(engine, timeout_seconds=settings.store_timeout_seconds)
    return InMemoryKeyValueStore(timeout_seconds=settings.store_timeout_seconds)


def build_stock_kernel(
    settings: StockLedgerSettings | None = None,
    clock: Clock | None = None,
    store: KeyValueStore | None = None,
    configure_logs: bool = False,
) -> StockKernel:
    """
    Wire a StockKernel.

    Args:
        settings: Defaults to StockLedgerSettings() (in-memory store).
        clock: Defaults to SystemClock.
        store: Use this store instead of building one from settings.
        configure_logs: Install the JSON log handler at settings.log_level.
    """
    settings = settings or StockLedgerSettings()
    if configure_logs:
        configure_logging(level=settings.log_level)
    clock = clock or SystemClock()
    store = store if store is not None else build_store(settings)

    bus = StockEventBus()
    parts = PartStore(
        store,
        event_bus=bus,
        clock=clock,
        cas_max_attempts=settings.cas_max_attempts,
        default_min_stock_level=settings.default_min_stock_level,
    )
    ledger = TransactionLedger(store, clock=clock, sequence_service=SequenceService(store))
    engine = AllocationEngine(parts, ledger, max_attempts=settings.allocation_max_attempts)
    vehicles = VehicleUnitRegistry(store, clock=clock, cas_max_attempts=settings.cas_max_attempts)
    records = RecordManager(store, engine, ledger, vehicles, clock=clock)

    logger.info(
        "stock_kernel_built",
        extra={"store_backend": type(store).__name__},
    )
    return StockKernel(
        settings=settings,
        store=store,
        clock=clock,
        event_bus=bus,
        parts=parts,
        ledger=ledger,
        transactions=StockTransactionService(parts, ledger),
        allocations=engine,
        vehicles=vehicles,
        records=records,
        inventory=InventorySelector(store),
        reconciliation=ReconciliationSelector(store),
        vehicle_search=VehicleSelector(store),
    )
