"""Services for the stock kernel (write side)."""

from stock_kernel.services.allocation_engine import AllocationEngine, AllocationOutcome
from stock_kernel.services.event_bus import PartChangedEvent, StockEventBus
from stock_kernel.services.part_store import PartStore
from stock_kernel.services.record_manager import RecordManager
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_transaction_service import StockTransactionService
from stock_kernel.services.transaction_ledger import TransactionLedger
from stock_kernel.services.vehicle_unit_registry import VehicleUnitRegistry

__all__ = [
    "AllocationEngine",
    "AllocationOutcome",
    "PartChangedEvent",
    "PartStore",
    "RecordManager",
    "SequenceService",
    "StockEventBus",
    "StockTransactionService",
    "TransactionLedger",
    "VehicleUnitRegistry",
]
