"""
Pure domain layer.

This module contains immutable data transfer objects and value logic
with NO dependencies on:
- the key-value store
- SQLAlchemy
- Time (clocks are injected)

Documents cross the store boundary only through to_payload/from_payload.
"""

from stock_kernel.domain.allocation import Allocation, AllocationSet
from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.parts import (
    DEFAULT_MIN_STOCK_LEVEL,
    Part,
    StockTransaction,
    TransactionKind,
)
from stock_kernel.domain.records import (
    ConsumingRecord,
    RecordKind,
    ServiceCategory,
    ServiceOrder,
    ServiceOrderStatus,
    VehicleSale,
    VehicleSaleStatus,
    record_from_payload,
)
from stock_kernel.domain.vehicles import (
    SERIAL_FIELDS,
    VALID_TRANSITIONS,
    UnitCountDrift,
    UnitSerials,
    UnitStatus,
    VehicleModel,
    VehicleUnit,
    can_transition,
    normalize_serial,
)

__all__ = [
    # Allocation
    "Allocation",
    "AllocationSet",
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Parts and ledger
    "DEFAULT_MIN_STOCK_LEVEL",
    "Part",
    "StockTransaction",
    "TransactionKind",
    # Records
    "ConsumingRecord",
    "RecordKind",
    "ServiceCategory",
    "ServiceOrder",
    "ServiceOrderStatus",
    "VehicleSale",
    "VehicleSaleStatus",
    "record_from_payload",
    # Vehicles
    "SERIAL_FIELDS",
    "VALID_TRANSITIONS",
    "UnitCountDrift",
    "UnitSerials",
    "UnitStatus",
    "VehicleModel",
    "VehicleUnit",
    "can_transition",
    "normalize_serial",
]
