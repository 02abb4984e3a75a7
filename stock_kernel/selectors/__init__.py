"""Read-only selectors for the stock kernel (query side)."""

from stock_kernel.selectors.inventory_selector import InventorySelector, InventorySummary
from stock_kernel.selectors.reconciliation_selector import (
    ReconciliationResult,
    ReconciliationSelector,
)
from stock_kernel.selectors.vehicle_selector import VehicleSelector

__all__ = [
    "InventorySelector",
    "InventorySummary",
    "ReconciliationResult",
    "ReconciliationSelector",
    "VehicleSelector",
]
