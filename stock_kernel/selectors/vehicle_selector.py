"""
Module: stock_kernel.selectors.vehicle_selector
Responsibility: Vehicle unit lookups -- serial search across all models and
    per-model status counts.
Architecture position: Kernel > Selectors.  Reads vehicles/ and vehicleUnits/.
"""

from stock_kernel.domain.vehicles import SERIAL_FIELDS, UnitStatus, VehicleUnit
from stock_kernel.exceptions import ValidationError
from stock_kernel.selectors.base import BaseSelector
from stock_kernel.store.keys import unit_prefix


class VehicleSelector(BaseSelector):
    """Read-only vehicle unit queries."""

    def units(self, model_id: str | None = None) -> list[VehicleUnit]:
        return [
            VehicleUnit.from_payload(item.value, item.version)
            for item in self.store.list(unit_prefix(model_id))
        ]

    def search_units(self, query: str, field: str = "chassis_number") -> list[VehicleUnit]:
        """
        Units whose serial ``field`` contains ``query`` (case-insensitive).

        Raises:
            ValidationError: ``field`` is not a serial field.
        """
        if field not in SERIAL_FIELDS:
            raise ValidationError("field", f"{field!r} not in {list(SERIAL_FIELDS)}")
        needle = query.strip().lower()
        if not needle:
            return []
        return [u for u in self.units() if needle in u.serial(field).lower()]

    def status_counts(self, model_id: str) -> dict[UnitStatus, int]:
        counts = {status: 0 for status in UnitStatus}
        for unit in self.units(model_id):
            counts[unit.status] += 1
        return counts
