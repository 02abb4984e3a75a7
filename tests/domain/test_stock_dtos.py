"""Tests for Part, StockTransaction, vehicle and record DTO validation."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from stock_kernel.domain.allocation import AllocationSet
from stock_kernel.domain.parts import Part, StockTransaction, TransactionKind
from stock_kernel.domain.records import (
    RecordKind,
    ServiceOrder,
    VehicleSale,
    record_from_payload,
)
from stock_kernel.domain.vehicles import (
    UnitCountDrift,
    UnitSerials,
    UnitStatus,
    VehicleModel,
    can_transition,
    normalize_serial,
)
from stock_kernel.exceptions import ValidationError

NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


class TestPart:

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            Part(id="p", name="Brake Pad", quantity=-1, initial_quantity=0)
        assert exc_info.value.field == "quantity"

    def test_name_required(self):
        with pytest.raises(ValidationError):
            Part(id="p", name="", quantity=0, initial_quantity=0)

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            Part(id="p", name="x", quantity=0, initial_quantity=0, unit_price=Decimal("-1"))

    def test_low_stock_at_threshold(self):
        part = Part(id="p", name="x", quantity=5, initial_quantity=5, min_stock_level=5)
        assert part.is_low_stock
        assert not part.is_out_of_stock

    def test_out_of_stock(self):
        part = Part(id="p", name="x", quantity=0, initial_quantity=3)
        assert part.is_out_of_stock

    def test_stock_value(self):
        part = Part(id="p", name="x", quantity=4, initial_quantity=4, unit_price="2.50")
        assert part.stock_value == Decimal("10.00")

    def test_payload_round_trip_preserves_decimal_and_times(self):
        part = Part(
            id="p", name="x", quantity=4, initial_quantity=6,
            unit_price="12.30", created_at=NOW, updated_at=NOW,
        )
        payload = part.to_payload()
        assert payload["unitPrice"] == "12.30"
        restored = Part.from_payload(payload, version=3)
        assert restored.unit_price == Decimal("12.30")
        assert restored.created_at == NOW
        assert restored.version == 3

    def test_naive_datetime_rejected_on_serialize(self):
        part = Part(id="p", name="x", quantity=0, initial_quantity=0, created_at=datetime(2024, 1, 1))
        with pytest.raises(ValidationError):
            part.to_payload()


class TestStockTransaction:

    def _entry(self, **overrides):
        values = dict(
            id="t", sequence=1, part_id="p", delta=-3, quantity_before=10,
            quantity_after=7, kind=TransactionKind.SERVICE_CONSUME, timestamp=NOW,
        )
        values.update(overrides)
        return StockTransaction(**values)

    def test_valid_entry(self):
        assert self._entry().quantity_after == 7

    def test_zero_delta_rejected(self):
        with pytest.raises(ValidationError):
            self._entry(delta=0, quantity_after=10)

    def test_inconsistent_after_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            self._entry(quantity_after=8)
        assert exc_info.value.field == "quantity_after"

    def test_negative_after_rejected(self):
        with pytest.raises(ValidationError):
            self._entry(delta=-11, quantity_after=-1)

    def test_kind_coerced_from_string(self):
        assert self._entry(kind="service-restore", delta=3, quantity_after=13).kind is (
            TransactionKind.SERVICE_RESTORE
        )


class TestVehicleDtos:

    def test_sold_is_terminal(self):
        assert not can_transition(UnitStatus.SOLD, UnitStatus.IN_STOCK)
        assert not can_transition(UnitStatus.SOLD, UnitStatus.SOLD)
        assert can_transition(UnitStatus.RESERVED, UnitStatus.IN_STOCK)
        assert can_transition(UnitStatus.IN_STOCK, UnitStatus.SOLD)

    def test_motor_number_required(self):
        with pytest.raises(ValidationError):
            UnitSerials(motor_number="   ")

    def test_normalize_serial(self):
        assert normalize_serial("  MTR-001a ") == "mtr-001a"

    def test_model_quantity_non_negative(self):
        with pytest.raises(ValidationError):
            VehicleModel(id="m", name="Scooter", quantity=-1)

    def test_drift_properties(self):
        drift = UnitCountDrift("m", declared_quantity=5, registered_units=3,
                               in_stock_units=3, reserved_units=0, sold_units=0)
        assert drift.unregistered == 2
        assert drift.over_registered == 0
        assert drift.has_drift


class TestRecords:

    def test_service_order_status_validated(self):
        with pytest.raises(ValidationError) as exc_info:
            ServiceOrder(id="so", status="Done")
        assert exc_info.value.field == "status"

    def test_service_order_category_validated(self):
        with pytest.raises(ValidationError):
            ServiceOrder(id="so", service_category="Premium")

    def test_allocations_coerced_to_set(self):
        order = ServiceOrder(id="so", allocations=AllocationSet.of({"a": 1}).lines)
        assert isinstance(order.allocations, AllocationSet)

    def test_sale_requires_model(self):
        with pytest.raises(ValidationError):
            VehicleSale(id="vs")

    def test_sale_unit_count_matches_quantity(self):
        with pytest.raises(ValidationError) as exc_info:
            VehicleSale(id="vs", vehicle_model_id="m", quantity=2, unit_ids=("u1",))
        assert exc_info.value.field == "unit_ids"

    def test_sale_duplicate_unit_rejected(self):
        with pytest.raises(ValidationError):
            VehicleSale(id="vs", vehicle_model_id="m", quantity=2, unit_ids=("u1", "u1"))

    def test_sale_quantity_positive(self):
        with pytest.raises(ValidationError):
            VehicleSale(id="vs", vehicle_model_id="m", quantity=0)

    def test_record_from_payload_dispatches_on_kind(self):
        sale = VehicleSale(id="vs", vehicle_model_id="m", selling_price="85000")
        restored = record_from_payload(sale.to_payload(), version=2)
        assert isinstance(restored, VehicleSale)
        assert restored.kind is RecordKind.VEHICLE_SALE
        assert restored.selling_price == Decimal("85000")
        assert restored.version == 2

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            record_from_payload({"kind": "invoice", "id": "x"})
