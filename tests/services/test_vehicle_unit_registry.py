"""
Tests for VehicleUnitRegistry: models, serial-numbered units, status
lifecycle and the capacity bound on registration.
"""

from decimal import Decimal

import pytest

from stock_kernel.domain.vehicles import UnitSerials, UnitStatus
from stock_kernel.exceptions import (
    CapacityExceededError,
    DuplicateSerialError,
    InsufficientVehicleStockError,
    InvalidTransitionError,
    ValidationError,
    VehicleModelNotFoundError,
    VehicleUnitNotFoundError,
)
from stock_kernel.store.keys import serial_key


@pytest.fixture
def scooter(registry):
    return registry.create_model("E-Scooter", model="ES-200", price="85000", quantity=5)


def _serials(n: int, **kwargs) -> UnitSerials:
    return UnitSerials(motor_number=f"MTR-{n:03d}", chassis_number=f"CHS-{n:03d}", **kwargs)


class TestModels:

    def test_create_and_get(self, registry, scooter, clock):
        fetched = registry.get_model(scooter.id)
        assert fetched.price == Decimal("85000")
        assert fetched.quantity == 5
        assert fetched.date_added == clock.now().date()

    def test_missing_model(self, registry):
        with pytest.raises(VehicleModelNotFoundError):
            registry.get_model("nope")

    def test_update_details_cannot_touch_quantity(self, registry, scooter):
        with pytest.raises(ValidationError):
            registry.update_model_details(scooter.id, quantity=50)
        updated = registry.update_model_details(scooter.id, price=Decimal("80000"))
        assert updated.price == Decimal("80000")
        assert updated.quantity == 5

    def test_adjust_quantity(self, registry, scooter):
        assert registry.adjust_model_quantity(scooter.id, -2).quantity == 3
        assert registry.adjust_model_quantity(scooter.id, 4).quantity == 7

    def test_adjust_below_zero_rejected(self, registry, scooter):
        with pytest.raises(InsufficientVehicleStockError) as exc_info:
            registry.adjust_model_quantity(scooter.id, -6)
        assert exc_info.value.available == 5
        assert registry.get_model(scooter.id).quantity == 5

    def test_delete_model_removes_units_and_serials(self, registry, scooter, memory_store):
        registry.add_unit(scooter.id, _serials(1))
        registry.delete_model(scooter.id)
        assert registry.find_units(scooter.id) == []
        assert memory_store.get(serial_key(scooter.id, "MTR-001")) is None
        assert registry.list_models() == []


class TestRegistration:

    def test_add_unit(self, registry, scooter):
        unit = registry.add_unit(scooter.id, _serials(1, color="Red"))
        assert unit.status is UnitStatus.IN_STOCK
        assert unit.color == "Red"
        assert registry.get_unit(unit.id).motor_number == "MTR-001"
        assert registry.get_unit(unit.id, scooter.id).id == unit.id

    def test_capacity_bound(self, registry, scooter):
        """A model declared with quantity 5 accepts exactly five units."""
        for n in range(5):
            registry.add_unit(scooter.id, _serials(n))

        with pytest.raises(CapacityExceededError) as exc_info:
            registry.add_unit(scooter.id, _serials(99))

        assert exc_info.value.capacity == 5
        assert exc_info.value.registered == 5
        assert len(registry.find_units(scooter.id)) == 5

    def test_rejected_registration_releases_serial(self, registry, scooter):
        for n in range(5):
            registry.add_unit(scooter.id, _serials(n))
        with pytest.raises(CapacityExceededError):
            registry.add_unit(scooter.id, _serials(99))

        registry.adjust_model_quantity(scooter.id, 1)
        assert registry.add_unit(scooter.id, _serials(99)).motor_number == "MTR-099"

    def test_duplicate_serial_case_insensitive(self, registry, scooter):
        registry.add_unit(scooter.id, UnitSerials(motor_number="mtr-abc"))
        with pytest.raises(DuplicateSerialError) as exc_info:
            registry.add_unit(scooter.id, UnitSerials(motor_number="  MTR-ABC "))
        assert exc_info.value.code == "DUPLICATE_SERIAL"
        assert len(registry.find_units(scooter.id)) == 1

    def test_same_serial_allowed_on_other_model(self, registry, scooter):
        other = registry.create_model("E-Bike", quantity=1)
        registry.add_unit(scooter.id, _serials(1))
        assert registry.add_unit(other.id, _serials(1)).vehicle_model_id == other.id

    def test_unknown_model(self, registry):
        with pytest.raises(VehicleModelNotFoundError):
            registry.add_unit("ghost", _serials(1))

    def test_registration_never_changes_declared_quantity(self, registry, scooter):
        unit = registry.add_unit(scooter.id, _serials(1))
        registry.delete_unit(unit.id)
        assert registry.get_model(scooter.id).quantity == 5


class TestStatusLifecycle:

    def test_reserve_release_sell(self, registry, scooter, clock):
        unit = registry.add_unit(scooter.id, _serials(1))
        assert registry.set_status(unit.id, UnitStatus.RESERVED).status is UnitStatus.RESERVED
        assert registry.set_status(unit.id, UnitStatus.IN_STOCK).status is UnitStatus.IN_STOCK

        clock.advance(60)
        sold = registry.set_status(unit.id, UnitStatus.SOLD, sale_id="vs-1")
        assert sold.sold_on == clock.now()
        assert sold.sale_id == "vs-1"

    @pytest.mark.parametrize("target", [UnitStatus.IN_STOCK, UnitStatus.RESERVED, UnitStatus.SOLD])
    def test_sold_is_terminal(self, registry, scooter, target):
        unit = registry.add_unit(scooter.id, _serials(1))
        registry.set_status(unit.id, UnitStatus.SOLD, sale_id="vs-1")
        with pytest.raises(InvalidTransitionError) as exc_info:
            registry.set_status(unit.id, target)
        assert exc_info.value.from_status == "sold"
        assert registry.get_unit(unit.id).status is UnitStatus.SOLD

    def test_status_accepts_value_string(self, registry, scooter):
        unit = registry.add_unit(scooter.id, _serials(1))
        assert registry.set_status(unit.id, "reserved").status is UnitStatus.RESERVED

    def test_missing_unit(self, registry):
        with pytest.raises(VehicleUnitNotFoundError):
            registry.set_status("ghost", UnitStatus.SOLD)


class TestDeletion:

    def test_delete_releases_serial(self, registry, scooter):
        unit = registry.add_unit(scooter.id, _serials(1))
        registry.delete_unit(unit.id)
        with pytest.raises(VehicleUnitNotFoundError):
            registry.get_unit(unit.id)
        assert registry.add_unit(scooter.id, _serials(1)).id != unit.id

    def test_delete_sold_unit_allowed(self, registry, scooter):
        unit = registry.add_unit(scooter.id, _serials(1))
        registry.set_status(unit.id, UnitStatus.SOLD)
        registry.delete_unit(unit.id, scooter.id)
        assert registry.find_units(scooter.id) == []


class TestSaleSupport:

    def test_reserve_units_all_or_none(self, registry, scooter):
        u1 = registry.add_unit(scooter.id, _serials(1))
        u2 = registry.add_unit(scooter.id, _serials(2))
        registry.set_status(u2.id, UnitStatus.SOLD)

        with pytest.raises(InvalidTransitionError):
            registry.reserve_units(scooter.id, [u1.id, u2.id])

        assert registry.get_unit(u1.id).status is UnitStatus.IN_STOCK

    def test_reserve_available_oldest_first(self, registry, scooter, clock):
        units = []
        for n in range(3):
            units.append(registry.add_unit(scooter.id, _serials(n)))
            clock.advance(10)

        reserved = registry.reserve_available(scooter.id, 2)

        assert [u.id for u in reserved] == [units[0].id, units[1].id]
        assert registry.get_unit(units[2].id).status is UnitStatus.IN_STOCK

    def test_reserve_available_may_return_fewer(self, registry, scooter):
        registry.add_unit(scooter.id, _serials(1))
        assert len(registry.reserve_available(scooter.id, 3)) == 1

    def test_release_leaves_sold_units(self, registry, scooter):
        u1 = registry.add_unit(scooter.id, _serials(1))
        u2 = registry.add_unit(scooter.id, _serials(2))
        registry.reserve_units(scooter.id, [u1.id])
        registry.set_status(u2.id, UnitStatus.SOLD)

        registry.release_units(scooter.id, [u1.id, u2.id])

        assert registry.get_unit(u1.id).status is UnitStatus.IN_STOCK
        assert registry.get_unit(u2.id).status is UnitStatus.SOLD

    def test_release_for_sale_leaves_other_reservations(self, registry, scooter):
        u1 = registry.add_unit(scooter.id, _serials(1))
        u2 = registry.add_unit(scooter.id, _serials(2))
        registry.reserve_units(scooter.id, [u1.id], sale_id="vs-1")
        registry.reserve_units(scooter.id, [u2.id], sale_id="vs-2")

        registry.release_units(scooter.id, [u1.id, u2.id], sale_id="vs-1")

        assert registry.get_unit(u1.id).status is UnitStatus.IN_STOCK
        assert registry.get_unit(u1.id).sale_id is None
        assert registry.get_unit(u2.id).status is UnitStatus.RESERVED
        assert registry.get_unit(u2.id).sale_id == "vs-2"

    def test_mark_units_sold(self, registry, scooter):
        u1 = registry.add_unit(scooter.id, _serials(1))
        registry.reserve_units(scooter.id, [u1.id])
        sold = registry.mark_units_sold(scooter.id, [u1.id], "vs-7")
        assert sold[0].status is UnitStatus.SOLD
        assert sold[0].sale_id == "vs-7"


class TestCountDrift:

    def test_drift_report(self, registry, scooter):
        u1 = registry.add_unit(scooter.id, _serials(1))
        registry.add_unit(scooter.id, _serials(2))
        registry.set_status(u1.id, UnitStatus.SOLD)

        drift = registry.count_drift(scooter.id)

        assert drift.declared_quantity == 5
        assert drift.registered_units == 2
        assert drift.sold_units == 1
        assert drift.in_stock_units == 1
        assert drift.unregistered == 3
        assert drift.has_drift

    def test_no_drift(self, registry):
        model = registry.create_model("E-Bike", quantity=1)
        registry.add_unit(model.id, _serials(1))
        assert not registry.count_drift(model.id).has_drift
