"""
VehicleUnitRegistry -- vehicle models and their serial-numbered units.

Responsibility:
    Maintains vehicle model documents (including the declared aggregate
    ``quantity``) and the individually registered units of each model:
    registration, status lifecycle, deletion, reservation for sales, and a
    drift report between the two quantity trackers.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by RecordManager for vehicle sales and by catalog maintenance.
    Does not touch PartStore.

Invariants enforced:
    SERIAL_UNIQUENESS -- a motor number (case-insensitive) is claimed per
        model with a conditional create of ``vehicleSerials/{model}/{serial}``;
        the second claimant gets DuplicateSerialError.
    SOLD_IS_TERMINAL -- set_status refuses any transition out of SOLD.
    - Capacity: a unit is only kept if, after its insert, the number of
      units for the model does not exceed ``VehicleModel.quantity``.  The
      check is fenced by a compare-and-set on the model document, so two
      concurrent registrations cannot both take the last slot.
    - VehicleModel.quantity is never negative.

Failure modes:
    - VehicleModelNotFoundError / VehicleUnitNotFoundError.
    - DuplicateSerialError, CapacityExceededError, InvalidTransitionError.
    - InsufficientVehicleStockError: quantity decrement below zero.
    - ConcurrentModificationConflictError: CAS attempts exhausted.
    - StoreUnavailableError: propagated from the store.

Audit relevance:
    Registrations, status changes and deletions are logged with model and
    unit ids.  ``count_drift`` reports, and never repairs, disagreement
    between declared quantity and unit rows.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any, Iterable

from stock_kernel.domain.clock import Clock
from stock_kernel.domain.values import new_id, to_decimal
from stock_kernel.domain.vehicles import (
    UnitCountDrift,
    UnitSerials,
    UnitStatus,
    VehicleModel,
    VehicleUnit,
    can_transition,
)
from stock_kernel.exceptions import (
    CapacityExceededError,
    ConcurrentModificationConflictError,
    DuplicateSerialError,
    InsufficientVehicleStockError,
    InvalidTransitionError,
    KeyExistsError,
    StoreUnavailableError,
    ValidationError,
    VehicleModelNotFoundError,
    VehicleUnitNotFoundError,
    VersionConflictError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.services.base import BaseService
from stock_kernel.store.base import KeyValueStore
from stock_kernel.store.keys import (
    VEHICLES,
    serial_key,
    unit_key,
    unit_prefix,
    vehicle_key,
)

logger = get_logger("services.vehicle_unit_registry")

DEFAULT_CAS_MAX_ATTEMPTS = 10

MODEL_DETAIL_FIELDS: frozenset[str] = frozenset({"name", "model", "price", "specifications"})


class VehicleUnitRegistry(BaseService):
    """
    Registry of vehicle models and units.

    Guarantees:
        - Units of a model never outnumber its declared quantity at the
          moment they are registered.
        - Deleting a unit releases its serial and leaves the model's
          declared quantity untouched.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock | None = None,
        cas_max_attempts: int = DEFAULT_CAS_MAX_ATTEMPTS,
    ):
        super().__init__(store, clock)
        if cas_max_attempts < 1:
            raise ValueError("cas_max_attempts must be >= 1")
        self.cas_max_attempts = cas_max_attempts

    # ------------------------------------------------------------------
    # Vehicle models
    # ------------------------------------------------------------------

    def create_model(
        self,
        name: str,
        model: str = "",
        price: Decimal | int | str = Decimal("0"),
        quantity: int = 0,
        specifications: dict[str, str] | None = None,
        model_id: str | None = None,
        date_added: date | None = None,
    ) -> VehicleModel:
        vehicle = VehicleModel(
            id=model_id or new_id(),
            name=name,
            model=model,
            price=to_decimal(price, "price"),
            quantity=quantity,
            specifications=specifications or {},
            date_added=date_added or self.clock.now().date(),
        )
        stored = self.store.create(vehicle_key(vehicle.id), vehicle.to_payload())
        logger.info(
            "vehicle_model_created",
            extra={"model_id": vehicle.id, "quantity": quantity},
        )
        return replace(vehicle, version=stored.version)

    def get_model(self, model_id: str) -> VehicleModel:
        current = self.store.get(vehicle_key(model_id))
        if current is None:
            raise VehicleModelNotFoundError(model_id)
        return VehicleModel.from_payload(current.value, current.version)

    def list_models(self) -> list[VehicleModel]:
        return [
            VehicleModel.from_payload(item.value, item.version)
            for item in self.store.list(VEHICLES)
        ]

    def update_model_details(self, model_id: str, **fields: Any) -> VehicleModel:
        """Edit name/model/price/specifications. Quantity is not editable here."""
        for name in fields:
            if name == "quantity":
                raise ValidationError(name, "use adjust_model_quantity to change stock")
            if name not in MODEL_DETAIL_FIELDS:
                raise ValidationError(name, "not an editable vehicle field")
        return self._update_model(model_id, lambda m: replace(m, **fields))

    def adjust_model_quantity(self, model_id: str, delta: int) -> VehicleModel:
        """
        Change the declared stock of a model by ``delta``.

        Raises:
            InsufficientVehicleStockError: result would be negative.
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ValidationError("delta", f"must be a non-zero integer, got {delta!r}")

        def apply(current: VehicleModel) -> VehicleModel:
            if current.quantity + delta < 0:
                raise InsufficientVehicleStockError(model_id, current.quantity, -delta)
            return current.with_quantity(current.quantity + delta)

        updated = self._update_model(model_id, apply)
        logger.info(
            "vehicle_model_quantity_adjusted",
            extra={"model_id": model_id, "delta": delta, "quantity": updated.quantity},
        )
        return updated

    def delete_model(self, model_id: str) -> None:
        """Remove a model together with its units and serial claims."""
        self.get_model(model_id)
        for unit in self.find_units(model_id):
            self._remove_unit(unit)
        self.store.delete(vehicle_key(model_id))
        logger.info("vehicle_model_deleted", extra={"model_id": model_id})

    def _update_model(self, model_id: str, change) -> VehicleModel:
        key = vehicle_key(model_id)
        for _ in range(self.cas_max_attempts):
            current = self.get_model(model_id)
            updated = change(current)
            try:
                stored = self.store.compare_and_set(key, updated.to_payload(), current.version)
            except VersionConflictError:
                continue
            return replace(updated, version=stored.version)
        raise ConcurrentModificationConflictError(
            model_id, "vehicle_model", self.cas_max_attempts
        )

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    def add_unit(
        self,
        model_id: str,
        serials: UnitSerials,
        status: UnitStatus = UnitStatus.IN_STOCK,
    ) -> VehicleUnit:
        """
        Register a serial-numbered unit of a model.

        Raises:
            VehicleModelNotFoundError, DuplicateSerialError,
            CapacityExceededError, ConcurrentModificationConflictError.
        """
        self.get_model(model_id)
        status = UnitStatus(status)
        now = self.clock.now()
        unit = VehicleUnit(
            id=new_id(),
            vehicle_model_id=model_id,
            motor_number=serials.motor_number.strip(),
            chassis_number=serials.chassis_number,
            battery_number=serials.battery_number,
            controller_number=serials.controller_number,
            color=serials.color,
            status=status,
            added_on=now,
            sold_on=now if status == UnitStatus.SOLD else None,
        )

        # INVARIANT: SERIAL_UNIQUENESS
        claim = serial_key(model_id, unit.motor_number)
        try:
            self.store.create(claim, {"unitId": unit.id, "motorNumber": unit.motor_number})
        except KeyExistsError:
            logger.info(
                "vehicle_unit_duplicate_serial",
                extra={"model_id": model_id, "serial": unit.motor_number},
            )
            raise DuplicateSerialError(model_id, unit.motor_number) from None

        inserted = False
        try:
            for attempt in range(1, self.cas_max_attempts + 1):
                # Read the fence version before counting.
                fence = self.store.get(vehicle_key(model_id))
                if fence is None:
                    raise VehicleModelNotFoundError(model_id)
                vehicle = VehicleModel.from_payload(fence.value, fence.version)
                registered = sum(1 for u in self.find_units(model_id) if u.id != unit.id)
                if registered >= vehicle.quantity:
                    raise CapacityExceededError(model_id, vehicle.quantity, registered)

                if not inserted:
                    stored = self.store.create(unit_key(model_id, unit.id), unit.to_payload())
                    unit = replace(unit, version=stored.version)
                    inserted = True

                try:
                    self.store.compare_and_set(vehicle_key(model_id), fence.value, fence.version)
                except VersionConflictError:
                    logger.debug(
                        "vehicle_unit_capacity_fence_retry",
                        extra={"model_id": model_id, "attempt": attempt},
                    )
                    continue

                logger.info(
                    "vehicle_unit_added",
                    extra={
                        "model_id": model_id,
                        "unit_id": unit.id,
                        "registered": registered + 1,
                        "capacity": vehicle.quantity,
                    },
                )
                return unit

            raise ConcurrentModificationConflictError(
                model_id, "vehicle_model", self.cas_max_attempts
            )
        except Exception:
            self._discard_registration(model_id, unit.id, claim, inserted)
            raise

    def _discard_registration(
        self, model_id: str, unit_id: str, claim: str, inserted: bool
    ) -> None:
        try:
            if inserted:
                self.store.delete(unit_key(model_id, unit_id))
            self.store.delete(claim)
        except StoreUnavailableError:
            logger.error(
                "vehicle_unit_registration_not_rolled_back",
                extra={"model_id": model_id, "unit_id": unit_id, "claim": claim},
                exc_info=True,
            )

    def get_unit(self, unit_id: str, model_id: str | None = None) -> VehicleUnit:
        if model_id is not None:
            current = self.store.get(unit_key(model_id, unit_id))
            if current is None:
                raise VehicleUnitNotFoundError(unit_id)
            return VehicleUnit.from_payload(current.value, current.version)
        for unit in self.find_units():
            if unit.id == unit_id:
                return unit
        raise VehicleUnitNotFoundError(unit_id)

    def find_units(
        self,
        model_id: str | None = None,
        status: UnitStatus | None = None,
    ) -> list[VehicleUnit]:
        """Units of one model (or all models), optionally filtered by status."""
        units = [
            VehicleUnit.from_payload(item.value, item.version)
            for item in self.store.list(unit_prefix(model_id))
        ]
        if status is not None:
            units = [u for u in units if u.status == UnitStatus(status)]
        return units

    def set_status(
        self,
        unit_id: str,
        new_status: UnitStatus,
        model_id: str | None = None,
        sale_id: str | None = None,
    ) -> VehicleUnit:
        """
        Move a unit to ``new_status``.

        Raises:
            InvalidTransitionError: the unit is SOLD (terminal).
        """
        new_status = UnitStatus(new_status)

        def apply(unit: VehicleUnit) -> VehicleUnit:
            # INVARIANT: SOLD_IS_TERMINAL
            if not can_transition(unit.status, new_status):
                raise InvalidTransitionError(unit.id, unit.status.value, new_status.value)
            if new_status == UnitStatus.SOLD:
                return replace(unit, status=new_status, sold_on=self.clock.now(), sale_id=sale_id)
            return replace(unit, status=new_status, sale_id=None)

        updated = self._update_unit(unit_id, model_id, apply)
        logger.info(
            "vehicle_unit_status_changed",
            extra={"unit_id": unit_id, "model_id": updated.vehicle_model_id, "status": new_status},
        )
        return updated

    def delete_unit(self, unit_id: str, model_id: str | None = None) -> None:
        """Remove a unit unconditionally and release its serial."""
        self._remove_unit(self.get_unit(unit_id, model_id))

    def _remove_unit(self, unit: VehicleUnit) -> None:
        self.store.delete(unit_key(unit.vehicle_model_id, unit.id))
        claim = serial_key(unit.vehicle_model_id, unit.motor_number)
        current = self.store.get(claim)
        if current is not None and current.value.get("unitId") == unit.id:
            self.store.delete(claim, expected_version=current.version)
        logger.info(
            "vehicle_unit_deleted",
            extra={"unit_id": unit.id, "model_id": unit.vehicle_model_id},
        )

    def _update_unit(self, unit_id: str, model_id: str | None, change) -> VehicleUnit:
        for _ in range(self.cas_max_attempts):
            current = self.get_unit(unit_id, model_id)
            model_id = current.vehicle_model_id
            updated = change(current)
            try:
                stored = self.store.compare_and_set(
                    unit_key(model_id, unit_id), updated.to_payload(), current.version
                )
            except VersionConflictError:
                continue
            return replace(updated, version=stored.version)
        raise ConcurrentModificationConflictError(unit_id, "vehicle_unit", self.cas_max_attempts)

    # ------------------------------------------------------------------
    # Sale support
    # ------------------------------------------------------------------

    def reserve_units(
        self, model_id: str, unit_ids: Iterable[str], sale_id: str | None = None
    ) -> list[VehicleUnit]:
        """
        Reserve specific in-stock units, all or none, tagged with ``sale_id``.

        Raises:
            VehicleUnitNotFoundError: a unit is not registered for the model.
            InvalidTransitionError: a unit is not in stock.
        """
        reserved: list[VehicleUnit] = []
        try:
            for unit_id in unit_ids:
                reserved.append(self._reserve(model_id, unit_id, sale_id))
        except Exception:
            self.release_units(model_id, [u.id for u in reserved])
            raise
        return reserved

    def reserve_available(
        self, model_id: str, count: int, sale_id: str | None = None
    ) -> list[VehicleUnit]:
        """Reserve up to ``count`` in-stock units, oldest registration first."""
        candidates = sorted(
            self.find_units(model_id, UnitStatus.IN_STOCK),
            key=lambda u: (u.added_on is None, u.added_on, u.id),
        )
        reserved: list[VehicleUnit] = []
        try:
            for unit in candidates:
                if len(reserved) >= count:
                    break
                try:
                    reserved.append(self._reserve(model_id, unit.id, sale_id))
                except (InvalidTransitionError, VehicleUnitNotFoundError):
                    # Taken or removed since listing
                    continue
        except Exception:
            self.release_units(model_id, [u.id for u in reserved])
            raise
        return reserved

    def _reserve(self, model_id: str, unit_id: str, sale_id: str | None) -> VehicleUnit:
        def apply(unit: VehicleUnit) -> VehicleUnit:
            if unit.status != UnitStatus.IN_STOCK:
                raise InvalidTransitionError(unit.id, unit.status.value, UnitStatus.RESERVED.value)
            return replace(unit, status=UnitStatus.RESERVED, sale_id=sale_id)

        return self._update_unit(unit_id, model_id, apply)

    def release_units(
        self, model_id: str, unit_ids: Iterable[str], sale_id: str | None = None
    ) -> list[VehicleUnit]:
        """
        Return reserved units to stock.  Units not reserved, or reserved by
        a sale other than ``sale_id`` when one is given, are left alone.
        """

        def apply(unit: VehicleUnit) -> VehicleUnit:
            if unit.status != UnitStatus.RESERVED:
                return unit
            if sale_id is not None and unit.sale_id != sale_id:
                return unit
            return replace(unit, status=UnitStatus.IN_STOCK, sale_id=None)

        released = [self._update_unit(unit_id, model_id, apply) for unit_id in unit_ids]
        if released:
            logger.info(
                "vehicle_units_released",
                extra={"model_id": model_id, "unit_ids": [u.id for u in released]},
            )
        return released

    def mark_units_sold(
        self, model_id: str, unit_ids: Iterable[str], sale_id: str
    ) -> list[VehicleUnit]:
        return [
            self.set_status(unit_id, UnitStatus.SOLD, model_id=model_id, sale_id=sale_id)
            for unit_id in unit_ids
        ]

    # ------------------------------------------------------------------
    # Drift
    # ------------------------------------------------------------------

    def count_drift(self, model_id: str) -> UnitCountDrift:
        vehicle = self.get_model(model_id)
        units = self.find_units(model_id)
        by_status = {status: 0 for status in UnitStatus}
        for unit in units:
            by_status[unit.status] += 1
        return UnitCountDrift(
            model_id=model_id,
            declared_quantity=vehicle.quantity,
            registered_units=len(units),
            in_stock_units=by_status[UnitStatus.IN_STOCK],
            reserved_units=by_status[UnitStatus.RESERVED],
            sold_units=by_status[UnitStatus.SOLD],
        )
