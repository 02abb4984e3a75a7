"""
Vehicle model and vehicle unit DTOs.

Responsibility:
    A VehicleModel carries the declared aggregate stock (``quantity``);
    VehicleUnits are the individually registered, serial-numbered vehicles
    of that model.  The two are loosely coupled: registration is bounded by
    the declared quantity but never changes it.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - VehicleModel.quantity is never negative.
    - A unit's motor number is required; serial uniqueness is enforced by
      the registry, keyed on ``motor_serial_key``.
    - SOLD is terminal (see VALID_TRANSITIONS).

Failure modes:
    - ValidationError from __post_init__ on missing or invalid fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from stock_kernel.domain.values import (
    date_to_str,
    datetime_to_str,
    decimal_to_str,
    require_non_negative_int,
    str_to_date,
    str_to_datetime,
    to_decimal,
)
from stock_kernel.exceptions import ValidationError


class UnitStatus(str, Enum):
    """Lifecycle status of a registered vehicle unit."""

    IN_STOCK = "in-stock"
    RESERVED = "reserved"
    SOLD = "sold"


# Allowed status transitions.  SOLD has no outgoing edge.
VALID_TRANSITIONS: dict[UnitStatus, frozenset[UnitStatus]] = {
    UnitStatus.IN_STOCK: frozenset({UnitStatus.IN_STOCK, UnitStatus.RESERVED, UnitStatus.SOLD}),
    UnitStatus.RESERVED: frozenset({UnitStatus.IN_STOCK, UnitStatus.RESERVED, UnitStatus.SOLD}),
    UnitStatus.SOLD: frozenset(),
}


def can_transition(from_status: UnitStatus, to_status: UnitStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


@dataclass(frozen=True)
class VehicleModel:
    """
    A vehicle model offered for sale.

    Guarantees:
        - quantity >= 0
        - price is Decimal
    """

    id: str
    name: str
    model: str = ""
    price: Decimal = Decimal("0")
    quantity: int = 0
    specifications: dict[str, str] = field(default_factory=dict)
    date_added: date | None = None
    version: int | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("name", "vehicle name is required")
        require_non_negative_int(self.quantity, "quantity")
        object.__setattr__(self, "price", to_decimal(self.price, "price"))
        object.__setattr__(self, "specifications", dict(self.specifications))

    def with_quantity(self, quantity: int) -> VehicleModel:
        return replace(self, quantity=quantity)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "model": self.model,
            "price": decimal_to_str(self.price),
            "quantity": self.quantity,
            "specifications": dict(self.specifications),
            "dateAdded": date_to_str(self.date_added),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any], version: int | None = None) -> VehicleModel:
        return cls(
            id=payload["id"],
            name=payload["name"],
            model=payload.get("model", ""),
            price=Decimal(payload.get("price") or "0"),
            quantity=payload.get("quantity", 0),
            specifications=payload.get("specifications") or {},
            date_added=str_to_date(payload.get("dateAdded")),
            version=version,
        )


@dataclass(frozen=True)
class UnitSerials:
    """Serial numbers and finish submitted when registering a unit."""

    motor_number: str
    chassis_number: str = ""
    battery_number: str = ""
    controller_number: str = ""
    color: str = ""

    def __post_init__(self) -> None:
        if not self.motor_number or not self.motor_number.strip():
            raise ValidationError("motor_number", "motor number is required")


@dataclass(frozen=True)
class VehicleUnit:
    """
    One physical, serial-numbered vehicle.

    Contract:
        ``status`` moves only along VALID_TRANSITIONS.  ``sold_on`` is set
        when the unit becomes SOLD; ``sale_id`` names the sale holding a
        RESERVED or SOLD unit.
    """

    id: str
    vehicle_model_id: str
    motor_number: str
    chassis_number: str = ""
    battery_number: str = ""
    controller_number: str = ""
    color: str = ""
    status: UnitStatus = UnitStatus.IN_STOCK
    added_on: datetime | None = None
    sold_on: datetime | None = None
    sale_id: str | None = None
    version: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.status, UnitStatus):
            object.__setattr__(self, "status", UnitStatus(self.status))

    @property
    def motor_serial_key(self) -> str:
        return normalize_serial(self.motor_number)

    def serial(self, field_name: str) -> str:
        return getattr(self, field_name)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "vehicleModelId": self.vehicle_model_id,
            "motorNumber": self.motor_number,
            "chassisNumber": self.chassis_number,
            "batteryNumber": self.battery_number,
            "controllerNumber": self.controller_number,
            "color": self.color,
            "status": self.status.value,
            "addedOn": datetime_to_str(self.added_on, "added_on"),
            "soldOn": datetime_to_str(self.sold_on, "sold_on"),
            "saleId": self.sale_id,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any], version: int | None = None) -> VehicleUnit:
        return cls(
            id=payload["id"],
            vehicle_model_id=payload["vehicleModelId"],
            motor_number=payload["motorNumber"],
            chassis_number=payload.get("chassisNumber", ""),
            battery_number=payload.get("batteryNumber", ""),
            controller_number=payload.get("controllerNumber", ""),
            color=payload.get("color", ""),
            status=UnitStatus(payload.get("status", UnitStatus.IN_STOCK.value)),
            added_on=str_to_datetime(payload.get("addedOn")),
            sold_on=str_to_datetime(payload.get("soldOn")),
            sale_id=payload.get("saleId"),
            version=version,
        )


SERIAL_FIELDS: tuple[str, ...] = (
    "motor_number",
    "chassis_number",
    "battery_number",
    "controller_number",
)


def normalize_serial(serial: str) -> str:
    """Case-insensitive comparison form of a serial number."""
    return serial.strip().lower()


@dataclass(frozen=True)
class UnitCountDrift:
    """
    Gap between a model's declared quantity and its registered units.

    ``unregistered`` > 0 means more stock is declared than documented;
    ``over_registered`` > 0 means more units are documented than declared
    (possible after sales decrement the declared quantity).
    """

    model_id: str
    declared_quantity: int
    registered_units: int
    in_stock_units: int
    reserved_units: int
    sold_units: int

    @property
    def unregistered(self) -> int:
        return max(self.declared_quantity - self.registered_units, 0)

    @property
    def over_registered(self) -> int:
        return max(self.registered_units - self.declared_quantity, 0)

    @property
    def has_drift(self) -> bool:
        return self.registered_units != self.declared_quantity
