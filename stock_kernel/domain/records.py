"""
Consuming records -- entities that hold stock through an allocation.

Responsibility:
    ConsumingRecord is the tagged variant the RecordManager and
    AllocationEngine are written against.  ServiceOrder and VehicleSale are
    its two kinds; each carries its own business fields on top of the
    common allocation bookkeeping.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - ``committed_allocations`` is the snapshot of stock actually held.
      It is only written by the RecordManager after (or during) an
      AllocationEngine run; ``allocations`` is what the caller requested.
    - ServiceOrder.status is one of ServiceOrderStatus.
    - VehicleSale.quantity is positive and, when unit ids are listed,
      equals their count.

Failure modes:
    - ValidationError from __post_init__ on invalid fields.
    - ValueError from ``record_from_payload`` on an unknown kind tag.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar

from stock_kernel.domain.allocation import AllocationSet
from stock_kernel.domain.values import (
    date_to_str,
    datetime_to_str,
    decimal_to_str,
    require_positive_int,
    str_to_date,
    str_to_datetime,
    to_decimal,
)
from stock_kernel.exceptions import ValidationError


class RecordKind(str, Enum):
    """Discriminator for ConsumingRecord variants."""

    SERVICE_ORDER = "service_order"
    VEHICLE_SALE = "vehicle_sale"


class ServiceOrderStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class ServiceCategory(str, Enum):
    FREE = "Free"
    PAID = "Paid"
    INSTANT = "Instant"


class VehicleSaleStatus(str, Enum):
    COMPLETED = "Completed"


@dataclass(frozen=True)
class ConsumingRecord:
    """
    Common shape of every record that consumes parts.

    Contract:
        Subclasses set ``kind`` and provide ``_body_payload`` /
        ``_body_from_payload`` for their own fields.  ``pending`` is True
        while a commit or delete is in flight; a record read back with
        ``pending`` set was interrupted and its snapshot is not trusted.
    """

    kind: ClassVar[RecordKind]

    id: str
    status: str = ""
    allocations: AllocationSet = field(default_factory=AllocationSet.empty)
    committed_allocations: AllocationSet = field(default_factory=AllocationSet.empty)
    pending: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("id", "record id is required")
        for name in ("allocations", "committed_allocations"):
            value = getattr(self, name)
            if not isinstance(value, AllocationSet):
                object.__setattr__(self, name, AllocationSet(value))

    def with_changes(self, **changes: Any) -> ConsumingRecord:
        return replace(self, **changes)

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "kind": self.kind.value,
            "id": self.id,
            "status": self.status,
            "allocations": self.allocations.to_payload(),
            "committedAllocations": self.committed_allocations.to_payload(),
            "pending": self.pending,
            "createdAt": datetime_to_str(self.created_at, "created_at"),
            "updatedAt": datetime_to_str(self.updated_at, "updated_at"),
        }
        payload.update(self._body_payload())
        return payload

    def _body_payload(self) -> dict[str, Any]:
        return {}

    @classmethod
    def _common_from_payload(cls, payload: dict[str, Any], version: int | None) -> dict[str, Any]:
        return {
            "id": payload["id"],
            "status": payload.get("status", ""),
            "allocations": AllocationSet.from_payload(payload.get("allocations")),
            "committed_allocations": AllocationSet.from_payload(
                payload.get("committedAllocations")
            ),
            "pending": bool(payload.get("pending", False)),
            "created_at": str_to_datetime(payload.get("createdAt")),
            "updated_at": str_to_datetime(payload.get("updatedAt")),
            "version": version,
        }


@dataclass(frozen=True)
class ServiceOrder(ConsumingRecord):
    """A workshop service job that may consume spare parts."""

    kind: ClassVar[RecordKind] = RecordKind.SERVICE_ORDER

    status: str = ServiceOrderStatus.PENDING.value
    customer_name: str = ""
    phone: str = ""
    email: str = ""
    bike_model: str = ""
    service_type: str = ""
    service_category: str = ServiceCategory.PAID.value
    payment_status: str = "Pending"
    payment_amount: Decimal = Decimal("0")
    payment_method: str = ""
    description: str = ""
    service_date: date | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        valid_statuses = {s.value for s in ServiceOrderStatus}
        if self.status not in valid_statuses:
            raise ValidationError("status", f"{self.status!r} not in {sorted(valid_statuses)}")
        valid_categories = {c.value for c in ServiceCategory}
        if self.service_category not in valid_categories:
            raise ValidationError(
                "service_category",
                f"{self.service_category!r} not in {sorted(valid_categories)}",
            )
        object.__setattr__(
            self, "payment_amount", to_decimal(self.payment_amount, "payment_amount")
        )

    def _body_payload(self) -> dict[str, Any]:
        return {
            "customerName": self.customer_name,
            "phone": self.phone,
            "email": self.email,
            "bikeModel": self.bike_model,
            "serviceType": self.service_type,
            "serviceCategory": self.service_category,
            "paymentStatus": self.payment_status,
            "paymentAmount": decimal_to_str(self.payment_amount),
            "paymentMethod": self.payment_method,
            "description": self.description,
            "serviceDate": date_to_str(self.service_date),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any], version: int | None = None) -> ServiceOrder:
        return cls(
            **cls._common_from_payload(payload, version),
            customer_name=payload.get("customerName", ""),
            phone=payload.get("phone", ""),
            email=payload.get("email", ""),
            bike_model=payload.get("bikeModel", ""),
            service_type=payload.get("serviceType", ""),
            service_category=payload.get("serviceCategory", ServiceCategory.PAID.value),
            payment_status=payload.get("paymentStatus", "Pending"),
            payment_amount=Decimal(payload.get("paymentAmount") or "0"),
            payment_method=payload.get("paymentMethod", ""),
            description=payload.get("description", ""),
            service_date=str_to_date(payload.get("serviceDate")),
        )


@dataclass(frozen=True)
class VehicleSale(ConsumingRecord):
    """
    Sale of one or more vehicles of a model, optionally with accessory parts.

    ``unit_ids`` lists specific registered units; when empty the sale is a
    bulk sale against the model's declared quantity.  ``assigned_unit_ids``
    is filled in by the RecordManager with the units the sale actually took,
    and ``model_quantity_taken`` with the declared stock it decremented;
    both are written while the sale is still pending so an interrupted sale
    can be unwound.
    """

    kind: ClassVar[RecordKind] = RecordKind.VEHICLE_SALE

    status: str = VehicleSaleStatus.COMPLETED.value
    vehicle_model_id: str = ""
    unit_ids: tuple[str, ...] = ()
    assigned_unit_ids: tuple[str, ...] = ()
    quantity: int = 1
    model_quantity_taken: int = 0
    customer_name: str = ""
    phone: str = ""
    selling_price: Decimal = Decimal("0")
    bill_number: str = ""
    sale_date: date | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.vehicle_model_id:
            raise ValidationError("vehicle_model_id", "vehicle sale requires a model")
        object.__setattr__(self, "unit_ids", tuple(self.unit_ids))
        object.__setattr__(self, "assigned_unit_ids", tuple(self.assigned_unit_ids))
        require_positive_int(self.quantity, "quantity")
        if len(set(self.unit_ids)) != len(self.unit_ids):
            raise ValidationError("unit_ids", "duplicate unit id in sale")
        if self.unit_ids and len(self.unit_ids) != self.quantity:
            raise ValidationError(
                "unit_ids",
                f"{len(self.unit_ids)} unit ids listed for quantity {self.quantity}",
            )
        object.__setattr__(
            self, "selling_price", to_decimal(self.selling_price, "selling_price")
        )

    def _body_payload(self) -> dict[str, Any]:
        return {
            "vehicleModelId": self.vehicle_model_id,
            "unitIds": list(self.unit_ids),
            "assignedUnitIds": list(self.assigned_unit_ids),
            "quantity": self.quantity,
            "modelQuantityTaken": self.model_quantity_taken,
            "customerName": self.customer_name,
            "phone": self.phone,
            "sellingPrice": decimal_to_str(self.selling_price),
            "billNumber": self.bill_number,
            "saleDate": date_to_str(self.sale_date),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any], version: int | None = None) -> VehicleSale:
        return cls(
            **cls._common_from_payload(payload, version),
            vehicle_model_id=payload["vehicleModelId"],
            unit_ids=tuple(payload.get("unitIds") or ()),
            assigned_unit_ids=tuple(payload.get("assignedUnitIds") or ()),
            quantity=payload.get("quantity", 1),
            model_quantity_taken=payload.get("modelQuantityTaken", 0),
            customer_name=payload.get("customerName", ""),
            phone=payload.get("phone", ""),
            selling_price=Decimal(payload.get("sellingPrice") or "0"),
            bill_number=payload.get("billNumber", ""),
            sale_date=str_to_date(payload.get("saleDate")),
        )


RECORD_TYPES: dict[RecordKind, type[ConsumingRecord]] = {
    RecordKind.SERVICE_ORDER: ServiceOrder,
    RecordKind.VEHICLE_SALE: VehicleSale,
}


def record_from_payload(payload: dict[str, Any], version: int | None = None) -> ConsumingRecord:
    """Rebuild the right ConsumingRecord variant from its stored document."""
    kind = RecordKind(payload["kind"])
    return RECORD_TYPES[kind].from_payload(payload, version)
