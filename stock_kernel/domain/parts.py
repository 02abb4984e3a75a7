"""
Part and ledger DTOs.

Responsibility:
    Immutable representations of a stocked part and of a single ledger
    movement (StockTransaction), plus the closed set of movement kinds.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Services convert
    store documents to these DTOs with ``from_payload`` and back with
    ``to_payload``; the store version travels beside the payload, never
    inside it.

Invariants enforced:
    - Part.quantity and Part.initial_quantity are never negative.
    - StockTransaction.delta is non-zero and
      quantity_after == quantity_before + delta.
    - Money (unit_price) is Decimal, never float.

Failure modes:
    - ValidationError from __post_init__ on any violated field rule.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from stock_kernel.domain.values import (
    datetime_to_str,
    decimal_to_str,
    require_non_negative_int,
    str_to_datetime,
    to_decimal,
)
from stock_kernel.exceptions import ValidationError

DEFAULT_MIN_STOCK_LEVEL = 5


class TransactionKind(str, Enum):
    """
    Kind of stock movement recorded in the ledger.

    Contract:
        SALE and SERVICE_CONSUME are deductions (delta < 0); PURCHASE and
        SERVICE_RESTORE are credits (delta > 0); MANUAL_ADJUST may go either
        way.
    """

    PURCHASE = "purchase"
    SALE = "sale"
    SERVICE_CONSUME = "service-consume"
    SERVICE_RESTORE = "service-restore"
    MANUAL_ADJUST = "manual-adjust"


@dataclass(frozen=True)
class Part:
    """
    A stocked spare part.

    Contract:
        ``quantity`` is only ever changed by PartStore.apply_delta; every
        other field is catalog data.  ``initial_quantity`` is the quantity
        the part was created with and anchors ledger reconciliation.

    Guarantees:
        - quantity >= 0 and initial_quantity >= 0
        - unit_price is a Decimal
    """

    id: str
    name: str
    quantity: int
    initial_quantity: int
    unit_price: Decimal = Decimal("0")
    part_number: str = ""
    min_stock_level: int = DEFAULT_MIN_STOCK_LEVEL
    category: str = ""
    manufacturer: str = ""
    location: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("name", "part name is required")
        require_non_negative_int(self.quantity, "quantity")
        require_non_negative_int(self.initial_quantity, "initial_quantity")
        require_non_negative_int(self.min_stock_level, "min_stock_level")
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price, "unit_price"))
        if self.unit_price < 0:
            raise ValidationError("unit_price", "must be >= 0")

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_stock_level

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity == 0

    @property
    def stock_value(self) -> Decimal:
        return self.unit_price * self.quantity

    def with_quantity(self, quantity: int, updated_at: datetime | None) -> Part:
        return replace(self, quantity=quantity, updated_at=updated_at)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "partNumber": self.part_number,
            "quantity": self.quantity,
            "initialQuantity": self.initial_quantity,
            "unitPrice": decimal_to_str(self.unit_price),
            "minStockLevel": self.min_stock_level,
            "category": self.category,
            "manufacturer": self.manufacturer,
            "location": self.location,
            "createdAt": datetime_to_str(self.created_at, "created_at"),
            "updatedAt": datetime_to_str(self.updated_at, "updated_at"),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any], version: int | None = None) -> Part:
        return cls(
            id=payload["id"],
            name=payload["name"],
            part_number=payload.get("partNumber", ""),
            quantity=payload["quantity"],
            initial_quantity=payload.get("initialQuantity", payload["quantity"]),
            unit_price=Decimal(payload.get("unitPrice") or "0"),
            min_stock_level=payload.get("minStockLevel", DEFAULT_MIN_STOCK_LEVEL),
            category=payload.get("category", ""),
            manufacturer=payload.get("manufacturer", ""),
            location=payload.get("location", ""),
            created_at=str_to_datetime(payload.get("createdAt")),
            updated_at=str_to_datetime(payload.get("updatedAt")),
            version=version,
        )


@dataclass(frozen=True)
class StockTransaction:
    """
    One immutable ledger movement.

    Contract:
        Written once by TransactionLedger under a create-only key; never
        updated or deleted.  ``sequence`` orders entries globally.

    Guarantees:
        - delta != 0
        - quantity_after == quantity_before + delta
        - quantity_before >= 0 and quantity_after >= 0
    """

    id: str
    sequence: int
    part_id: str
    delta: int
    quantity_before: int
    quantity_after: int
    kind: TransactionKind
    timestamp: datetime
    source_record_id: str | None = None
    notes: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.delta, bool) or not isinstance(self.delta, int) or self.delta == 0:
            raise ValidationError("delta", f"must be a non-zero integer, got {self.delta!r}")
        require_non_negative_int(self.quantity_before, "quantity_before")
        require_non_negative_int(self.quantity_after, "quantity_after")
        if self.quantity_after != self.quantity_before + self.delta:
            raise ValidationError(
                "quantity_after",
                f"{self.quantity_before} + {self.delta} != {self.quantity_after}",
            )
        if not isinstance(self.kind, TransactionKind):
            object.__setattr__(self, "kind", TransactionKind(self.kind))

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sequence": self.sequence,
            "partId": self.part_id,
            "delta": self.delta,
            "quantityBefore": self.quantity_before,
            "quantityAfter": self.quantity_after,
            "kind": self.kind.value,
            "timestamp": datetime_to_str(self.timestamp),
            "sourceRecordId": self.source_record_id,
            "notes": self.notes,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> StockTransaction:
        return cls(
            id=payload["id"],
            sequence=payload["sequence"],
            part_id=payload["partId"],
            delta=payload["delta"],
            quantity_before=payload["quantityBefore"],
            quantity_after=payload["quantityAfter"],
            kind=TransactionKind(payload["kind"]),
            timestamp=str_to_datetime(payload["timestamp"]),
            source_record_id=payload.get("sourceRecordId"),
            notes=payload.get("notes", ""),
        )
