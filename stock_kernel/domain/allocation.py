"""
Allocation -- the set of part quantities a consuming record holds.

Responsibility:
    Value objects describing what a service order or vehicle sale consumes:
    one Allocation per part, grouped in an ordered AllocationSet.  The
    AllocationEngine restores one set and deducts another; the
    RecordManager diffs sets to decide whether stock is touched at all.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Every allocation quantity is a positive integer.
    - Part ids within one AllocationSet are unique.  Duplicates are rejected
      at construction, before any stock phase can run.

Failure modes:
    - ValidationError on a non-positive quantity or a duplicate part id.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Iterator, Mapping

from stock_kernel.domain.values import require_positive_int, to_decimal
from stock_kernel.exceptions import ValidationError


@dataclass(frozen=True)
class Allocation:
    """One part line: how many units of a part a record holds, and at what price."""

    part_id: str
    quantity: int
    unit_price: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        if not self.part_id:
            raise ValidationError("part_id", "allocation part id is required")
        require_positive_int(self.quantity, f"allocations[{self.part_id}].quantity")
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price, "unit_price"))

    @property
    def line_value(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_payload(self) -> dict[str, Any]:
        return {
            "partId": self.part_id,
            "quantity": self.quantity,
            "unitPrice": str(self.unit_price),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Allocation:
        return cls(
            part_id=payload["partId"],
            quantity=payload["quantity"],
            unit_price=Decimal(payload.get("unitPrice") or "0"),
        )


class AllocationSet:
    """
    Ordered, duplicate-free collection of Allocation lines.

    Contract:
        Iteration order is the submission order.  Equality compares the
        per-part quantities only; unit price snapshots do not affect stock.

    Guarantees:
        - Immutable after construction.
        - ``quantity_of`` returns 0 for parts not in the set.
    """

    __slots__ = ("_lines", "_index")

    def __init__(self, lines: Iterable[Allocation] = ()):
        lines = tuple(lines)
        index: dict[str, Allocation] = {}
        for line in lines:
            if line.part_id in index:
                raise ValidationError(
                    "allocations",
                    f"duplicate part id {line.part_id!r} in allocation",
                )
            index[line.part_id] = line
        self._lines = lines
        self._index = index

    @classmethod
    def of(
        cls,
        quantities: Mapping[str, int],
        prices: Mapping[str, Decimal] | None = None,
    ) -> AllocationSet:
        """Build a set from a {part_id: quantity} mapping."""
        prices = prices or {}
        return cls(
            Allocation(part_id, qty, prices.get(part_id, Decimal("0")))
            for part_id, qty in quantities.items()
        )

    @classmethod
    def empty(cls) -> AllocationSet:
        return cls(())

    @property
    def lines(self) -> tuple[Allocation, ...]:
        return self._lines

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def part_ids(self) -> tuple[str, ...]:
        return tuple(line.part_id for line in self._lines)

    @property
    def total_value(self) -> Decimal:
        return sum((line.line_value for line in self._lines), Decimal("0"))

    def quantities(self) -> dict[str, int]:
        return {line.part_id: line.quantity for line in self._lines}

    def quantity_of(self, part_id: str) -> int:
        line = self._index.get(part_id)
        return line.quantity if line is not None else 0

    def without(self, part_id: str) -> AllocationSet:
        """Return a copy with the given part's line removed."""
        return AllocationSet(line for line in self._lines if line.part_id != part_id)

    def diff(self, other: AllocationSet) -> dict[str, int]:
        """
        Per-part net stock change of moving from this set to ``other``.

        Positive values mean ``other`` holds more of the part.  Parts whose
        quantity is unchanged are omitted, so an empty result means the move
        has no stock impact.
        """
        result: dict[str, int] = {}
        for part_id in dict.fromkeys(self.part_ids + other.part_ids):
            change = other.quantity_of(part_id) - self.quantity_of(part_id)
            if change:
                result[part_id] = change
        return result

    def to_payload(self) -> list[dict[str, Any]]:
        return [line.to_payload() for line in self._lines]

    @classmethod
    def from_payload(cls, payload: list[dict[str, Any]] | None) -> AllocationSet:
        return cls(Allocation.from_payload(item) for item in payload or ())

    def __iter__(self) -> Iterator[Allocation]:
        return iter(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __bool__(self) -> bool:
        return bool(self._lines)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AllocationSet):
            return NotImplemented
        return self.quantities() == other.quantities()

    def __hash__(self) -> int:
        return hash(frozenset(self.quantities().items()))

    def __repr__(self) -> str:
        inner = ", ".join(f"{line.part_id}:{line.quantity}" for line in self._lines)
        return f"AllocationSet({{{inner}}})"
