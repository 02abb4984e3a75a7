"""
Module: stock_kernel.selectors.inventory_selector
Responsibility: Part catalog reports -- low-stock and out-of-stock lists,
    stock valuation summary, and the category list used by filters.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from decimal import Decimal

from stock_kernel.domain.parts import Part
from stock_kernel.selectors.base import BaseSelector
from stock_kernel.store.keys import PARTS


@dataclass(frozen=True)
class InventorySummary:
    """Aggregate view of the part catalog."""

    part_count: int
    units_on_hand: int
    total_value: Decimal
    low_stock_count: int
    out_of_stock_count: int


class InventorySelector(BaseSelector):
    """Read-only part catalog queries."""

    def parts(self, category: str | None = None) -> list[Part]:
        parts = [Part.from_payload(item.value, item.version) for item in self.store.list(PARTS)]
        if category is not None:
            parts = [p for p in parts if p.category == category]
        return parts

    def low_stock_parts(self) -> list[Part]:
        """Parts at or below their minimum stock level, lowest quantity first."""
        return sorted(
            (p for p in self.parts() if p.is_low_stock),
            key=lambda p: (p.quantity, p.name),
        )

    def out_of_stock_parts(self) -> list[Part]:
        return [p for p in self.parts() if p.is_out_of_stock]

    def inventory_summary(self) -> InventorySummary:
        parts = self.parts()
        return InventorySummary(
            part_count=len(parts),
            units_on_hand=sum(p.quantity for p in parts),
            total_value=sum((p.stock_value for p in parts), Decimal("0")),
            low_stock_count=sum(1 for p in parts if p.is_low_stock),
            out_of_stock_count=sum(1 for p in parts if p.is_out_of_stock),
        )

    def categories(self) -> list[str]:
        """Distinct non-empty categories, sorted."""
        return sorted({p.category for p in self.parts() if p.category})

    def search(self, query: str) -> list[Part]:
        """Case-insensitive match on name or part number."""
        needle = query.strip().lower()
        return [
            p for p in self.parts()
            if needle in p.name.lower() or needle in p.part_number.lower()
        ]
