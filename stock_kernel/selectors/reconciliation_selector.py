"""
Module: stock_kernel.selectors.reconciliation_selector
Responsibility: Verify that every part's quantity equals its opening
    quantity plus the sum of its ledger deltas.
Architecture position: Kernel > Selectors.  Reads parts/ and transactions/.

Invariants enforced:
    LEDGER_RECONCILED -- this selector is the detector.  It reports drift
        (e.g. a delta committed while the ledger write failed) and never
        repairs it.

Failure modes:
    - PartNotFoundError from reconcile_part() for an unknown part.

Audit relevance:
    The reconciliation report is the operational check behind
    scripts/reconcile_stock.py.
"""

from collections import defaultdict
from dataclasses import dataclass

from stock_kernel.domain.parts import Part, StockTransaction
from stock_kernel.exceptions import PartNotFoundError
from stock_kernel.invariants import KernelInvariant
from stock_kernel.selectors.base import BaseSelector
from stock_kernel.store.keys import PARTS, TRANSACTIONS, part_key


@dataclass(frozen=True)
class ReconciliationResult:
    """Ledger vs. stored quantity for one part."""

    part_id: str
    initial_quantity: int
    ledger_total: int
    quantity: int

    @property
    def expected_quantity(self) -> int:
        return self.initial_quantity + self.ledger_total

    @property
    def drift(self) -> int:
        return self.quantity - self.expected_quantity

    @property
    def is_balanced(self) -> bool:
        return self.drift == 0 and self.quantity >= 0

    def to_dict(self) -> dict:
        return {
            "part_id": self.part_id,
            "initial_quantity": self.initial_quantity,
            "ledger_total": self.ledger_total,
            "quantity": self.quantity,
            "drift": self.drift,
            "is_balanced": self.is_balanced,
        }


class ReconciliationSelector(BaseSelector):
    """Checks the reconciliation invariant part by part."""

    invariant = KernelInvariant.LEDGER_RECONCILED

    def _ledger_totals(self) -> dict[str, int]:
        totals: dict[str, int] = defaultdict(int)
        for item in self.store.list(TRANSACTIONS):
            entry = StockTransaction.from_payload(item.value)
            totals[entry.part_id] += entry.delta
        return totals

    def reconcile_part(self, part_id: str) -> ReconciliationResult:
        current = self.store.get(part_key(part_id))
        if current is None:
            raise PartNotFoundError(part_id)
        part = Part.from_payload(current.value, current.version)
        return self._result(part, self._ledger_totals().get(part_id, 0))

    def reconcile_all(self) -> list[ReconciliationResult]:
        totals = self._ledger_totals()
        return [
            self._result(Part.from_payload(item.value, item.version), totals.get(item.value["id"], 0))
            for item in self.store.list(PARTS)
        ]

    def unbalanced(self) -> list[ReconciliationResult]:
        return [r for r in self.reconcile_all() if not r.is_balanced]

    @staticmethod
    def _result(part: Part, ledger_total: int) -> ReconciliationResult:
        return ReconciliationResult(
            part_id=part.id,
            initial_quantity=part.initial_quantity,
            ledger_total=ledger_total,
            quantity=part.quantity,
        )
