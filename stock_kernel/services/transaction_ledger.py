"""
TransactionLedger -- append-only log of every stock movement.

Responsibility:
    Records one immutable StockTransaction per committed PartStore delta and
    answers history queries: by source record, by part, or all entries.
    Derives the quantities a record still holds from its entries, which is
    the fallback snapshot for an interrupted commit.

Architecture position:
    Kernel > Services -- imperative shell.
    Written by AllocationEngine and StockTransactionService directly after
    each apply_delta.  Read by RecordManager and ReconciliationSelector.

Invariants enforced:
    APPEND_ONLY_LEDGER -- entries are written with a conditional create
        under the immutable ``transactions/`` prefix; the store refuses any
        overwrite or delete.
    - Each entry is referenced from ``transactionsByPart/`` and, when it
      has a source record, ``transactionsBySource/``.  The references are
      written first and only count once the entry they name exists, so
      per-record and per-part queries read their own entries, not the
      whole ledger.
    - Entries carry a strictly increasing ``sequence`` from SequenceService,
      which defines ledger order independent of wall-clock timestamps.

Failure modes:
    - KeyExistsError: transaction id collision (never with generated ids).
    - StoreUnavailableError: propagated from the store.

Audit relevance:
    The ledger is the audit trail: initial_quantity plus the sum of a
    part's deltas must equal its current quantity.
"""

from __future__ import annotations

from collections import defaultdict

from stock_kernel.domain.allocation import Allocation, AllocationSet
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.parts import Part, StockTransaction, TransactionKind
from stock_kernel.domain.values import new_id
from stock_kernel.logging_config import get_logger
from stock_kernel.services.base import BaseService
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.store.base import KeyValueStore
from stock_kernel.store.keys import (
    TRANSACTIONS,
    part_index_key,
    part_index_prefix,
    source_index_key,
    source_index_prefix,
    transaction_key,
)

logger = get_logger("services.transaction_ledger")


class TransactionLedger(BaseService):
    """
    Append-only stock movement ledger.

    Guarantees:
        - No update or delete operation exists.
        - Query results are ordered by sequence.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(store, clock)
        self._sequences = sequence_service or SequenceService(store)

    def record(
        self,
        part_id: str,
        delta: int,
        quantity_before: int,
        kind: TransactionKind,
        source_record_id: str | None = None,
        notes: str = "",
    ) -> StockTransaction:
        """Append one movement entry."""
        entry = StockTransaction(
            id=new_id(),
            sequence=self._sequences.next_value(SequenceService.STOCK_TRANSACTION),
            part_id=part_id,
            delta=delta,
            quantity_before=quantity_before,
            quantity_after=quantity_before + delta,
            kind=TransactionKind(kind),
            timestamp=self.clock.now(),
            source_record_id=source_record_id,
            notes=notes,
        )
        # References first: one that outlives a failed entry write resolves
        # to nothing.
        reference = {"transactionId": entry.id, "sequence": entry.sequence}
        self.store.create(part_index_key(part_id, entry.id), reference)
        if source_record_id is not None:
            self.store.create(source_index_key(source_record_id, entry.id), reference)
        self.store.create(transaction_key(entry.id), entry.to_payload())
        logger.info(
            "ledger_entry_recorded",
            extra={
                "transaction_id": entry.id,
                "sequence": entry.sequence,
                "part_id": part_id,
                "delta": delta,
                "kind": entry.kind,
                "source_record_id": source_record_id,
            },
        )
        return entry

    def record_movement(
        self,
        part: Part,
        delta: int,
        kind: TransactionKind,
        source_record_id: str | None = None,
        notes: str = "",
    ) -> StockTransaction:
        """Append the entry for a delta PartStore has just committed on ``part``."""
        return self.record(
            part_id=part.id,
            delta=delta,
            quantity_before=part.quantity - delta,
            kind=kind,
            source_record_id=source_record_id,
            notes=notes,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def all_entries(self) -> list[StockTransaction]:
        entries = [StockTransaction.from_payload(item.value) for item in self.store.list(TRANSACTIONS)]
        entries.sort(key=lambda e: e.sequence)
        return entries

    def entries_for(self, source_record_id: str) -> list[StockTransaction]:
        """All entries written on behalf of one consuming record, in order."""
        return self._resolve(source_index_prefix(source_record_id))

    def entries_for_part(self, part_id: str) -> list[StockTransaction]:
        return self._resolve(part_index_prefix(part_id))

    def _resolve(self, index_prefix: str) -> list[StockTransaction]:
        entries = []
        for reference in self.store.list(index_prefix):
            current = self.store.get(transaction_key(reference.value["transactionId"]))
            if current is not None:
                entries.append(StockTransaction.from_payload(current.value))
        entries.sort(key=lambda e: e.sequence)
        return entries

    def net_delta_by_part(self) -> dict[str, int]:
        totals: dict[str, int] = defaultdict(int)
        for entry in self.all_entries():
            totals[entry.part_id] += entry.delta
        return dict(totals)

    def net_allocation(self, source_record_id: str) -> AllocationSet:
        """
        Quantities a record still holds according to the ledger.

        Consumption entries are negative deltas, restores positive, so the
        held quantity per part is the negated sum.  Parts netting to zero or
        below are omitted.
        """
        held: dict[str, int] = {}
        for entry in self.entries_for(source_record_id):
            held[entry.part_id] = held.get(entry.part_id, 0) - entry.delta
        return AllocationSet(
            Allocation(part_id, quantity)
            for part_id, quantity in held.items()
            if quantity > 0
        )
