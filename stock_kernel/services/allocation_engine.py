"""
AllocationEngine -- compensating stock allocation for consuming records.

Responsibility:
    Moves a consuming record from the allocation it currently holds
    (``previous``) to a requested one (``new``) by restoring the old lines
    and deducting the new ones through PartStore, writing one ledger entry
    per movement.  The delete path restores only.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by RecordManager.  Calls PartStore and TransactionLedger.
    Knows nothing about record kinds: any ConsumingRecord is reduced to two
    AllocationSets before it gets here.

Algorithm:
    1. Pre-validation (no writes): for every new line,
       ``qty <= current_quantity + previous.quantity_of(part)``.
    2. Restore: ``+qty`` per previous line (service-restore).
    3. Validation: every new line against live quantities.
    4. Deduct: ``-qty`` per new line (service-consume), CAS-validated.
       When a concurrent writer makes a line fail, the deductions of this
       attempt are undone and the engine goes back to 3, at most
       ``max_attempts`` times.  On a real shortage, or when attempts run
       out, the previous allocation is re-acquired and the error surfaces.
    5. The committed snapshot (``new``) is handed to the snapshot sink.

Invariants enforced:
    ALL_OR_NOTHING_ALLOCATION -- a rejected submission leaves every part
        quantity as it was: pre-validation rejects before any write, and
        later failures undo partial deductions and re-acquire the previous
        allocation.
    NON_NEGATIVE_STOCK -- via PartStore.apply_delta.
    LEDGER_RECONCILED -- every committed delta gets one ledger entry.  A
        delta whose entry cannot be written is reverted before the error
        surfaces; ``held`` only moves once both writes have landed.
    - Restore is idempotent against the snapshot the sink persisted: the
      sink is told the shrunken held set after the restore phase, so a
      re-run restores nothing twice.

Failure modes:
    - InsufficientStockError: a line exceeds available stock (pre-validation
      or a real shortage after races).  Stock is unchanged.
    - PartNotFoundError: a new line references a missing part.
    - ConcurrentModificationConflictError: attempts exhausted.  Stock is
      unchanged.
    - PartialCompensationError: the store became unavailable part-way, or
      compensation itself could not complete.  ``held`` reports exactly what
      the record still holds; the ledger agrees with it.  ``unlogged`` names
      any delta that reached stock with no entry and could not be reverted.
    - StoreUnavailableError: the store was unavailable before any write.

Audit relevance:
    Each run is logged as ``allocation_committed`` / ``allocation_released``
    / ``allocation_failed`` with the source record id.  The ledger entries
    carry ``source_record_id`` so the run can be replayed from history.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from stock_kernel.domain.allocation import Allocation, AllocationSet
from stock_kernel.domain.parts import StockTransaction, TransactionKind
from stock_kernel.exceptions import (
    ConcurrentModificationConflictError,
    InsufficientStockError,
    PartialCompensationError,
    PartNotFoundError,
    StockKernelError,
    StoreUnavailableError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.part_store import PartStore
from stock_kernel.services.transaction_ledger import TransactionLedger

logger = get_logger("services.allocation_engine")

DEFAULT_ALLOCATION_MAX_ATTEMPTS = 3

SnapshotSink = Callable[[AllocationSet], None]

# Errors after which the deduct phase may be retried from validation.
_RACE_ERRORS = (InsufficientStockError, ConcurrentModificationConflictError)


@dataclass(frozen=True)
class AllocationOutcome:
    """Result of a successful commit or release."""

    source_record_id: str
    committed: AllocationSet
    transactions: tuple[StockTransaction, ...]
    attempts: int

    @property
    def restored(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for entry in self.transactions:
            if entry.kind == TransactionKind.SERVICE_RESTORE:
                totals[entry.part_id] = totals.get(entry.part_id, 0) + entry.delta
        return totals

    @property
    def consumed(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for entry in self.transactions:
            if entry.kind == TransactionKind.SERVICE_CONSUME:
                totals[entry.part_id] = totals.get(entry.part_id, 0) - entry.delta
        return totals


class _AllocationRun:
    """Mutable bookkeeping for one commit/release call."""

    def __init__(
        self,
        source_record_id: str,
        previous: AllocationSet,
        sink: SnapshotSink | None = None,
    ):
        self.source_record_id = source_record_id
        self.sink = sink
        self.held: dict[str, int] = previous.quantities()
        self.prices = {line.part_id: line.unit_price for line in previous}
        self.restored_part_ids: list[str] = []
        self.transactions: list[StockTransaction] = []
        self.phase = "prevalidate"
        self.attempts = 0

    def held_set(self) -> AllocationSet:
        return AllocationSet(
            Allocation(part_id, qty, self.prices[part_id])
            for part_id, qty in self.held.items()
            if qty > 0
        )


class AllocationEngine:
    """
    Applies allocation changes with compensation.

    Contract:
        ``previous`` must be what the record actually holds (its persisted
        committed snapshot, or the ledger's net allocation when that
        snapshot is not trusted).  ``new`` is the requested allocation.

    Guarantees:
        - On success the record holds exactly ``new``.
        - On any error other than PartialCompensationError the record holds
          exactly ``previous`` and every part quantity is unchanged.
    """

    def __init__(
        self,
        part_store: PartStore,
        ledger: TransactionLedger,
        max_attempts: int = DEFAULT_ALLOCATION_MAX_ATTEMPTS,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._parts = part_store
        self._ledger = ledger
        self.max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def commit(
        self,
        source_record_id: str,
        previous: AllocationSet,
        new: AllocationSet,
        snapshot_sink: SnapshotSink | None = None,
    ) -> AllocationOutcome:
        """
        Replace ``previous`` with ``new`` for a record.

        Raises:
            InsufficientStockError, PartNotFoundError,
            ConcurrentModificationConflictError, PartialCompensationError,
            StoreUnavailableError.
        """
        run = _AllocationRun(source_record_id, previous, snapshot_sink)
        with LogContext.bind(record_id=source_record_id, operation="allocation_commit"):
            try:
                self._prevalidate(previous, new)
            except StockKernelError as exc:
                logger.info(
                    "allocation_failed",
                    extra={"phase": run.phase, "error_code": getattr(exc, "code", None)},
                )
                raise

            try:
                self._restore_phase(run, previous, snapshot_sink)
                if not new.is_empty:
                    self._deduct_phase(run, previous, new, snapshot_sink)
                run.phase = "snapshot"
                run.prices.update({line.part_id: line.unit_price for line in new})
                self._notify(snapshot_sink, new)
            except StoreUnavailableError as exc:
                raise self._partial(run, snapshot_sink, exc) from exc

            logger.info(
                "allocation_committed",
                extra={
                    "previous": previous.quantities(),
                    "committed": new.quantities(),
                    "movements": len(run.transactions),
                    "attempts": run.attempts,
                },
            )
            return AllocationOutcome(
                source_record_id=source_record_id,
                committed=new,
                transactions=tuple(run.transactions),
                attempts=run.attempts,
            )

    def release(
        self,
        source_record_id: str,
        previous: AllocationSet,
        snapshot_sink: SnapshotSink | None = None,
    ) -> AllocationOutcome:
        """Give back everything ``previous`` holds (delete path)."""
        run = _AllocationRun(source_record_id, previous, snapshot_sink)
        with LogContext.bind(record_id=source_record_id, operation="allocation_release"):
            try:
                self._restore_phase(run, previous, snapshot_sink)
            except StoreUnavailableError as exc:
                raise self._partial(run, snapshot_sink, exc) from exc

            logger.info(
                "allocation_released",
                extra={
                    "released": previous.quantities(),
                    "movements": len(run.transactions),
                },
            )
            return AllocationOutcome(
                source_record_id=source_record_id,
                committed=AllocationSet.empty(),
                transactions=tuple(run.transactions),
                attempts=1,
            )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _prevalidate(self, previous: AllocationSet, new: AllocationSet) -> None:
        for line in new:
            part = self._parts.get(line.part_id)
            available = part.quantity + previous.quantity_of(line.part_id)
            if line.quantity > available:
                raise InsufficientStockError(line.part_id, available, line.quantity)

    def _restore_phase(
        self,
        run: _AllocationRun,
        previous: AllocationSet,
        sink: SnapshotSink | None,
    ) -> None:
        run.phase = "restore"
        for line in previous:
            try:
                self._move(run, line.part_id, line.quantity, TransactionKind.SERVICE_RESTORE)
            except PartNotFoundError:
                # Nothing to credit; the part left the catalog while held.
                logger.warning(
                    "allocation_restore_skipped_missing_part",
                    extra={"part_id": line.part_id, "quantity": line.quantity},
                )
                run.held.pop(line.part_id, None)
            except ConcurrentModificationConflictError as exc:
                raise self._partial(run, sink, exc) from exc
        if not previous.is_empty:
            self._notify(sink, run.held_set())

    def _validate_live(self, new: AllocationSet) -> None:
        for line in new:
            part = self._parts.get(line.part_id)
            if line.quantity > part.quantity:
                raise InsufficientStockError(line.part_id, part.quantity, line.quantity)

    def _deduct_phase(
        self,
        run: _AllocationRun,
        previous: AllocationSet,
        new: AllocationSet,
        sink: SnapshotSink | None,
    ) -> None:
        last_error: StockKernelError | None = None
        for attempt in range(1, self.max_attempts + 1):
            run.attempts = attempt
            run.phase = "validate"
            try:
                self._validate_live(new)
            except (InsufficientStockError, PartNotFoundError) as exc:
                last_error = exc
                break

            run.phase = "deduct"
            applied: list[Allocation] = []
            try:
                for line in new:
                    run.prices[line.part_id] = line.unit_price
                    self._move(run, line.part_id, -line.quantity, TransactionKind.SERVICE_CONSUME)
                    applied.append(line)
                return
            except (*_RACE_ERRORS, PartNotFoundError) as exc:
                last_error = exc
                logger.info(
                    "allocation_deduct_interrupted",
                    extra={
                        "attempt": attempt,
                        "applied": len(applied),
                        "error_code": exc.code,
                    },
                )
                self._undo(run, applied, sink)
                if not isinstance(exc, _RACE_ERRORS):
                    break

        assert last_error is not None
        self._reacquire(run, previous, sink)
        logger.info(
            "allocation_failed",
            extra={
                "phase": "deduct",
                "attempts": run.attempts,
                "error_code": last_error.code,
            },
        )
        raise last_error

    def _undo(
        self,
        run: _AllocationRun,
        applied: list[Allocation],
        sink: SnapshotSink | None,
    ) -> None:
        run.phase = "undo"
        for line in reversed(applied):
            try:
                self._move(run, line.part_id, line.quantity, TransactionKind.SERVICE_RESTORE)
            except (ConcurrentModificationConflictError, PartNotFoundError) as exc:
                raise self._partial(run, sink, exc) from exc

    def _reacquire(
        self,
        run: _AllocationRun,
        previous: AllocationSet,
        sink: SnapshotSink | None,
    ) -> None:
        if previous.is_empty:
            return
        run.phase = "reacquire"
        for line in previous:
            run.prices[line.part_id] = line.unit_price
            try:
                self._move(run, line.part_id, -line.quantity, TransactionKind.SERVICE_CONSUME)
            except (*_RACE_ERRORS, PartNotFoundError) as exc:
                raise self._partial(run, sink, exc) from exc
        self._notify(sink, previous)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _move(
        self,
        run: _AllocationRun,
        part_id: str,
        delta: int,
        kind: TransactionKind,
    ) -> None:
        part = self._parts.apply_delta(part_id, delta, kind, run.source_record_id)
        try:
            entry = self._ledger.record_movement(part, delta, kind, run.source_record_id)
        except StockKernelError as exc:
            self._revert_unlogged(run, part_id, delta, kind, exc)
            raise
        held = run.held.get(part_id, 0) - delta
        if held > 0:
            run.held[part_id] = held
        else:
            run.held.pop(part_id, None)
        if delta > 0 and part_id not in run.restored_part_ids:
            run.restored_part_ids.append(part_id)
        run.transactions.append(entry)

    def _revert_unlogged(
        self,
        run: _AllocationRun,
        part_id: str,
        delta: int,
        kind: TransactionKind,
        cause: StockKernelError,
    ) -> None:
        """
        Take back a delta whose ledger entry was never written.

        The revert itself writes no entry, so stock and ledger agree again
        and ``run.held`` is still accurate.  If the revert fails too, the
        drift is reported on a PartialCompensationError.
        """
        try:
            self._parts.apply_delta(part_id, -delta, kind, run.source_record_id)
        except StockKernelError as exc:
            raise self._partial(run, run.sink, exc, unlogged={part_id: delta}) from cause
        logger.warning(
            "allocation_unlogged_delta_reverted",
            extra={
                "part_id": part_id,
                "delta": delta,
                "phase": run.phase,
                "cause": type(cause).__name__,
            },
        )

    def _notify(self, sink: SnapshotSink | None, snapshot: AllocationSet) -> None:
        if sink is not None:
            sink(snapshot)

    def _partial(
        self,
        run: _AllocationRun,
        sink: SnapshotSink | None,
        cause: Exception,
        unlogged: dict[str, int] | None = None,
    ) -> PartialCompensationError:
        held = run.held_set()
        if sink is not None and not isinstance(cause, StoreUnavailableError):
            try:
                sink(held)
            except StoreUnavailableError:
                logger.warning("allocation_snapshot_not_persisted", exc_info=True)
        error = PartialCompensationError(
            source_record_id=run.source_record_id,
            restored_part_ids=run.restored_part_ids,
            held=held.quantities(),
            phase=run.phase,
            unlogged=unlogged,
        )
        logger.error(
            "allocation_partial_compensation",
            extra={
                "phase": run.phase,
                "held": error.held,
                "restored_part_ids": error.restored_part_ids,
                "unlogged": error.unlogged,
                "cause": type(cause).__name__,
            },
        )
        return error
