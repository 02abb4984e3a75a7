"""
RecordManager -- create, edit and delete consuming records with their stock.

Responsibility:
    Owns the lifecycle of ServiceOrder and VehicleSale documents.  Every
    submission that changes a record's allocation is run through the
    AllocationEngine, and the record's committed snapshot is kept in step
    with what the engine actually did.

Architecture position:
    Kernel > Services -- imperative shell, top of the write side.
    Calls AllocationEngine, TransactionLedger and VehicleUnitRegistry.

Submit flow:
    1. Claim: a new record is created with ``pending=True`` (conditional
       create); an existing one is flipped to ``pending=True`` with a
       compare-and-set against the version just read.  Losing either race
       raises ConcurrentModificationConflictError before any stock moves.
    2. Diff the requested allocation against the committed snapshot; no
       difference means no engine call.
    3. AllocationEngine.commit / release, with a snapshot sink that writes
       the held set back onto the pending record.
    4. Persist the submitted body with ``committed_allocations = new`` and
       ``pending=False``.

Invariants enforced:
    ALL_OR_NOTHING_ALLOCATION -- on any engine error other than
        PartialCompensationError the record is put back exactly as it was
        (a new record is removed) and the engine's error is re-raised.
    - A record read back with ``pending=True`` is either in flight or was
      interrupted.  Edits and deletes refuse it unless ``recover=True``;
      recovery trusts the ledger's net allocation, not the stored snapshot.
    - Vehicle fields of a sale (model, listed units, quantity) never change
      after creation.
    - A vehicle sale writes its reserved unit ids and the declared stock it
      took onto the pending record as each step lands.  An interrupted sale
      is recovered only by delete, which returns both.

Failure modes:
    - RecordNotFoundError, ValidationError.
    - ConcurrentModificationConflictError: claim lost, or record in flight.
    - Any AllocationEngine error, re-raised verbatim.
    - PartialCompensationError: the record stays pending for recovery.
    - InsufficientVehicleStockError / InvalidTransitionError /
      VehicleUnitNotFoundError from a vehicle sale, after compensation.

Audit relevance:
    Logged events: ``record_created``, ``record_updated``,
    ``record_deleted``, ``record_left_pending``, ``record_restored``,
    ``vehicle_sale_unwound``.
"""

from __future__ import annotations

from typing import Callable

from stock_kernel.domain.allocation import AllocationSet
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.records import (
    ConsumingRecord,
    RecordKind,
    VehicleSale,
    record_from_payload,
)
from stock_kernel.domain.vehicles import UnitStatus
from stock_kernel.exceptions import (
    ConcurrentModificationConflictError,
    KeyExistsError,
    PartialCompensationError,
    RecordNotFoundError,
    StoreUnavailableError,
    ValidationError,
    VersionConflictError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.allocation_engine import AllocationEngine
from stock_kernel.services.base import BaseService
from stock_kernel.services.transaction_ledger import TransactionLedger
from stock_kernel.services.vehicle_unit_registry import VehicleUnitRegistry
from stock_kernel.store.base import KeyValueStore
from stock_kernel.store.keys import record_key, record_prefix

logger = get_logger("services.record_manager")

# Fields of a VehicleSale that are fixed once the sale exists.
IMMUTABLE_SALE_FIELDS: tuple[str, ...] = ("vehicle_model_id", "unit_ids", "quantity")

# Failures that leave stock in an intermediate state.  The record keeps
# pending=True so a later recover=True call can finish the job.
_UNSETTLED_ERRORS = (PartialCompensationError, StoreUnavailableError)


class _ClaimedRecord:
    """The pending document a submission owns, tracked by store version."""

    def __init__(self, key: str, body: ConsumingRecord, version: int):
        self.key = key
        self.body = body
        self.version = version


class RecordManager(BaseService):
    """
    Lifecycle service for consuming records.

    Contract:
        Callers pass complete record objects (as a form would submit them).
        ``allocations`` on the submitted record is the requested stock;
        ``committed_allocations``, ``pending`` and ``version`` are managed
        here and ignored on input.
    """

    def __init__(
        self,
        store: KeyValueStore,
        engine: AllocationEngine,
        ledger: TransactionLedger,
        vehicles: VehicleUnitRegistry,
        clock: Clock | None = None,
    ):
        super().__init__(store, clock)
        self._engine = engine
        self._ledger = ledger
        self._vehicles = vehicles

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, kind: RecordKind, record_id: str) -> ConsumingRecord:
        current = self.store.get(record_key(kind, record_id))
        if current is None:
            raise RecordNotFoundError(RecordKind(kind).value, record_id)
        return record_from_payload(current.value, current.version)

    def list(self, kind: RecordKind) -> list[ConsumingRecord]:
        return [
            record_from_payload(item.value, item.version)
            for item in self.store.list(record_prefix(kind))
        ]

    def held_allocation(self, kind: RecordKind, record_id: str) -> AllocationSet:
        """What the record actually holds: its snapshot, or the ledger's view if pending."""
        record = self.get(kind, record_id)
        return self._previous_for(record)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, record: ConsumingRecord) -> ConsumingRecord:
        """
        Persist a new record and take its allocation from stock.

        Raises:
            ConcurrentModificationConflictError: a record with this id exists.
            InsufficientStockError, PartNotFoundError, ... from the engine.
        """
        key = record_key(record.kind, record.id)
        now = self.clock.now()
        with LogContext.bind(record_id=record.id, operation="record_create"):
            claimed_body = record.with_changes(
                committed_allocations=AllocationSet.empty(),
                pending=True,
                created_at=now,
                updated_at=now,
                version=None,
            )
            if isinstance(claimed_body, VehicleSale):
                claimed_body = claimed_body.with_changes(
                    assigned_unit_ids=(), model_quantity_taken=0
                )
            try:
                stored = self.store.create(key, claimed_body.to_payload())
            except KeyExistsError:
                raise ConcurrentModificationConflictError(
                    record.id, entity_type=record.kind.value
                ) from None
            claim = _ClaimedRecord(key, claimed_body, stored.version)

            try:
                if isinstance(record, VehicleSale):
                    final = self._commit_new_sale(claim, record)
                else:
                    if not record.allocations.is_empty:
                        self._engine.commit(
                            record.id,
                            AllocationSet.empty(),
                            record.allocations,
                            snapshot_sink=self._sink(claim),
                        )
                    final = claim.body.with_changes(
                        committed_allocations=record.allocations, pending=False
                    )
            except _UNSETTLED_ERRORS:
                self._log_left_pending(record)
                raise
            except Exception:
                self._discard_new(claim)
                raise

            result = self._persist(claim, final)
            logger.info(
                "record_created",
                extra={"kind": record.kind, "allocation": result.committed_allocations.quantities()},
            )
            return result

    def _commit_new_sale(self, claim: _ClaimedRecord, sale: VehicleSale) -> VehicleSale:
        """
        Reserve units, take accessory parts, decrement declared stock, then
        mark units sold.  Each completed step is compensated if a later one
        fails; selling is last because it cannot be undone.

        The reserved unit ids and the decrement are written onto the pending
        record as they happen, so a recover delete can unwind them.
        """
        model_id = sale.vehicle_model_id
        self._vehicles.get_model(model_id)
        compensations: list[tuple[str, Callable[[], object]]] = []

        try:
            if sale.unit_ids:
                units = self._vehicles.reserve_units(model_id, sale.unit_ids, sale.id)
            else:
                units = self._vehicles.reserve_available(model_id, sale.quantity, sale.id)
            unit_ids = tuple(u.id for u in units)
            compensations.append(
                (
                    "release_units",
                    lambda: self._vehicles.release_units(model_id, unit_ids, sale.id),
                )
            )
            self._persist(claim, claim.body.with_changes(assigned_unit_ids=unit_ids))

            if not sale.allocations.is_empty:
                self._engine.commit(
                    sale.id,
                    AllocationSet.empty(),
                    sale.allocations,
                    snapshot_sink=self._sink(claim),
                )
                compensations.append(
                    (
                        "release_parts",
                        lambda: self._engine.release(
                            sale.id, sale.allocations, snapshot_sink=self._sink(claim)
                        ),
                    )
                )

            self._vehicles.adjust_model_quantity(model_id, -sale.quantity)
            compensations.append(
                (
                    "restore_model_quantity",
                    lambda: self._vehicles.adjust_model_quantity(model_id, sale.quantity),
                )
            )
            self._persist(claim, claim.body.with_changes(model_quantity_taken=sale.quantity))
        except PartialCompensationError:
            raise
        except Exception:
            self._compensate(sale, compensations)
            raise

        try:
            self._vehicles.mark_units_sold(model_id, unit_ids, sale.id)
        except Exception as exc:
            logger.error(
                "vehicle_sale_not_marked_sold",
                extra={"unit_ids": list(unit_ids), "model_quantity_taken": sale.quantity},
                exc_info=True,
            )
            raise PartialCompensationError(
                source_record_id=sale.id,
                restored_part_ids=[],
                held=sale.allocations.quantities(),
                phase="mark_sold",
            ) from exc

        return claim.body.with_changes(
            committed_allocations=sale.allocations,
            pending=False,
        )

    def _unwind_sale(self, claim: _ClaimedRecord, sale: VehicleSale) -> None:
        """
        Give back what an interrupted sale took from the vehicle side.

        Reserved units return to stock.  Units already marked sold stay sold
        and keep their share of the declared stock decrement.
        """
        model_id = sale.vehicle_model_id
        units = self._vehicles.release_units(model_id, sale.assigned_unit_ids, sale.id)
        sold = sum(1 for u in units if u.status == UnitStatus.SOLD and u.sale_id == sale.id)
        restore = sale.model_quantity_taken - sold
        if restore > 0:
            self._vehicles.adjust_model_quantity(model_id, restore)
            self._persist(claim, claim.body.with_changes(model_quantity_taken=sold))
        logger.info(
            "vehicle_sale_unwound",
            extra={
                "released_unit_ids": [u.id for u in units if u.status == UnitStatus.IN_STOCK],
                "model_quantity_restored": max(restore, 0),
            },
        )

    def _compensate(
        self,
        sale: VehicleSale,
        compensations: list[tuple[str, Callable[[], object]]],
    ) -> None:
        for step, undo in reversed(compensations):
            try:
                undo()
            except Exception as exc:
                logger.error(
                    "vehicle_sale_compensation_failed",
                    extra={"step": step},
                    exc_info=True,
                )
                raise PartialCompensationError(
                    source_record_id=sale.id,
                    restored_part_ids=[],
                    held=self._ledger.net_allocation(sale.id).quantities(),
                    phase=f"compensate:{step}",
                ) from exc
        logger.info(
            "vehicle_sale_compensated",
            extra={"steps": [step for step, _ in reversed(compensations)]},
        )

    def _discard_new(self, claim: _ClaimedRecord) -> None:
        self.store.delete(claim.key, expected_version=claim.version)
        logger.info("record_restored", extra={"outcome": "new_record_discarded"})

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, record: ConsumingRecord, recover: bool = False) -> ConsumingRecord:
        """
        Persist an edited record and move stock by the allocation change.

        Args:
            record: The full edited record.
            recover: Take over a record left pending by an interrupted
                submission.  Only safe when that submission is known dead.

        Raises:
            RecordNotFoundError, ValidationError,
            ConcurrentModificationConflictError, engine errors.
        """
        key = record_key(record.kind, record.id)
        with LogContext.bind(record_id=record.id, operation="record_update"):
            current = self.store.get(key)
            if current is None:
                raise RecordNotFoundError(record.kind.value, record.id)
            stored = record_from_payload(current.value, current.version)
            self._check_claimable(stored, recover)
            if record.version is not None and record.version != stored.version and not recover:
                raise ConcurrentModificationConflictError(record.id, entity_type=record.kind.value)

            if isinstance(stored, VehicleSale):
                if stored.pending:
                    raise ValidationError(
                        "pending", "an interrupted vehicle sale is recovered by deleting it"
                    )
                self._check_sale_fields(stored, record)
                record = record.with_changes(
                    assigned_unit_ids=stored.assigned_unit_ids,
                    model_quantity_taken=stored.model_quantity_taken,
                )

            previous = self._previous_for(stored)
            new = record.allocations
            body = record.with_changes(
                created_at=stored.created_at,
                updated_at=self.clock.now(),
                version=None,
            )

            # Same quantities: no stock impact, one conditional write.  Prices
            # may still have changed, so the snapshot takes the new lines.
            if not previous.diff(new):
                final = body.with_changes(committed_allocations=new, pending=False)
                try:
                    result = self._write(key, final, stored.version)
                except VersionConflictError:
                    raise ConcurrentModificationConflictError(
                        record.id, entity_type=record.kind.value
                    ) from None
                logger.info("record_updated", extra={"kind": record.kind, "stock_changed": False})
                return result

            claim = self._claim(key, stored.with_changes(committed_allocations=previous), stored)
            try:
                self._engine.commit(record.id, previous, new, snapshot_sink=self._sink(claim))
            except _UNSETTLED_ERRORS:
                self._log_left_pending(record)
                raise
            except Exception:
                self._persist(
                    claim, stored.with_changes(committed_allocations=previous, pending=False)
                )
                logger.info("record_restored", extra={"outcome": "edit_rejected"})
                raise

            result = self._persist(
                claim, body.with_changes(committed_allocations=new, pending=False)
            )
            logger.info(
                "record_updated",
                extra={
                    "kind": record.kind,
                    "stock_changed": True,
                    "diff": previous.diff(new),
                },
            )
            return result

    def _check_sale_fields(self, stored: VehicleSale, submitted: ConsumingRecord) -> None:
        for name in IMMUTABLE_SALE_FIELDS:
            if getattr(stored, name) != getattr(submitted, name):
                raise ValidationError(name, "vehicle fields of a sale cannot be edited")

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, kind: RecordKind, record_id: str, recover: bool = False) -> None:
        """
        Remove a record and give back the parts it holds.

        Vehicle sales restore accessory parts only; sold units stay sold.
        Recovering an interrupted sale also returns its reserved units and
        the declared stock it took.
        """
        key = record_key(kind, record_id)
        with LogContext.bind(record_id=record_id, operation="record_delete"):
            current = self.store.get(key)
            if current is None:
                raise RecordNotFoundError(RecordKind(kind).value, record_id)
            stored = record_from_payload(current.value, current.version)
            self._check_claimable(stored, recover)
            previous = self._previous_for(stored)

            claim = self._claim(key, stored.with_changes(committed_allocations=previous), stored)
            if not previous.is_empty:
                try:
                    self._engine.release(record_id, previous, snapshot_sink=self._sink(claim))
                except _UNSETTLED_ERRORS:
                    self._log_left_pending(stored)
                    raise

            # An interrupted sale may still hold reservations and declared stock.
            if isinstance(stored, VehicleSale) and stored.pending:
                self._unwind_sale(claim, stored)

            self.store.delete(key, expected_version=claim.version)
            logger.info(
                "record_deleted",
                extra={"kind": RecordKind(kind), "released": previous.quantities()},
            )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def set_status(self, kind: RecordKind, record_id: str, status: str) -> ConsumingRecord:
        """Change a record's status. Has no stock impact."""
        key = record_key(kind, record_id)
        stored = self.get(kind, record_id)
        self._check_claimable(stored, recover=False)
        updated = stored.with_changes(status=status, updated_at=self.clock.now())
        try:
            result = self._write(key, updated, stored.version)
        except VersionConflictError:
            raise ConcurrentModificationConflictError(record_id, entity_type=RecordKind(kind).value) from None
        logger.info(
            "record_status_changed",
            extra={"record_id": record_id, "kind": RecordKind(kind), "status": status},
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _previous_for(self, stored: ConsumingRecord) -> AllocationSet:
        if stored.pending:
            held = self._ledger.net_allocation(stored.id)
            logger.warning(
                "record_snapshot_from_ledger",
                extra={
                    "record_id": stored.id,
                    "stored_snapshot": stored.committed_allocations.quantities(),
                    "ledger_held": held.quantities(),
                },
            )
            return held
        return stored.committed_allocations

    def _check_claimable(self, stored: ConsumingRecord, recover: bool) -> None:
        if stored.pending and not recover:
            raise ConcurrentModificationConflictError(
                stored.id, entity_type=stored.kind.value
            )

    def _claim(
        self, key: str, body: ConsumingRecord, stored: ConsumingRecord
    ) -> _ClaimedRecord:
        claimed_body = body.with_changes(pending=True, version=None)
        try:
            result = self.store.compare_and_set(key, claimed_body.to_payload(), stored.version)
        except VersionConflictError:
            raise ConcurrentModificationConflictError(
                stored.id, entity_type=stored.kind.value
            ) from None
        return _ClaimedRecord(key, claimed_body, result.version)

    def _sink(self, claim: _ClaimedRecord) -> Callable[[AllocationSet], None]:
        def persist_snapshot(snapshot: AllocationSet) -> None:
            self._persist(claim, claim.body.with_changes(committed_allocations=snapshot))

        return persist_snapshot

    def _persist(self, claim: _ClaimedRecord, body: ConsumingRecord) -> ConsumingRecord:
        try:
            result = self._write(claim.key, body, claim.version)
        except VersionConflictError:
            raise ConcurrentModificationConflictError(
                body.id, entity_type=body.kind.value
            ) from None
        claim.body = body.with_changes(version=None)
        claim.version = result.version
        return result

    def _write(self, key: str, body: ConsumingRecord, expected_version: int) -> ConsumingRecord:
        stored = self.store.compare_and_set(
            key, body.with_changes(version=None).to_payload(), expected_version
        )
        return body.with_changes(version=stored.version)

    def _log_left_pending(self, record: ConsumingRecord) -> None:
        logger.error(
            "record_left_pending",
            extra={"kind": record.kind, "record_id": record.id},
            exc_info=True,
        )
