"""
PartStore -- sole authority over a part's on-hand quantity.

Responsibility:
    Creates, reads and maintains spare-part documents, and applies signed
    quantity deltas as atomic read-modify-write operations.  No other
    component writes ``Part.quantity``.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by AllocationEngine and StockTransactionService for stock
    movements, and by catalog maintenance for non-stock fields.  Publishes
    to StockEventBus after every committed delta.

Invariants enforced:
    NON_NEGATIVE_STOCK -- every delta is validated against the freshly read
        quantity inside a compare-and-set loop; a write whose base version
        has moved is re-read and re-validated, never forced.
    - Part creation rejects negative quantities.
    - Catalog updates cannot touch ``quantity`` or ``initial_quantity``.

Failure modes:
    - PartNotFoundError: part id has no document.
    - ValidationError: zero delta, negative initial quantity, or an attempt
      to set quantity through update_details.
    - InsufficientStockError: delta would take quantity below zero.
    - ConcurrentModificationConflictError: ``cas_max_attempts`` CAS races
      lost in a row.
    - StoreUnavailableError: propagated from the store.

Audit relevance:
    Every committed delta is logged as ``stock_delta_applied`` with
    before/after quantities.  The caller pairs the delta with exactly one
    TransactionLedger entry; ReconciliationSelector detects a missing one.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Any

from stock_kernel.domain.clock import Clock
from stock_kernel.domain.parts import DEFAULT_MIN_STOCK_LEVEL, Part, TransactionKind
from stock_kernel.domain.values import new_id, to_decimal
from stock_kernel.exceptions import (
    ConcurrentModificationConflictError,
    InsufficientStockError,
    PartNotFoundError,
    ValidationError,
    VersionConflictError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.services.base import BaseService
from stock_kernel.services.event_bus import PartChangedEvent, StockEventBus
from stock_kernel.store.base import KeyValueStore
from stock_kernel.store.keys import PARTS, part_key

logger = get_logger("services.part_store")

DEFAULT_CAS_MAX_ATTEMPTS = 10

# Catalog fields editable through update_details().
CATALOG_FIELDS: frozenset[str] = frozenset({
    "name",
    "part_number",
    "unit_price",
    "min_stock_level",
    "category",
    "manufacturer",
    "location",
})


class PartStore(BaseService):
    """
    Part repository with CAS-protected quantity deltas.

    Contract:
        ``apply_delta`` is the only way to change stock.  It returns the
        committed Part (with its new store version); the caller records the
        matching ledger entry.

    Guarantees:
        - Observed quantity is never negative.
        - At most ``cas_max_attempts`` reads per apply_delta call.
    """

    def __init__(
        self,
        store: KeyValueStore,
        event_bus: StockEventBus | None = None,
        clock: Clock | None = None,
        cas_max_attempts: int = DEFAULT_CAS_MAX_ATTEMPTS,
        default_min_stock_level: int = DEFAULT_MIN_STOCK_LEVEL,
    ):
        super().__init__(store, clock)
        if cas_max_attempts < 1:
            raise ValueError("cas_max_attempts must be >= 1")
        self.event_bus = event_bus or StockEventBus()
        self.cas_max_attempts = cas_max_attempts
        self.default_min_stock_level = default_min_stock_level

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def create_part(
        self,
        name: str,
        quantity: int = 0,
        unit_price: Decimal | int | str = Decimal("0"),
        part_number: str = "",
        min_stock_level: int | None = None,
        category: str = "",
        manufacturer: str = "",
        location: str = "",
        part_id: str | None = None,
    ) -> Part:
        """Register a new part with its opening quantity."""
        now = self.clock.now()
        part = Part(
            id=part_id or new_id(),
            name=name,
            quantity=quantity,
            initial_quantity=quantity,
            unit_price=to_decimal(unit_price, "unit_price"),
            part_number=part_number,
            min_stock_level=(
                self.default_min_stock_level if min_stock_level is None else min_stock_level
            ),
            category=category,
            manufacturer=manufacturer,
            location=location,
            created_at=now,
            updated_at=now,
        )
        stored = self.store.create(part_key(part.id), part.to_payload())
        logger.info(
            "part_created",
            extra={"part_id": part.id, "quantity": quantity, "part_number": part_number},
        )
        return replace(part, version=stored.version)

    def get(self, part_id: str) -> Part:
        current = self.store.get(part_key(part_id))
        if current is None:
            raise PartNotFoundError(part_id)
        return Part.from_payload(current.value, current.version)

    def find(self, part_id: str) -> Part | None:
        current = self.store.get(part_key(part_id))
        if current is None:
            return None
        return Part.from_payload(current.value, current.version)

    def list_parts(self) -> list[Part]:
        return [Part.from_payload(item.value, item.version) for item in self.store.list(PARTS)]

    def update_details(self, part_id: str, **fields: Any) -> Part:
        """
        Update catalog fields of a part.

        Raises:
            ValidationError: If ``quantity``/``initial_quantity`` or an
                unknown field is passed.
        """
        for name in fields:
            if name in ("quantity", "initial_quantity"):
                raise ValidationError(
                    name, "stock quantity changes must go through apply_delta"
                )
            if name not in CATALOG_FIELDS:
                raise ValidationError(name, "not an editable part field")

        key = part_key(part_id)
        for _ in range(self.cas_max_attempts):
            current = self.get(part_id)
            updated = replace(current, updated_at=self.clock.now(), **fields)
            try:
                stored = self.store.compare_and_set(key, updated.to_payload(), current.version)
            except VersionConflictError:
                continue
            logger.info(
                "part_details_updated",
                extra={"part_id": part_id, "fields": sorted(fields)},
            )
            return replace(updated, version=stored.version)

        raise ConcurrentModificationConflictError(part_id, "part", self.cas_max_attempts)

    def delete_part(self, part_id: str) -> None:
        """Remove a part. Its ledger history is kept."""
        if not self.store.delete(part_key(part_id)):
            raise PartNotFoundError(part_id)
        logger.info("part_deleted", extra={"part_id": part_id})

    # ------------------------------------------------------------------
    # Stock movement
    # ------------------------------------------------------------------

    def apply_delta(
        self,
        part_id: str,
        delta: int,
        kind: TransactionKind,
        source_record_id: str | None = None,
    ) -> Part:
        """
        Atomically add ``delta`` to the part's quantity.

        Preconditions:
            delta != 0.

        Postconditions:
            The returned Part carries the committed quantity and version.
            A PartChangedEvent has been published.

        Raises:
            PartNotFoundError, ValidationError, InsufficientStockError,
            ConcurrentModificationConflictError, StoreUnavailableError.
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ValidationError("delta", f"must be a non-zero integer, got {delta!r}")

        key = part_key(part_id)
        for attempt in range(1, self.cas_max_attempts + 1):
            current = self.get(part_id)
            new_quantity = current.quantity + delta
            # INVARIANT: NON_NEGATIVE_STOCK
            if new_quantity < 0:
                logger.info(
                    "stock_delta_rejected",
                    extra={
                        "part_id": part_id,
                        "available": current.quantity,
                        "requested": -delta,
                        "kind": kind,
                    },
                )
                raise InsufficientStockError(part_id, current.quantity, -delta)

            updated = current.with_quantity(new_quantity, self.clock.now())
            try:
                stored = self.store.compare_and_set(key, updated.to_payload(), current.version)
            except VersionConflictError:
                logger.debug(
                    "stock_delta_cas_retry",
                    extra={"part_id": part_id, "attempt": attempt},
                )
                continue

            committed = replace(updated, version=stored.version)
            logger.info(
                "stock_delta_applied",
                extra={
                    "part_id": part_id,
                    "delta": delta,
                    "quantity_before": current.quantity,
                    "quantity_after": new_quantity,
                    "kind": kind,
                    "source_record_id": source_record_id,
                    "attempt": attempt,
                },
            )
            self.event_bus.publish(
                PartChangedEvent(
                    part_id=part_id,
                    quantity_before=current.quantity,
                    quantity_after=new_quantity,
                    delta=delta,
                    kind=TransactionKind(kind),
                    version=stored.version,
                    occurred_at=committed.updated_at,
                    is_low_stock=committed.is_low_stock,
                    source_record_id=source_record_id,
                )
            )
            return committed

        logger.warning(
            "stock_delta_conflict_exhausted",
            extra={"part_id": part_id, "attempts": self.cas_max_attempts},
        )
        raise ConcurrentModificationConflictError(part_id, "part", self.cas_max_attempts)
