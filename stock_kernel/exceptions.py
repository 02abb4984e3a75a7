"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejected submission must name the part, unit or serial at fault, and
callers must be able to react to a failure without parsing message text:

    try:
        records.update(order)
    except InsufficientStockError as e:
        show_shortage(e.part_id, e.available, e.requested)
    except ConcurrentModificationConflictError as e:
        resubmit_later(e.entity_id)

Rules:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- NotFoundError
    |   +-- PartNotFoundError
    |   +-- RecordNotFoundError
    |   +-- VehicleModelNotFoundError
    |   +-- VehicleUnitNotFoundError
    |
    +-- ValidationError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |
    +-- AllocationError
    |   +-- PartialCompensationError
    |
    +-- VehicleError
    |   +-- DuplicateSerialError
    |   +-- CapacityExceededError
    |   +-- InvalidTransitionError
    |   +-- InsufficientVehicleStockError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationConflictError
    |
    +-- StoreError
        +-- StoreUnavailableError
        +-- VersionConflictError
        +-- KeyExistsError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                             | When Raised
-------------|----------------------------------|-----------------------------------
Lookup       | NOT_FOUND / PART_NOT_FOUND ...   | Unknown part, record, model, unit
Validation   | VALIDATION_ERROR                 | Malformed allocation or field
Stock        | INSUFFICIENT_STOCK               | Deduction would go below zero
Allocation   | PARTIAL_COMPENSATION             | Store failed mid restore/deduct
Vehicle      | DUPLICATE_SERIAL                 | Motor number already registered
             | CAPACITY_EXCEEDED                | Units would exceed model quantity
             | INVALID_TRANSITION               | Unit status change out of 'sold'
             | INSUFFICIENT_VEHICLE_STOCK       | Sale exceeds declared quantity
Concurrency  | CONCURRENT_MODIFICATION_CONFLICT | CAS retries exhausted
Store        | UNAVAILABLE                      | Store call timed out / failed
             | VERSION_CONFLICT                 | Conditional write lost the race
             | KEY_EXISTS                       | Conditional create found a key
             | IMMUTABILITY_VIOLATION           | Overwrite/delete of ledger entry

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Allocation errors leave prior state intact; show them to the user.

2. PartialCompensationError is the only partial outcome.  It lists the parts
   already restored and the quantities still held, so the caller can retry
   the delete or edit deterministically:

    except PartialCompensationError as e:
        schedule_retry(e.source_record_id)

3. VersionConflictError and KeyExistsError are store-level signals consumed
   inside the kernel; callers normally see ConcurrentModificationConflictError.
"""

from typing import Any


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Lookup exceptions


class NotFoundError(StockKernelError):
    """An entity with the given id does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class PartNotFoundError(NotFoundError):
    """Spare part does not exist."""

    code: str = "PART_NOT_FOUND"

    def __init__(self, part_id: str):
        super().__init__("part", part_id)


class RecordNotFoundError(NotFoundError):
    """Consuming record (service order or vehicle sale) does not exist."""

    code: str = "RECORD_NOT_FOUND"

    def __init__(self, record_kind: str, record_id: str):
        self.record_kind = record_kind
        super().__init__(record_kind, record_id)


class VehicleModelNotFoundError(NotFoundError):
    code: str = "VEHICLE_MODEL_NOT_FOUND"

    def __init__(self, model_id: str):
        super().__init__("vehicle_model", model_id)


class VehicleUnitNotFoundError(NotFoundError):
    code: str = "VEHICLE_UNIT_NOT_FOUND"

    def __init__(self, unit_id: str):
        super().__init__("vehicle_unit", unit_id)


# Validation


class ValidationError(StockKernelError):
    """A submitted value is malformed (duplicate part, bad quantity, ...)."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Stock exceptions


class StockError(StockKernelError):
    """Base exception for quantity-on-hand errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Applying a deduction would take a part's quantity below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, part_id: str, available: int, requested: int):
        self.part_id = part_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for part {part_id}: "
            f"available={available}, requested={requested}"
        )


# Allocation exceptions


class AllocationError(StockKernelError):
    """Base exception for compensating allocation errors."""

    code: str = "ALLOCATION_ERROR"


class PartialCompensationError(AllocationError):
    """
    The store failed part-way through a restore (or an undo of deductions).

    `restored_part_ids` lists parts whose stock was given back before the
    failure.  `held` maps part id -> quantity the record still holds; it is
    the snapshot a retry must restore against.  `unlogged` maps part id ->
    delta for stock moves that were committed with no ledger entry and
    could not be reverted; reconciliation shows them as drift.
    """

    code: str = "PARTIAL_COMPENSATION"

    def __init__(
        self,
        source_record_id: str,
        restored_part_ids: list[str],
        held: dict[str, int],
        phase: str,
        unlogged: dict[str, int] | None = None,
    ):
        self.source_record_id = source_record_id
        self.restored_part_ids = list(restored_part_ids)
        self.held = dict(held)
        self.phase = phase
        self.unlogged = dict(unlogged or {})
        message = (
            f"Partial compensation for record {source_record_id} during {phase}: "
            f"restored={self.restored_part_ids}, still held={self.held}"
        )
        if self.unlogged:
            message += f", unlogged={self.unlogged}"
        super().__init__(message)


# Vehicle exceptions


class VehicleError(StockKernelError):
    """Base exception for vehicle model / unit errors."""

    code: str = "VEHICLE_ERROR"


class DuplicateSerialError(VehicleError):
    """A unit with this serial number is already registered for the model."""

    code: str = "DUPLICATE_SERIAL"

    def __init__(self, model_id: str, serial: str):
        self.model_id = model_id
        self.serial = serial
        super().__init__(f"Serial {serial} already registered for model {model_id}")


class CapacityExceededError(VehicleError):
    """Registered units already reach the model's declared quantity."""

    code: str = "CAPACITY_EXCEEDED"

    def __init__(self, model_id: str, capacity: int, registered: int):
        self.model_id = model_id
        self.capacity = capacity
        self.registered = registered
        super().__init__(
            f"Model {model_id} has {registered} units registered; "
            f"declared quantity is {capacity}"
        )


class InvalidTransitionError(VehicleError):
    """Unit status change is not permitted (sold is terminal)."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, unit_id: str, from_status: str, to_status: str):
        self.unit_id = unit_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Unit {unit_id} cannot move from {from_status} to {to_status}"
        )


class InsufficientVehicleStockError(VehicleError):
    """A sale requests more vehicles than the model's declared quantity."""

    code: str = "INSUFFICIENT_VEHICLE_STOCK"

    def __init__(self, model_id: str, available: int, requested: int):
        self.model_id = model_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient vehicle stock for model {model_id}: "
            f"available={available}, requested={requested}"
        )


# Concurrency exceptions


class ConcurrencyError(StockKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationConflictError(ConcurrencyError):
    """Optimistic retries were exhausted while another writer kept winning."""

    code: str = "CONCURRENT_MODIFICATION_CONFLICT"

    def __init__(self, entity_id: str, entity_type: str = "part", attempts: int | None = None):
        self.entity_id = entity_id
        self.entity_type = entity_type
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification conflict on {entity_type} {entity_id}"
            + (f" after {attempts} attempts" if attempts is not None else "")
        )


# Store exceptions


class StoreError(StockKernelError):
    """Base exception for key-value store errors."""

    code: str = "STORE_ERROR"


class StoreUnavailableError(StoreError):
    """A store call timed out or the backend could not be reached."""

    code: str = "UNAVAILABLE"

    def __init__(self, operation: str, key: str | None, timeout_seconds: float | None = None, reason: Any = None):
        self.operation = operation
        self.key = key
        self.timeout_seconds = timeout_seconds
        self.reason = str(reason) if reason is not None else None
        super().__init__(
            f"Store unavailable during {operation} on {key!r}"
            + (f" (timeout {timeout_seconds}s)" if timeout_seconds is not None else "")
            + (f": {self.reason}" if self.reason else "")
        )


class VersionConflictError(StoreError):
    """Conditional write failed: stored version differs from the expected one."""

    code: str = "VERSION_CONFLICT"

    def __init__(self, key: str, expected_version: int, actual_version: int | None):
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on {key}: expected {expected_version}, "
            f"found {actual_version}"
        )


class KeyExistsError(StoreError):
    """Conditional create failed because the key is already present."""

    code: str = "KEY_EXISTS"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Key already exists: {key}")


class ImmutabilityViolationError(StoreError):
    """Attempt to overwrite or delete an append-only key."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, key: str, operation: str):
        self.key = key
        self.operation = operation
        super().__init__(f"Cannot {operation} immutable key {key}")
