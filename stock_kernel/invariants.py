"""
Kernel Invariants Contract.

These invariants are structural law for the stock ledger. No setting in
StockLedgerSettings may switch them off.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across PartStore, TransactionLedger,
AllocationEngine, VehicleUnitRegistry and the key-value store backends.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    NON_NEGATIVE_STOCK = "non_negative_stock"
    """Part.quantity is never observed below zero. Enforced by PartStore's
    compare-and-swap loop, which validates every deduction against the
    freshly read quantity."""

    LEDGER_RECONCILED = "ledger_reconciled"
    """quantity == initial_quantity + sum(ledger deltas) for every part.
    Every PartStore write is paired with one TransactionLedger entry;
    ReconciliationSelector reports any drift."""

    APPEND_ONLY_LEDGER = "append_only_ledger"
    """Ledger entries are created once and never updated or deleted.
    Enforced by the store's immutable key prefixes."""

    ALL_OR_NOTHING_ALLOCATION = "all_or_nothing_allocation"
    """A rejected submission leaves every part quantity as it was.
    Enforced by AllocationEngine pre-validation and undo of partial
    deductions."""

    SOLD_IS_TERMINAL = "sold_is_terminal"
    """A sold vehicle unit never changes status again. Enforced by
    VehicleUnitRegistry.set_status."""

    SERIAL_UNIQUENESS = "serial_uniqueness"
    """A motor number is registered at most once per vehicle model.
    Enforced by a conditional create of the serial claim key."""
