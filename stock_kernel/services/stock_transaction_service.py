"""
StockTransactionService -- direct counter sales, purchases and adjustments.

Responsibility:
    Handles stock movements that are not tied to a consuming record: a part
    sold over the counter, a delivery received, or a manual correction
    after a stock count.  Each movement is one PartStore delta paired with
    one ledger entry.

Architecture position:
    Kernel > Services -- imperative shell.
    Calls PartStore.apply_delta then TransactionLedger.record_movement.

Invariants enforced:
    NON_NEGATIVE_STOCK -- via PartStore.
    LEDGER_RECONCILED -- every committed delta gets exactly one entry.  A
        delta whose entry fails to write is reverted before the error
        surfaces.

Failure modes:
    - ValidationError: non-positive sale/purchase quantity, zero adjustment.
    - InsufficientStockError: sale or negative adjustment exceeds stock.
    - PartNotFoundError, ConcurrentModificationConflictError,
      StoreUnavailableError from PartStore.
"""

from __future__ import annotations

from stock_kernel.domain.parts import StockTransaction, TransactionKind
from stock_kernel.domain.values import require_positive_int
from stock_kernel.exceptions import StockKernelError, ValidationError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.part_store import PartStore
from stock_kernel.services.transaction_ledger import TransactionLedger

logger = get_logger("services.stock_transaction")


class StockTransactionService:
    """Records direct stock movements."""

    def __init__(self, part_store: PartStore, ledger: TransactionLedger):
        self._parts = part_store
        self._ledger = ledger

    def record_sale(self, part_id: str, quantity: int, notes: str = "") -> StockTransaction:
        require_positive_int(quantity, "quantity")
        return self._move(part_id, -quantity, TransactionKind.SALE, notes)

    def record_purchase(self, part_id: str, quantity: int, notes: str = "") -> StockTransaction:
        require_positive_int(quantity, "quantity")
        return self._move(part_id, quantity, TransactionKind.PURCHASE, notes)

    def adjust(self, part_id: str, delta: int, notes: str = "") -> StockTransaction:
        """Manual correction; delta may be positive or negative but not zero."""
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ValidationError("delta", f"must be a non-zero integer, got {delta!r}")
        return self._move(part_id, delta, TransactionKind.MANUAL_ADJUST, notes)

    def _move(
        self,
        part_id: str,
        delta: int,
        kind: TransactionKind,
        notes: str,
    ) -> StockTransaction:
        with LogContext.bind(part_id=part_id, operation=kind.value):
            part = self._parts.apply_delta(part_id, delta, kind)
            try:
                entry = self._ledger.record_movement(part, delta, kind, notes=notes)
            except StockKernelError:
                self._revert_unlogged(part_id, delta, kind)
                raise
            logger.info(
                "stock_transaction_recorded",
                extra={"transaction_id": entry.id, "delta": delta, "quantity_after": part.quantity},
            )
            return entry

    def _revert_unlogged(self, part_id: str, delta: int, kind: TransactionKind) -> None:
        """Take back a delta whose ledger entry was never written."""
        try:
            self._parts.apply_delta(part_id, -delta, kind)
        except StockKernelError:
            logger.error(
                "stock_delta_unlogged",
                extra={"part_id": part_id, "delta": delta},
                exc_info=True,
            )
            raise
        logger.warning("stock_delta_reverted", extra={"part_id": part_id, "delta": delta})
