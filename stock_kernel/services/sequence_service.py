"""
SequenceService -- monotonic sequence allocation via CAS counter documents.

Responsibility:
    Provides strictly increasing sequence numbers for ledger entries.  Each
    named sequence is one document under ``counters/{name}``; the next value
    is claimed with a compare-and-set on that document.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by TransactionLedger for the ``stock_transaction`` sequence.

Invariants enforced:
    - Sequence monotonicity: a value is handed out only after the CAS that
      claims it succeeds, so no two callers receive the same value.
      Max-plus-one over existing ledger entries is never used.

Failure modes:
    - ConcurrentModificationConflictError after MAX_ATTEMPTS lost CAS races.
    - StoreUnavailableError propagated from the store.

Audit relevance:
    Sequence allocation is logged at DEBUG level with sequence_name and
    value.
"""

from stock_kernel.exceptions import (
    ConcurrentModificationConflictError,
    KeyExistsError,
    VersionConflictError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.store.base import KeyValueStore
from stock_kernel.store.keys import counter_key

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating sequence numbers.

    Guarantees:
        - Strictly monotonic values per sequence name, starting at 1.
        - Thread-safe: concurrency is resolved by the store's CAS.
    """

    # Sequence names
    STOCK_TRANSACTION = "stock_transaction"

    # Counter writes are tiny; contention only comes from concurrent ledger
    # appends, so a generous bound is still finite.
    MAX_ATTEMPTS = 100

    def __init__(self, store: KeyValueStore):
        self._store = store

    def next_value(self, sequence_name: str) -> int:
        """Claim and return the next value for a sequence."""
        key = counter_key(sequence_name)
        for _ in range(self.MAX_ATTEMPTS):
            current = self._store.get(key)
            if current is None:
                try:
                    self._store.create(key, {"name": sequence_name, "value": 1})
                except KeyExistsError:
                    continue
                logger.debug(
                    "sequence_initialized",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1

            next_val = current.value["value"] + 1
            try:
                self._store.compare_and_set(
                    key,
                    {"name": sequence_name, "value": next_val},
                    current.version,
                )
            except VersionConflictError:
                continue
            logger.debug(
                "sequence_allocated",
                extra={"sequence_name": sequence_name, "value": next_val},
            )
            return next_val

        raise ConcurrentModificationConflictError(
            key, entity_type="sequence", attempts=self.MAX_ATTEMPTS
        )

    def current_value(self, sequence_name: str) -> int:
        """Get the current value without incrementing. Returns 0 if unused."""
        current = self._store.get(counter_key(sequence_name))
        return current.value["value"] if current is not None else 0
