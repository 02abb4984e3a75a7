"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor contract for every service in the
    kernel layer: a KeyValueStore for persistence and a Clock for time.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Every service in ``stock_kernel/services/`` that performs write
    operations extends this class.

Invariants enforced:
    - Services mutate the store only through conditional writes
      (``create`` / ``compare_and_set``) or explicit deletes; there is no
      blind overwrite primitive to reach for.

Failure modes:
    (none directly)
"""

from abc import ABC

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.store.base import KeyValueStore


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT provide reporting queries -- those belong
          in ``stock_kernel/selectors/``.
    """

    def __init__(self, store: KeyValueStore, clock: Clock | None = None):
        """
        Args:
            store: Versioned key-value store shared by all services.
            clock: Time source. Defaults to SystemClock.
        """
        self.store = store
        self.clock = clock or SystemClock()
