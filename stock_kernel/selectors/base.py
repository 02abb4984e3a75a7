"""
Module: stock_kernel.selectors.base
Responsibility: Abstract base class for all read-only selectors.  Selectors
    are the query side of the kernel: reports and lookups over the store
    without mutation capability.
Architecture position: Kernel > Selectors.  May import from store/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors call only ``get`` and ``list`` on the store.
    - DTO return convention: selectors return frozen dataclasses or domain
      DTOs, never raw store documents.

Failure modes:
    - StoreUnavailableError propagated from the store.
"""

from abc import ABC

from stock_kernel.store.base import KeyValueStore


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Non-goals:
        - BaseSelector does NOT define any query methods; subclasses implement
          inventory, reconciliation and vehicle queries.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
