"""
Module: stock_kernel.store.base
Responsibility: The key-value store port.  Every persistent read and write
    in the kernel goes through this interface; services never see a
    backend-specific type.
Architecture position: Kernel > Store.  Imported by services/ and
    selectors/.  Backends (memory.py, sql.py) implement it.

Invariants enforced:
    - Conditional writes: ``create`` succeeds only when the key is absent;
      ``compare_and_set`` succeeds only when the stored version matches.
      These two primitives are the only concurrency control in the kernel.
    - Versions start at 1 and increase by exactly 1 per successful write.
    - Keys under immutable prefixes (transactions/) may be created but
      never overwritten or deleted.
    - Every operation is bounded by ``timeout_seconds``.

Failure modes:
    - KeyExistsError from create() when the key is present.
    - VersionConflictError from compare_and_set() / delete() when the
      stored version differs or the key has vanished.
    - ImmutabilityViolationError on overwrite/delete of an immutable key.
    - StoreUnavailableError when the backend cannot answer in time.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.store.keys import is_immutable

DEFAULT_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class VersionedValue:
    """A stored document together with its optimistic-concurrency version."""

    key: str
    value: dict[str, Any]
    version: int


class KeyValueStore(ABC):
    """
    Abstract versioned key-value store.

    Contract:
        Implementations must be safe to call from multiple threads.  Values
        handed in and out are plain JSON-compatible dicts; callers may not
        assume they share identity with what is stored.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    def get(self, key: str) -> VersionedValue | None:
        """Return the current document at key, or None if absent."""
        ...

    @abstractmethod
    def create(self, key: str, value: dict[str, Any]) -> VersionedValue:
        """Insert value at key only if the key is absent."""
        ...

    @abstractmethod
    def compare_and_set(
        self,
        key: str,
        value: dict[str, Any],
        expected_version: int,
    ) -> VersionedValue:
        """Replace the document only if its version equals expected_version."""
        ...

    @abstractmethod
    def delete(self, key: str, expected_version: int | None = None) -> bool:
        """
        Remove the document at key.

        Returns False when the key was already absent and no version was
        expected.  With ``expected_version`` the delete is conditional.
        """
        ...

    @abstractmethod
    def list(self, prefix: str) -> list[VersionedValue]:
        """All documents whose key starts with prefix, ordered by key."""
        ...

    def close(self) -> None:
        """Release backend resources.  Default: nothing to release."""
        return None

    def _guard_mutable(self, key: str, operation: str) -> None:
        if is_immutable(key):
            raise ImmutabilityViolationError(key, operation)
