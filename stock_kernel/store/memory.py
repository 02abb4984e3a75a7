"""
Module: stock_kernel.store.memory
Responsibility: In-process KeyValueStore backend.  Used by tests and by the
    default ``memory`` configuration.
Architecture position: Kernel > Store.  Implements store/base.py.

Invariants enforced:
    - All reads and writes are serialized by one lock, acquired with the
      configured timeout.
    - Values are deep-copied on the way in and out so callers can never
      mutate stored state in place.

Failure modes:
    - StoreUnavailableError if the lock cannot be acquired in time.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import Any, Iterator

from stock_kernel.exceptions import (
    KeyExistsError,
    StoreUnavailableError,
    VersionConflictError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.store.base import DEFAULT_TIMEOUT_SECONDS, KeyValueStore, VersionedValue

logger = get_logger("store.memory")


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed versioned store guarded by a single lock."""

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        super().__init__(timeout_seconds)
        self._lock = threading.Lock()
        self._data: dict[str, tuple[dict[str, Any], int]] = {}

    @contextmanager
    def _locked(self, operation: str, key: str | None) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.timeout_seconds):
            logger.warning(
                "store_lock_timeout",
                extra={"operation": operation, "key": key},
            )
            raise StoreUnavailableError(operation, key, self.timeout_seconds)
        try:
            yield
        finally:
            self._lock.release()

    def get(self, key: str) -> VersionedValue | None:
        with self._locked("get", key):
            entry = self._data.get(key)
            if entry is None:
                return None
            value, version = entry
            return VersionedValue(key, copy.deepcopy(value), version)

    def create(self, key: str, value: dict[str, Any]) -> VersionedValue:
        with self._locked("create", key):
            if key in self._data:
                raise KeyExistsError(key)
            self._data[key] = (copy.deepcopy(value), 1)
            return VersionedValue(key, copy.deepcopy(value), 1)

    def compare_and_set(
        self,
        key: str,
        value: dict[str, Any],
        expected_version: int,
    ) -> VersionedValue:
        self._guard_mutable(key, "update")
        with self._locked("compare_and_set", key):
            entry = self._data.get(key)
            actual = entry[1] if entry is not None else None
            if actual != expected_version:
                raise VersionConflictError(key, expected_version, actual)
            new_version = expected_version + 1
            self._data[key] = (copy.deepcopy(value), new_version)
            return VersionedValue(key, copy.deepcopy(value), new_version)

    def delete(self, key: str, expected_version: int | None = None) -> bool:
        self._guard_mutable(key, "delete")
        with self._locked("delete", key):
            entry = self._data.get(key)
            if expected_version is not None:
                actual = entry[1] if entry is not None else None
                if actual != expected_version:
                    raise VersionConflictError(key, expected_version, actual)
            if entry is None:
                return False
            del self._data[key]
            return True

    def list(self, prefix: str) -> list[VersionedValue]:
        with self._locked("list", prefix):
            return [
                VersionedValue(key, copy.deepcopy(value), version)
                for key, (value, version) in sorted(self._data.items())
                if key.startswith(prefix)
            ]

    def __len__(self) -> int:
        with self._locked("len", None):
            return len(self._data)
