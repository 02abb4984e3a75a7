"""Versioned key-value store port and its backends."""

from stock_kernel.store.base import DEFAULT_TIMEOUT_SECONDS, KeyValueStore, VersionedValue
from stock_kernel.store.memory import InMemoryKeyValueStore
from stock_kernel.store.sql import SqlKeyValueStore

__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "SqlKeyValueStore",
    "VersionedValue",
]
