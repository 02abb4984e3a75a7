"""
Module: stock_kernel.store.sql
Responsibility: SQLAlchemy-backed KeyValueStore.  One row per key in the
    ``kv_entries`` table; the ``version`` column carries the
    optimistic-concurrency stamp.
Architecture position: Kernel > Store.  Implements store/base.py on top of
    db/engine.py and db/models.py.

Invariants enforced:
    - compare_and_set is a single ``UPDATE ... WHERE key = :k AND
      version = :v``; exactly one row changed means the write won.
    - create relies on the unique index on ``key``; a concurrent create of
      the same key surfaces as IntegrityError and becomes KeyExistsError.
    - Each operation runs in its own short transaction with at most one
      write statement, so no transaction ever holds a lock while waiting
      on another.

Failure modes:
    - StoreUnavailableError on OperationalError (unreachable database,
      SQLite busy past the timeout) or on connection pool timeout.
    - KeyExistsError / VersionConflictError / ImmutabilityViolationError
      as documented on KeyValueStore.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from stock_kernel.db.engine import create_tables, session_scope
from stock_kernel.db.models import KeyValueEntry
from stock_kernel.exceptions import (
    KeyExistsError,
    StoreUnavailableError,
    VersionConflictError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.store.base import DEFAULT_TIMEOUT_SECONDS, KeyValueStore, VersionedValue

logger = get_logger("store.sql")


class SqlKeyValueStore(KeyValueStore):
    """
    Versioned key-value store over a relational table.

    Args:
        engine: SQLAlchemy engine, typically from db.engine.create_store_engine.
        timeout_seconds: Reported on StoreUnavailableError; the engine's own
            connect/pool timeouts enforce it.
        create_schema: Create the kv_entries table if missing.
    """

    def __init__(
        self,
        engine: Engine,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        create_schema: bool = True,
    ):
        super().__init__(timeout_seconds)
        self._engine = engine
        self._session_factory: sessionmaker[Session] = sessionmaker(
            bind=engine, expire_on_commit=False
        )
        if create_schema:
            create_tables(engine)

    @contextmanager
    def _session(self, operation: str, key: str | None) -> Iterator[Session]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except (OperationalError, PoolTimeoutError) as exc:
            logger.warning(
                "store_unavailable",
                extra={"operation": operation, "key": key, "reason": str(exc)},
            )
            raise StoreUnavailableError(
                operation, key, self.timeout_seconds, reason=type(exc).__name__
            ) from exc

    def _current_version(self, key: str) -> int | None:
        with self._session("get", key) as session:
            return session.execute(
                select(KeyValueEntry.version).where(KeyValueEntry.key == key)
            ).scalar_one_or_none()

    def get(self, key: str) -> VersionedValue | None:
        with self._session("get", key) as session:
            row = session.execute(
                select(KeyValueEntry.value, KeyValueEntry.version).where(
                    KeyValueEntry.key == key
                )
            ).one_or_none()
        if row is None:
            return None
        return VersionedValue(key, row.value, row.version)

    def create(self, key: str, value: dict[str, Any]) -> VersionedValue:
        try:
            with self._session("create", key) as session:
                session.add(KeyValueEntry(key=key, value=value, version=1))
                session.flush()
        except IntegrityError as exc:
            raise KeyExistsError(key) from exc
        return VersionedValue(key, value, 1)

    def compare_and_set(
        self,
        key: str,
        value: dict[str, Any],
        expected_version: int,
    ) -> VersionedValue:
        self._guard_mutable(key, "update")
        with self._session("compare_and_set", key) as session:
            result = session.execute(
                update(KeyValueEntry)
                .where(KeyValueEntry.key == key)
                .where(KeyValueEntry.version == expected_version)
                .values(value=value, version=expected_version + 1)
                .execution_options(synchronize_session=False)
            )
            won = result.rowcount == 1
        if not won:
            raise VersionConflictError(key, expected_version, self._current_version(key))
        return VersionedValue(key, value, expected_version + 1)

    def delete(self, key: str, expected_version: int | None = None) -> bool:
        self._guard_mutable(key, "delete")
        stmt = delete(KeyValueEntry).where(KeyValueEntry.key == key)
        if expected_version is not None:
            stmt = stmt.where(KeyValueEntry.version == expected_version)
        with self._session("delete", key) as session:
            result = session.execute(stmt.execution_options(synchronize_session=False))
            removed = result.rowcount == 1
        if expected_version is not None and not removed:
            raise VersionConflictError(key, expected_version, self._current_version(key))
        return removed

    def list(self, prefix: str) -> list[VersionedValue]:
        with self._session("list", prefix) as session:
            rows = session.execute(
                select(KeyValueEntry.key, KeyValueEntry.value, KeyValueEntry.version)
                .where(KeyValueEntry.key.startswith(prefix, autoescape=True))
                .order_by(KeyValueEntry.key)
            ).all()
        # LIKE is case-insensitive on some backends
        return [
            VersionedValue(row.key, row.value, row.version)
            for row in rows
            if row.key.startswith(prefix)
        ]

    def close(self) -> None:
        self._engine.dispose()
