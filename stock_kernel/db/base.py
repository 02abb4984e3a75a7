"""
Module: stock_kernel.db.base
Responsibility: Declarative base for the tables behind SqlKeyValueStore.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from store/, services/, selectors/ or domain/.

Invariants enforced:
    - Surrogate keys are uuid4 values stored as String(36), so the same
      schema runs on SQLite and PostgreSQL.
    - ``int`` columns are BigInteger; version counters never overflow.
    - ``datetime`` columns are timezone-aware.
"""

from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID <-> String(36)."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
        dict[str, Any]: JSON,
    }

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
