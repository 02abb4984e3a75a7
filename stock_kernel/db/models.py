"""
Module: stock_kernel.db.models
Responsibility: ORM table for the SQL-backed key-value store.  One row per
    key; `version` is the optimistic-concurrency stamp bumped on every write.
Architecture position: Kernel > DB.  Imported by store/sql.py and by
    db/engine.create_tables() so the metadata is populated.

Invariants enforced:
    - key is unique (conditional create relies on the unique constraint).
    - version starts at 1 and increases by exactly 1 per successful write.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class KeyValueEntry(Base):
    """A versioned JSON document addressed by a hierarchical key."""

    __tablename__ = "kv_entries"

    __table_args__ = (
        Index("idx_kv_entries_key", "key", unique=True),
    )

    # Hierarchical key, e.g. "parts/3f0c..." or "vehicleUnits/{model}/{unit}"
    key: Mapped[str] = mapped_column(String(512), nullable=False)

    value: Mapped[dict[str, Any]] = mapped_column(nullable=False)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<KeyValueEntry {self.key} v{self.version}>"
