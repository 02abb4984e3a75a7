"""
StockLedgerSettings schema.

The human-authored YAML file is parsed into this frozen dataclass by the
loader.  Kernel invariants (see stock_kernel.invariants) are deliberately
absent: settings tune retry bounds and backends, never correctness rules.
"""

from __future__ import annotations

from dataclasses import dataclass

STORE_BACKENDS: frozenset[str] = frozenset({"memory", "sql"})
LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class StockLedgerSettings:
    """Runtime settings for one stock kernel instance."""

    store_backend: str = "memory"
    database_url: str = "sqlite:///stock_ledger.db"
    store_timeout_seconds: float = 5.0
    cas_max_attempts: int = 10
    allocation_max_attempts: int = 3
    default_min_stock_level: int = 5
    log_level: str = "INFO"
    sql_echo: bool = False

    def __post_init__(self) -> None:
        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(
                f"store_backend must be one of {sorted(STORE_BACKENDS)}, "
                f"got {self.store_backend!r}"
            )
        if self.store_backend == "sql" and not self.database_url:
            raise ValueError("database_url is required for the sql backend")
        if self.store_timeout_seconds <= 0:
            raise ValueError("store_timeout_seconds must be > 0")
        if self.cas_max_attempts < 1:
            raise ValueError("cas_max_attempts must be >= 1")
        if self.allocation_max_attempts < 1:
            raise ValueError("allocation_max_attempts must be >= 1")
        if self.default_min_stock_level < 0:
            raise ValueError("default_min_stock_level must be >= 0")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(LOG_LEVELS)}")
        object.__setattr__(self, "log_level", self.log_level.upper())
