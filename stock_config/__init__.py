"""
stock_config -- single public entrypoint for stock ledger settings.

Responsibility:
    ``get_active_settings()`` is the only way runtime code obtains settings.
    The YAML path comes from the argument, else the ``STOCK_LEDGER_CONFIG``
    environment variable, else defaults apply.  Individual fields can be
    overridden with ``STOCK_LEDGER_<FIELD>`` variables.

Architecture position:
    Configuration.  Sits beside ``stock_kernel``; ``stock_kernel.bootstrap``
    is the only kernel module that imports from here.

Failure modes:
    - ``FileNotFoundError`` when the configured file does not exist.
    - ``ValueError`` on unknown keys or invalid values.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from stock_config.loader import load_settings, load_yaml_file
from stock_config.schema import StockLedgerSettings

_logger = logging.getLogger("stock_kernel.config")

CONFIG_ENV_VAR = "STOCK_LEDGER_CONFIG"


def get_active_settings(path: Path | str | None = None) -> StockLedgerSettings:
    """Resolve and load the active settings."""
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else None
    settings = load_settings(Path(path) if path is not None else None)
    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "config_path": str(path) if path is not None else None,
            "store_backend": settings.store_backend,
            "cas_max_attempts": settings.cas_max_attempts,
            "allocation_max_attempts": settings.allocation_max_attempts,
        },
    )
    return settings


__all__ = [
    "CONFIG_ENV_VAR",
    "StockLedgerSettings",
    "get_active_settings",
    "load_settings",
    "load_yaml_file",
]
