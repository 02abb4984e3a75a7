"""
Settings loader (``stock_config.loader``).

Responsibility
--------------
Loads the YAML settings file, applies ``STOCK_LEDGER_*`` environment
overrides, and parses the result into a frozen ``StockLedgerSettings``.
Callers go through ``stock_config.get_active_settings()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from stock_config.schema import StockLedgerSettings

ENV_PREFIX = "STOCK_LEDGER_"

# Accepted spellings for boolean environment overrides.
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _coerce(name: str, raw: str, target: type) -> Any:
    if target is bool:
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"{ENV_PREFIX}{name.upper()}: not a boolean: {raw!r}")
    if target is int:
        return int(raw)
    if target is float:
        return float(raw)
    return raw


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect ``STOCK_LEDGER_<FIELD>`` values for known settings fields."""
    environ = os.environ if environ is None else environ
    types = {f.name: type(f.default) for f in fields(StockLedgerSettings)}
    overrides: dict[str, Any] = {}
    for name, target in types.items():
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            overrides[name] = _coerce(name, raw, target)
    return overrides


def parse_settings(data: Mapping[str, Any]) -> StockLedgerSettings:
    """Build settings from a mapping, rejecting unknown keys."""
    known = {f.name for f in fields(StockLedgerSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown settings keys: {unknown}")
    return StockLedgerSettings(**dict(data))


def load_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> StockLedgerSettings:
    """YAML file (optional) + environment overrides -> StockLedgerSettings."""
    data: dict[str, Any] = {}
    if path is not None:
        data.update(load_yaml_file(Path(path)))
    data.update(env_overrides(environ))
    return parse_settings(data)
