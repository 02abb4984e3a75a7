#!/usr/bin/env python3
"""
Stock reconciliation report.

Opens the configured store and checks, for every part, that
quantity == initial_quantity + sum(ledger deltas).  Prints the report as
JSON.  Exits 1 when any part is out of balance, so it can gate a cron job
or CI step.

Usage:
  python scripts/reconcile_stock.py
  python scripts/reconcile_stock.py --config config/stock_ledger.example.yaml
  python scripts/reconcile_stock.py --unbalanced-only
  STOCK_LEDGER_STORE_BACKEND=sql STOCK_LEDGER_DATABASE_URL=sqlite:///stock.db \
      python scripts/reconcile_stock.py
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stock_config import get_active_settings  # noqa: E402
from stock_kernel.bootstrap import build_stock_kernel  # noqa: E402
from stock_kernel.exceptions import StockKernelError  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0])
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML file")
    parser.add_argument(
        "--unbalanced-only",
        action="store_true",
        help="Only list parts whose quantity does not reconcile",
    )
    parser.add_argument("--indent", type=int, default=2, help="JSON indent (0 for compact)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_active_settings(args.config)

    try:
        with build_stock_kernel(settings, configure_logs=True) as kernel:
            results = kernel.reconciliation.reconcile_all()
    except StockKernelError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 2

    unbalanced = [r for r in results if not r.is_balanced]
    shown = unbalanced if args.unbalanced_only else results
    report = {
        "parts_checked": len(results),
        "unbalanced": len(unbalanced),
        "results": [r.to_dict() for r in shown],
    }
    print(json.dumps(report, indent=args.indent or None))
    return 1 if unbalanced else 0


if __name__ == "__main__":
    sys.exit(main())
