#!/usr/bin/env python3
"""Create or upgrade a budget database in place."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from budget_ledger.config import configure_logging, ensure_data_directories, get_db_path
from budget_ledger.errors import SchemaError
from budget_ledger.schema import ensure_schema
from budget_ledger.store import LedgerStore


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("path", nargs="?", default=get_db_path(), help="database file")
    parser.add_argument("--seed-examples", action="store_true", help="create example budgets on an empty database")
    args = parser.parse_args(argv)

    configure_logging()
    if args.path == get_db_path():
        ensure_data_directories()
    store = LedgerStore(args.path)
    try:
        store.open(run_schema=False)
        added = ensure_schema(store, seed_examples=args.seed_examples)
    except SchemaError as exc:
        print(f"Schema upgrade failed: {exc}")
        return 1
    finally:
        store.close()

    if added:
        print("Columns added:")
        for table, columns in added.items():
            print(f"  - {table}: {', '.join(columns)}")
    print(f"Database ready at {args.path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
