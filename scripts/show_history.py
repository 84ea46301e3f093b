#!/usr/bin/env python3
"""Print the change history of one budget, newest first."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from budget_ledger.budgets import get_budget
from budget_ledger.config import get_db_path
from budget_ledger.errors import NotFoundError
from budget_ledger.history import history
from budget_ledger.store import LedgerStore


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("budget_id", type=int)
    parser.add_argument("--db", default=get_db_path(), help="database file")
    args = parser.parse_args(argv)

    if not Path(args.db).exists():
        print(f"Database not found at {args.db}")
        return 1

    # read-only: never migrate the file being inspected
    store = LedgerStore(args.db).open(run_schema=False)
    try:
        budget = get_budget(store, args.budget_id)
        entries = history(store, args.budget_id)
    except NotFoundError as exc:
        print(exc)
        return 1
    finally:
        store.close()

    print(f"{budget.display_name}: {len(entries)} change(s)")
    for entry in entries:
        change = ""
        if entry.old_value is not None or entry.new_value is not None:
            change = f" [{entry.old_value} -> {entry.new_value}]"
        print(f"  {entry.changed_at}  {entry.change_type:<18} {entry.change_description}{change}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
