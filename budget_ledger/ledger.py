"""Categories, ledger entries and their per-category aggregates.

Entry amounts are stored positive; the sign comes from the entry type when
aggregating.  Income adds to a category's net amount, expenses subtract, and
adjustments contribute nothing.  Soft-deleted entries (``deleted_at`` set)
are kept for audit but never counted or listed.

Every mutation here writes its history row against the owning budget, inside
the same transaction.
"""

from __future__ import annotations

import math
import sqlite3
from typing import Any, Dict, List, Optional

import pandas as pd
import structlog

from .budgets import fetch_budget, touch_budget
from .errors import InvalidValueError, NotFoundError
from .history import log_change
from .models import (
    BudgetOverview,
    CategoryRow,
    CategoryType,
    ChangeType,
    EntryType,
    LedgerEntry,
    LedgerSort,
    normalize_date,
    utc_now,
)

logger = structlog.get_logger(__name__)

_NET_SQL = (
    "COALESCE(SUM(CASE e.entry_type WHEN 'income' THEN e.amount "
    "WHEN 'expense' THEN -e.amount ELSE 0 END), 0)"
)

CATEGORY_STATS_SQL = f"""
    SELECT c.category_id,
           c.budget_id,
           c.category_name,
           c.allocated_amount,
           c.category_type,
           c.global_category_id,
           {_NET_SQL} AS net_amount,
           c.allocated_amount + {_NET_SQL} AS remaining_amount,
           MAX(e.date) AS last_activity_at,
           COUNT(e.entry_id) AS entries_count
    FROM budget_categories c
    LEFT JOIN ledger_entries e
      ON e.category_id = c.category_id AND e.deleted_at IS NULL
    WHERE {{scope}}
    GROUP BY c.category_id
    ORDER BY c.created_at ASC, c.category_id ASC
"""
STATS_BY_BUDGET = CATEGORY_STATS_SQL.format(scope="c.budget_id = ?")
STATS_BY_CATEGORY = CATEGORY_STATS_SQL.format(scope="c.category_id = ?")

ENTRY_COLUMNS = (
    'e.entry_id, e.category_id, e.entry_type, e.what, e.place AS "where", e.amount, '
    "e.date, e.created_at, e.deleted_at"
)

LEDGER_ORDER: Dict[LedgerSort, str] = {
    LedgerSort.DATE_ASC: "e.date ASC, e.created_at ASC, e.entry_id ASC",
    LedgerSort.DATE_DESC: "e.date DESC, e.created_at DESC, e.entry_id DESC",
    LedgerSort.AMOUNT_ASC: "e.amount ASC, e.entry_id ASC",
    LedgerSort.AMOUNT_DESC: "e.amount DESC, e.entry_id DESC",
    LedgerSort.CREATED_ASC: "e.created_at ASC, e.entry_id ASC",
    LedgerSort.CREATED_DESC: "e.created_at DESC, e.entry_id DESC",
}
DEFAULT_LEDGER_SORT = LedgerSort.DATE_DESC


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _amount(value: Any, label: str = "Amount") -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise InvalidValueError(f"{label} must be numeric, got {value!r}") from None
    if not math.isfinite(amount):
        raise InvalidValueError(f"{label} must be a finite number, got {amount}")
    return amount


def _entry_amount(value: Any) -> float:
    amount = _amount(value)
    if amount < 0:
        raise InvalidValueError(f"Entry amounts are stored positive, got {amount}")
    return amount


def _required_text(value: Any, label: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidValueError(f"{label} cannot be empty")
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _fetch_category(conn: sqlite3.Connection, category_id: int) -> sqlite3.Row:
    row = conn.execute(
        "SELECT category_id, budget_id, category_name, allocated_amount "
        "FROM budget_categories WHERE category_id = ?",
        (category_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError("Category", category_id)
    return row


def _fetch_entry(conn: sqlite3.Connection, entry_id: int) -> LedgerEntry:
    row = conn.execute(
        f"SELECT {ENTRY_COLUMNS} FROM ledger_entries e WHERE e.entry_id = ?",
        (entry_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError("Entry", entry_id)
    return LedgerEntry.from_row(row)


def _fetch_live_entry(conn: sqlite3.Connection, entry_id: int) -> sqlite3.Row:
    """Entry joined with its category; missing or soft-deleted entries are NotFound."""
    row = conn.execute(
        "SELECT e.entry_id, e.amount, c.category_name, c.budget_id "
        "FROM ledger_entries e JOIN budget_categories c ON c.category_id = e.category_id "
        "WHERE e.entry_id = ? AND e.deleted_at IS NULL",
        (entry_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError("Entry", entry_id, "missing or already deleted")
    return row


def _category_stats(conn: sqlite3.Connection, category_id: int) -> CategoryRow:
    row = conn.execute(STATS_BY_CATEGORY, (category_id,)).fetchone()
    if row is None:
        raise NotFoundError("Category", category_id)
    return CategoryRow.from_row(row)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def categories_with_stats(store, budget_id: int) -> List[CategoryRow]:
    """One row per category of the budget with net/remaining/count aggregates."""
    with store.connect() as conn:
        fetch_budget(conn, budget_id)
        rows = conn.execute(STATS_BY_BUDGET, (budget_id,)).fetchall()
    return [CategoryRow.from_row(row) for row in rows]


def category_ledger(
    store,
    category_id: int,
    limit: int = 50,
    offset: int = 0,
    sort: Any = None,
) -> List[LedgerEntry]:
    """Live entries of one category, one page at a time.

    ``sort`` defaults to newest date first; unrecognised values are rejected.
    """
    order = DEFAULT_LEDGER_SORT if sort is None else LedgerSort.parse(sort)
    try:
        limit, offset = int(limit), int(offset)
    except (TypeError, ValueError):
        raise InvalidValueError(f"Limit and offset must be integers, got {limit!r}/{offset!r}") from None
    if limit < 0 or offset < 0:
        raise InvalidValueError(f"Limit and offset must be non-negative, got {limit}/{offset}")

    with store.connect() as conn:
        _fetch_category(conn, category_id)
        rows = conn.execute(
            f"SELECT {ENTRY_COLUMNS} FROM ledger_entries e "
            f"WHERE e.category_id = ? AND e.deleted_at IS NULL "
            f"ORDER BY {LEDGER_ORDER[order]} LIMIT ? OFFSET ?",
            (category_id, limit, offset),
        ).fetchall()
    return [LedgerEntry.from_row(row) for row in rows]


def get_entry(store, entry_id: int) -> LedgerEntry:
    """Any entry by id, soft-deleted ones included."""
    with store.connect() as conn:
        return _fetch_entry(conn, entry_id)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def add_entry(
    store,
    category_id: int,
    entry_type: Any,
    what: str,
    amount: float,
    date: Any,
    where: Optional[str] = None,
) -> LedgerEntry:
    entry_type = EntryType.parse(entry_type)
    what = _required_text(what, "Entry description")
    where = _optional_text(where)
    amount = _entry_amount(amount)
    date = normalize_date(date)

    now = utc_now()
    with store.transaction() as conn:
        category = _fetch_category(conn, category_id)
        cursor = conn.execute(
            "INSERT INTO ledger_entries (category_id, entry_type, what, place, amount, date, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (category_id, entry_type.value, what, where, amount, date, now),
        )
        entry = _fetch_entry(conn, cursor.lastrowid)

        place = f" @ {where}" if where else ""
        log_change(
            conn,
            category["budget_id"],
            ChangeType.ENTRY_ADD,
            f"Added {entry_type.value} ${amount:.2f} to {category['category_name']} ({what}{place})",
            field_name="ledger_entries",
            new_value=f"{amount:.2f}",
        )
        touch_budget(conn, category["budget_id"], now)

    logger.info("entry_added", entry_id=entry.entry_id, category_id=category_id)
    return entry


def update_entry(
    store,
    entry_id: int,
    entry_type: Any,
    what: str,
    amount: float,
    date: Any,
    where: Optional[str] = None,
) -> LedgerEntry:
    """Rewrite a live entry in place."""
    entry_type = EntryType.parse(entry_type)
    what = _required_text(what, "Entry description")
    where = _optional_text(where)
    amount = _entry_amount(amount)
    date = normalize_date(date)

    with store.transaction() as conn:
        current = _fetch_live_entry(conn, entry_id)
        conn.execute(
            "UPDATE ledger_entries SET entry_type = ?, what = ?, place = ?, amount = ?, date = ? "
            "WHERE entry_id = ? AND deleted_at IS NULL",
            (entry_type.value, what, where, amount, date, entry_id),
        )
        log_change(
            conn,
            current["budget_id"],
            ChangeType.ENTRY_UPDATE,
            f"Updated entry {entry_id} in {current['category_name']}",
            field_name="ledger_entries",
            old_value=f"{current['amount']:.2f}",
            new_value=f"{amount:.2f}",
        )
        touch_budget(conn, current["budget_id"])
        return _fetch_entry(conn, entry_id)


def soft_delete_entry(store, entry_id: int) -> None:
    """Hide an entry; a second delete of the same entry is NotFound."""
    now = utc_now()
    with store.transaction() as conn:
        current = _fetch_live_entry(conn, entry_id)
        cursor = conn.execute(
            "UPDATE ledger_entries SET deleted_at = ? WHERE entry_id = ? AND deleted_at IS NULL",
            (now, entry_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError("Entry", entry_id, "missing or already deleted")
        log_change(
            conn,
            current["budget_id"],
            ChangeType.ENTRY_DELETE,
            f"Deleted entry {entry_id} from {current['category_name']}",
            field_name="ledger_entries",
            old_value=f"{current['amount']:.2f}",
        )
        touch_budget(conn, current["budget_id"], now)
    logger.info("entry_soft_deleted", entry_id=entry_id)


def set_allocated_amount(store, category_id: int, amount: float) -> CategoryRow:
    amount = _amount(amount, "Allocated amount")
    with store.transaction() as conn:
        category = _fetch_category(conn, category_id)
        previous = category["allocated_amount"]
        conn.execute(
            "UPDATE budget_categories SET allocated_amount = ? WHERE category_id = ?",
            (amount, category_id),
        )
        log_change(
            conn,
            category["budget_id"],
            ChangeType.ALLOCATION_CHANGE,
            f"Updated allocated for {category['category_name']} ${previous:.2f} → ${amount:.2f}",
            field_name="allocated_amount",
            old_value=f"{previous:.2f}",
            new_value=f"{amount:.2f}",
        )
        touch_budget(conn, category["budget_id"])
        return _category_stats(conn, category_id)


def add_category(
    store,
    budget_id: int,
    name: str,
    allocated_amount: float = 0.0,
    category_type: Any = CategoryType.EXPENSE,
    global_category_id: Optional[int] = None,
) -> int:
    name = _required_text(name, "Category name")
    allocated_amount = _amount(allocated_amount, "Allocated amount")
    category_type = CategoryType.parse(category_type)

    now = utc_now()
    with store.transaction() as conn:
        fetch_budget(conn, budget_id)
        if global_category_id is not None:
            found = conn.execute(
                "SELECT 1 FROM global_categories WHERE global_category_id = ?",
                (global_category_id,),
            ).fetchone()
            if found is None:
                raise NotFoundError("Global category", global_category_id)
        cursor = conn.execute(
            "INSERT INTO budget_categories (budget_id, global_category_id, category_name, "
            "allocated_amount, category_type, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (budget_id, global_category_id, name, allocated_amount, category_type.value, now),
        )
        category_id = cursor.lastrowid
        log_change(
            conn,
            budget_id,
            ChangeType.CATEGORY_ADD,
            f"Added category '{name}' with allocated ${allocated_amount:.2f}",
            field_name="budget_categories",
            new_value=name,
        )
        touch_budget(conn, budget_id, now)

    logger.info("category_added", budget_id=budget_id, category_id=category_id)
    return category_id


# ---------------------------------------------------------------------------
# Tabular views
# ---------------------------------------------------------------------------


def categories_frame(store, budget_id: int) -> pd.DataFrame:
    """Category aggregates of a budget as a DataFrame."""
    with store.connect() as conn:
        fetch_budget(conn, budget_id)
    df = store.read_frame(STATS_BY_BUDGET, (budget_id,))
    if not df.empty:
        df["last_activity_at"] = pd.to_datetime(df["last_activity_at"])
    return df


def ledger_frame(store, category_id: int, include_deleted: bool = False) -> pd.DataFrame:
    """All entries of a category, oldest first, with dates parsed."""
    sql = f"SELECT {ENTRY_COLUMNS} FROM ledger_entries e WHERE e.category_id = ?"
    if not include_deleted:
        sql += " AND e.deleted_at IS NULL"
    sql += " ORDER BY e.date ASC, e.created_at ASC, e.entry_id ASC"
    df = store.read_frame(sql, (category_id,))
    if not df.empty:
        df["date"] = pd.to_datetime(df["date"])
    return df


def budget_overview(store, budget_id: int) -> BudgetOverview:
    """Income, allocation and spending totals for one budget."""
    with store.connect() as conn:
        budget = fetch_budget(conn, budget_id)

    categories = store.read_frame(STATS_BY_BUDGET, (budget_id,))
    entries = store.read_frame(
        "SELECT e.entry_type, e.amount FROM ledger_entries e "
        "JOIN budget_categories c ON c.category_id = e.category_id "
        "WHERE c.budget_id = ? AND e.deleted_at IS NULL",
        (budget_id,),
    )
    totals = entries.groupby("entry_type")["amount"].sum() if not entries.empty else pd.Series(dtype=float)

    income = float(budget.total_income)
    allocated = float(categories["allocated_amount"].sum()) if not categories.empty else 0.0
    spent = float(totals.get(EntryType.EXPENSE.value, 0.0))
    received = float(totals.get(EntryType.INCOME.value, 0.0))

    return BudgetOverview(
        budget_id=budget_id,
        total_income=income,
        allocated=allocated,
        unallocated=income - allocated,
        spent=spent,
        received=received,
        remaining=income - spent,
        spent_percentage=(spent / income * 100) if income > 0 else 0.0,
    )
