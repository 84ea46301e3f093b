"""Monthly budget lifecycle: create, list, sort, finish/unfinish, rename, delete."""

from __future__ import annotations

import calendar
import math
import sqlite3
from typing import Any, Dict, List, Optional, Tuple

import structlog

from .errors import ConflictError, InvalidValueError, NotFoundError
from .history import log_change
from .models import BudgetSortCriteria, BudgetSummary, ChangeType, utc_now

logger = structlog.get_logger(__name__)

BUDGET_COLUMNS = (
    "budget_id, month, year, total_income, created_at, finished_at, first_finished_at, "
    "name, last_edited, template_id"
)

# "{MonthName} {Year}" when no display name is stored.
_MONTH_CASE = " ".join(
    f"WHEN {number} THEN '{calendar.month_name[number]} '" for number in range(1, 13)
)
DISPLAY_NAME_SQL = (
    f"CASE WHEN name IS NULL OR name = '' THEN (CASE month {_MONTH_CASE} END) || year "
    "ELSE name END"
)

# criteria -> (ascending ORDER BY, descending ORDER BY); budget_id breaks ties.
ORDER_BY: Dict[BudgetSortCriteria, Tuple[str, str]] = {
    BudgetSortCriteria.INCOME: (
        "total_income ASC, budget_id ASC",
        "total_income DESC, budget_id DESC",
    ),
    BudgetSortCriteria.CREATED_DATE: (
        "created_at ASC, budget_id ASC",
        "created_at DESC, budget_id DESC",
    ),
    BudgetSortCriteria.FINISHED_DATE: (
        "(finished_at IS NULL) DESC, finished_at ASC, budget_id ASC",
        "(finished_at IS NULL) ASC, finished_at DESC, budget_id DESC",
    ),
    BudgetSortCriteria.BUDGET_DATE: (
        "year ASC, month ASC",
        "year DESC, month DESC",
    ),
    BudgetSortCriteria.NAME: (
        f"{DISPLAY_NAME_SQL} COLLATE NOCASE ASC, budget_id ASC",
        f"{DISPLAY_NAME_SQL} COLLATE NOCASE DESC, budget_id DESC",
    ),
    BudgetSortCriteria.LAST_EDITED: (
        "last_edited ASC, budget_id ASC",
        "last_edited DESC, budget_id DESC",
    ),
}

DEFAULT_SORT = (BudgetSortCriteria.LAST_EDITED, False)


def fetch_budget(conn: sqlite3.Connection, budget_id: int) -> BudgetSummary:
    row = conn.execute(
        f"SELECT {BUDGET_COLUMNS} FROM monthly_budgets WHERE budget_id = ?",
        (budget_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError("Budget", budget_id)
    return BudgetSummary.from_row(row)


def touch_budget(conn: sqlite3.Connection, budget_id: int, now: Optional[str] = None) -> None:
    conn.execute(
        "UPDATE monthly_budgets SET last_edited = ? WHERE budget_id = ?",
        (now or utc_now(), budget_id),
    )


def _validate_period(month: Any, year: Any) -> Tuple[int, int]:
    try:
        month, year = int(month), int(year)
    except (TypeError, ValueError):
        raise InvalidValueError(f"Month and year must be integers, got {month!r}/{year!r}") from None
    if not 1 <= month <= 12:
        raise InvalidValueError(f"Month must be between 1 and 12, got {month}")
    return month, year


def create_budget(
    store,
    month: int,
    year: int,
    total_income: float,
    name: Optional[str] = None,
) -> int:
    """Create a budget for ``month``/``year`` and return its id.

    Raises:
        ConflictError: a budget for the same month and year already exists.
    """
    month, year = _validate_period(month, year)
    try:
        total_income = float(total_income)
    except (TypeError, ValueError):
        raise InvalidValueError(f"Total income must be numeric, got {total_income!r}") from None
    if not math.isfinite(total_income):
        raise InvalidValueError(f"Total income must be a finite number, got {total_income}")

    now = utc_now()
    with store.transaction() as conn:
        try:
            cursor = conn.execute(
                "INSERT INTO monthly_budgets (month, year, total_income, template_id, name, "
                "created_at, last_edited) VALUES (?, ?, ?, NULL, ?, ?, ?)",
                (month, year, total_income, name, now, now),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" not in str(exc):
                raise
            logger.warning("budget_conflict", month=month, year=year)
            raise ConflictError(
                f"A budget for {month}/{year} already exists. Please choose a different "
                "month/year or edit the existing budget."
            ) from exc
        budget_id = cursor.lastrowid

    logger.info("budget_created", budget_id=budget_id, month=month, year=year)
    return budget_id


def get_budget(store, budget_id: int) -> BudgetSummary:
    with store.connect() as conn:
        return fetch_budget(conn, budget_id)


def list_budgets(store) -> List[BudgetSummary]:
    """All budgets, most recently edited first."""
    return list_budgets_sorted(store, *DEFAULT_SORT)


def list_budgets_sorted(store, criteria: Any, ascending: bool = False) -> List[BudgetSummary]:
    """All budgets ordered by one of :class:`BudgetSortCriteria`.

    Unknown criteria fall back to ``last_edited`` descending.
    """
    try:
        key = BudgetSortCriteria.parse(criteria)
    except InvalidValueError:
        logger.warning("budget_sort_fallback", criteria=criteria)
        key, ascending = DEFAULT_SORT
    order_by = ORDER_BY[key][0 if ascending else 1]

    with store.connect() as conn:
        rows = conn.execute(
            f"SELECT {BUDGET_COLUMNS} FROM monthly_budgets ORDER BY {order_by}"
        ).fetchall()
    return [BudgetSummary.from_row(row) for row in rows]


def finish_budget(store, budget_id: int) -> BudgetSummary:
    """Mark a budget finished; re-finishing re-stamps ``finished_at``.

    ``first_finished_at`` is only ever set once.
    """
    now = utc_now()
    with store.transaction() as conn:
        budget = fetch_budget(conn, budget_id)
        is_first_finish = budget.first_finished_at is None
        conn.execute(
            "UPDATE monthly_budgets SET finished_at = ?, "
            "first_finished_at = COALESCE(first_finished_at, ?), last_edited = ? "
            "WHERE budget_id = ?",
            (now, now, now, budget_id),
        )
        if is_first_finish:
            description = "Budget marked as finished for the first time"
        else:
            description = "Budget marked as finished again after being reopened"
        log_change(
            conn,
            budget_id,
            ChangeType.STATUS_CHANGE,
            description,
            field_name="finished_at",
            old_value=budget.finished_at or "null",
            new_value=now,
        )
        return fetch_budget(conn, budget_id)


def unfinish_budget(store, budget_id: int) -> BudgetSummary:
    """Reopen a budget; ``first_finished_at`` is left untouched."""
    now = utc_now()
    with store.transaction() as conn:
        budget = fetch_budget(conn, budget_id)
        conn.execute(
            "UPDATE monthly_budgets SET finished_at = NULL, last_edited = ? WHERE budget_id = ?",
            (now, budget_id),
        )
        log_change(
            conn,
            budget_id,
            ChangeType.STATUS_CHANGE,
            "Budget reopened for editing",
            field_name="finished_at",
            old_value=budget.finished_at or "null",
            new_value="null",
        )
        return fetch_budget(conn, budget_id)


def rename_budget(store, budget_id: int, title: str) -> BudgetSummary:
    now = utc_now()
    with store.transaction() as conn:
        budget = fetch_budget(conn, budget_id)
        conn.execute(
            "UPDATE monthly_budgets SET name = ?, last_edited = ? WHERE budget_id = ?",
            (title, now, budget_id),
        )
        log_change(
            conn,
            budget_id,
            ChangeType.TITLE_CHANGE,
            f"Budget title changed to '{title}'",
            field_name="name",
            old_value=budget.name or "",
            new_value=title,
        )
        return fetch_budget(conn, budget_id)


def delete_budget(store, budget_id: int) -> None:
    """Hard delete; categories, entries and history go with it."""
    with store.transaction() as conn:
        cursor = conn.execute("DELETE FROM monthly_budgets WHERE budget_id = ?", (budget_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("Budget", budget_id)
    logger.info("budget_deleted", budget_id=budget_id)
