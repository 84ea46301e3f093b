"""Append-only change history, always scoped to a budget.

``log_change`` writes on the caller's connection so it commits or rolls back
together with the mutation it documents.  Nothing here updates or deletes
history rows.
"""

from __future__ import annotations

import sqlite3
from typing import Any, List, Optional

import pandas as pd
import structlog

from .models import ChangeHistoryEntry, ChangeType, utc_now

logger = structlog.get_logger(__name__)

HISTORY_COLUMNS = (
    "change_id, budget_id, change_type, field_name, old_value, new_value, "
    "change_description, changed_at"
)


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def log_change(
    conn: sqlite3.Connection,
    budget_id: int,
    change_type: ChangeType,
    description: str,
    field_name: Optional[str] = None,
    old_value: Any = None,
    new_value: Any = None,
) -> int:
    """Append one history row and return its id.

    Errors propagate so the enclosing transaction is rolled back.
    """
    change_type = ChangeType.parse(change_type)
    cursor = conn.execute(
        "INSERT INTO budget_change_history (budget_id, change_type, field_name, old_value, "
        "new_value, change_description, changed_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            budget_id,
            change_type.value,
            field_name,
            _as_text(old_value),
            _as_text(new_value),
            description,
            utc_now(),
        ),
    )
    logger.info(
        "change_logged",
        budget_id=budget_id,
        change_type=change_type.value,
        field_name=field_name,
        description=description,
    )
    return cursor.lastrowid


def history(store, budget_id: int) -> List[ChangeHistoryEntry]:
    """History of one budget, newest first."""
    with store.connect() as conn:
        rows = conn.execute(
            f"SELECT {HISTORY_COLUMNS} FROM budget_change_history WHERE budget_id = ? "
            "ORDER BY changed_at DESC, change_id DESC",
            (budget_id,),
        ).fetchall()
    return [ChangeHistoryEntry.from_row(row) for row in rows]


def history_frame(store, budget_id: int) -> pd.DataFrame:
    """History as a DataFrame with ``changed_at`` parsed to datetimes."""
    df = store.read_frame(
        f"SELECT {HISTORY_COLUMNS} FROM budget_change_history WHERE budget_id = ? "
        "ORDER BY changed_at DESC, change_id DESC",
        (budget_id,),
    )
    if not df.empty:
        df["changed_at"] = pd.to_datetime(df["changed_at"])
    return df
