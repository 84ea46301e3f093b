from __future__ import annotations

from datetime import date, datetime

import pytest

from budget_ledger import budgets
from budget_ledger.errors import InvalidValueError
from budget_ledger.history import history_frame, log_change
from budget_ledger.models import (
    BudgetSortCriteria,
    CategoryType,
    ChangeType,
    EntryType,
    normalize_date,
    utc_now,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-02-29", "2024-02-29"),
        (" 2024-03-01 ", "2024-03-01"),
        (date(2023, 12, 31), "2023-12-31"),
        (datetime(2024, 1, 5, 23, 59), "2024-01-05"),
    ],
)
def test_normalize_date(value, expected) -> None:
    assert normalize_date(value) == expected


@pytest.mark.parametrize("value", ["2023-02-29", "2024/03/01", "", 20240301, None])
def test_normalize_date_rejects(value) -> None:
    with pytest.raises(InvalidValueError):
        normalize_date(value)


def test_closed_enum_parse() -> None:
    assert EntryType.parse(" Expense ") is EntryType.EXPENSE
    assert CategoryType.parse(CategoryType.SAVINGS) is CategoryType.SAVINGS
    assert BudgetSortCriteria.parse("BUDGET_DATE") is BudgetSortCriteria.BUDGET_DATE
    with pytest.raises(InvalidValueError, match="expense, income, adjustment"):
        EntryType.parse("refund")


def test_utc_now_sorts_as_text() -> None:
    first = utc_now()
    second = utc_now()
    assert len(first) == len("2024-01-01 00:00:00.000000")
    assert first <= second


def test_log_change_rejects_unknown_type(store, budget_id) -> None:
    with pytest.raises(InvalidValueError):
        with store.transaction() as conn:
            log_change(conn, budget_id, "budget_explode", "nope")


def test_history_frame(store, budget_id) -> None:
    assert history_frame(store, budget_id).empty

    with store.transaction() as conn:
        log_change(conn, budget_id, ChangeType.TITLE_CHANGE, "renamed", "name", None, "X")
    budgets.finish_budget(store, budget_id)

    df = history_frame(store, budget_id)
    assert list(df["change_type"]) == ["status_change", "title_change"]
    assert df["changed_at"].is_monotonic_decreasing
    assert df.loc[1, "old_value"] is None
    assert df.loc[1, "new_value"] == "X"
