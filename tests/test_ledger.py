from __future__ import annotations

from datetime import date

import pandas as pd
import pytest

from budget_ledger import budgets, ledger
from budget_ledger.errors import InvalidValueError, NotFoundError
from budget_ledger.history import history


@pytest.fixture
def groceries(store, category_id):
    """Groceries with a 500 allocation and one entry of each type."""
    entries = {
        "big_shop": ledger.add_entry(store, category_id, "expense", "Weekly shop", 120.5, "2024-03-02", "Market"),
        "snacks": ledger.add_entry(store, category_id, "expense", "Snacks", 30, "2024-03-05"),
        "refund": ledger.add_entry(store, category_id, "income", "Refund", 50, "2024-03-07"),
        "fix": ledger.add_entry(store, category_id, "adjustment", "Correction", 999, "2024-03-09"),
    }
    return entries


def _stats(store, budget_id):
    (row,) = ledger.categories_with_stats(store, budget_id)
    return row


def test_category_without_entries_has_zero_aggregates(store, budget_id, category_id) -> None:
    row = _stats(store, budget_id)
    assert row.category_id == category_id
    assert row.category_name == "Groceries"
    assert row.allocated_amount == 500.0
    assert row.net_amount == 0
    assert row.remaining_amount == 500.0
    assert row.entries_count == 0
    assert row.last_activity_at is None
    assert row.category_type == "expense"


def test_stats_sign_by_entry_type(store, budget_id, groceries) -> None:
    row = _stats(store, budget_id)
    assert row.net_amount == pytest.approx(-100.5)
    assert row.remaining_amount == pytest.approx(399.5)
    assert row.entries_count == 4
    assert row.last_activity_at == "2024-03-09"


def test_soft_deleted_entries_drop_out_of_stats(store, budget_id, groceries) -> None:
    ledger.soft_delete_entry(store, groceries["snacks"].entry_id)

    row = _stats(store, budget_id)
    assert row.net_amount == pytest.approx(-70.5)
    assert row.remaining_amount == pytest.approx(429.5)
    assert row.entries_count == 3


def test_soft_deleted_entry_stays_retrievable(store, category_id, groceries) -> None:
    entry_id = groceries["snacks"].entry_id
    ledger.soft_delete_entry(store, entry_id)

    entry = ledger.get_entry(store, entry_id)
    assert entry.is_deleted
    assert entry.what == "Snacks"
    listed = [item.entry_id for item in ledger.category_ledger(store, category_id)]
    assert entry_id not in listed

    with pytest.raises(NotFoundError, match="already deleted"):
        ledger.soft_delete_entry(store, entry_id)
    with pytest.raises(NotFoundError):
        ledger.update_entry(store, entry_id, "expense", "Snacks", 31, "2024-03-05")


def test_add_entry_returns_stored_row(store, category_id) -> None:
    entry = ledger.add_entry(store, category_id, "Income", "  Cashback  ", "12.25", date(2024, 3, 4), " ")
    assert entry.entry_type == "income"
    assert entry.what == "Cashback"
    assert entry.amount == 12.25
    assert entry.date == "2024-03-04"
    assert entry.where is None
    assert entry.deleted_at is None
    assert entry.created_at is not None


@pytest.mark.parametrize(
    "entry_type, what, amount, when",
    [
        ("transfer", "Milk", 1, "2024-03-01"),
        ("expense", "", 1, "2024-03-01"),
        ("expense", "Milk", -1, "2024-03-01"),
        ("expense", "Milk", "a lot", "2024-03-01"),
        ("expense", "Milk", 1, "03/01/2024"),
        ("expense", "Milk", 1, None),
    ],
)
def test_add_entry_rejects_invalid_values(store, category_id, entry_type, what, amount, when) -> None:
    with pytest.raises(InvalidValueError):
        ledger.add_entry(store, category_id, entry_type, what, amount, when)
    assert ledger.category_ledger(store, category_id) == []


def test_add_entry_to_missing_category(store) -> None:
    with pytest.raises(NotFoundError, match="Category with ID 77 not found"):
        ledger.add_entry(store, 77, "expense", "Milk", 1, "2024-03-01")


def test_update_entry_rewrites_fields(store, budget_id, groceries) -> None:
    entry_id = groceries["big_shop"].entry_id
    updated = ledger.update_entry(store, entry_id, "expense", "Big shop", 100, "2024-03-03", None)

    assert updated.entry_id == entry_id
    assert updated.what == "Big shop"
    assert updated.amount == 100
    assert updated.date == "2024-03-03"
    assert updated.where is None
    assert updated.created_at == groceries["big_shop"].created_at
    assert _stats(store, budget_id).net_amount == pytest.approx(-80)

    latest = history(store, budget_id)[0]
    assert latest.change_type == "entry_update"
    assert (latest.old_value, latest.new_value) == ("120.50", "100.00")


def test_ledger_default_sort_is_newest_date_first(store, category_id, groceries) -> None:
    whats = [entry.what for entry in ledger.category_ledger(store, category_id)]
    assert whats == ["Correction", "Refund", "Snacks", "Weekly shop"]


@pytest.mark.parametrize(
    "sort, expected",
    [
        ("date_asc", ["Weekly shop", "Snacks", "Refund", "Correction"]),
        ("amount_asc", ["Snacks", "Refund", "Weekly shop", "Correction"]),
        ("AMOUNT_DESC", ["Correction", "Weekly shop", "Refund", "Snacks"]),
        ("created_asc", ["Weekly shop", "Snacks", "Refund", "Correction"]),
        ("created_desc", ["Correction", "Refund", "Snacks", "Weekly shop"]),
    ],
)
def test_ledger_sort_orders(store, category_id, groceries, sort, expected) -> None:
    whats = [entry.what for entry in ledger.category_ledger(store, category_id, sort=sort)]
    assert whats == expected


def test_ledger_pagination(store, category_id, groceries) -> None:
    first_page = ledger.category_ledger(store, category_id, limit=2, offset=0, sort="date_asc")
    second_page = ledger.category_ledger(store, category_id, limit=2, offset=2, sort="date_asc")
    past_end = ledger.category_ledger(store, category_id, limit=2, offset=4, sort="date_asc")

    assert [entry.what for entry in first_page] == ["Weekly shop", "Snacks"]
    assert [entry.what for entry in second_page] == ["Refund", "Correction"]
    assert past_end == []


def test_ledger_rejects_unknown_sort(store, category_id) -> None:
    with pytest.raises(InvalidValueError, match="LedgerSort"):
        ledger.category_ledger(store, category_id, sort="alphabetical")


def test_ledger_for_missing_category(store) -> None:
    with pytest.raises(NotFoundError):
        ledger.category_ledger(store, 999)


def test_set_allocated_amount_records_history(store, budget_id, category_id) -> None:
    row = ledger.set_allocated_amount(store, category_id, 650)
    assert row.allocated_amount == 650
    assert row.remaining_amount == 650

    entry = history(store, budget_id)[0]
    assert entry.change_type == "allocation_change"
    assert entry.field_name == "allocated_amount"
    assert (entry.old_value, entry.new_value) == ("500.00", "650.00")
    assert entry.change_description == "Updated allocated for Groceries $500.00 → $650.00"


def test_add_category_validation(store, budget_id) -> None:
    with pytest.raises(NotFoundError):
        ledger.add_category(store, 404, "Rent", 1000)
    with pytest.raises(InvalidValueError):
        ledger.add_category(store, budget_id, "   ", 1000)
    with pytest.raises(InvalidValueError):
        ledger.add_category(store, budget_id, "Rent", 1000, category_type="luxury")
    with pytest.raises(NotFoundError, match="Global category"):
        ledger.add_category(store, budget_id, "Rent", 1000, global_category_id=9999)


def test_add_savings_category_linked_to_global(store, budget_id) -> None:
    category_id = ledger.add_category(
        store, budget_id, "Emergency fund", 250, category_type="savings", global_category_id=8
    )
    row = next(row for row in ledger.categories_with_stats(store, budget_id) if row.category_id == category_id)
    assert row.category_type == "savings"
    assert row.global_category_id == 8


def test_history_is_attributed_to_owning_budget(store, budget_id, category_id) -> None:
    other_budget = budgets.create_budget(store, 4, 2024, 3000)
    other_category = ledger.add_category(store, other_budget, "Fuel", 100)

    entry = ledger.add_entry(store, category_id, "expense", "Bread", 4.2, "2024-03-10", "Bakery")
    ledger.add_entry(store, other_category, "expense", "Diesel", 60, "2024-04-02")
    ledger.soft_delete_entry(store, entry.entry_id)

    types = [item.change_type for item in history(store, budget_id)]
    assert types == ["entry_delete", "entry_add", "category_add"]
    added = history(store, budget_id)[1]
    assert added.change_description == "Added expense $4.20 to Groceries (Bread @ Bakery)"

    other_types = [item.change_type for item in history(store, other_budget)]
    assert other_types == ["entry_add", "category_add"]


def test_entry_mutation_touches_budget(store, budget_id, category_id) -> None:
    before = budgets.get_budget(store, budget_id).last_edited
    ledger.add_entry(store, category_id, "expense", "Eggs", 3, "2024-03-11")
    assert budgets.get_budget(store, budget_id).last_edited > before


def test_failed_history_write_rolls_back_entry(store, budget_id, category_id, monkeypatch) -> None:
    def broken_log_change(*args, **kwargs):
        raise RuntimeError("history unavailable")

    monkeypatch.setattr("budget_ledger.ledger.log_change", broken_log_change)

    with pytest.raises(RuntimeError):
        ledger.add_entry(store, category_id, "expense", "Ghost", 10, "2024-03-12")

    assert ledger.category_ledger(store, category_id) == []
    assert _stats(store, budget_id).entries_count == 0


def test_categories_with_stats_for_missing_budget(store) -> None:
    with pytest.raises(NotFoundError):
        ledger.categories_with_stats(store, 12345)


def test_categories_frame(store, budget_id, groceries) -> None:
    ledger.add_category(store, budget_id, "Transport", 120)

    df = ledger.categories_frame(store, budget_id)
    assert list(df["category_name"]) == ["Groceries", "Transport"]
    assert list(df["entries_count"]) == [4, 0]
    assert df.loc[0, "remaining_amount"] == pytest.approx(399.5)
    assert df.loc[0, "last_activity_at"] == pd.Timestamp("2024-03-09")


def test_ledger_frame_can_include_deleted(store, category_id, groceries) -> None:
    ledger.soft_delete_entry(store, groceries["fix"].entry_id)

    live = ledger.ledger_frame(store, category_id)
    everything = ledger.ledger_frame(store, category_id, include_deleted=True)

    assert len(live) == 3
    assert len(everything) == 4
    assert live["date"].is_monotonic_increasing
    assert pd.api.types.is_datetime64_any_dtype(live["date"])
    assert list(live["where"]) == ["Market", None, None]


def test_budget_overview_totals(store, budget_id, category_id, groceries) -> None:
    ledger.add_category(store, budget_id, "Rent", 1500)
    ledger.soft_delete_entry(store, groceries["snacks"].entry_id)

    overview = ledger.budget_overview(store, budget_id)
    assert overview.total_income == 5000
    assert overview.allocated == 2000
    assert overview.unallocated == 3000
    assert overview.spent == pytest.approx(120.5)
    assert overview.received == pytest.approx(50)
    assert overview.remaining == pytest.approx(4879.5)
    assert overview.spent_percentage == pytest.approx(2.41)


def test_budget_overview_without_entries(store, budget_id) -> None:
    overview = ledger.budget_overview(store, budget_id)
    assert overview.allocated == 0
    assert overview.spent == 0
    assert overview.remaining == 5000


@pytest.mark.parametrize("amount", [float("nan"), float("inf")])
def test_non_finite_amounts_are_rejected(store, budget_id, category_id, amount) -> None:
    with pytest.raises(InvalidValueError, match="finite"):
        ledger.add_entry(store, category_id, "expense", "Milk", amount, "2024-03-01")
    with pytest.raises(InvalidValueError, match="finite"):
        ledger.set_allocated_amount(store, category_id, amount)
    row = _stats(store, budget_id)
    assert row.allocated_amount == 500.0
    assert row.entries_count == 0


@pytest.mark.parametrize("limit, offset", [("ten", 0), (10, "next"), (None, 0)])
def test_ledger_rejects_non_integer_paging(store, category_id, limit, offset) -> None:
    with pytest.raises(InvalidValueError, match="integers"):
        ledger.category_ledger(store, category_id, limit=limit, offset=offset)
