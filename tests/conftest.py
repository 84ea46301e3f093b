from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from budget_ledger import ledger
from budget_ledger.budgets import create_budget
from budget_ledger.store import LedgerStore


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "budgets.sqlite"


@pytest.fixture
def store(db_path):
    handle = LedgerStore(db_path).open()
    yield handle
    handle.close()


@pytest.fixture
def budget_id(store) -> int:
    return create_budget(store, 3, 2024, 5000.0)


@pytest.fixture
def category_id(store, budget_id) -> int:
    return ledger.add_category(store, budget_id, "Groceries", 500.0)
