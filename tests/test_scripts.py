from __future__ import annotations

import runpy
import sqlite3
from pathlib import Path

from budget_ledger import budgets
from budget_ledger.schema import TABLES
from budget_ledger.store import LedgerStore

SCRIPTS = Path(__file__).resolve().parents[1] / "scripts"


def _main(name: str):
    return runpy.run_path(str(SCRIPTS / name))["main"]


def test_init_store_creates_and_seeds(tmp_path, capsys) -> None:
    db_file = tmp_path / "nested" / "budgets.sqlite"

    assert _main("init_store.py")([str(db_file), "--seed-examples"]) == 0
    assert db_file.exists()
    assert f"Database ready at {db_file}" in capsys.readouterr().out

    with LedgerStore(db_file) as store:
        assert len(budgets.list_budgets(store)) == 5


def test_show_history_prints_changes(db_path, store, budget_id, capsys) -> None:
    budgets.rename_budget(store, budget_id, "Spring")

    assert _main("show_history.py")([str(budget_id), "--db", str(db_path)]) == 0
    out = capsys.readouterr().out
    assert "Spring: 1 change(s)" in out
    assert "title_change" in out
    assert "[ -> Spring]" in out


def test_show_history_missing_budget(db_path, store, capsys) -> None:
    assert _main("show_history.py")(["404", "--db", str(db_path)]) == 1
    assert "Budget with ID 404 not found" in capsys.readouterr().out


def test_show_history_leaves_the_file_unmigrated(tmp_path, capsys) -> None:
    db_file = tmp_path / "partial.sqlite"
    conn = sqlite3.connect(str(db_file))
    conn.execute(TABLES["monthly_budgets"])
    conn.execute(TABLES["budget_change_history"])
    conn.execute(
        "INSERT INTO monthly_budgets (month, year, total_income, created_at, last_edited) "
        "VALUES (7, 2024, 3000, '2024-07-01 00:00:00.000000', '2024-07-01 00:00:00.000000')"
    )
    conn.commit()
    conn.close()

    assert _main("show_history.py")(["1", "--db", str(db_file)]) == 0
    assert "July 2024: 0 change(s)" in capsys.readouterr().out

    conn = sqlite3.connect(str(db_file))
    tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    conn.close()
    assert "global_categories" not in tables
    assert "ledger_entries" not in tables
