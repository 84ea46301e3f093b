"""Table definitions and additive migrations for the budget database.

``ensure_schema`` runs on every start.  New databases get the full tables
from ``TABLES``; databases written by older versions are brought forward
column by column from ``COLUMN_MIGRATIONS``.  A column is only altered in
after ``PRAGMA table_info`` shows it missing, and its back-fill only runs in
that same step, so repeated runs are no-ops.
"""

from __future__ import annotations

import sqlite3
from typing import Dict, List, Optional, Tuple

import structlog

from .errors import SchemaError, StorageError
from .models import utc_now

logger = structlog.get_logger(__name__)

PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
)

TABLES: Dict[str, str] = {
    "global_categories": """
        CREATE TABLE IF NOT EXISTS global_categories (
            global_category_id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            description TEXT,
            created_at TEXT,
            updated_at TEXT
        )
    """,
    "budget_templates": """
        CREATE TABLE IF NOT EXISTS budget_templates (
            template_id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            created_at TEXT,
            updated_at TEXT
        )
    """,
    "template_categories": """
        CREATE TABLE IF NOT EXISTS template_categories (
            template_category_id INTEGER PRIMARY KEY AUTOINCREMENT,
            template_id INTEGER NOT NULL,
            global_category_id INTEGER NOT NULL,
            allocated_amount REAL NOT NULL DEFAULT 0,
            category_type TEXT NOT NULL DEFAULT 'expense',
            sort_order INTEGER NOT NULL DEFAULT 0,
            created_at TEXT,
            FOREIGN KEY (template_id) REFERENCES budget_templates(template_id) ON DELETE CASCADE,
            FOREIGN KEY (global_category_id) REFERENCES global_categories(global_category_id) ON DELETE CASCADE
        )
    """,
    "monthly_budgets": """
        CREATE TABLE IF NOT EXISTS monthly_budgets (
            budget_id INTEGER PRIMARY KEY AUTOINCREMENT,
            month INTEGER NOT NULL,
            year INTEGER NOT NULL,
            total_income REAL NOT NULL,
            name TEXT,
            template_id INTEGER REFERENCES budget_templates(template_id) ON DELETE SET NULL,
            created_at TEXT,
            last_edited TEXT,
            finished_at TEXT,
            first_finished_at TEXT,
            UNIQUE (month, year)
        )
    """,
    "budget_categories": """
        CREATE TABLE IF NOT EXISTS budget_categories (
            category_id INTEGER PRIMARY KEY AUTOINCREMENT,
            budget_id INTEGER NOT NULL,
            global_category_id INTEGER REFERENCES global_categories(global_category_id) ON DELETE SET NULL,
            category_name TEXT NOT NULL,
            allocated_amount REAL NOT NULL DEFAULT 0,
            category_type TEXT NOT NULL DEFAULT 'expense',
            created_at TEXT,
            FOREIGN KEY (budget_id) REFERENCES monthly_budgets(budget_id) ON DELETE CASCADE
        )
    """,
    "ledger_entries": """
        CREATE TABLE IF NOT EXISTS ledger_entries (
            entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
            category_id INTEGER NOT NULL,
            entry_type TEXT NOT NULL DEFAULT 'expense',
            what TEXT NOT NULL,
            place TEXT,
            amount REAL NOT NULL,
            date TEXT NOT NULL,
            created_at TEXT,
            deleted_at TEXT,
            FOREIGN KEY (category_id) REFERENCES budget_categories(category_id) ON DELETE CASCADE
        )
    """,
    "budget_change_history": """
        CREATE TABLE IF NOT EXISTS budget_change_history (
            change_id INTEGER PRIMARY KEY AUTOINCREMENT,
            budget_id INTEGER NOT NULL,
            change_type TEXT NOT NULL,
            field_name TEXT,
            old_value TEXT,
            new_value TEXT,
            change_description TEXT NOT NULL DEFAULT '',
            changed_at TEXT,
            FOREIGN KEY (budget_id) REFERENCES monthly_budgets(budget_id) ON DELETE CASCADE
        )
    """,
}

# (column, definition, back-fill statement run only when the column is added).
# Back-fills may reference ``:now``.  Order matters: later back-fills can read
# columns added earlier in the same list.
ColumnMigration = Tuple[str, str, Optional[str]]

COLUMN_MIGRATIONS: Dict[str, List[ColumnMigration]] = {
    "global_categories": [
        ("description", "TEXT", None),
        ("created_at", "TEXT", "UPDATE global_categories SET created_at = :now WHERE created_at IS NULL"),
        ("updated_at", "TEXT", "UPDATE global_categories SET updated_at = created_at WHERE updated_at IS NULL"),
    ],
    "budget_templates": [
        ("description", "TEXT", None),
        ("created_at", "TEXT", "UPDATE budget_templates SET created_at = :now WHERE created_at IS NULL"),
        ("updated_at", "TEXT", "UPDATE budget_templates SET updated_at = created_at WHERE updated_at IS NULL"),
    ],
    "template_categories": [
        ("category_type", "TEXT NOT NULL DEFAULT 'expense'", None),
        ("sort_order", "INTEGER NOT NULL DEFAULT 0", None),
        ("created_at", "TEXT", "UPDATE template_categories SET created_at = :now WHERE created_at IS NULL"),
    ],
    "monthly_budgets": [
        ("name", "TEXT", None),
        (
            "template_id",
            "INTEGER REFERENCES budget_templates(template_id) ON DELETE SET NULL",
            None,
        ),
        ("created_at", "TEXT", "UPDATE monthly_budgets SET created_at = :now WHERE created_at IS NULL"),
        ("last_edited", "TEXT", "UPDATE monthly_budgets SET last_edited = created_at WHERE last_edited IS NULL"),
        ("finished_at", "TEXT", None),
        (
            "first_finished_at",
            "TEXT",
            "UPDATE monthly_budgets SET first_finished_at = finished_at "
            "WHERE first_finished_at IS NULL AND finished_at IS NOT NULL",
        ),
    ],
    "budget_categories": [
        (
            "global_category_id",
            "INTEGER REFERENCES global_categories(global_category_id) ON DELETE SET NULL",
            None,
        ),
        ("category_type", "TEXT NOT NULL DEFAULT 'expense'", None),
        ("created_at", "TEXT", "UPDATE budget_categories SET created_at = :now WHERE created_at IS NULL"),
    ],
    "ledger_entries": [
        ("entry_type", "TEXT NOT NULL DEFAULT 'expense'", None),
        ("place", "TEXT", None),
        ("created_at", "TEXT", "UPDATE ledger_entries SET created_at = :now WHERE created_at IS NULL"),
        ("deleted_at", "TEXT", None),
    ],
    "budget_change_history": [
        ("field_name", "TEXT", None),
        ("old_value", "TEXT", None),
        ("new_value", "TEXT", None),
        ("changed_at", "TEXT", "UPDATE budget_change_history SET changed_at = :now WHERE changed_at IS NULL"),
    ],
}

INDEXES = (
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_monthly_budgets_period ON monthly_budgets (month, year)",
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_global_categories_name ON global_categories (name)",
    "CREATE INDEX IF NOT EXISTS ix_monthly_budgets_template ON monthly_budgets (template_id)",
    "CREATE INDEX IF NOT EXISTS ix_budget_categories_budget ON budget_categories (budget_id)",
    "CREATE INDEX IF NOT EXISTS ix_budget_categories_global ON budget_categories (global_category_id)",
    "CREATE INDEX IF NOT EXISTS ix_ledger_entries_category ON ledger_entries (category_id, deleted_at)",
    "CREATE INDEX IF NOT EXISTS ix_change_history_budget ON budget_change_history (budget_id, changed_at)",
    "CREATE INDEX IF NOT EXISTS ix_template_categories_template ON template_categories (template_id)",
    "CREATE INDEX IF NOT EXISTS ix_template_categories_global ON template_categories (global_category_id)",
)

DEFAULT_GLOBAL_CATEGORIES: Tuple[Tuple[str, str], ...] = (
    ("Food & Dining", "Groceries, restaurants, and food expenses"),
    ("Transportation", "Gas, public transport, car maintenance"),
    ("Housing", "Rent, mortgage, utilities, home maintenance"),
    ("Healthcare", "Medical expenses, insurance, medications"),
    ("Entertainment", "Movies, games, hobbies, subscriptions"),
    ("Shopping", "Clothing, personal items, general shopping"),
    ("Education", "Books, courses, training, school supplies"),
    ("Savings", "Emergency fund, retirement, investments"),
    ("Insurance", "Life, health, car, home insurance"),
    ("Debt Payment", "Credit cards, loans, other debt payments"),
)

# Created on first launch only, when the caller asks for examples.
EXAMPLE_BUDGETS: Tuple[Tuple[int, int, float, str], ...] = (
    (1, 2024, 5000.0, "January 2024 Budget"),
    (2, 2024, 4800.0, "February 2024 Budget"),
    (3, 2024, 5200.0, "March 2024 Budget"),
    (4, 2024, 5100.0, "April 2024 Budget"),
    (5, 2024, 4900.0, "May 2024 Budget"),
)


def table_columns(conn: sqlite3.Connection, table: str) -> List[str]:
    """Column names of ``table`` in declaration order (empty if absent)."""
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def _migrate_table(conn: sqlite3.Connection, table: str, now: str) -> List[str]:
    conn.execute(TABLES[table])
    existing = set(table_columns(conn, table))
    added: List[str] = []
    for column, definition, backfill in COLUMN_MIGRATIONS.get(table, []):
        if column in existing:
            continue
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
        if backfill:
            conn.execute(backfill, {"now": now})
        existing.add(column)
        added.append(column)
        logger.info("schema_column_added", table=table, column=column, backfilled=bool(backfill))
    return added


def seed_global_categories(conn: sqlite3.Connection, now: str) -> int:
    before = conn.total_changes
    conn.executemany(
        "INSERT OR IGNORE INTO global_categories (name, description, created_at, updated_at) "
        "VALUES (?, ?, ?, ?)",
        [(name, description, now, now) for name, description in DEFAULT_GLOBAL_CATEGORIES],
    )
    return conn.total_changes - before


def seed_example_budgets(conn: sqlite3.Connection, now: str) -> int:
    count = conn.execute("SELECT COUNT(*) FROM monthly_budgets").fetchone()[0]
    if count:
        logger.info("example_seed_skipped", existing_budgets=count)
        return 0
    conn.executemany(
        "INSERT INTO monthly_budgets (month, year, total_income, name, created_at, last_edited) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        [(month, year, income, name, now, now) for month, year, income, name in EXAMPLE_BUDGETS],
    )
    logger.info("example_budgets_seeded", count=len(EXAMPLE_BUDGETS))
    return len(EXAMPLE_BUDGETS)


def ensure_schema(store, seed_examples: bool = False) -> Dict[str, List[str]]:
    """Bring ``store`` to the latest schema.

    Each table is created and migrated in its own transaction, so a failure
    leaves the other tables untouched.  Any failure raises
    :class:`SchemaError`.  Returns the columns added per table.
    """
    now = utc_now()
    added: Dict[str, List[str]] = {}

    try:
        with store.connect() as conn:
            for pragma in PRAGMAS:
                conn.execute(pragma)
    except StorageError as exc:
        raise SchemaError(f"Could not configure database: {exc}") from exc

    for table in TABLES:
        try:
            with store.transaction() as conn:
                columns = _migrate_table(conn, table, now)
        except StorageError as exc:
            logger.error("schema_migration_failed", table=table, error=str(exc))
            raise SchemaError(f"Migration of table {table} failed: {exc}") from exc
        if columns:
            added[table] = columns

    try:
        with store.transaction() as conn:
            for statement in INDEXES:
                conn.execute(statement)
            seeded = seed_global_categories(conn, now)
            examples = seed_example_budgets(conn, now) if seed_examples else 0
    except StorageError as exc:
        logger.error("schema_finalize_failed", error=str(exc))
        raise SchemaError(f"Index creation or seeding failed: {exc}") from exc

    logger.info(
        "schema_ensured",
        path=str(store.path),
        columns_added=sum(len(cols) for cols in added.values()),
        global_categories_seeded=seeded,
        example_budgets_seeded=examples,
    )
    return added
