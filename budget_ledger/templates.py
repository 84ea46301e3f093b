"""Global category catalog and reusable budget templates.

A template is an ordered list of (global category, allocated amount, type)
items.  Applying one to a budget is a destructive reset: the budget's
categories are deleted, taking their ledger entries with them, and fresh
categories are created from a snapshot of the template items.  Confirming
that with the user is the caller's job.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Iterable, List, Optional, Sequence

import structlog

from .budgets import fetch_budget
from .errors import ConflictError, NotFoundError
from .history import log_change
from .models import (
    ChangeType,
    GlobalCategory,
    TemplateCategoryItem,
    TemplateItemSpec,
    TemplateSummary,
    TemplateWithCategories,
    utc_now,
)

logger = structlog.get_logger(__name__)

TEMPLATE_ITEMS_SQL = """
    SELECT tc.template_category_id, tc.global_category_id, gc.name AS category_name,
           tc.allocated_amount, tc.category_type, tc.sort_order
    FROM template_categories tc
    JOIN global_categories gc ON gc.global_category_id = tc.global_category_id
    WHERE tc.template_id = ?
    ORDER BY tc.sort_order ASC, tc.template_category_id ASC
"""


# ---------------------------------------------------------------------------
# Global categories
# ---------------------------------------------------------------------------


def _fetch_global_category(conn: sqlite3.Connection, global_category_id: int) -> GlobalCategory:
    row = conn.execute(
        "SELECT global_category_id, name, description, created_at FROM global_categories "
        "WHERE global_category_id = ?",
        (global_category_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError("Global category", global_category_id)
    return GlobalCategory.from_row(row)


def _duplicate_name(name: str) -> ConflictError:
    return ConflictError(f"A global category named '{name}' already exists.")


def list_global_categories(store) -> List[GlobalCategory]:
    with store.connect() as conn:
        rows = conn.execute(
            "SELECT global_category_id, name, description, created_at FROM global_categories "
            "ORDER BY name"
        ).fetchall()
    return [GlobalCategory.from_row(row) for row in rows]


def create_global_category(store, name: str, description: Optional[str] = None) -> GlobalCategory:
    now = utc_now()
    with store.transaction() as conn:
        try:
            cursor = conn.execute(
                "INSERT INTO global_categories (name, description, created_at, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (name, description, now, now),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" not in str(exc):
                raise
            raise _duplicate_name(name) from exc
        return _fetch_global_category(conn, cursor.lastrowid)


def update_global_category(
    store,
    global_category_id: int,
    name: str,
    description: Optional[str] = None,
) -> GlobalCategory:
    with store.transaction() as conn:
        _fetch_global_category(conn, global_category_id)
        try:
            conn.execute(
                "UPDATE global_categories SET name = ?, description = ?, updated_at = ? "
                "WHERE global_category_id = ?",
                (name, description, utc_now(), global_category_id),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" not in str(exc):
                raise
            raise _duplicate_name(name) from exc
        return _fetch_global_category(conn, global_category_id)


def delete_global_category(store, global_category_id: int) -> None:
    """Remove a catalog entry; template items using it go too."""
    with store.transaction() as conn:
        cursor = conn.execute(
            "DELETE FROM global_categories WHERE global_category_id = ?",
            (global_category_id,),
        )
        if cursor.rowcount == 0:
            raise NotFoundError("Global category", global_category_id)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def _coerce_items(categories: Iterable[Any]) -> List[TemplateItemSpec]:
    items = []
    for item in categories or ():
        if isinstance(item, TemplateItemSpec):
            items.append(item)
        else:
            items.append(TemplateItemSpec(**item))
    return items


def _insert_items(conn: sqlite3.Connection, template_id: int, items: Sequence[TemplateItemSpec]) -> None:
    now = utc_now()
    for item in items:
        _fetch_global_category(conn, item.global_category_id)
        conn.execute(
            "INSERT INTO template_categories (template_id, global_category_id, allocated_amount, "
            "category_type, sort_order, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (
                template_id,
                item.global_category_id,
                float(item.allocated_amount),
                item.category_type.value,
                int(item.sort_order),
                now,
            ),
        )


def _fetch_template(conn: sqlite3.Connection, template_id: int) -> TemplateWithCategories:
    row = conn.execute(
        "SELECT template_id, name, description, created_at FROM budget_templates WHERE template_id = ?",
        (template_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError("Template", template_id)
    template = TemplateWithCategories.from_row(row)
    template.categories = [
        TemplateCategoryItem.from_row(item)
        for item in conn.execute(TEMPLATE_ITEMS_SQL, (template_id,)).fetchall()
    ]
    return template


def list_templates(store) -> List[TemplateSummary]:
    """Templates newest first, with item count and total allocation."""
    with store.connect() as conn:
        rows = conn.execute(
            """
            SELECT bt.template_id, bt.name, bt.description, bt.created_at,
                   COUNT(tc.template_category_id) AS category_count,
                   COALESCE(SUM(tc.allocated_amount), 0) AS total_amount
            FROM budget_templates bt
            LEFT JOIN template_categories tc ON tc.template_id = bt.template_id
            GROUP BY bt.template_id
            ORDER BY bt.created_at DESC, bt.template_id DESC
            """
        ).fetchall()
    return [TemplateSummary.from_row(row) for row in rows]


def get_template(store, template_id: int) -> TemplateWithCategories:
    with store.connect() as conn:
        return _fetch_template(conn, template_id)


def create_template(
    store,
    name: str,
    description: Optional[str] = None,
    categories: Iterable[Any] = (),
) -> TemplateWithCategories:
    items = _coerce_items(categories)
    now = utc_now()
    with store.transaction() as conn:
        cursor = conn.execute(
            "INSERT INTO budget_templates (name, description, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (name, description, now, now),
        )
        template_id = cursor.lastrowid
        _insert_items(conn, template_id, items)
        template = _fetch_template(conn, template_id)
    logger.info("template_created", template_id=template_id, items=len(items))
    return template


def update_template(
    store,
    template_id: int,
    name: str,
    description: Optional[str] = None,
    categories: Iterable[Any] = (),
) -> TemplateWithCategories:
    """Rename a template and replace all of its items."""
    items = _coerce_items(categories)
    with store.transaction() as conn:
        cursor = conn.execute(
            "UPDATE budget_templates SET name = ?, description = ?, updated_at = ? WHERE template_id = ?",
            (name, description, utc_now(), template_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError("Template", template_id)
        conn.execute("DELETE FROM template_categories WHERE template_id = ?", (template_id,))
        _insert_items(conn, template_id, items)
        template = _fetch_template(conn, template_id)
    logger.info("template_updated", template_id=template_id, items=len(items))
    return template


def delete_template(store, template_id: int) -> None:
    with store.transaction() as conn:
        cursor = conn.execute("DELETE FROM budget_templates WHERE template_id = ?", (template_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("Template", template_id)
    logger.info("template_deleted", template_id=template_id)


def apply_template(store, budget_id: int, template_id: int) -> int:
    """Replace a budget's categories with the template's; returns the count created.

    Existing categories and their ledger entries are deleted.
    """
    now = utc_now()
    with store.transaction() as conn:
        fetch_budget(conn, budget_id)
        template = _fetch_template(conn, template_id)

        conn.execute(
            "UPDATE monthly_budgets SET template_id = ?, last_edited = ? WHERE budget_id = ?",
            (template_id, now, budget_id),
        )
        removed = conn.execute(
            "DELETE FROM budget_categories WHERE budget_id = ?", (budget_id,)
        ).rowcount
        for item in template.categories:
            conn.execute(
                "INSERT INTO budget_categories (budget_id, global_category_id, category_name, "
                "allocated_amount, category_type, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    budget_id,
                    item.global_category_id,
                    item.category_name,
                    item.allocated_amount,
                    item.category_type,
                    now,
                ),
            )

        created = len(template.categories)
        log_change(
            conn,
            budget_id,
            ChangeType.TEMPLATE_APPLY,
            f"Applied template '{template.name}' to budget ({created} categories)",
            field_name="budget_templates",
            new_value=template.name,
        )

    logger.info(
        "template_applied",
        budget_id=budget_id,
        template_id=template_id,
        categories_removed=removed,
        categories_created=created,
    )
    return created
