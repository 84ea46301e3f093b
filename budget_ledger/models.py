"""Row types and closed value sets for the budget ledger.

Rows are plain dataclasses built from ``sqlite3.Row`` results.  String
valued columns that only admit a fixed set of values (entry types, category
types, sort orders, change types) are represented as ``str`` enums so
unrecognised values are rejected at the boundary.
"""

from __future__ import annotations

import calendar
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from .errors import InvalidValueError

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"
DATE_FORMAT = "%Y-%m-%d"

E = TypeVar("E", bound="ClosedEnum")


def utc_now() -> str:
    """Current UTC time as sortable text."""
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def month_name(month: int) -> str:
    return calendar.month_name[month]


def display_name(name: Optional[str], month: int, year: int) -> str:
    """Stored name if non-empty, else "{MonthName} {Year}"."""
    if name:
        return name
    return f"{month_name(month)} {year}"


def normalize_date(value: Any) -> str:
    """Coerce a calendar date to ``YYYY-MM-DD`` or raise InvalidValueError."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), DATE_FORMAT).date().isoformat()
        except ValueError:
            pass
    raise InvalidValueError(f"Invalid date {value!r}; expected YYYY-MM-DD")


# ---------------------------------------------------------------------------
# Closed value sets
# ---------------------------------------------------------------------------


class ClosedEnum(str, Enum):
    """String enum that rejects unknown values with InvalidValueError."""

    @classmethod
    def parse(cls: Type[E], value: Any) -> E:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise InvalidValueError(
                f"Unrecognised {cls.__name__} {value!r}; expected one of: {allowed}"
            ) from None


class EntryType(ClosedEnum):
    EXPENSE = "expense"
    INCOME = "income"
    # Adjustments are recorded but contribute nothing to net amounts.
    ADJUSTMENT = "adjustment"


class CategoryType(ClosedEnum):
    EXPENSE = "expense"
    SAVINGS = "savings"


class BudgetSortCriteria(ClosedEnum):
    INCOME = "income"
    CREATED_DATE = "created_date"
    FINISHED_DATE = "finished_date"
    BUDGET_DATE = "budget_date"
    NAME = "name"
    LAST_EDITED = "last_edited"


class LedgerSort(ClosedEnum):
    DATE_ASC = "date_asc"
    DATE_DESC = "date_desc"
    AMOUNT_ASC = "amount_asc"
    AMOUNT_DESC = "amount_desc"
    CREATED_ASC = "created_asc"
    CREATED_DESC = "created_desc"


class ChangeType(ClosedEnum):
    STATUS_CHANGE = "status_change"
    TITLE_CHANGE = "title_change"
    ENTRY_ADD = "entry_add"
    ENTRY_UPDATE = "entry_update"
    ENTRY_DELETE = "entry_delete"
    ALLOCATION_CHANGE = "allocation_change"
    CATEGORY_ADD = "category_add"
    TEMPLATE_APPLY = "template_apply"


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


class _Row:
    """Mixin for dataclasses that map one-to-one onto query columns."""

    @classmethod
    def from_row(cls, row):
        return cls(**{key: row[key] for key in row.keys() if key in cls.__dataclass_fields__})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BudgetSummary(_Row):
    budget_id: int
    month: int
    year: int
    total_income: float
    created_at: str
    last_edited: str
    finished_at: Optional[str] = None
    first_finished_at: Optional[str] = None
    name: Optional[str] = None
    template_id: Optional[int] = None

    @property
    def display_name(self) -> str:
        return display_name(self.name, self.month, self.year)

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None


@dataclass
class CategoryRow(_Row):
    category_id: int
    budget_id: int
    category_name: str
    allocated_amount: float
    net_amount: float
    remaining_amount: float
    entries_count: int
    last_activity_at: Optional[str] = None
    category_type: str = CategoryType.EXPENSE.value
    global_category_id: Optional[int] = None


@dataclass
class LedgerEntry(_Row):
    entry_id: int
    category_id: int
    entry_type: str
    what: str
    amount: float
    date: str
    created_at: str
    where: Optional[str] = None
    deleted_at: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class ChangeHistoryEntry(_Row):
    change_id: int
    budget_id: int
    change_type: str
    change_description: str
    changed_at: str
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None


@dataclass
class GlobalCategory(_Row):
    global_category_id: int
    name: str
    created_at: str
    description: Optional[str] = None


@dataclass
class TemplateCategoryItem(_Row):
    template_category_id: int
    global_category_id: int
    category_name: str
    allocated_amount: float
    category_type: str
    sort_order: int


@dataclass
class TemplateSummary(_Row):
    template_id: int
    name: str
    created_at: str
    category_count: int
    total_amount: float
    description: Optional[str] = None


@dataclass
class TemplateWithCategories(_Row):
    template_id: int
    name: str
    created_at: str
    description: Optional[str] = None
    categories: List[TemplateCategoryItem] = field(default_factory=list)


@dataclass
class TemplateItemSpec:
    """Input for one template line: a global category and its allocation."""

    global_category_id: int
    allocated_amount: float = 0.0
    category_type: CategoryType = CategoryType.EXPENSE
    sort_order: int = 0

    def __post_init__(self) -> None:
        self.category_type = CategoryType.parse(self.category_type)


@dataclass
class BudgetOverview:
    """Income, allocation and spending totals shown on a budget's detail view."""

    budget_id: int
    total_income: float
    allocated: float
    unallocated: float
    spent: float
    received: float
    remaining: float
    spent_percentage: float
