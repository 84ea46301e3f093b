"""Named request/response operations for the desktop UI shell.

Each command takes a payload with lower camelCase keys, validates it with a
pydantic model and calls the matching store operation.  Results come back as
JSON-ready dicts and lists with camelCase keys.  Failures are raised as the
:mod:`budget_ledger.errors` types; :func:`error_payload` renders one for the
UI.
"""

from __future__ import annotations

import dataclasses
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from . import budgets, history, ledger, schema, templates
from .errors import BudgetLedgerError, InvalidValueError, UnknownCommandError
from .models import BudgetSummary, CategoryType, TemplateItemSpec

logger = structlog.get_logger(__name__)


class Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", allow_inf_nan=False
    )


class NoArgs(Payload):
    pass


class InitDatabaseArgs(Payload):
    seed_examples: bool = False


class CreateBudgetArgs(Payload):
    month: int
    year: int
    total_income: float
    name: Optional[str] = None


class BudgetIdArgs(Payload):
    budget_id: int


class SortBudgetsArgs(Payload):
    criteria: str = "last_edited"
    ascending: bool = False


class UpdateTitleArgs(Payload):
    budget_id: int
    title: str


class CategoryLedgerArgs(Payload):
    category_id: int
    limit: int = Field(default=50, ge=0)
    offset: int = Field(default=0, ge=0)
    sort: Optional[str] = None


class NewEntryArgs(Payload):
    category_id: int
    entry_type: str
    what: str
    where: Optional[str] = None
    amount: float
    date: str


class UpdateEntryArgs(Payload):
    entry_id: int
    entry_type: str
    what: str
    where: Optional[str] = None
    amount: float
    date: str


class EntryIdArgs(Payload):
    entry_id: int


class AllocationArgs(Payload):
    category_id: int
    amount: float


class NewCategoryArgs(Payload):
    budget_id: int
    category_name: str
    allocated_amount: float = 0.0
    category_type: str = CategoryType.EXPENSE.value
    global_category_id: Optional[int] = None


class GlobalCategoryArgs(Payload):
    name: str
    description: Optional[str] = None


class UpdateGlobalCategoryArgs(GlobalCategoryArgs):
    category_id: int


class GlobalCategoryIdArgs(Payload):
    category_id: int


class TemplateItemArgs(Payload):
    global_category_id: int
    allocated_amount: float = 0.0
    category_type: str = CategoryType.EXPENSE.value
    sort_order: int = 0

    def to_spec(self) -> TemplateItemSpec:
        return TemplateItemSpec(
            global_category_id=self.global_category_id,
            allocated_amount=self.allocated_amount,
            category_type=self.category_type,
            sort_order=self.sort_order,
        )


class TemplateArgs(Payload):
    name: str
    description: Optional[str] = None
    categories: List[TemplateItemArgs] = Field(default_factory=list)

    def item_specs(self) -> List[TemplateItemSpec]:
        return [item.to_spec() for item in self.categories]


class UpdateTemplateArgs(TemplateArgs):
    template_id: int


class TemplateIdArgs(Payload):
    template_id: int


class ApplyTemplateArgs(Payload):
    budget_id: int
    template_id: int


Handler = Callable[[Any, Any], Any]
COMMANDS: Dict[str, Tuple[Type[Payload], Handler]] = {}


def command(name: str, args_model: Type[Payload] = NoArgs) -> Callable[[Handler], Handler]:
    def register(func: Handler) -> Handler:
        COMMANDS[name] = (args_model, func)
        return func

    return register


# ---------------------------------------------------------------------------
# Schema and budgets
# ---------------------------------------------------------------------------


@command("init_database", InitDatabaseArgs)
def _init_database(store, args: InitDatabaseArgs):
    return schema.ensure_schema(store, seed_examples=args.seed_examples)


@command("create_monthly_budget", CreateBudgetArgs)
def _create_monthly_budget(store, args: CreateBudgetArgs):
    return budgets.create_budget(store, args.month, args.year, args.total_income, args.name)


@command("get_monthly_budget", BudgetIdArgs)
def _get_monthly_budget(store, args: BudgetIdArgs):
    return budgets.get_budget(store, args.budget_id)


@command("list_monthly_budgets")
def _list_monthly_budgets(store, args: NoArgs):
    return budgets.list_budgets(store)


@command("list_monthly_budgets_sorted", SortBudgetsArgs)
def _list_monthly_budgets_sorted(store, args: SortBudgetsArgs):
    return budgets.list_budgets_sorted(store, args.criteria, args.ascending)


@command("finish_monthly_budget", BudgetIdArgs)
def _finish_monthly_budget(store, args: BudgetIdArgs):
    return budgets.finish_budget(store, args.budget_id)


@command("unfinish_monthly_budget", BudgetIdArgs)
def _unfinish_monthly_budget(store, args: BudgetIdArgs):
    return budgets.unfinish_budget(store, args.budget_id)


@command("update_budget_title", UpdateTitleArgs)
def _update_budget_title(store, args: UpdateTitleArgs):
    return budgets.rename_budget(store, args.budget_id, args.title)


@command("delete_monthly_budget", BudgetIdArgs)
def _delete_monthly_budget(store, args: BudgetIdArgs):
    return budgets.delete_budget(store, args.budget_id)


@command("get_budget_change_history", BudgetIdArgs)
def _get_budget_change_history(store, args: BudgetIdArgs):
    return history.history(store, args.budget_id)


# ---------------------------------------------------------------------------
# Categories and ledger
# ---------------------------------------------------------------------------


@command("get_budget_categories_with_stats", BudgetIdArgs)
def _get_budget_categories_with_stats(store, args: BudgetIdArgs):
    return ledger.categories_with_stats(store, args.budget_id)


@command("get_budget_overview", BudgetIdArgs)
def _get_budget_overview(store, args: BudgetIdArgs):
    return ledger.budget_overview(store, args.budget_id)


@command("get_category_ledger", CategoryLedgerArgs)
def _get_category_ledger(store, args: CategoryLedgerArgs):
    return ledger.category_ledger(store, args.category_id, args.limit, args.offset, args.sort)


@command("add_category_entry", NewEntryArgs)
def _add_category_entry(store, args: NewEntryArgs):
    return ledger.add_entry(
        store, args.category_id, args.entry_type, args.what, args.amount, args.date, args.where
    )


@command("update_category_entry", UpdateEntryArgs)
def _update_category_entry(store, args: UpdateEntryArgs):
    return ledger.update_entry(
        store, args.entry_id, args.entry_type, args.what, args.amount, args.date, args.where
    )


@command("soft_delete_category_entry", EntryIdArgs)
def _soft_delete_category_entry(store, args: EntryIdArgs):
    return ledger.soft_delete_entry(store, args.entry_id)


@command("set_category_allocated_amount", AllocationArgs)
def _set_category_allocated_amount(store, args: AllocationArgs):
    return ledger.set_allocated_amount(store, args.category_id, args.amount)


@command("add_budget_category", NewCategoryArgs)
def _add_budget_category(store, args: NewCategoryArgs):
    return ledger.add_category(
        store,
        args.budget_id,
        args.category_name,
        args.allocated_amount,
        args.category_type,
        args.global_category_id,
    )


# ---------------------------------------------------------------------------
# Global categories and templates
# ---------------------------------------------------------------------------


@command("get_global_categories")
def _get_global_categories(store, args: NoArgs):
    return templates.list_global_categories(store)


@command("create_global_category", GlobalCategoryArgs)
def _create_global_category(store, args: GlobalCategoryArgs):
    return templates.create_global_category(store, args.name, args.description)


@command("update_global_category", UpdateGlobalCategoryArgs)
def _update_global_category(store, args: UpdateGlobalCategoryArgs):
    return templates.update_global_category(store, args.category_id, args.name, args.description)


@command("delete_global_category", GlobalCategoryIdArgs)
def _delete_global_category(store, args: GlobalCategoryIdArgs):
    return templates.delete_global_category(store, args.category_id)


@command("get_budget_templates")
def _get_budget_templates(store, args: NoArgs):
    return templates.list_templates(store)


@command("get_budget_template_with_categories", TemplateIdArgs)
def _get_budget_template_with_categories(store, args: TemplateIdArgs):
    return templates.get_template(store, args.template_id)


@command("create_budget_template", TemplateArgs)
def _create_budget_template(store, args: TemplateArgs):
    return templates.create_template(store, args.name, args.description, args.item_specs())


@command("update_budget_template", UpdateTemplateArgs)
def _update_budget_template(store, args: UpdateTemplateArgs):
    return templates.update_template(
        store, args.template_id, args.name, args.description, args.item_specs()
    )


@command("delete_budget_template", TemplateIdArgs)
def _delete_budget_template(store, args: TemplateIdArgs):
    return templates.delete_template(store, args.template_id)


@command("apply_template_to_budget", ApplyTemplateArgs)
def _apply_template_to_budget(store, args: ApplyTemplateArgs):
    return templates.apply_template(store, args.budget_id, args.template_id)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def to_jsonable(value: Any) -> Any:
    """Convert results to plain JSON types; dataclass fields become camelCase keys."""
    if isinstance(value, Enum):
        return value.value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        data = {
            to_camel(field.name): to_jsonable(getattr(value, field.name))
            for field in dataclasses.fields(value)
        }
        if isinstance(value, BudgetSummary):
            data["displayName"] = value.display_name
        return data
    if isinstance(value, dict):
        # keys here are data (table names and the like), not field names
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


def dispatch(store, name: str, payload: Optional[Dict[str, Any]] = None) -> Any:
    """Run command ``name`` with ``payload`` against ``store``."""
    try:
        args_model, handler = COMMANDS[name]
    except KeyError:
        raise UnknownCommandError(f"Unknown command '{name}'") from None

    try:
        args = args_model.model_validate(payload or {})
    except ValidationError as exc:
        raise InvalidValueError(f"Invalid payload for {name}: {exc}") from exc

    logger.debug("command_dispatched", command=name)
    return to_jsonable(handler(store, args))


def error_payload(exc: BudgetLedgerError) -> Dict[str, str]:
    return {"kind": exc.kind, "message": str(exc)}
