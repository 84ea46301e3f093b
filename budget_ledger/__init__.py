"""Top‑level package for the budget ledger.

This file makes the directory a Python package and exposes
convenient names.  The primary modules are:

* ``schema`` – table definitions and additive migrations
* ``budgets`` – the monthly budget lifecycle
* ``ledger`` – categories, ledger entries and their aggregates
* ``templates`` – global categories and budget templates
* ``history`` – the per-budget change history
* ``commands`` – named camelCase operations for the UI shell

Every operation takes an explicit :class:`LedgerStore`:

```python
from budget_ledger import LedgerStore, budgets

with LedgerStore("budgets.sqlite") as store:
    budget_id = budgets.create_budget(store, 3, 2024, 5000.0)
```
"""

from . import budgets  # noqa: F401  # re-exported for convenience
from . import commands  # noqa: F401  # re-exported for convenience
from . import history  # noqa: F401  # re-exported for convenience
from . import ledger  # noqa: F401  # re-exported for convenience
from . import schema  # noqa: F401  # re-exported for convenience
from . import templates  # noqa: F401  # re-exported for convenience
from .errors import (
    BudgetLedgerError,
    ConflictError,
    InvalidValueError,
    NotFoundError,
    SchemaError,
    StorageError,
)
from .store import LedgerStore

__all__ = [
    "LedgerStore",
    "budgets",
    "commands",
    "history",
    "ledger",
    "schema",
    "templates",
    "BudgetLedgerError",
    "ConflictError",
    "InvalidValueError",
    "NotFoundError",
    "SchemaError",
    "StorageError",
]
