"""Error taxonomy shared by every budget ledger operation."""

from __future__ import annotations

from typing import Any


class BudgetLedgerError(Exception):
    """Base class for all errors surfaced to callers."""

    kind = "error"


class NotFoundError(BudgetLedgerError, LookupError):
    """The targeted budget, category, entry or template does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: Any, detail: str | None = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity} with ID {entity_id} not found"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class ConflictError(BudgetLedgerError):
    """A unique constraint was violated."""

    kind = "conflict"


class StorageError(BudgetLedgerError):
    """Connection, transaction or statement failure not otherwise classified."""

    kind = "storage"


class SchemaError(StorageError):
    """Structural schema change failed; startup must abort."""

    kind = "schema"


class InvalidValueError(BudgetLedgerError, ValueError):
    """A field or enum value was rejected before touching the store."""

    kind = "invalid_value"


class UnknownCommandError(BudgetLedgerError, KeyError):
    kind = "unknown_command"

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Unknown command"
