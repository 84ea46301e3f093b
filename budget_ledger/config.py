"""Configuration management for the budget ledger.

This module centralizes the default data location, the database path and
the logging setup, with environment variable overrides.  A
:class:`~budget_ledger.store.LedgerStore` can always be opened on an
explicit path instead; these values are only the host defaults.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import structlog

# Base project root - assumes this file is in budget_ledger/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("BUDGET_LEDGER_DATA_DIR", _PROJECT_ROOT / "data"))

# Database
DB_PATH = Path(
    os.getenv("BUDGET_LEDGER_DB_PATH", DATA_DIR / "budgets.sqlite")
).resolve()

LOG_LEVEL = os.getenv("BUDGET_LEDGER_LOG_LEVEL", "INFO").upper()
LOG_JSON = os.getenv("BUDGET_LEDGER_LOG_JSON", "0") == "1"

# SQLite busy timeout in seconds; governs brief contention between overlapping calls.
BUSY_TIMEOUT = float(os.getenv("BUDGET_LEDGER_BUSY_TIMEOUT", "5.0"))


def ensure_data_directories() -> None:
    """Create the data directory and the database's parent if they don't exist."""
    for directory in [DATA_DIR, DB_PATH.parent]:
        directory.mkdir(parents=True, exist_ok=True)


def get_db_path() -> str:
    """Get the database path as a string."""
    return str(DB_PATH)


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Route structlog through stdlib logging with ISO timestamps."""
    level_name = (level or LOG_LEVEL).upper()
    use_json = LOG_JSON if json_output is None else json_output

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
