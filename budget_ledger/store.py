"""Explicit handle on the local SQLite database.

Every operation receives a :class:`LedgerStore` and asks it for a short-lived
connection.  Nothing is cached between calls; the handle only carries the
path and whether it has been opened.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence, Union

import pandas as pd
import structlog

from .config import BUSY_TIMEOUT, DB_PATH
from .errors import StorageError
from .schema import ensure_schema

logger = structlog.get_logger(__name__)


class LedgerStore:
    """Handle on one budget database file."""

    def __init__(self, path: Optional[Union[str, Path]] = None, timeout: float = BUSY_TIMEOUT) -> None:
        self.path = Path(path) if path is not None else DB_PATH
        self.timeout = timeout
        self._opened = False

    def __repr__(self) -> str:
        return f"LedgerStore(path={str(self.path)!r}, opened={self._opened})"

    def __enter__(self) -> "LedgerStore":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._opened

    def open(self, run_schema: bool = True, seed_examples: bool = False) -> "LedgerStore":
        """Create the parent directory and bring the schema up to date."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._opened = True
        if run_schema:
            try:
                ensure_schema(self, seed_examples=seed_examples)
            except BaseException:
                self._opened = False
                raise
        logger.info("store_opened", path=str(self.path))
        return self

    def close(self) -> None:
        if self._opened:
            logger.info("store_closed", path=str(self.path))
        self._opened = False

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a fresh connection with foreign keys on; always closed afterwards.

        Transactions are managed explicitly by :meth:`transaction`, so the
        connection runs in autocommit mode otherwise.
        """
        if not self._opened:
            raise StorageError(f"Store at {self.path} is not open")
        try:
            conn = sqlite3.connect(str(self.path), timeout=self.timeout, isolation_level=None)
        except sqlite3.Error as exc:
            raise StorageError(f"Database connection error: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        except sqlite3.Error as exc:
            raise StorageError(f"SQL execution error: {exc}") from exc
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the body in one write transaction, rolled back on any error."""
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                raise StorageError(f"Transaction commit error: {exc}") from exc

    def read_frame(self, sql: str, params: Sequence[Any] = ()) -> pd.DataFrame:
        """Run a read query into a DataFrame.

        Missing values in text columns come back as ``None`` whatever the
        pandas version's default string handling.
        """
        with self.connect() as conn:
            conn.row_factory = None
            df = pd.read_sql_query(sql, conn, params=list(params))
        for column in df.select_dtypes(exclude="number").columns:
            df[column] = df[column].astype(object).where(df[column].notna(), None)
        return df
