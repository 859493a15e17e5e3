"""Storage - repositories over the shared SQLite database"""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from inbox_helper.infrastructure.database import db_transaction, get_db_connection


def now_ms() -> int:
    return int(time.time() * 1000)


class BaseRepository:
    """Base class for per-table repositories."""

    def __init__(self, table_name: str) -> None:
        if not isinstance(table_name, str) or not table_name.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name: {table_name}")
        self.table_name = table_name

    @contextmanager
    def _get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        with get_db_connection() as conn:
            yield conn

    def query_one(self, query: str, params: tuple[Any, ...] | None = None) -> sqlite3.Row | None:
        with self._get_conn() as conn:
            return conn.execute(query, params or ()).fetchone()

    def query_all(self, query: str, params: tuple[Any, ...] | None = None) -> list[sqlite3.Row]:
        with self._get_conn() as conn:
            return conn.execute(query, params or ()).fetchall()

    def execute(self, query: str, params: tuple[Any, ...] | None = None) -> int | None:
        """
        Run a single write statement in its own transaction.

        Returns:
            Last inserted row ID
        """
        with db_transaction() as conn:
            cursor = conn.execute(query, params or ())
            return cursor.lastrowid


__all__ = ["BaseRepository", "now_ms"]
