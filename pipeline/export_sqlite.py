"""Warehouse → SQLite export.

This is the storage boundary of a snapshot: it creates the embedded schema in a
fresh SQLite file and copies both warehouse tables into it. Rows are streamed
(read → normalize → insert) so peak memory does not depend on table size.

Each table is written inside its own transaction. Any failure rolls that
transaction back and surfaces as a typed error; deleting the half-built file is
the caller's job.
"""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import psycopg2

from apps.backend.db import iter_rows_conn
from contracts.errors import SnapshotWriteError, UpstreamReadError
from contracts.normalization import (
    coerce_flag,
    coerce_int,
    coerce_real,
    coerce_text,
    hash_identity,
    normalize_url,
)
from contracts.schema import (
    APPROVED_PROJECTS,
    KIND_FLAG,
    KIND_IDENTITY,
    KIND_INT,
    KIND_REAL,
    KIND_TEXT,
    KIND_URL,
    PROJECT_MENTIONS,
    SNAPSHOT_INDEXES,
    SNAPSHOT_TABLES,
    TableSpec,
)
from infra.logging_config import StructuredLogger

_LOGGER = StructuredLogger(__name__)

RowSource = Callable[[Any, TableSpec], Iterable[Sequence[Any]]]


@dataclass(frozen=True)
class ExportStats:
    projects: int
    mentions: int

    @property
    def total_rows(self) -> int:
        return self.projects + self.mentions


def _row_transformer(table: TableSpec, *, email_salt: str) -> Callable[[Sequence[Any]], tuple[Any, ...]]:
    """Build a per-row function applying each column's normalization."""

    def _identity(value: Any) -> Optional[str]:
        return hash_identity(value, email_salt)

    by_kind: dict[str, Callable[[Any], Any]] = {
        KIND_TEXT: coerce_text,
        KIND_REAL: coerce_real,
        KIND_INT: coerce_int,
        KIND_FLAG: coerce_flag,
        KIND_URL: normalize_url,
        KIND_IDENTITY: _identity,
    }
    funcs = [by_kind[c.kind] for c in table.columns]
    width = len(funcs)

    def transform(row: Sequence[Any]) -> tuple[Any, ...]:
        if len(row) != width:
            raise SnapshotWriteError(
                f"{table.name}: expected {width} columns from warehouse, got {len(row)}"
            )
        return tuple(fn(value) for fn, value in zip(funcs, row))

    return transform


def warehouse_rows(itersize: int = 2000) -> RowSource:
    """Return a row source streaming ``table.select_sql`` from a psycopg2 connection."""

    def _source(warehouse_conn: Any, table: TableSpec) -> Iterator[Sequence[Any]]:
        return iter_rows_conn(
            warehouse_conn,
            table.select_sql,
            cursor_name=f"snapshot_{table.name}",
            itersize=itersize,
        )

    return _source


def _guard_upstream(table: TableSpec, rows: Iterable[Sequence[Any]]) -> Iterator[Sequence[Any]]:
    """Re-raise warehouse driver errors as UpstreamReadError."""
    try:
        yield from rows
    except psycopg2.Error as exc:
        raise UpstreamReadError(f"reading {table.name} from warehouse failed: {exc}") from exc


def create_schema(sqlite_conn: sqlite3.Connection) -> None:
    """Create snapshot tables and indexes."""
    try:
        for table in SNAPSHOT_TABLES:
            sqlite_conn.execute(table.create_sql())
        for ddl in SNAPSHOT_INDEXES:
            sqlite_conn.execute(ddl)
    except sqlite3.Error as exc:
        raise SnapshotWriteError(f"creating snapshot schema failed: {exc}") from exc


def copy_table(
    warehouse_conn: Any,
    sqlite_conn: sqlite3.Connection,
    table: TableSpec,
    *,
    email_salt: str,
    row_source: RowSource,
) -> int:
    """Copy one warehouse table into SQLite inside a single transaction.

    Returns the number of rows inserted.
    """
    transform = _row_transformer(table, email_salt=email_salt)
    count = 0

    def _rows() -> Iterator[tuple[Any, ...]]:
        nonlocal count
        try:
            source = row_source(warehouse_conn, table)
        except psycopg2.Error as exc:
            raise UpstreamReadError(f"querying {table.name} from warehouse failed: {exc}") from exc
        for raw in _guard_upstream(table, source):
            try:
                row = transform(raw)
            except (TypeError, ValueError, ArithmeticError) as exc:
                raise SnapshotWriteError(f"{table.name}: cannot convert row: {exc}") from exc
            count += 1
            yield row

    started = time.perf_counter()
    try:
        sqlite_conn.execute("BEGIN")
        sqlite_conn.executemany(table.insert_sql(), _rows())
        sqlite_conn.execute("COMMIT")
    except BaseException as exc:
        if sqlite_conn.in_transaction:
            try:
                sqlite_conn.execute("ROLLBACK")
            except sqlite3.Error as rollback_exc:
                _LOGGER.warning("snapshot_rollback_failed", table=table.name, error=str(rollback_exc))
        if isinstance(exc, sqlite3.Error):
            raise SnapshotWriteError(f"writing {table.name} failed: {exc}") from exc
        raise

    _LOGGER.info(
        "snapshot_table_copied",
        table=table.name,
        rows=count,
        duration_ms=round((time.perf_counter() - started) * 1000.0, 1),
    )
    return count


def copy_projects(
    warehouse_conn: Any,
    sqlite_conn: sqlite3.Connection,
    *,
    email_salt: str,
    row_source: RowSource,
) -> int:
    return copy_table(
        warehouse_conn, sqlite_conn, APPROVED_PROJECTS, email_salt=email_salt, row_source=row_source
    )


def copy_mentions(
    warehouse_conn: Any,
    sqlite_conn: sqlite3.Connection,
    *,
    email_salt: str,
    row_source: RowSource,
) -> int:
    return copy_table(
        warehouse_conn, sqlite_conn, PROJECT_MENTIONS, email_salt=email_salt, row_source=row_source
    )


class SnapshotExporter:
    """
    Writes one complete snapshot (both tables) into a new SQLite file.

    Projects and mentions are copied independently; a mention whose
    ``ysws_approved_project`` matches no project is kept as-is.
    """

    def __init__(self, *, email_salt: str, row_source: Optional[RowSource] = None, itersize: int = 2000) -> None:
        if not email_salt:
            raise ValueError("email_salt must be non-empty")
        self._email_salt = email_salt
        self._row_source = row_source or warehouse_rows(itersize)

    def export(self, warehouse_conn: Any, target_path: str | Path) -> ExportStats:
        path = Path(target_path)
        if path.exists() and path.stat().st_size > 0:
            raise SnapshotWriteError(f"snapshot target already has content: {path}")

        try:
            sqlite_conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
        except sqlite3.Error as exc:
            raise SnapshotWriteError(f"opening {path} failed: {exc}") from exc

        try:
            create_schema(sqlite_conn)
            projects = copy_projects(
                warehouse_conn, sqlite_conn, email_salt=self._email_salt, row_source=self._row_source
            )
            mentions = copy_mentions(
                warehouse_conn, sqlite_conn, email_salt=self._email_salt, row_source=self._row_source
            )
        finally:
            sqlite_conn.close()

        return ExportStats(projects=projects, mentions=mentions)
