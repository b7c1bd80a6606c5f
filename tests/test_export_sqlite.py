"""Tests for the warehouse → SQLite export."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Sequence

import psycopg2
import pytest

from contracts.errors import SnapshotWriteError, UpstreamReadError
from contracts.normalization import hash_identity
from contracts.schema import APPROVED_PROJECTS, PROJECT_MENTIONS, TableSpec
from pipeline.export_sqlite import SnapshotExporter, copy_table, create_schema

SALT = "test-salt"


def project_row(record_id: str, **overrides: Any) -> tuple[Any, ...]:
    values: dict[str, Any] = {
        "record_id": record_id,
        "first_name": "Ada",
        "last_name": "Lovelace",
        "git_hub_username": "ada",
        "geocoded_country": "United Kingdom",
        "geocoded_country_code": "GB",
        "playable_url": "https://Ada.dev/Game/",
        "code_url": "https://GitHub.com/Ada/Engine.git",
        "hours_spent": Decimal("12.5"),
        "approved_at": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        "override_hours_spent_justification": None,
        "age_when_approved": 17,
        "ysws_name": "Sprig",
        "email_hash": "Ada@Example.com",
    }
    values.update(overrides)
    return tuple(values[name] for name in APPROVED_PROJECTS.column_names)


def mention_row(mention_id: str, project: str | None, **overrides: Any) -> tuple[Any, ...]:
    values: dict[str, Any] = {
        "id": mention_id,
        "ysws_project_mentions_id": f"m-{mention_id}",
        "ysws_project_mention_searches": None,
        "ysws_from_ysws_approved_project": "Sprig",
        "record_id": f"rec-{mention_id}",
        "ysws_approved_project": project,
        "source": "hackernews",
        "link_found_at": "2024-05-02T00:00:00Z",
        "archive_url": None,
        "url": "https://news.ycombinator.com/item?id=1",
        "headline": "Show HN",
        "date": "2024-05-02",
        "weighted_engagement_points": 3.5,
        "project_url": "github.com/ada/engine/tree/main",
        "engagement_count": 42,
        "engagement_type": "points",
        "mentions_hack_club": True,
        "published_by_hack_club": False,
    }
    values.update(overrides)
    return tuple(values[name] for name in PROJECT_MENTIONS.column_names)


class FakeWarehouse:
    """Row source serving canned rows per table."""

    def __init__(self, rows: dict[str, list[tuple[Any, ...]]]) -> None:
        self._rows = rows
        self.calls: list[str] = []

    def __call__(self, conn: Any, table: TableSpec) -> Iterator[Sequence[Any]]:
        self.calls.append(table.name)
        return iter(self._rows.get(table.name, []))


def failing_after(rows: list[tuple[Any, ...]]) -> Iterator[tuple[Any, ...]]:
    yield from rows
    raise psycopg2.OperationalError("server closed the connection unexpectedly")


def _export(tmp_path: Path, rows: dict[str, list[tuple[Any, ...]]]) -> tuple[Path, Any]:
    target = tmp_path / "snapshot.db"
    exporter = SnapshotExporter(email_salt=SALT, row_source=FakeWarehouse(rows))
    stats = exporter.export(object(), target)
    return target, stats


def _query(path: Path, sql: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
    conn = sqlite3.connect(str(path))
    try:
        return conn.execute(sql, params).fetchall()
    finally:
        conn.close()


def test_export_creates_schema_and_indexes(tmp_path: Path) -> None:
    target, stats = _export(tmp_path, {})

    assert stats.projects == 0 and stats.mentions == 0
    project_cols = [r[1] for r in _query(target, "PRAGMA table_info(approved_projects)")]
    mention_cols = [r[1] for r in _query(target, "PRAGMA table_info(ysws_project_mentions)")]
    assert tuple(project_cols) == APPROVED_PROJECTS.column_names
    assert tuple(mention_cols) == PROJECT_MENTIONS.column_names
    assert "email" not in project_cols

    indexes = {r[0] for r in _query(target, "SELECT name FROM sqlite_master WHERE type = 'index'")}
    assert {"idx_mentions_record_id", "idx_mentions_approved_project"} <= indexes


def test_export_normalizes_and_hashes_fields(tmp_path: Path) -> None:
    target, stats = _export(
        tmp_path,
        {
            "approved_projects": [project_row("recA")],
            "ysws_project_mentions": [mention_row("1", "recA")],
        },
    )

    assert (stats.projects, stats.mentions, stats.total_rows) == (1, 1, 2)
    ((playable, code, hours, approved_at, age, email_hash),) = _query(
        target,
        "SELECT playable_url, code_url, hours_spent, approved_at, age_when_approved, email_hash "
        "FROM approved_projects",
    )
    assert playable == "https://ada.dev/game"
    assert code == "https://github.com/ada/engine"
    assert hours == 12.5
    assert approved_at == "2024-05-01T12:00:00Z"
    assert age == 17
    assert email_hash == hash_identity("ada@example.com", SALT)

    ((project_url, flag_a, flag_b, points),) = _query(
        target,
        "SELECT project_url, mentions_hack_club, published_by_hack_club, weighted_engagement_points "
        "FROM ysws_project_mentions",
    )
    assert project_url == "https://github.com/ada/engine"
    assert (flag_a, flag_b) == (1, 0)
    assert points == 3.5


def test_raw_email_never_lands_in_snapshot(tmp_path: Path) -> None:
    target, _ = _export(tmp_path, {"approved_projects": [project_row("recA")]})
    assert b"Example.com" not in target.read_bytes()
    assert b"ada@example.com" not in target.read_bytes()


def test_null_fields_stay_null(tmp_path: Path) -> None:
    target, _ = _export(
        tmp_path,
        {
            "approved_projects": [
                project_row("recA", code_url=None, hours_spent=None, email_hash=None, playable_url="   "),
            ],
        },
    )
    ((code, hours, email_hash, playable),) = _query(
        target, "SELECT code_url, hours_spent, email_hash, playable_url FROM approved_projects"
    )
    assert code is None and hours is None and email_hash is None and playable is None


def test_orphan_mentions_are_kept(tmp_path: Path) -> None:
    target, stats = _export(
        tmp_path,
        {
            "approved_projects": [project_row("recA")],
            "ysws_project_mentions": [mention_row("1", "recMissing"), mention_row("2", None)],
        },
    )

    assert stats.mentions == 2
    rows = _query(target, "SELECT id, ysws_approved_project FROM ysws_project_mentions ORDER BY id")
    assert rows == [("1", "recMissing"), ("2", None)]


def test_equivalent_code_urls_group_together(tmp_path: Path) -> None:
    target, _ = _export(
        tmp_path,
        {
            "approved_projects": [
                project_row("recA", code_url="https://GitHub.com/u/r/tree/main"),
                project_row("recB", code_url="github.com/u/r.git/"),
                project_row("recC", code_url="https://github.com/u/other"),
            ],
        },
    )
    rows = _query(
        target,
        "SELECT code_url, COUNT(*) FROM approved_projects GROUP BY code_url ORDER BY code_url",
    )
    assert rows == [("https://github.com/u/other", 1), ("https://github.com/u/r", 2)]


def test_upstream_failure_mid_stream_rolls_back(tmp_path: Path) -> None:
    target = tmp_path / "snapshot.db"

    def source(conn: Any, table: TableSpec) -> Iterator[Sequence[Any]]:
        if table is APPROVED_PROJECTS:
            return failing_after([project_row("recA"), project_row("recB")])
        return iter([])

    exporter = SnapshotExporter(email_salt=SALT, row_source=source)
    with pytest.raises(UpstreamReadError) as excinfo:
        exporter.export(object(), target)

    assert excinfo.value.code == "warehouse_unavailable"
    assert isinstance(excinfo.value.__cause__, psycopg2.OperationalError)
    assert _query(target, "SELECT COUNT(*) FROM approved_projects") == [(0,)]


def test_upstream_failure_before_first_row(tmp_path: Path) -> None:
    def source(conn: Any, table: TableSpec) -> Iterator[Sequence[Any]]:
        raise psycopg2.OperationalError("could not connect to server")

    exporter = SnapshotExporter(email_salt=SALT, row_source=source)
    with pytest.raises(UpstreamReadError):
        exporter.export(object(), tmp_path / "snapshot.db")


def test_duplicate_primary_key_is_a_write_error(tmp_path: Path) -> None:
    exporter = SnapshotExporter(
        email_salt=SALT,
        row_source=FakeWarehouse({"approved_projects": [project_row("recA"), project_row("recA")]}),
    )
    with pytest.raises(SnapshotWriteError) as excinfo:
        exporter.export(object(), tmp_path / "snapshot.db")

    assert excinfo.value.code == "snapshot_write_failed"
    assert isinstance(excinfo.value.__cause__, sqlite3.IntegrityError)


def test_row_width_mismatch_is_a_write_error(tmp_path: Path) -> None:
    exporter = SnapshotExporter(
        email_salt=SALT,
        row_source=FakeWarehouse({"approved_projects": [("recA", "Ada")]}),
    )
    with pytest.raises(SnapshotWriteError, match="expected 14 columns"):
        exporter.export(object(), tmp_path / "snapshot.db")


def test_unconvertible_value_is_a_write_error(tmp_path: Path) -> None:
    exporter = SnapshotExporter(
        email_salt=SALT,
        row_source=FakeWarehouse({"approved_projects": [project_row("recA", hours_spent="lots")]}),
    )
    with pytest.raises(SnapshotWriteError, match="cannot convert row"):
        exporter.export(object(), tmp_path / "snapshot.db")


def test_export_refuses_target_with_content(tmp_path: Path) -> None:
    target = tmp_path / "snapshot.db"
    target.write_bytes(b"published artifact")

    exporter = SnapshotExporter(email_salt=SALT, row_source=FakeWarehouse({}))
    with pytest.raises(SnapshotWriteError):
        exporter.export(object(), target)
    assert target.read_bytes() == b"published artifact"


def test_exporter_requires_salt() -> None:
    with pytest.raises(ValueError):
        SnapshotExporter(email_salt="", row_source=FakeWarehouse({}))


def test_tables_are_read_projects_first(tmp_path: Path) -> None:
    source = FakeWarehouse({})
    SnapshotExporter(email_salt=SALT, row_source=source).export(object(), tmp_path / "snapshot.db")
    assert source.calls == ["approved_projects", "ysws_project_mentions"]


class _RollbackFailingConn:
    """Real SQLite connection whose ROLLBACK statement fails."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    def execute(self, sql: str, *args: Any) -> Any:
        if sql == "ROLLBACK":
            raise sqlite3.OperationalError("cannot rollback - no transaction is active")
        return self._conn.execute(sql, *args)

    def executemany(self, sql: str, rows: Any) -> Any:
        return self._conn.executemany(sql, rows)


def test_failed_rollback_keeps_original_error(tmp_path: Path) -> None:
    conn = sqlite3.connect(str(tmp_path / "snapshot.db"), isolation_level=None)
    try:
        create_schema(conn)

        def source(warehouse_conn: Any, table: TableSpec) -> Iterator[Sequence[Any]]:
            return failing_after([project_row("recA")])

        with pytest.raises(UpstreamReadError):
            copy_table(
                object(),
                _RollbackFailingConn(conn),  # type: ignore[arg-type]
                APPROVED_PROJECTS,
                email_salt=SALT,
                row_source=source,
            )
    finally:
        conn.close()


def test_text_flags_are_parsed_not_truthy(tmp_path: Path) -> None:
    target, _ = _export(
        tmp_path,
        {
            "ysws_project_mentions": [
                mention_row("1", None, mentions_hack_club="false", published_by_hack_club="t"),
            ],
        },
    )
    rows = _query(target, "SELECT mentions_hack_club, published_by_hack_club FROM ysws_project_mentions")
    assert rows == [(0, 1)]


def test_unparseable_flag_is_a_write_error(tmp_path: Path) -> None:
    exporter = SnapshotExporter(
        email_salt=SALT,
        row_source=FakeWarehouse({"ysws_project_mentions": [mention_row("1", None, mentions_hack_club="maybe")]}),
    )
    with pytest.raises(SnapshotWriteError, match="cannot convert row"):
        exporter.export(object(), tmp_path / "snapshot.db")
