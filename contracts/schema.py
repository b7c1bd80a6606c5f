"""Embedded SQLite schema for published snapshots, and the warehouse queries feeding it.

Each table is declared once as an ordered tuple of ``Column`` entries. The
order is shared by the warehouse SELECT, the SQLite DDL, and the INSERT
statement, so a row coming off the warehouse cursor can be transformed
position by position.
"""

from __future__ import annotations

from dataclasses import dataclass

# Transform kinds understood by pipeline.export_sqlite.
KIND_TEXT = "text"
KIND_REAL = "real"
KIND_INT = "int"
KIND_FLAG = "flag"            # boolean -> 0/1
KIND_URL = "url"              # normalize_url
KIND_IDENTITY = "identity"    # hash_identity (raw email in, digest out)


@dataclass(frozen=True)
class Column:
    name: str
    sql_type: str
    kind: str = KIND_TEXT
    primary_key: bool = False

    def ddl(self) -> str:
        suffix = " PRIMARY KEY" if self.primary_key else ""
        return f"{self.name} {self.sql_type}{suffix}"


@dataclass(frozen=True)
class TableSpec:
    name: str
    columns: tuple[Column, ...]
    select_sql: str

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    def create_sql(self) -> str:
        body = ",\n    ".join(c.ddl() for c in self.columns)
        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n    {body}\n)"

    def insert_sql(self) -> str:
        cols = ", ".join(self.column_names)
        params = ", ".join("?" for _ in self.columns)
        return f"INSERT INTO {self.name} ({cols}) VALUES ({params})"


# -----------------------------
# approved_projects
# -----------------------------

PROJECTS_SELECT_SQL = """
SELECT
    ap.record_id,
    ap.first_name,
    ap.last_name,
    ap.git_hub_username,
    ap.geocoded_country,
    ap.geocoded_country_code,
    ap.playable_url,
    ap.code_url,
    ap.hours_spent,
    ap.approved_at,
    ap.override_hours_spent_justification,
    ap.age_when_approved,
    ysws_name.value AS ysws_name,
    ap.email
FROM airtable_unified_ysws_projects_db.approved_projects ap
LEFT JOIN airtable_unified_ysws_projects_db.approved_projects__ysws_name ysws_name
    ON ap._dlt_id = ysws_name._dlt_parent_id
    AND ysws_name._dlt_list_idx = 0
"""

APPROVED_PROJECTS = TableSpec(
    name="approved_projects",
    columns=(
        Column("record_id", "TEXT", primary_key=True),
        Column("first_name", "TEXT"),
        Column("last_name", "TEXT"),
        Column("git_hub_username", "TEXT"),
        Column("geocoded_country", "TEXT"),
        Column("geocoded_country_code", "TEXT"),
        Column("playable_url", "TEXT", KIND_URL),
        Column("code_url", "TEXT", KIND_URL),
        Column("hours_spent", "REAL", KIND_REAL),
        Column("approved_at", "TEXT"),
        Column("override_hours_spent_justification", "TEXT"),
        Column("age_when_approved", "INTEGER", KIND_INT),
        Column("ysws_name", "TEXT"),
        Column("email_hash", "TEXT", KIND_IDENTITY),
    ),
    select_sql=PROJECTS_SELECT_SQL,
)


# -----------------------------
# ysws_project_mentions
# -----------------------------

MENTIONS_SELECT_SQL = """
SELECT
    id,
    ysws_project_mentions_id,
    ysws_project_mention_searches,
    ysws_from_ysws_approved_project,
    record_id,
    ysws_approved_project,
    source,
    link_found_at,
    archive_url,
    url,
    headline,
    date,
    weighted_engagement_points,
    project_url,
    engagement_count,
    engagement_type,
    mentions_hack_club,
    published_by_hack_club
FROM airtable_unified_ysws_projects_db.ysws_project_mentions
"""

# No FOREIGN KEY on ysws_approved_project: orphan mentions are legal.
PROJECT_MENTIONS = TableSpec(
    name="ysws_project_mentions",
    columns=(
        Column("id", "TEXT", primary_key=True),
        Column("ysws_project_mentions_id", "TEXT"),
        Column("ysws_project_mention_searches", "TEXT"),
        Column("ysws_from_ysws_approved_project", "TEXT"),
        Column("record_id", "TEXT"),
        Column("ysws_approved_project", "TEXT"),
        Column("source", "TEXT"),
        Column("link_found_at", "TEXT"),
        Column("archive_url", "TEXT", KIND_URL),
        Column("url", "TEXT", KIND_URL),
        Column("headline", "TEXT"),
        Column("date", "TEXT"),
        Column("weighted_engagement_points", "REAL", KIND_REAL),
        Column("project_url", "TEXT", KIND_URL),
        Column("engagement_count", "INTEGER", KIND_INT),
        Column("engagement_type", "TEXT"),
        Column("mentions_hack_club", "INTEGER", KIND_FLAG),
        Column("published_by_hack_club", "INTEGER", KIND_FLAG),
    ),
    select_sql=MENTIONS_SELECT_SQL,
)


SNAPSHOT_TABLES: tuple[TableSpec, ...] = (APPROVED_PROJECTS, PROJECT_MENTIONS)

SNAPSHOT_INDEXES: tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS idx_mentions_record_id ON ysws_project_mentions(record_id)",
    "CREATE INDEX IF NOT EXISTS idx_mentions_approved_project ON ysws_project_mentions(ysws_approved_project)",
)
