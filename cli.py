"""
Snapshot server CLI (flat-layout friendly).

Usage
-----
snapshot serve --port 8080
snapshot export --out data/database.db.zst --db-url "postgresql://..."
snapshot export --out data/database.db --no-compress
snapshot hash-email someone@example.com
"""

from __future__ import annotations

import argparse
import os
import shutil
import sys
from pathlib import Path
from typing import List, Optional

import psycopg2

from contracts.errors import SnapshotError
from contracts.normalization import hash_identity
from infra.config import ConfigurationError, Settings, get_settings, resolve_secrets
from infra.logging_config import StructuredLogger, setup_logging
from version import ENGINE_NAME, ENGINE_VERSION

_LOGGER = StructuredLogger("cli")


def _load_settings(args: argparse.Namespace) -> Settings:
    """Apply CLI overrides through the environment, then resolve settings."""
    db_url = getattr(args, "db_url", None)
    if db_url:
        os.environ["WAREHOUSE__URL"] = db_url
    setup_logging()
    try:
        return resolve_secrets(get_settings(reload=True))
    except ConfigurationError as exc:
        raise SystemExit(str(exc)) from exc


def _require_warehouse(settings: Settings) -> None:
    if not settings.warehouse.url:
        raise SystemExit(
            "Missing --db-url (or WAREHOUSE_READONLY_UNIFIED_YSWS_DATABASE_URL env var)."
        )


def cmd_serve(args: argparse.Namespace) -> None:
    from apps.backend.db import ping
    from apps.flask_api.flask_app import create_app
    from apps.flask_api.wsgi import build_snapshot_cache

    settings = _load_settings(args)
    _require_warehouse(settings)

    try:
        ping()
    except psycopg2.Error as exc:
        raise SystemExit(f"Cannot reach warehouse: {exc}") from exc
    _LOGGER.info("warehouse_connected")

    cache = build_snapshot_cache(settings)
    app = create_app(settings, cache)
    host = args.host or settings.api.host
    port = args.port or settings.api.port
    _LOGGER.info("server_starting", host=host, port=port, ttl_seconds=settings.snapshot.ttl_seconds)
    try:
        app.run(host=host, port=port, threaded=True)
    finally:
        cache.close()


def cmd_export(args: argparse.Namespace) -> None:
    from apps.backend.db import db_conn
    from pipeline.export_sqlite import SnapshotExporter
    from pipeline.snapshot import SnapshotBuilder

    settings = _load_settings(args)
    _require_warehouse(settings)

    out = Path(args.out).resolve()
    if out.exists() and not args.force:
        raise SystemExit(f"{out} already exists (use --force to overwrite).")
    out.parent.mkdir(parents=True, exist_ok=True)

    compress = settings.snapshot.compress and not args.no_compress
    builder = SnapshotBuilder(
        exporter=SnapshotExporter(
            email_salt=settings.snapshot.email_salt,
            itersize=settings.warehouse.stream_batch_size,
        ),
        connect=db_conn,
        artifact_dir=out.parent,
        compress=compress,
    )
    try:
        artifact = builder.build()
    except SnapshotError as exc:
        raise SystemExit(f"Export failed: {exc}") from exc

    shutil.move(str(artifact.path), str(out))
    print(
        f"Wrote {out} ({artifact.stats.projects} projects, "
        f"{artifact.stats.mentions} mentions, {artifact.media_type})"
    )


def cmd_hash_email(args: argparse.Namespace) -> None:
    settings = _load_settings(args)
    if not get_settings().snapshot.email_salt:
        print("warning: EMAIL_SALT not configured; digest uses a throwaway salt", file=sys.stderr)
    digest = hash_identity(args.email, settings.snapshot.email_salt)
    if digest is None:
        raise SystemExit("Empty email.")
    print(digest)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="snapshot", description="Warehouse snapshot server CLI")
    p.add_argument("--version", action="version", version=f"{ENGINE_NAME} {ENGINE_VERSION}")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Serve GET /db with a cached, single-flight snapshot.")
    sp.add_argument("--host", default=None, help="Bind address (or API__HOST / HOST env var).")
    sp.add_argument("--port", type=int, default=None, help="Port (or API__PORT / PORT env var). Default: 8080")
    sp.add_argument("--db-url", default=None, help="Warehouse URL (or WAREHOUSE_READONLY_UNIFIED_YSWS_DATABASE_URL).")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("export", help="Generate one snapshot file and exit.")
    sp.add_argument("--out", required=True, help="Output file path.")
    sp.add_argument("--db-url", default=None, help="Warehouse URL (or WAREHOUSE_READONLY_UNIFIED_YSWS_DATABASE_URL).")
    sp.add_argument("--no-compress", action="store_true", help="Write plain SQLite instead of zstd.")
    sp.add_argument("--force", action="store_true", help="Overwrite --out if it exists.")
    sp.set_defaults(func=cmd_export)

    sp = sub.add_parser("hash-email", help="Print the identity digest for an email using EMAIL_SALT.")
    sp.add_argument("email", help="Email address to hash.")
    sp.set_defaults(func=cmd_hash_email)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
