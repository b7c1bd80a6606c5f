"""Production wiring: settings → warehouse → snapshot cache → Flask app.

gunicorn --threads 8 'apps.flask_api.wsgi:create_app_from_env()'
"""

from __future__ import annotations

import atexit

from flask import Flask

from apps.backend.db import db_conn
from apps.flask_api.flask_app import create_app
from infra.config import Settings, get_settings, resolve_secrets
from infra.logging_config import setup_logging
from pipeline.export_sqlite import SnapshotExporter
from pipeline.snapshot import SnapshotBuilder
from pipeline.snapshot_cache import SnapshotCache


def build_snapshot_builder(settings: Settings, *, compress: bool | None = None) -> SnapshotBuilder:
    exporter = SnapshotExporter(
        email_salt=settings.snapshot.email_salt,
        itersize=settings.warehouse.stream_batch_size,
    )
    return SnapshotBuilder(
        exporter=exporter,
        connect=db_conn,
        artifact_dir=settings.snapshot.artifact_dir,
        compress=settings.snapshot.compress if compress is None else compress,
    )


def build_snapshot_cache(settings: Settings) -> SnapshotCache:
    builder = build_snapshot_builder(settings)
    return SnapshotCache(builder.build, ttl_seconds=settings.snapshot.ttl_seconds)


def create_app_from_env() -> Flask:
    """Resolve settings from the environment and return a ready app."""
    setup_logging()
    settings = resolve_secrets(get_settings())
    cache = build_snapshot_cache(settings)
    atexit.register(cache.close)
    return create_app(settings, cache)
