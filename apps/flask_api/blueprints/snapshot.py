"""Snapshot download Blueprint.

``GET /db`` returns the current SQLite snapshot (zstd-compressed unless
compression is disabled), regenerating it first when the cache is empty or
stale.
"""

import time
from typing import Any

from flask import Blueprint, current_app, send_file

from contracts.errors import DeliveryError
from infra.logging_config import StructuredLogger

snapshot_bp = Blueprint("snapshot", __name__)

_LOGGER = StructuredLogger(__name__)


@snapshot_bp.route("/db", methods=["GET"])
def download_snapshot() -> Any:
    """Stream the snapshot file.

    Returns:
        The artifact as an attachment (``database.db.zst`` or ``database.db``)

    Raises:
        UpstreamReadError / SnapshotWriteError: regeneration failed
        DeliveryError: the published file could not be opened
    """
    started = time.perf_counter()
    cache = current_app.extensions["snapshot_cache"]

    cached = cache.get()
    from_cache = cached is not None
    if cached is None:
        cached = cache.get_or_regenerate()

    artifact = cached.artifact
    try:
        resp = send_file(
            artifact.path,
            mimetype=artifact.media_type,
            as_attachment=True,
            download_name=artifact.download_name,
            conditional=False,
            etag=False,
            max_age=0,
        )
    except OSError as exc:
        # Not a staleness signal: the cache entry is left as-is.
        raise DeliveryError(f"snapshot file unavailable: {exc}") from exc

    resp.headers["Content-Transfer-Encoding"] = "binary"
    resp.headers["Cache-Control"] = "no-store"
    _LOGGER.info(
        "snapshot_served",
        from_cache=from_cache,
        bytes=resp.content_length,
        created_at=cached.created_utc.isoformat().replace("+00:00", "Z"),
        duration_ms=round((time.perf_counter() - started) * 1000.0, 1),
    )
    return resp
