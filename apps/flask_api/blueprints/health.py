"""Health endpoint Blueprint.

Public (no API key) so load balancers can probe it. It never triggers a
snapshot regeneration or touches the warehouse.
"""

from typing import Any

from flask import Blueprint, current_app

from apps.flask_api.utils import _ok
from version import ENGINE_NAME, ENGINE_VERSION, SCHEMA_VERSION

health_bp = Blueprint("health", __name__)


@health_bp.route("/health", methods=["GET"])
def health() -> Any:
    """Basic health check with the snapshot cache state.

    Returns:
        JSON response with ok: true, engine version and cache status
    """
    cache = current_app.extensions["snapshot_cache"]
    return _ok(
        {
            "engine": ENGINE_NAME,
            "version": ENGINE_VERSION,
            "schema_version": SCHEMA_VERSION,
            "cache": cache.status(),
        }
    )
