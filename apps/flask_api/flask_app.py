"""flask_app.py

HTTP delivery layer for warehouse snapshots.

Core concepts
-------------
- One ``SnapshotCache`` is built at startup and attached to the app
  (``app.extensions["snapshot_cache"]``); request handlers reach it through
  ``current_app``.
- Every route except ``/health`` requires the API key, checked before any
  snapshot work starts.
- Failures map to JSON error envelopes; none of them is fatal to the process.

Run
---
snapshot serve --port 8080
"""

from __future__ import annotations

import time
import traceback
from typing import Any, Optional

from flask import Flask, Response, current_app, request

from apps.flask_api.blueprints import health_bp, snapshot_bp
from apps.flask_api.utils import _err, api_key_matches, extract_api_key
from contracts.errors import (
    AuthenticationError,
    DeliveryError,
    SnapshotError,
    SnapshotWriteError,
    UpstreamReadError,
)
from infra.config import Settings
from infra.logging_config import (
    StructuredLogger,
    clear_request_context,
    new_request_id,
    set_request_context,
)
from pipeline.snapshot_cache import SnapshotCache

_LOGGER = StructuredLogger(__name__)

PUBLIC_PATHS = frozenset({"/health"})

_ERROR_STATUS: dict[type[SnapshotError], int] = {
    AuthenticationError: 401,
    UpstreamReadError: 503,
    SnapshotWriteError: 500,
    DeliveryError: 500,
}

_ERROR_MESSAGES: dict[type[SnapshotError], str] = {
    AuthenticationError: "API key is required",
    UpstreamReadError: "snapshot generation failed: warehouse unavailable",
    SnapshotWriteError: "snapshot generation failed",
    DeliveryError: "snapshot could not be delivered",
}


def _client_ip() -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr


# --------------------
# Request lifecycle
# --------------------

def _start_request() -> None:
    clear_request_context()
    request.environ["_snapshot_t0"] = time.monotonic()
    set_request_context(request_id=new_request_id())
    _LOGGER.info("http_request_started", method=request.method, path=request.path, ip=_client_ip())


def _answer_preflight() -> Optional[Response]:
    """CORS preflight is answered before auth; headers are added afterwards."""
    if request.method == "OPTIONS":
        return current_app.make_default_options_response()
    return None


def _enforce_api_auth() -> None:
    if request.path in PUBLIC_PATHS:
        return
    provided, method = extract_api_key(request.headers)
    if not provided:
        _LOGGER.warning("auth_failed", reason="missing_key")
        raise AuthenticationError("no API key provided")
    if not api_key_matches(provided, current_app.config["SNAPSHOT_API_KEY"]):
        _LOGGER.warning("auth_failed", reason="invalid_key", method=method)
        raise AuthenticationError("invalid API key")


def _add_cors_headers(resp: Response) -> Response:
    resp.headers["Access-Control-Allow-Origin"] = current_app.config["SNAPSHOT_CORS_ORIGIN"]
    resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization, X-API-Key"
    return resp


def _log_request(resp: Response) -> Response:
    t0 = float(request.environ.get("_snapshot_t0") or 0.0)
    ms = int(max(0.0, (time.monotonic() - t0) * 1000.0)) if t0 else None
    log = _LOGGER.warning if resp.status_code >= 400 else _LOGGER.info
    log("http_request", method=request.method, path=request.path, status=resp.status_code, ms=ms)
    return resp


def _end_request(_: Optional[BaseException]) -> None:
    clear_request_context()


# --------------------
# Error handling
# --------------------

def _handle_snapshot_error(exc: SnapshotError) -> Any:
    status = 500
    message = "snapshot request failed"
    for exc_type, code in _ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            status = code
            message = _ERROR_MESSAGES[exc_type]
            break

    if isinstance(exc, AuthenticationError):
        body, _ = _err(exc.code, message, status=status)
        return body, status, {"WWW-Authenticate": 'Bearer realm="API"'}

    _LOGGER.error("snapshot_request_failed", error=exc.code, detail=str(exc))
    extra = {"detail": str(exc)} if current_app.config["SNAPSHOT_DEBUG_ERRORS"] else None
    return _err(exc.code, message, status=status, extra=extra)


def _handle_not_found(_: Exception) -> Any:
    return _err("not_found", "not found", status=404)


def _handle_method_not_allowed(_: Exception) -> Any:
    return _err("method_not_allowed", "method not allowed", status=405)


def _handle_internal_error(exc: Exception) -> Any:
    original = getattr(exc, "original_exception", None) or exc
    _LOGGER.error("unhandled_exception", path=request.path, detail=str(original))
    if current_app.config["SNAPSHOT_DEBUG_ERRORS"]:
        tb = "".join(traceback.format_exception(original))
        return _err("internal_error", "internal error", status=500, extra={"detail": str(original), "traceback": tb})
    return _err("internal_error", "internal error", status=500)


def create_app(settings: Settings, cache: SnapshotCache) -> Flask:
    """Build the Flask app around an already constructed snapshot cache."""
    if not settings.api.api_key:
        raise ValueError("settings must be passed through resolve_secrets() first")

    app = Flask(__name__)
    app.config["SNAPSHOT_API_KEY"] = settings.api.api_key
    app.config["SNAPSHOT_CORS_ORIGIN"] = settings.api.cors_origin or "*"
    app.config["SNAPSHOT_DEBUG_ERRORS"] = settings.api.debug_errors
    app.extensions["snapshot_cache"] = cache

    app.before_request(_start_request)
    app.before_request(_answer_preflight)
    app.before_request(_enforce_api_auth)
    # after_request hooks run in reverse registration order.
    app.after_request(_log_request)
    app.after_request(_add_cors_headers)
    app.teardown_request(_end_request)

    app.register_error_handler(SnapshotError, _handle_snapshot_error)
    app.register_error_handler(404, _handle_not_found)
    app.register_error_handler(405, _handle_method_not_allowed)
    app.register_error_handler(500, _handle_internal_error)

    app.register_blueprint(health_bp)
    app.register_blueprint(snapshot_bp)
    return app
