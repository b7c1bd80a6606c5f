"""JSON envelopes for the delivery API.

Success bodies look like ``{"ok": true, ...}``; failures look like
``{"ok": false, "error": <code>, "message": <text>}`` plus optional extras
(``detail`` / ``traceback`` when debug errors are enabled).
"""

from typing import Any, Dict, Mapping, Optional

from flask import jsonify


def _envelope(ok: bool, fields: Optional[Mapping[str, Any]], status: int) -> Any:
    payload: Dict[str, Any] = {"ok": ok}
    if fields:
        payload.update(fields)
    return jsonify(payload), status


def _ok(data: Optional[Dict[str, Any]] = None, *, status: int = 200) -> Any:
    """Return a ``(response, status)`` tuple for a successful call."""
    return _envelope(True, data, status)


def _err(
    code: str,
    message: str,
    *,
    status: int,
    extra: Optional[Dict[str, Any]] = None,
) -> Any:
    """Return a ``(response, status)`` tuple for a failed call.

    Args:
        code: Stable machine-readable code (e.g. 'unauthorized', 'warehouse_unavailable')
        message: Human-readable summary, safe to show to clients
        status: HTTP status code
        extra: Additional fields merged into the body
    """
    return _envelope(False, {"error": code, "message": message, **(extra or {})}, status)
