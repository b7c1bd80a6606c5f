"""API key extraction and constant-time verification."""

from __future__ import annotations

import hmac
from typing import Mapping, Tuple

AUTH_METHOD_BEARER = "Bearer"
AUTH_METHOD_AUTHORIZATION = "Authorization"
AUTH_METHOD_API_KEY = "X-API-Key"


def extract_api_key(headers: Mapping[str, str]) -> Tuple[str, str]:
    """Return ``(key, method)`` from request headers, or ``("", "")``.

    ``Authorization: Bearer <key>`` wins, then a bare ``Authorization: <key>``,
    then ``X-API-Key: <key>``.
    """
    auth = (headers.get("Authorization") or "").strip()
    if auth:
        parts = auth.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1], AUTH_METHOD_BEARER
        return auth, AUTH_METHOD_AUTHORIZATION

    api_key = (headers.get("X-API-Key") or "").strip()
    if api_key:
        return api_key, AUTH_METHOD_API_KEY
    return "", ""


def api_key_matches(provided: str, expected: str) -> bool:
    """Constant-time comparison; an empty expected key never matches."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
