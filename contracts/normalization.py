"""Field normalization applied to every warehouse row before it is stored.

- canonicalizes URLs so equivalent links compare equal in SQL
- replaces raw emails with a keyed HMAC-SHA256 digest
- coerces scalars for SQLite while keeping NULL as NULL

All helpers are pure: no state, no I/O.
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

DENIED_SCHEMES: tuple[str, ...] = (
    "javascript:",
    "data:",
    "vbscript:",
    "file:",
)

ALLOWED_PREFIXES: tuple[str, ...] = ("http://", "https://")

# Hosts where "/tree/<ref>" points at a branch view of the same repository.
CODE_HOSTS = frozenset({"github.com", "www.github.com"})

_TREE_SEGMENT = "/tree/"


def _strip_suffixes(rest: str) -> str:
    """Drop trailing slashes and a trailing ``.git`` until nothing changes."""
    while True:
        trimmed = rest.rstrip("/")
        if trimmed.endswith(".git"):
            trimmed = trimmed[: -len(".git")]
        if trimmed == rest:
            return rest
        rest = trimmed


def normalize_url(raw: Any) -> Optional[str]:
    """Canonicalize a URL for storage and comparison.

    Returns ``None`` for missing, blank, or dangerous-scheme values.

    >>> normalize_url("  GITHUB.COM  ")
    'https://github.com'
    >>> normalize_url("https://github.com/user/repo/tree/main/src")
    'https://github.com/user/repo'
    """
    if raw is None:
        return None
    text = "".join(str(raw).split()).lower()
    if not text:
        return None
    if text.startswith(DENIED_SCHEMES):
        return None
    if not text.startswith(ALLOWED_PREFIXES):
        text = "https://" + text

    scheme, _, rest = text.partition("://")
    rest = _strip_suffixes(rest)

    host, sep, _ = rest.partition("/")
    if sep and host in CODE_HOSTS:
        idx = rest.find(_TREE_SEGMENT, len(host))
        if idx != -1:
            rest = _strip_suffixes(rest[:idx])

    if not rest:
        return None
    return f"{scheme}://{rest}"


def hash_identity(raw_email: Any, secret: str) -> Optional[str]:
    """Return the hex HMAC-SHA256 of a normalized email, keyed by ``secret``.

    Anyone holding ``secret`` can re-identify users by hashing candidate
    emails, so it must be handled like a credential.
    """
    if raw_email is None:
        return None
    normalized = str(raw_email).strip().lower()
    if not normalized:
        return None
    digest = hmac.new(secret.encode("utf-8"), normalized.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()


def _dt_to_utc_iso(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def coerce_text(value: Any) -> Optional[str]:
    """Render a warehouse value for a TEXT column (NULL stays NULL)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _dt_to_utc_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def coerce_real(value: Any) -> Optional[float]:
    """Convert numeric / Decimal values for a REAL column."""
    if value is None:
        return None
    if isinstance(value, (Decimal, int, float)) and not isinstance(value, bool):
        return float(value)
    return float(str(value))


def coerce_int(value: Any) -> Optional[int]:
    """Convert numeric values for an INTEGER column."""
    if value is None:
        return None
    return int(value)


_TRUE_TEXT = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_TEXT = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def coerce_flag(value: Any) -> Optional[int]:
    """Map a warehouse boolean onto the 0/1 convention used by SQLite.

    Text values follow the usual boolean spellings (``"t"``, ``"false"``,
    ``"0"``...); anything else raises ``ValueError``.
    """
    if value is None:
        return None
    if isinstance(value, (bool, int)):
        return 1 if value else 0
    text = str(value).strip()
    if text in _TRUE_TEXT:
        return 1
    if text in _FALSE_TEXT:
        return 0
    raise ValueError(f"not a boolean: {value!r}")


__all__ = [
    "CODE_HOSTS",
    "DENIED_SCHEMES",
    "coerce_flag",
    "coerce_int",
    "coerce_real",
    "coerce_text",
    "hash_identity",
    "normalize_url",
]
