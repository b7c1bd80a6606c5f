"""Failure taxonomy for snapshot generation and delivery.

Every failure is scoped to one request or one regeneration attempt; none of
these exceptions is meant to bring the process down.
"""

from __future__ import annotations


class SnapshotError(RuntimeError):
    """Base class for snapshot-related failures."""

    code: str = "snapshot_error"


class AuthenticationError(SnapshotError):
    """Missing or mismatched API credential."""

    code = "unauthorized"


class UpstreamReadError(SnapshotError):
    """The warehouse query or connection failed."""

    code = "warehouse_unavailable"


class SnapshotWriteError(SnapshotError):
    """SQLite creation, schema, insert, or compression failed."""

    code = "snapshot_write_failed"


class DeliveryError(SnapshotError):
    """A published artifact vanished or became unreadable before streaming."""

    code = "delivery_failed"


__all__ = [
    "AuthenticationError",
    "DeliveryError",
    "SnapshotError",
    "SnapshotWriteError",
    "UpstreamReadError",
]
