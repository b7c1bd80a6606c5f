"""Contracts and embedded snapshot schema.

The contracts package defines:
- the SQLite schema of a published snapshot and the warehouse queries feeding it
- field normalization (URL canonicalization, identity digests, scalar coercion)
- the typed error taxonomy shared by the pipeline and the HTTP layer

Main exports:
- SnapshotError and its subclasses
- normalize_url, hash_identity
- SNAPSHOT_TABLES, APPROVED_PROJECTS, PROJECT_MENTIONS
"""

from contracts import errors
from contracts import normalization
from contracts import schema

# Explicit re-exports to satisfy ruff F401
__all__ = [
    "APPROVED_PROJECTS",
    "AuthenticationError",
    "DeliveryError",
    "PROJECT_MENTIONS",
    "SNAPSHOT_TABLES",
    "SnapshotError",
    "SnapshotWriteError",
    "UpstreamReadError",
    "hash_identity",
    "normalize_url",
]

# Re-export for convenience
SnapshotError = errors.SnapshotError
AuthenticationError = errors.AuthenticationError
UpstreamReadError = errors.UpstreamReadError
SnapshotWriteError = errors.SnapshotWriteError
DeliveryError = errors.DeliveryError

normalize_url = normalization.normalize_url
hash_identity = normalization.hash_identity

APPROVED_PROJECTS = schema.APPROVED_PROJECTS
PROJECT_MENTIONS = schema.PROJECT_MENTIONS
SNAPSHOT_TABLES = schema.SNAPSHOT_TABLES
