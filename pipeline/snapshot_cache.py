"""Single-flight cache for the published snapshot artifact.

State per published artifact: ``empty -> fresh -> stale -> empty``. Fresh vs
stale is decided purely by age against the TTL; ``empty`` is reached only by
explicit invalidation (or before the first build).

Locking
-------
- ``_state`` (readers/writer lock) guards the published entry. The fast path
  only takes it shared.
- ``_regen_lock`` is the exclusive right to regenerate. Whoever holds it
  re-checks freshness first, so callers that queued behind a regeneration
  return its result instead of pulling the warehouse again.

The old artifact is deleted only after the new entry is published. A failed
regeneration leaves the previous entry (and its file) untouched.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from infra.logging_config import StructuredLogger
from pipeline.snapshot import Artifact, discard_file

_LOGGER = StructuredLogger(__name__)

STATE_EMPTY = "empty"
STATE_FRESH = "fresh"
STATE_STALE = "stale"


class ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class CachedArtifact:
    """A published artifact and when it was published."""

    artifact: Artifact
    created_at: float
    created_utc: datetime

    @property
    def path(self) -> Path:
        return self.artifact.path


class SnapshotCache:
    """Owns the single published artifact path and its regeneration."""

    def __init__(
        self,
        build: Callable[[], Artifact],
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._build = build
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._state = ReadWriteLock()
        self._regen_lock = threading.Lock()
        self._entry: Optional[CachedArtifact] = None
        self.regenerations = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def _usable(self, entry: Optional[CachedArtifact]) -> Optional[CachedArtifact]:
        if entry is None:
            return None
        if self._clock() - entry.created_at > self._ttl:
            return None
        if not entry.path.exists():
            return None
        return entry

    def get(self) -> Optional[CachedArtifact]:
        """Return the published artifact if it exists on disk and is within TTL."""
        with self._state.read():
            return self._usable(self._entry)

    def get_or_regenerate(self) -> CachedArtifact:
        """Return a fresh artifact, regenerating it at most once at a time.

        Regeneration errors propagate to the caller that ran it. Callers that
        were waiting then take their own turn, since the cache is still stale.
        """
        hit = self.get()
        if hit is not None:
            return hit

        with self._regen_lock:
            with self._state.read():
                previous = self._entry
                hit = self._usable(previous)
            if hit is not None:
                _LOGGER.debug("snapshot_cache_joined_regeneration", path=str(hit.path))
                return hit

            _LOGGER.info("snapshot_regeneration_started", had_previous=previous is not None)
            artifact = self._build()

            entry = CachedArtifact(
                artifact=artifact,
                created_at=self._clock(),
                created_utc=datetime.now(timezone.utc),
            )
            with self._state.write():
                self._entry = entry
            self.regenerations += 1

            if previous is not None and previous.path != entry.path:
                discard_file(previous.path)

            _LOGGER.info("snapshot_published", path=str(entry.path), ttl_seconds=self._ttl)
            return entry

    def invalidate(self) -> None:
        """Drop the published entry and delete its file."""
        with self._regen_lock:
            with self._state.write():
                previous, self._entry = self._entry, None
            if previous is not None:
                discard_file(previous.path)
                _LOGGER.info("snapshot_invalidated", path=str(previous.path))

    def close(self) -> None:
        """Release on-disk artifacts at shutdown."""
        self.invalidate()

    def status(self) -> dict[str, Any]:
        """Describe the cache state for health checks."""
        with self._state.read():
            entry = self._entry
        if entry is None:
            return {"state": STATE_EMPTY}
        age = self._clock() - entry.created_at
        return {
            "state": STATE_FRESH if self._usable(entry) is not None else STATE_STALE,
            "age_seconds": round(age, 1),
            "ttl_seconds": self._ttl,
            "created_at": entry.created_utc.isoformat().replace("+00:00", "Z"),
            "compressed": entry.artifact.compressed,
        }
