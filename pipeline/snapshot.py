"""One full snapshot regeneration: export, optional compression, cleanup.

``SnapshotBuilder.build`` always works on a brand-new temporary file in the
artifact directory, so nothing it does can touch an artifact that is already
published. On any failure every file it created is removed before the error
propagates.
"""

from __future__ import annotations

import os
import tempfile
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import psycopg2

from contracts.errors import UpstreamReadError
from infra.logging_config import StructuredLogger
from pipeline.export_sqlite import ExportStats, SnapshotExporter
from pipeline.packager import COMPRESSED_SUFFIX, compress_artifact

_LOGGER = StructuredLogger(__name__)

MEDIA_TYPE_SQLITE = "application/vnd.sqlite3"
MEDIA_TYPE_ZSTD = "application/zstd"
DOWNLOAD_NAME = "database.db"

ConnectionFactory = Callable[[], AbstractContextManager[Any]]


@dataclass(frozen=True)
class Artifact:
    """A fully written snapshot file ready to be published."""

    path: Path
    compressed: bool
    stats: ExportStats

    @property
    def media_type(self) -> str:
        return MEDIA_TYPE_ZSTD if self.compressed else MEDIA_TYPE_SQLITE

    @property
    def download_name(self) -> str:
        return DOWNLOAD_NAME + COMPRESSED_SUFFIX if self.compressed else DOWNLOAD_NAME


def discard_file(path: Path) -> None:
    """Best-effort delete; a failure is logged, never raised."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        _LOGGER.warning("snapshot_cleanup_failed", path=str(path), error=str(exc))


class SnapshotBuilder:
    """Produces new artifacts from the warehouse.

    ``connect`` returns a context manager yielding a warehouse connection
    (``apps.backend.db.db_conn`` in production).
    """

    def __init__(
        self,
        *,
        exporter: SnapshotExporter,
        connect: ConnectionFactory,
        artifact_dir: Optional[str | Path] = None,
        compress: bool = True,
    ) -> None:
        self._exporter = exporter
        self._connect = connect
        self._artifact_dir = Path(artifact_dir) if artifact_dir else None
        self._compress = compress
        if self._artifact_dir is not None:
            self._artifact_dir.mkdir(parents=True, exist_ok=True)

    def build(self) -> Artifact:
        started = time.perf_counter()
        fd, tmp_name = tempfile.mkstemp(
            prefix="snapshot-",
            suffix=".db",
            dir=str(self._artifact_dir) if self._artifact_dir else None,
        )
        os.close(fd)
        tmp_path = Path(tmp_name).resolve()

        try:
            try:
                with self._connect() as conn:
                    stats = self._exporter.export(conn, tmp_path)
            except psycopg2.Error as exc:
                raise UpstreamReadError(f"warehouse connection failed: {exc}") from exc

            _LOGGER.info(
                "snapshot_exported",
                projects=stats.projects,
                mentions=stats.mentions,
                raw_mb=round(tmp_path.stat().st_size / (1024 * 1024), 2),
            )
            path = compress_artifact(tmp_path) if self._compress else tmp_path
        except BaseException:
            discard_file(tmp_path)
            raise

        _LOGGER.info(
            "snapshot_built",
            path=str(path),
            compressed=self._compress,
            total_rows=stats.total_rows,
            duration_ms=round((time.perf_counter() - started) * 1000.0, 1),
        )
        return Artifact(path=path, compressed=self._compress, stats=stats)
