"""zstd packaging of generated snapshot files.

Compression goes through pyarrow's zstd codec at its maximum level. The input
is read in fixed-size chunks and each chunk becomes an independent zstd frame;
concatenated frames form a valid zstd stream, so clients decode the artifact
in one call.

Frames do not share match history, so the ratio is somewhat below what one
frame over the whole file would reach. The chunk size bounds peak memory;
raise it to trade memory for ratio.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Optional

import pyarrow as pa

from contracts.errors import SnapshotWriteError
from infra.logging_config import StructuredLogger

_LOGGER = StructuredLogger(__name__)

COMPRESSED_SUFFIX = ".zst"
DEFAULT_CHUNK_SIZE = 16 * 1024 * 1024


def _zstd_codec(level: Optional[int]) -> pa.Codec:
    if level is None:
        level = pa.Codec.maximum_compression_level("zstd")
    return pa.Codec("zstd", compression_level=level)


def compress_artifact(
    source: str | Path,
    *,
    level: Optional[int] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Path:
    """Compress ``source`` into ``<source>.zst`` and delete ``source``.

    The source is removed only after the compressed file is flushed and
    closed. On failure the partial ``.zst`` is deleted, ``source`` is left in
    place, and ``SnapshotWriteError`` is raised.
    """
    src = Path(source)
    dest = src.with_name(src.name + COMPRESSED_SUFFIX)
    started = time.perf_counter()

    try:
        codec = _zstd_codec(level)
        with open(src, "rb") as fin, open(dest, "wb") as fout:
            # An empty source still yields one (empty) frame.
            chunk = fin.read(chunk_size)
            while True:
                fout.write(codec.compress(chunk, asbytes=True))
                chunk = fin.read(chunk_size)
                if not chunk:
                    break
            fout.flush()
            os.fsync(fout.fileno())
        raw_size = src.stat().st_size
        packed_size = dest.stat().st_size
        src.unlink()
    except (OSError, pa.ArrowException, ValueError) as exc:
        dest.unlink(missing_ok=True)
        raise SnapshotWriteError(f"compressing {src} failed: {exc}") from exc

    _LOGGER.info(
        "snapshot_compressed",
        raw_mb=round(raw_size / (1024 * 1024), 2),
        compressed_mb=round(packed_size / (1024 * 1024), 2),
        ratio=round(raw_size / packed_size, 1) if packed_size else None,
        duration_ms=round((time.perf_counter() - started) * 1000.0, 1),
    )
    return dest
