"""Music Ingest Pipeline - Atomic I/O utilities.

Atomic publish rule for every artifact the pipeline writes:
1. Write to a temp path in the same directory
2. Flush + fsync
3. Rename temp -> final (the publish boundary)

A final path either holds complete data or does not exist. Readers never
observe a half-written upload, thumbnail or copied cover.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"
CHUNK_SIZE = 65536


class SizeLimitExceeded(Exception):
    """Raised when a stream is larger than the allowed maximum."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Stream exceeds {limit} bytes")


def _temp_path_for(final_path: Path) -> Path:
    return final_path.with_name(final_path.name + TEMP_SUFFIX)


def _write_all(fd: int, data: bytes) -> None:
    """Write all bytes to a file descriptor, looping over short writes."""
    view = memoryview(data)
    while view:
        try:
            written = os.write(fd, view)
        except InterruptedError:
            continue
        if written == 0:
            raise OSError("os.write() returned 0 bytes unexpectedly")
        view = view[written:]


def _publish(temp_path: Path, final_path: Path) -> None:
    """Rename temp -> final and best-effort fsync the directory."""
    os.replace(temp_path, final_path)
    try:
        dir_fd = os.open(final_path.parent, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except (OSError, AttributeError):
        # O_DIRECTORY is not available everywhere
        pass


def _discard(temp_path: Path) -> None:
    try:
        temp_path.unlink()
    except OSError:
        pass


def atomic_write_bytes(final_path: str | Path, data: bytes) -> None:
    """Atomically write bytes to a file.

    Args:
        final_path: The target path for the final file.
        data: Bytes to write.

    Raises:
        OSError: If directory creation, write, or rename fails.
    """
    final_path = Path(final_path)
    temp_path = _temp_path_for(final_path)
    final_path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        _write_all(fd, data)
        os.fsync(fd)
    except OSError:
        os.close(fd)
        _discard(temp_path)
        raise
    os.close(fd)

    _publish(temp_path, final_path)


def atomic_copy_file(source_path: str | Path, final_path: str | Path) -> None:
    """Atomically copy a file.

    Args:
        source_path: Path to the source file.
        final_path: Target path for the copy.

    Raises:
        FileNotFoundError: If the source file does not exist.
        OSError: If copy or rename fails.
    """
    source_path = Path(source_path)
    if not source_path.exists():
        raise FileNotFoundError(f"Source file not found: {source_path}")

    with open(source_path, "rb") as src:
        atomic_stream_to_file(src, final_path)


def atomic_stream_to_file(
    stream: BinaryIO,
    final_path: str | Path,
    prefix: bytes = b"",
    max_bytes: int | None = None,
) -> int:
    """Atomically write a stream to a file.

    Used for uploads where data comes from a file-like object. The caller
    may already have consumed the leading bytes (for format sniffing) and
    passes them back in as prefix.

    Args:
        stream: File-like object with read().
        final_path: Target path for the output file.
        prefix: Bytes to write before the stream contents.
        max_bytes: Optional size limit for prefix + stream.

    Returns:
        Total bytes written.

    Raises:
        SizeLimitExceeded: If max_bytes is exceeded (nothing is published).
        OSError: If write or rename fails.
    """
    final_path = Path(final_path)
    temp_path = _temp_path_for(final_path)
    final_path.parent.mkdir(parents=True, exist_ok=True)

    total_bytes = 0
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        chunk = prefix
        while True:
            if chunk:
                total_bytes += len(chunk)
                if max_bytes is not None and total_bytes > max_bytes:
                    raise SizeLimitExceeded(max_bytes)
                _write_all(fd, chunk)
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
        os.fsync(fd)
    except BaseException:
        os.close(fd)
        _discard(temp_path)
        raise
    os.close(fd)

    _publish(temp_path, final_path)
    return total_bytes


def remove_file_quietly(path: str | Path | None) -> bool:
    """Delete a file if it exists; failures are logged, not raised.

    Returns:
        True if a file was removed.
    """
    if not path:
        return False
    path = Path(path)
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("Failed to remove %s: %s", path, e)
        return False


def cleanup_orphan_temp_files(directory: str | Path) -> int:
    """Remove leftover temp files from interrupted writes.

    Called during startup.

    Args:
        directory: Directory to scan (non-recursive).

    Returns:
        Number of files removed.
    """
    directory = Path(directory)
    if not directory.exists():
        return 0

    removed = 0
    for temp_file in directory.glob(f"*{TEMP_SUFFIX}"):
        if remove_file_quietly(temp_file):
            removed += 1
    return removed
