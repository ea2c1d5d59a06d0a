"""Atomic file operations for generated sources.

A half-written module on disk would be imported by the host build as if it
were valid, so generated files are always written through a temp file and
renamed into place.
"""

from __future__ import annotations

import hashlib
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from tickfsm.utils.logging import get_logger

logger = get_logger("utils.atomic")


class AtomicWriteError(Exception):
    """Raised when an atomic write operation fails."""

    pass


def get_content_hash(content: str) -> str:
    """
    Generate a SHA256 hash of content.

    Args:
        content: Content to hash

    Returns:
        Full SHA256 hex digest
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@contextmanager
def atomic_write(
    path: Path,
    encoding: str = "utf-8",
) -> Generator[Any, None, None]:
    """
    Context manager for atomic text file writes.

    Writes to a temporary file first, then atomically renames to the target path.
    If any error occurs, the temp file is cleaned up and the original is untouched.

    Args:
        path: Target file path
        encoding: Text encoding

    Yields:
        File handle for writing

    Raises:
        AtomicWriteError: If the atomic write fails
    """
    path = Path(path)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Create temp file in same directory for atomic rename
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
        )
    except OSError as e:
        logger.error("atomic_write_failed", path=str(path), error=str(e))
        raise AtomicWriteError(f"Failed to atomically write {path}: {e}") from e

    temp_path = Path(temp_path)
    success = False

    try:
        os.close(fd)

        # newline="" keeps "\n" on every platform so output stays byte-identical
        with open(temp_path, "w", encoding=encoding, newline="") as f:
            yield f

        temp_path.replace(path)
        success = True

        logger.debug("atomic_write_success", path=str(path))

    except Exception as e:
        logger.error("atomic_write_failed", path=str(path), error=str(e))
        raise AtomicWriteError(f"Failed to atomically write {path}: {e}") from e

    finally:
        if not success and temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> bool:
    """
    Atomically write text content to a file unless it already holds it.

    Args:
        path: Target file path
        content: Text content to write
        encoding: Text encoding

    Returns:
        True if the file was written, False if it was already up to date
    """
    path = Path(path)
    if path.is_file():
        try:
            unchanged = path.read_bytes() == content.encode(encoding)
        except OSError as e:
            logger.debug("atomic_write_compare_failed", path=str(path), error=str(e))
            unchanged = False
        if unchanged:
            logger.debug("atomic_write_unchanged", path=str(path))
            return False

    with atomic_write(path, encoding=encoding) as f:
        f.write(content)
    return True
