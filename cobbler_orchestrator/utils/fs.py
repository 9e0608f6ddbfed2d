"""
File system utilities for Cobbler.

This module provides safe file operations including:
- Atomic writes (write to temp file, then rename)
- Exclusive creation for write-once artifacts
- Directory creation and removal
- Glob matching with ** support
"""

from __future__ import annotations

import fnmatch
import os
import shutil
import tempfile
from pathlib import Path


class FileSystemError(Exception):
    """Raised when a file system operation fails."""
    pass


def ensure_dir(path: str | Path) -> Path:
    """
    Create a directory if it does not exist.

    Creates parent directories as needed (like mkdir -p).

    Raises:
        FileSystemError: If directory creation fails.
    """
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
        return path
    except OSError as e:
        raise FileSystemError(f"Failed to create directory {path}: {e}")


def safe_write(path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write content to a file atomically.

    Uses a temporary file and rename to ensure atomic write.

    Raises:
        FileSystemError: If write operation fails.
    """
    path = Path(path)
    ensure_dir(path.parent)

    try:
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding=encoding) as f:
                f.write(content)
            shutil.move(temp_path, path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
    except OSError as e:
        raise FileSystemError(f"Failed to write file {path}: {e}")


def write_new(path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """
    Create a file that must not exist yet.

    Raises:
        FileExistsError: If the file already exists.
        FileSystemError: If the write fails for another reason.
    """
    path = Path(path)
    ensure_dir(path.parent)
    try:
        with open(path, "x", encoding=encoding) as f:
            f.write(content)
    except FileExistsError:
        raise
    except OSError as e:
        raise FileSystemError(f"Failed to create file {path}: {e}")


def remove_path(path: str | Path) -> bool:
    """
    Remove a file or directory tree.

    Returns:
        True if something was removed, False if the path did not exist.
    """
    path = Path(path)
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
            return True
        if path.exists() or path.is_symlink():
            path.unlink()
            return True
    except OSError as e:
        raise FileSystemError(f"Failed to remove {path}: {e}")
    return False


def match_glob(path: str, pattern: str) -> bool:
    """
    Match a repo-relative path against a glob.

    "**/" matches zero or more directories; other wildcards stay within
    one path segment.
    """
    return _match_parts(path.split("/"), pattern.split("/"))


def _match_parts(parts: list[str], pattern: list[str]) -> bool:
    if not pattern:
        return not parts
    head = pattern[0]
    if head == "**":
        return any(_match_parts(parts[i:], pattern[1:]) for i in range(len(parts) + 1))
    if not parts:
        return False
    return fnmatch.fnmatchcase(parts[0], head) and _match_parts(parts[1:], pattern[1:])
