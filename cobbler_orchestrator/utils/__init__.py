"""Utility modules for Cobbler."""

from cobbler_orchestrator.utils.fs import (
    FileSystemError,
    ensure_dir,
    match_glob,
    remove_path,
    safe_write,
    write_new,
)

__all__ = [
    "FileSystemError",
    "ensure_dir",
    "match_glob",
    "remove_path",
    "safe_write",
    "write_new",
]
