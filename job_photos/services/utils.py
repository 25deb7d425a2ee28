"""Shared utility functions for app services."""

from pathlib import PurePosixPath


def format_file_size(size_bytes: int) -> str:
    """Format a file size in bytes to a human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string (e.g., "1.5 MB")
    """
    size_float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size_float) < 1024.0:
            return f"{size_float:.1f} {unit}"
        size_float = size_float / 1024.0
    return f"{size_float:.1f} PB"


def file_extension(filename: str) -> str:
    """Lower-cased extension including the dot, or "" if there is none."""
    return PurePosixPath(filename).suffix.lower()


def leaf_name(key: str) -> str:
    """Last path segment of a storage key."""
    return key.rstrip("/").rsplit("/", 1)[-1]
