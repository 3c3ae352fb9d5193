"""Helpers for the shared temp namespace."""

import logging
import os
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


def ensure_dir(dir_path: str | Path) -> Path:
    """Create ``dir_path`` (and parents) if missing and return it."""
    path = Path(dir_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def normalize_extension(ext: str | None) -> str:
    """Return ``ext`` with exactly one leading dot, or "" when empty."""
    if not ext:
        return ""
    ext = ext.strip()
    if not ext or ext == ".":
        return ""
    return ext if ext.startswith(".") else f".{ext}"


def temp_file_path(temp_dir: str | Path, kind: str, ext: str) -> Path:
    """Build a collision-free path such as ``<temp_dir>/merged_<uuid>.mp4``.

    Jobs running at the same time share ``temp_dir``, so every name carries
    a random identifier.
    """
    return Path(temp_dir) / f"{kind}_{uuid.uuid4()}{normalize_extension(ext)}"


def cleanup_temp_file(file_path: str | Path) -> bool:
    """Delete a temp file.

    Missing files are not an error. Any other failure is logged and
    swallowed so it can never mask the error that triggered the cleanup.

    Returns:
        True if a file was removed.
    """
    try:
        os.unlink(file_path)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to cleanup temp file {file_path}: {e}")
        return False
    logger.debug(f"Cleaned up temp file: {Path(file_path).name}")
    return True


def format_file_size(size: int) -> str:
    """Human readable size, e.g. ``1.50 MB``."""
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    unit_index = 0
    while value >= 1024 and unit_index < len(units) - 1:
        value /= 1024
        unit_index += 1
    return f"{value:.2f} {units[unit_index]}"
