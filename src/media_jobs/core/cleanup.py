"""Removal of work directories orphaned by crashed attempts."""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

# Job statuses whose attempt may still be writing to its work dir
ACTIVE_STATUSES = ("processing",)


def get_folder_age_hours(folder_path: Path) -> float | None:
    """
    Get folder age in hours based on the newest mtime inside it.

    An attempt that is still writing keeps refreshing its files, so the
    newest mtime is the last sign of life.

    Returns:
        Age in hours, or None if the folder is inaccessible
    """
    try:
        mtimes = [f.stat().st_mtime for f in folder_path.rglob("*")]
        mtimes.append(folder_path.stat().st_mtime)
        return (time.time() - max(mtimes)) / 3600.0
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to get age for {folder_path}: {e}")
        return None


def job_id_from_dir(folder_name: str) -> str:
    """Work dirs are named "{job_id}-{random}"."""
    return folder_name.split("-", 1)[0]


def delete_folder_safe(folder_path: Path) -> tuple[bool, str | None, int]:
    """
    Delete a folder, reporting instead of raising.

    Returns:
        Tuple of (success, error_message, bytes_freed)
    """
    try:
        folder_size = sum(f.stat().st_size for f in folder_path.rglob("*") if f.is_file())
        shutil.rmtree(folder_path)
        return True, None, folder_size
    except PermissionError as e:
        error_msg = f"Permission denied: {e}"
        logger.warning(f"Skipped {folder_path}: {error_msg}")
        return False, error_msg, 0
    except OSError as e:
        error_msg = f"Failed to delete: {e}"
        logger.error(f"Failed to delete {folder_path}: {error_msg}")
        return False, error_msg, 0


def cleanup_work_dirs(
    work_dir: Path,
    retention_hours: float,
    job_status: Callable[[str], str | None],
) -> dict[str, Any]:
    """
    Delete work directories untouched for longer than retention_hours.

    Directories whose job is still processing are kept whatever their age.
    Directories of unknown jobs are treated as orphans.

    Returns:
        Dictionary with cleanup statistics:
        {
            "success": True,
            "deleted_count": 2,
            "freed_bytes": 1234567,
            "skipped_active": 1,
            "errors": [],
        }
    """
    result: dict[str, Any] = {
        "success": True,
        "deleted_count": 0,
        "freed_bytes": 0,
        "skipped_active": 0,
        "errors": [],
    }

    if not work_dir.exists():
        logger.info(f"Work directory does not exist: {work_dir}")
        return result

    for folder in work_dir.iterdir():
        if not folder.is_dir():
            continue

        age_hours = get_folder_age_hours(folder)
        if age_hours is None or age_hours <= retention_hours:
            continue

        status = job_status(job_id_from_dir(folder.name))
        if status in ACTIVE_STATUSES:
            logger.info(f"Skipped {folder.name}: job is {status}")
            result["skipped_active"] += 1
            continue

        logger.info(f"Deleting {folder.name}: age {age_hours:.1f} hours, job status {status}")
        success, error_msg, size = delete_folder_safe(folder)
        if success:
            result["deleted_count"] += 1
            result["freed_bytes"] += size
        else:
            result["errors"].append({"folder": folder.name, "error": error_msg})

    return result
