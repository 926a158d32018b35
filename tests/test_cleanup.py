"""Tests for work directory cleanup."""

from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from media_jobs.core.cleanup import (
    cleanup_work_dirs,
    delete_folder_safe,
    get_folder_age_hours,
    job_id_from_dir,
)


def make_work_dir(root: Path, name: str, age_hours: float) -> Path:
    """Create a work dir whose contents were last touched age_hours ago."""
    folder = root / name
    folder.mkdir(parents=True)
    media = folder / "input.mp4"
    media.write_text("video content")
    old_time = time.time() - age_hours * 3600
    os.utime(media, (old_time, old_time))
    os.utime(folder, (old_time, old_time))
    return folder


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


def test_get_folder_age_hours_newest_file(tmp_path):
    """Age follows the most recently touched file."""
    folder = make_work_dir(tmp_path, "job1-abc", age_hours=10)
    fresh = folder / "output.mp4"
    fresh.write_text("new render")
    new_time = time.time() - 2 * 3600
    os.utime(fresh, (new_time, new_time))
    os.utime(folder, (new_time, new_time))

    age = get_folder_age_hours(folder)

    assert age is not None
    assert 1.9 < age < 2.1, f"Expected age ~2 hours, got {age}"


def test_get_folder_age_hours_empty_folder(tmp_path):
    folder = tmp_path / "empty"
    folder.mkdir()
    old_time = time.time() - 5 * 3600
    os.utime(folder, (old_time, old_time))

    age = get_folder_age_hours(folder)

    assert age is not None
    assert 4.9 < age < 5.1


def test_get_folder_age_hours_nonexistent():
    assert get_folder_age_hours(Path("/nonexistent/folder")) is None


def test_job_id_from_dir():
    assert job_id_from_dir("0f1e2d3c4b5a69788796a5b4c3d2e1f0-k2j3h4") == "0f1e2d3c4b5a69788796a5b4c3d2e1f0"
    assert job_id_from_dir("nodash") == "nodash"


def test_delete_folder_safe_success(tmp_path):
    folder = tmp_path / "test"
    folder.mkdir()
    (folder / "input.mp4").write_text("video content" * 100)
    (folder / "subtitles.srt").write_text("subtitle content")

    success, error, bytes_freed = delete_folder_safe(folder)

    assert success is True
    assert error is None
    assert bytes_freed == 1300 + 16
    assert not folder.exists()


def test_delete_folder_safe_nonexistent(tmp_path):
    success, error, bytes_freed = delete_folder_safe(tmp_path / "nonexistent_folder")

    assert success is False
    assert error is not None
    assert bytes_freed == 0


def test_cleanup_respects_retention_and_active_jobs(work_dir):
    """Old finished dirs go, recent and processing dirs stay."""
    old_done = make_work_dir(work_dir, "jobA-1", age_hours=30)
    recent_done = make_work_dir(work_dir, "jobB-1", age_hours=1)
    old_processing = make_work_dir(work_dir, "jobC-1", age_hours=30)
    statuses = {"jobA": "completed", "jobB": "completed", "jobC": "processing"}

    result = cleanup_work_dirs(work_dir, retention_hours=6, job_status=statuses.get)

    assert result["success"] is True
    assert result["deleted_count"] == 1
    assert result["skipped_active"] == 1
    assert result["freed_bytes"] == len("video content")
    assert result["errors"] == []

    assert not old_done.exists()
    assert recent_done.exists()
    assert old_processing.exists()


def test_cleanup_removes_orphans(work_dir):
    """Dirs whose job record is gone are deleted once old enough."""
    orphan = make_work_dir(work_dir, "ghost-1", age_hours=30)

    result = cleanup_work_dirs(work_dir, retention_hours=6, job_status=lambda job_id: None)

    assert result["deleted_count"] == 1
    assert not orphan.exists()


def test_cleanup_ignores_plain_files(work_dir):
    stray = work_dir / "stray.txt"
    stray.write_text("x")
    old_time = time.time() - 100 * 3600
    os.utime(stray, (old_time, old_time))

    result = cleanup_work_dirs(work_dir, retention_hours=6, job_status=lambda job_id: None)

    assert result["deleted_count"] == 0
    assert stray.exists()


def test_cleanup_missing_work_dir(tmp_path):
    result = cleanup_work_dirs(tmp_path / "nonexistent", retention_hours=6, job_status=lambda job_id: None)

    assert result["success"] is True
    assert result["deleted_count"] == 0
    assert result["errors"] == []
