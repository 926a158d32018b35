"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import os
import stat
from pathlib import Path

import pytest

from media_jobs.config.settings import DEFAULT_MEDIA_CONFIG
from media_jobs.core.store import DocumentStore, JobStore
from media_jobs.core.videos import VideoRepository
from media_jobs.models import CaptionSegment, Translation, TranslationStatus, Video


@pytest.fixture(scope="session")
def event_loop_policy():
    """Use default event loop policy."""
    return asyncio.DefaultEventLoopPolicy()


def pytest_configure(config):
    """Configure pytest-asyncio and custom markers."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture
def isolated_dirs(tmp_path, monkeypatch):
    """Point config, data and work dirs at a temporary location."""
    dirs = {
        "config_dir": tmp_path / "config",
        "data_dir": tmp_path / "data",
        "work_dir": tmp_path / "work",
    }
    monkeypatch.setenv("MEDIA_JOBS_CONFIG_DIR", str(dirs["config_dir"]))
    monkeypatch.setenv("MEDIA_JOBS_DATA_DIR", str(dirs["data_dir"]))
    monkeypatch.setenv("MEDIA_JOBS_WORK_DIR", str(dirs["work_dir"]))
    monkeypatch.setenv("MEDIA_JOBS_SIGNING_KEY", "test-signing-key")
    return dirs


@pytest.fixture
def documents(tmp_path):
    return DocumentStore(tmp_path / "data")


@pytest.fixture
def jobs(documents):
    return JobStore(documents)


@pytest.fixture
def videos(documents):
    return VideoRepository(documents)


@pytest.fixture
def sample_segments():
    return [
        CaptionSegment(text="Hello", start_time=0.0, end_time=1.5),
        CaptionSegment(text="World", start_time=1.5, end_time=3.0),
    ]


@pytest.fixture
def sample_video(videos, sample_segments):
    """A video with an English transcript and a completed Spanish translation."""
    video = Video(
        id="video1",
        url="https://media.example.com/video1.mp4",
        transcription_status="completed",
        transcription_text="Hello World",
        transcription_segments=sample_segments,
        translations={
            "es": Translation(
                status=TranslationStatus.COMPLETED,
                text="Hola Mundo",
                segments=[
                    CaptionSegment(text="Hola", start_time=0.0, end_time=1.5),
                    CaptionSegment(text="Mundo", start_time=1.5, end_time=3.0),
                ],
            ),
        },
    )
    return videos.save(video)


def write_script(path: Path, body: str) -> Path:
    """Write an executable shell script standing in for ffmpeg/ffprobe."""
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IEXEC | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_ffprobe(tmp_path):
    """ffprobe that reports a 10 second duration."""
    return write_script(tmp_path / "ffprobe", 'echo "10.000000"\n')


@pytest.fixture
def fake_ffmpeg(tmp_path):
    """
    ffmpeg that writes its last argument and reports progress on stdout.

    FAKE_FFMPEG_SIZE controls the output size in bytes.
    """
    return write_script(tmp_path / "ffmpeg", """
for last; do :; done
head -c "${FAKE_FFMPEG_SIZE:-1024}" /dev/zero > "$last"
echo "out_time_us=2500000"
echo "progress=continue"
echo "out_time_us=5000000"
echo "progress=continue"
echo "out_time_us=10000000"
echo "progress=end"
exit 0
""")


@pytest.fixture
def failing_ffmpeg(tmp_path):
    """ffmpeg that fails with a recognizable stderr."""
    return write_script(tmp_path / "ffmpeg-fail", """
echo "Invalid data found when processing input" >&2
exit 1
""")


@pytest.fixture
def make_media_config():
    """Factory of media config dicts with test-friendly timeouts."""
    def media_config(ffmpeg: Path | str = "ffmpeg", ffprobe: Path | str = "ffprobe", **overrides):
        return {
            **DEFAULT_MEDIA_CONFIG,
            "ffmpeg": os.fspath(ffmpeg),
            "ffprobe": os.fspath(ffprobe),
            "fetch_timeout_seconds": 5,
            "compress_timeout_seconds": 10,
            "render_timeout_seconds": 10,
            **overrides,
        }

    return media_config


@pytest.fixture
def make_script():
    return write_script
