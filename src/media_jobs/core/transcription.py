"""Transcription jobs: fetch, compress, transcribe, store the transcript."""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Any

import httpx

from ..errors import FetchError, VideoNotFound
from ..models import Job, TranscriptionResult
from .engine import TranscriptionEngine
from .media import compress_for_upload, fetch_media
from .queue import AttemptContext
from .subtitles import check_ordering
from .videos import VideoRepository

logger = logging.getLogger(__name__)


class TranscriptionWorker:
    """
    Produces a TranscriptionResult for a video and writes it onto the video record.

    Every attempt works in its own temporary directory under work_dir and
    starts from scratch. A failed attempt marks the video's transcription as
    failed without leaving partial segments behind.
    """

    def __init__(
        self,
        videos: VideoRepository,
        engine: TranscriptionEngine,
        media_config: dict[str, Any],
        work_dir: str | Path,
        fetch_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.videos = videos
        self.engine = engine
        self.media_config = media_config
        self.work_dir = Path(work_dir)
        self.fetch_transport = fetch_transport

    async def run(self, job: Job, context: AttemptContext) -> TranscriptionResult:
        video = self.videos.get(job.video_id)
        if video is None:
            raise FetchError(f"Video not found: {job.video_id}", retryable=False)

        self.videos.set_transcription_status(video.id, "processing")
        try:
            result = await self._transcribe(job, video.url, context)
            check_ordering(result.segments)
            self.videos.save_transcription(video.id, result.text, result.segments)
        except Exception:
            try:
                self.videos.set_transcription_status(video.id, "failed")
            except VideoNotFound:
                logger.warning(f"Video {video.id} disappeared during transcription")
            raise

        logger.info(f"Transcribed video {video.id}: {len(result.segments)} segments")
        return result

    async def _transcribe(self, job: Job, url: str, context: AttemptContext) -> TranscriptionResult:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.work_dir, prefix=f"{job.id}-") as tmp:
            tmp_dir = Path(tmp)
            context.report_progress(0)

            source = await fetch_media(
                url,
                tmp_dir / "input.mp4",
                timeout=float(self.media_config["fetch_timeout_seconds"]),
                transport=self.fetch_transport,
            )
            compressed = await compress_for_upload(source, tmp_dir / "compressed.mp4", self.media_config)
            context.report_progress(50)

            result = await self.engine.transcribe(compressed)
            context.report_progress(90)
        return result
