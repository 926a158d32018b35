"""Export jobs: burn a caption track into the source video and publish it."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Any

import httpx

from ..models import CaptionStyle, ExportResult, Job
from .compositor import Compositor
from .media import fetch_media
from .queue import AttemptContext
from .storage import LocalObjectStore
from .subtitles import check_ordering, write_srt
from .videos import VideoRepository

logger = logging.getLogger(__name__)

# Job progress band covered by the ffmpeg render
RENDER_START = 20
RENDER_END = 90


def export_key(job_id: str) -> str:
    return f"exports/{job_id}/video.mp4"


class ExportWorker:
    """Renders a captioned copy of a video and returns a signed download reference."""

    def __init__(
        self,
        videos: VideoRepository,
        compositor: Compositor,
        objects: LocalObjectStore,
        media_config: dict[str, Any],
        work_dir: str | Path,
        fetch_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.videos = videos
        self.compositor = compositor
        self.objects = objects
        self.media_config = media_config
        self.work_dir = Path(work_dir)
        self.fetch_transport = fetch_transport

    async def run(self, job: Job, context: AttemptContext) -> ExportResult:
        # Raises CaptionsUnavailable before anything is downloaded
        segments = self.videos.resolve_captions(job.video_id, job.language)
        video = self.videos.require(job.video_id)
        check_ordering(segments)
        style = job.style or CaptionStyle()

        def on_render_progress(percent: float) -> None:
            context.report_progress(RENDER_START + percent * (RENDER_END - RENDER_START) / 100)

        self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.work_dir, prefix=f"{job.id}-") as tmp:
            tmp_dir = Path(tmp)

            source = await fetch_media(
                video.url,
                tmp_dir / "input.mp4",
                timeout=float(self.media_config["fetch_timeout_seconds"]),
                transport=self.fetch_transport,
            )
            context.report_progress(10)

            subtitle_path = write_srt(segments, tmp_dir / "subtitles.srt")
            context.report_progress(RENDER_START)

            output = await self.compositor.burn_in(
                source, subtitle_path, style, tmp_dir / "output.mp4", on_render_progress
            )
            context.report_progress(RENDER_END)

            key = export_key(job.id)
            await asyncio.to_thread(self.objects.put, key, output)

        download_url, expires_at = self.objects.signed_url(key, job.link_ttl_seconds)
        logger.info(f"Export {job.id} published as {key}")
        return ExportResult(download_url=download_url, key=key, expires_at=expires_at)
