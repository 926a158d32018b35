"""The media job service: wiring of stores, queue, workers and notifier."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from ..config import (
    get_data_dir,
    get_engine_config,
    get_media_config,
    get_objects_dir,
    get_queue_config,
    get_storage_config,
    get_work_dir,
)
from ..errors import StorageError
from ..models import (
    CaptionStyle,
    ExportResult,
    Job,
    JobKind,
    JobStatus,
    Task,
    TranscriptionResult,
    Translation,
)
from .compositor import Compositor
from .engine import TranscriptionEngine
from .export import ExportWorker
from .notifier import ProgressNotifier, Subscription
from .queue import AttemptContext, TaskQueue
from .scheduler import HousekeepingScheduler
from .storage import LocalObjectStore
from .store import DocumentStore, JobStore
from .transcription import TranscriptionWorker
from .translation import TranslationService
from .videos import VideoRepository

logger = logging.getLogger(__name__)


class MediaJobService:
    """
    Entry point for creating and observing media jobs.

    Built explicitly (usually via from_config) and passed to whoever needs
    it; the HTTP app keeps one on app.state.
    """

    def __init__(
        self,
        jobs: JobStore,
        videos: VideoRepository,
        queue: TaskQueue,
        notifier: ProgressNotifier,
        transcription: TranscriptionWorker,
        export: ExportWorker,
        translations: TranslationService,
        objects: LocalObjectStore,
        housekeeping: HousekeepingScheduler | None = None,
    ):
        self.jobs = jobs
        self.videos = videos
        self.queue = queue
        self.notifier = notifier
        self.transcription = transcription
        self.export = export
        self.translations = translations
        self.objects = objects
        self.housekeeping = housekeeping

        self.jobs.add_listener(self.notifier)
        self.queue.handler = self.dispatch

    @classmethod
    def from_config(
        cls,
        data_dir: str | Path | None = None,
        work_dir: str | Path | None = None,
        engine_transport: httpx.AsyncBaseTransport | None = None,
        fetch_transport: httpx.AsyncBaseTransport | None = None,
        housekeeping: bool = True,
    ) -> MediaJobService:
        """Build the service from config.json and the environment."""
        objects_dir = Path(data_dir) / "objects" if data_dir else get_objects_dir()
        data_dir = Path(data_dir) if data_dir else get_data_dir()
        work_dir = Path(work_dir) if work_dir else get_work_dir()
        media_config = get_media_config()

        documents = DocumentStore(data_dir)
        jobs = JobStore(documents)
        videos = VideoRepository(documents)
        queue = TaskQueue.from_config(documents, jobs, get_queue_config())
        engine = TranscriptionEngine.from_config(get_engine_config(), transport=engine_transport)
        objects = LocalObjectStore.from_config(objects_dir, get_storage_config())

        return cls(
            jobs=jobs,
            videos=videos,
            queue=queue,
            notifier=ProgressNotifier(),
            transcription=TranscriptionWorker(videos, engine, media_config, work_dir, fetch_transport),
            export=ExportWorker(
                videos, Compositor.from_config(media_config), objects, media_config, work_dir, fetch_transport
            ),
            translations=TranslationService(videos, engine),
            objects=objects,
            housekeeping=HousekeepingScheduler(queue, jobs, work_dir) if housekeeping else None,
        )

    async def start(self) -> None:
        await self.queue.start()
        if self.housekeeping:
            await self.housekeeping.start()

    async def stop(self) -> None:
        if self.housekeeping:
            await self.housekeeping.stop()
        await self.queue.stop()

    def create_job(
        self,
        video_id: str,
        kind: JobKind,
        language: str = "en",
        style: CaptionStyle | None = None,
        link_ttl_seconds: int | None = None,
    ) -> Job:
        """
        Record a pending job and enqueue its task. Returns without waiting.

        Raises VideoNotFound for an unknown video and ValueError for a link
        lifetime the object store will not sign.
        """
        self.videos.require(video_id)

        if kind == JobKind.EXPORT:
            style = style or CaptionStyle()
            link_ttl_seconds = link_ttl_seconds or self.objects.default_ttl
            if not 0 < link_ttl_seconds <= self.objects.max_ttl:
                raise ValueError(
                    f"link_ttl_seconds must be between 1 and {self.objects.max_ttl}"
                )
        else:
            style = None
            link_ttl_seconds = None

        job = self.jobs.create(Job(
            kind=kind,
            video_id=video_id,
            language=language,
            style=style,
            link_ttl_seconds=link_ttl_seconds,
        ))
        try:
            self.queue.enqueue(job.id, kind)
        except StorageError as e:
            self.jobs.fail(job.id, e.kind, f"Could not enqueue job: {e.message}")
            raise
        return job

    def get_job(self, job_id: str) -> Job:
        return self.jobs.require(job_id)

    def list_jobs(self, status: JobStatus | None = None) -> list[Job]:
        return self.jobs.list(status)

    def subscribe(self, job_id: str) -> Subscription:
        return self.notifier.subscribe(job_id)

    async def translate(self, video_id: str, language: str, force: bool = False) -> Translation:
        return await self.translations.translate_video(video_id, language, force)

    def queue_status(self) -> dict[str, Any]:
        return self.queue.status()

    async def dispatch(self, task: Task, context: AttemptContext) -> TranscriptionResult | ExportResult:
        """Queue handler: run the worker for the task's job kind."""
        job = self.jobs.require(task.job_id)
        logger.info(f"Running {job.kind.value} job {job.id} (attempt {context.attempt})")
        if job.kind == JobKind.TRANSCRIPTION:
            return await self.transcription.run(job, context)
        return await self.export.run(job, context)
