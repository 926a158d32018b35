"""Core functionality for media-jobs."""

from .cleanup import cleanup_work_dirs
from .compositor import BurnInProcess, BurnInStyle, Compositor, force_style, map_style
from .engine import TranscriptionEngine, normalize_segments, retry_with_backoff
from .export import ExportWorker
from .media import compress_for_upload, compute_target_bitrate, fetch_media, probe_duration
from .notifier import ProgressNotifier, Subscription
from .queue import AttemptContext, TaskQueue
from .scheduler import HousekeepingScheduler
from .service import MediaJobService
from .storage import LocalObjectStore
from .store import DocumentStore, JobStore
from .subtitles import check_ordering, decode, encode, write_srt
from .transcription import TranscriptionWorker
from .translation import TranslationService
from .videos import VideoRepository

__all__ = [
    # Records
    "DocumentStore",
    "JobStore",
    "VideoRepository",
    "LocalObjectStore",
    # Subtitles
    "encode",
    "decode",
    "check_ordering",
    "write_srt",
    # Queue
    "TaskQueue",
    "AttemptContext",
    "HousekeepingScheduler",
    "cleanup_work_dirs",
    "ProgressNotifier",
    "Subscription",
    # Workers
    "TranscriptionEngine",
    "normalize_segments",
    "retry_with_backoff",
    "fetch_media",
    "compute_target_bitrate",
    "compress_for_upload",
    "probe_duration",
    "TranscriptionWorker",
    "Compositor",
    "BurnInProcess",
    "BurnInStyle",
    "map_style",
    "force_style",
    "ExportWorker",
    "TranslationService",
    "MediaJobService",
]
