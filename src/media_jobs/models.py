"""Data models for media-jobs."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class JobKind(str, Enum):
    """What a job produces."""

    TRANSCRIPTION = "transcription"
    EXPORT = "export"


class JobStatus(str, Enum):
    """Job status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class WordTiming(BaseModel):
    """A single timed word inside a caption segment."""

    text: str
    start_time: float
    end_time: float


class CaptionSegment(BaseModel):
    """A timed caption unit, offsets in seconds."""

    text: str
    start_time: float
    end_time: float
    words: list[WordTiming] | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> CaptionSegment:
        if self.end_time < self.start_time:
            raise ValueError(
                f"segment ends before it starts ({self.start_time} > {self.end_time})"
            )
        return self


class CaptionStyle(BaseModel):
    """
    Burn-in style as chosen in the client.

    primary_color is carried through to ffmpeg untouched, so it must already be
    an ASS colour (&H00BBGGRR&). vertical_position is measured from the top of
    the frame.
    """

    font_size: float = Field(default=20.0, gt=0)
    primary_color: str = "&H00FFFFFF&"
    vertical_position: float = Field(default=0.8, ge=0.0, le=1.0)

    @classmethod
    def from_rgb(
        cls,
        red: float,
        green: float,
        blue: float,
        font_size: float = 20.0,
        vertical_position: float = 0.8,
    ) -> CaptionStyle:
        """Build a style from 0..1 RGB components (ASS stores them as BGR)."""
        colour = "&H00{:02X}{:02X}{:02X}&".format(
            int(blue * 255), int(green * 255), int(red * 255)
        )
        return cls(
            font_size=font_size,
            primary_color=colour,
            vertical_position=vertical_position,
        )


class TranscriptionResult(BaseModel):
    """Result of a transcription job."""

    text: str
    segments: list[CaptionSegment] = Field(default_factory=list)


class ExportResult(BaseModel):
    """Result of an export job: a time-limited download reference."""

    download_url: str
    key: str
    expires_at: datetime


class Job(BaseModel):
    """A transcription or export request and its durable state."""

    id: str = Field(default_factory=new_id)
    kind: JobKind
    video_id: str
    language: str = "en"
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    error: str | None = None
    error_kind: str | None = None
    result: TranscriptionResult | ExportResult | None = None
    style: CaptionStyle | None = None
    link_ttl_seconds: int | None = None
    attempts: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            id=self.id,
            kind=self.kind,
            video_id=self.video_id,
            status=self.status,
            progress=self.progress,
            error=self.error,
            error_kind=self.error_kind,
            result=self.result,
            updated_at=self.updated_at,
        )


class JobSnapshot(BaseModel):
    """The externally visible shape of a job, used for reads and subscriptions."""

    id: str
    kind: JobKind
    video_id: str
    status: JobStatus
    progress: int = Field(ge=0, le=100)
    error: str | None = None
    error_kind: str | None = None
    result: TranscriptionResult | ExportResult | None = None
    updated_at: datetime


class TaskState(str, Enum):
    """Queue bookkeeping state of a task."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Task(BaseModel):
    """The queue's unit of work backing a job."""

    task_id: str = Field(default_factory=new_id)
    job_id: str
    kind: JobKind
    payload: dict[str, Any] = Field(default_factory=dict)
    state: TaskState = TaskState.WAITING
    attempts_made: int = 0
    max_attempts: int = 3
    available_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    heartbeat_at: datetime | None = None
    finished_at: datetime | None = None
    last_error: str | None = None


class TranslationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Translation(BaseModel):
    """A translated caption track stored on a video record."""

    status: TranslationStatus = TranslationStatus.PENDING
    text: str = ""
    segments: list[CaptionSegment] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utcnow)


class Video(BaseModel):
    """The parts of a video record this pipeline reads and writes."""

    id: str
    url: str
    transcription_language: str = "en"
    transcription_status: str | None = None
    transcription_text: str | None = None
    transcription_segments: list[CaptionSegment] | None = None
    translations: dict[str, Translation] = Field(default_factory=dict)
