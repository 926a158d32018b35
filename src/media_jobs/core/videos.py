"""Access to the video records the pipeline reads captions from and writes transcripts to."""

from __future__ import annotations

import logging
from typing import Any

from ..errors import CaptionsUnavailable, VideoNotFound
from ..models import (
    CaptionSegment,
    Translation,
    TranslationStatus,
    Video,
    utcnow,
)
from .store import DocumentStore

logger = logging.getLogger(__name__)


class VideoRepository:
    """Video records live in the "videos" collection and are owned by the app layer."""

    COLLECTION = "videos"

    def __init__(self, documents: DocumentStore):
        self.documents = documents

    def get(self, video_id: str) -> Video | None:
        data = self.documents.get(self.COLLECTION, video_id)
        return Video.model_validate(data) if data else None

    def require(self, video_id: str) -> Video:
        video = self.get(video_id)
        if video is None:
            raise VideoNotFound(video_id)
        return video

    def save(self, video: Video) -> Video:
        """Create or replace a video record."""
        self.documents.put(self.COLLECTION, video.id, video.model_dump(mode="json"))
        return video

    def _update(self, video_id: str, fields: dict[str, Any]) -> Video:
        def mutate(data: dict[str, Any]) -> dict[str, Any]:
            return {**data, **fields}

        try:
            return Video.model_validate(self.documents.update(self.COLLECTION, video_id, mutate))
        except KeyError:
            raise VideoNotFound(video_id) from None

    def set_transcription_status(self, video_id: str, status: str) -> Video:
        fields: dict[str, Any] = {"transcription_status": status}
        if status == "failed":
            fields.update(transcription_text=None, transcription_segments=None)
        return self._update(video_id, fields)

    def save_transcription(
        self, video_id: str, text: str, segments: list[CaptionSegment]
    ) -> Video:
        return self._update(video_id, {
            "transcription_status": "completed",
            "transcription_text": text,
            "transcription_segments": [s.model_dump(mode="json") for s in segments],
        })

    def save_translation(self, video_id: str, language: str, translation: Translation) -> Video:
        """Store one language's translation, leaving the others untouched."""
        def mutate(data: dict[str, Any]) -> dict[str, Any]:
            translations = dict(data.get("translations") or {})
            translations[language] = translation.model_dump(mode="json")
            return {**data, "translations": translations}

        try:
            return Video.model_validate(self.documents.update(self.COLLECTION, video_id, mutate))
        except KeyError:
            raise VideoNotFound(video_id) from None

    def set_translation_status(
        self, video_id: str, language: str, status: TranslationStatus
    ) -> Video:
        video = self.require(video_id)
        translation = video.translations.get(language) or Translation()
        translation.status = status
        translation.last_updated = utcnow()
        return self.save_translation(video_id, language, translation)

    def resolve_captions(self, video_id: str, language: str) -> list[CaptionSegment]:
        """
        Pick the caption track for an export.

        The base transcript serves its own language; any other language needs
        a completed translation.
        """
        video = self.get(video_id)
        if video is None:
            raise CaptionsUnavailable(f"Video not found: {video_id}")

        if language == video.transcription_language:
            segments = video.transcription_segments
        else:
            translation = video.translations.get(language)
            if translation is None or translation.status != TranslationStatus.COMPLETED:
                segments = None
            else:
                segments = translation.segments

        if not segments:
            raise CaptionsUnavailable(f"No segments found for language: {language}")
        return segments
