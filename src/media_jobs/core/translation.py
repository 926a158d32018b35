"""Translating a video's transcript into another language."""

from __future__ import annotations

import logging

from ..errors import CaptionsUnavailable
from ..models import CaptionSegment, Translation, TranslationStatus
from .engine import TranscriptionEngine
from .videos import VideoRepository

logger = logging.getLogger(__name__)


class TranslationService:
    """Translates segment by segment so the caption timings carry over unchanged."""

    def __init__(self, videos: VideoRepository, engine: TranscriptionEngine):
        self.videos = videos
        self.engine = engine

    async def translate_video(self, video_id: str, language: str, force: bool = False) -> Translation:
        """
        Translate the base transcript of a video and store it under language.

        An existing completed translation is returned as is unless force is set.
        """
        video = self.videos.require(video_id)
        existing = video.translations.get(language)
        if existing and existing.status == TranslationStatus.COMPLETED and not force:
            return existing

        if not video.transcription_segments:
            raise CaptionsUnavailable(f"Video {video_id} has no transcript to translate")

        self.videos.set_translation_status(video_id, language, TranslationStatus.PENDING)
        try:
            segments = []
            for segment in video.transcription_segments:
                text = await self.engine.translate(segment.text, language)
                segments.append(CaptionSegment(
                    text=text,
                    start_time=segment.start_time,
                    end_time=segment.end_time,
                ))
        except Exception:
            self.videos.set_translation_status(video_id, language, TranslationStatus.FAILED)
            raise

        translation = Translation(
            status=TranslationStatus.COMPLETED,
            text=" ".join(s.text for s in segments),
            segments=segments,
        )
        self.videos.save_translation(video_id, language, translation)
        logger.info(f"Translated video {video_id} to {language}: {len(segments)} segments")
        return translation
