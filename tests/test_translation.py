"""Tests for transcript translation."""

from __future__ import annotations

import json

import httpx
import pytest

from media_jobs.core.engine import TranscriptionEngine
from media_jobs.core.translation import TranslationService
from media_jobs.errors import CaptionsUnavailable, EngineError
from media_jobs.models import TranslationStatus, Video

DICTIONARY = {"Hello": "Bonjour", "World": "Monde"}


def chat_transport(calls, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append(body)
        if status_code != 200:
            return httpx.Response(status_code, json={"error": "nope"})
        text = body["messages"][-1]["content"]
        reply = DICTIONARY.get(text, text)
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": reply}}]})

    return httpx.MockTransport(handler)


def make_service(videos, calls, status_code=200):
    engine = TranscriptionEngine(
        api_key="sk-test", retry_base_delay=0, transport=chat_transport(calls, status_code)
    )
    return TranslationService(videos, engine)


@pytest.mark.asyncio
async def test_translate_keeps_timings(videos, sample_video):
    calls = []
    service = make_service(videos, calls)

    translation = await service.translate_video(sample_video.id, "fr")

    assert translation.status == TranslationStatus.COMPLETED
    assert translation.text == "Bonjour Monde"
    assert [(s.text, s.start_time, s.end_time) for s in translation.segments] == [
        ("Bonjour", 0.0, 1.5),
        ("Monde", 1.5, 3.0),
    ]
    assert len(calls) == 2
    stored = videos.require(sample_video.id).translations["fr"]
    assert stored.status == TranslationStatus.COMPLETED
    # Other languages are untouched
    assert videos.require(sample_video.id).translations["es"].text == "Hola Mundo"


@pytest.mark.asyncio
async def test_existing_translation_is_reused(videos, sample_video):
    calls = []
    service = make_service(videos, calls)

    translation = await service.translate_video(sample_video.id, "es")

    assert translation.text == "Hola Mundo"
    assert calls == []


@pytest.mark.asyncio
async def test_force_retranslates(videos, sample_video):
    calls = []
    service = make_service(videos, calls)

    translation = await service.translate_video(sample_video.id, "es", force=True)

    assert translation.text == "Bonjour Monde"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_no_transcript(videos):
    videos.save(Video(id="bare", url="https://cdn.example.com/bare.mp4"))
    service = make_service(videos, [])

    with pytest.raises(CaptionsUnavailable):
        await service.translate_video("bare", "fr")

    assert "fr" not in videos.require("bare").translations


@pytest.mark.asyncio
async def test_engine_failure_marks_translation_failed(videos, sample_video):
    service = make_service(videos, [], status_code=400)

    with pytest.raises(EngineError):
        await service.translate_video(sample_video.id, "fr")

    assert videos.require(sample_video.id).translations["fr"].status == TranslationStatus.FAILED
