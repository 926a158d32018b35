"""Client for an OpenAI-compatible speech-to-text and chat engine."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from ..errors import EngineError
from ..models import CaptionSegment, TranscriptionResult, WordTiming

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = {408, 409, 429}


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS or status_code >= 500


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 5,
    base_delay: float = 1.0,
    description: str = "request",
) -> T:
    """
    Run operation until it succeeds or fails for good.

    Only EngineErrors marked retryable are retried; the delay before attempt
    i+1 is base_delay * 2**i. The last error is re-raised once max_attempts
    is reached.
    """
    for attempt in range(max_attempts):
        try:
            return await operation()
        except EngineError as e:
            if not e.retryable or attempt == max_attempts - 1:
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{max_attempts}): {e.message}; "
                f"retrying in {delay:g}s"
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")


def _words(raw_words: list[dict[str, Any]] | None) -> list[WordTiming]:
    words = []
    for raw in raw_words or []:
        text = raw.get("word", raw.get("text"))
        if text is None or raw.get("start") is None or raw.get("end") is None:
            continue
        words.append(WordTiming(
            text=str(text).strip(),
            start_time=float(raw["start"]),
            end_time=float(raw["end"]),
        ))
    return words


def normalize_segments(payload: dict[str, Any]) -> TranscriptionResult:
    """
    Convert a verbose_json transcription payload into caption segments.

    Engine-specific fields (ids, tokens, log-probs) are dropped. Word timings
    come from each segment's "words" list or, when the engine reports them at
    the top level, are assigned to the segment whose span contains them.
    """
    segments = []
    for raw in payload.get("segments") or []:
        segments.append(CaptionSegment(
            text=str(raw.get("text", "")).strip(),
            start_time=float(raw["start"]),
            end_time=float(raw["end"]),
            words=_words(raw.get("words")) or None,
        ))

    top_level = _words(payload.get("words"))
    if top_level and segments and all(s.words is None for s in segments):
        for segment in segments:
            contained = [
                w for w in top_level
                if w.start_time >= segment.start_time and w.end_time <= segment.end_time
            ]
            segment.words = contained or None

    return TranscriptionResult(text=str(payload.get("text", "")).strip(), segments=segments)


class TranscriptionEngine:
    """
    Thin async client for /audio/transcriptions and /chat/completions.

    Each call retries transient failures (timeouts, transport errors, 429 and
    5xx); other 4xx responses fail immediately with a non-retryable
    EngineError.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        model: str = "whisper-1",
        translation_model: str = "gpt-4",
        language: str = "en",
        timeout: float = 300,
        max_attempts: int = 5,
        retry_base_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.translation_model = translation_model
        self.language = language
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self._transport = transport

    @classmethod
    def from_config(cls, config: dict[str, Any], **kwargs: Any) -> TranscriptionEngine:
        return cls(
            api_key=config.get("api_key"),
            base_url=config["base_url"],
            model=config["model"],
            translation_model=config["translation_model"],
            language=config["language"],
            timeout=float(config["timeout_seconds"]),
            max_attempts=int(config["max_attempts"]),
            retry_base_delay=float(config["retry_base_delay"]),
            **kwargs,
        )

    def _client(self) -> httpx.AsyncClient:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await asyncio.wait_for(client.post(path, **kwargs), self.timeout)
        except asyncio.TimeoutError as e:
            raise EngineError(f"Engine request took longer than {self.timeout:g}s", retryable=True) from e
        except httpx.TimeoutException as e:
            raise EngineError(f"Engine request timed out: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise EngineError(f"Engine unreachable: {e}", retryable=True) from e

        if response.status_code >= 400:
            raise EngineError(
                f"Engine returned {response.status_code}: {response.text[:500]}",
                retryable=is_retryable_status(response.status_code),
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise EngineError(f"Engine returned invalid JSON: {e}") from e

    async def transcribe(self, media: bytes | str | Path, filename: str = "audio.mp4") -> TranscriptionResult:
        """Transcribe media bytes (or a file) into text and timed segments."""
        if isinstance(media, (str, Path)):
            filename = Path(media).name
            media = Path(media).read_bytes()

        data = {
            "model": self.model,
            "response_format": "verbose_json",
            "language": self.language,
            "timestamp_granularities[]": ["word", "segment"],
        }

        async def request() -> dict[str, Any]:
            return await self._post(
                "/audio/transcriptions",
                data=data,
                files={"file": (filename, media, "application/octet-stream")},
            )

        logger.info(f"Submitting {len(media)} bytes for transcription")
        payload = await retry_with_backoff(
            request, self.max_attempts, self.retry_base_delay, "Transcription request"
        )
        return normalize_segments(payload)

    async def translate(self, text: str, language: str) -> str:
        """Translate a piece of caption text into the target language."""
        body = {
            "model": self.translation_model,
            "messages": [
                {
                    "role": "system",
                    "content": (
                        f"You are a professional translator. Translate the following text "
                        f"to {language}. Preserve the meaning and tone of the original text. "
                        f"Reply with the translation only."
                    ),
                },
                {"role": "user", "content": text},
            ],
        }

        async def request() -> dict[str, Any]:
            return await self._post("/chat/completions", json=body)

        payload = await retry_with_backoff(
            request, self.max_attempts, self.retry_base_delay, "Translation request"
        )
        try:
            return payload["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise EngineError(f"Unexpected translation response: {e}") from e
