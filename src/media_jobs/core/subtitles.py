"""SRT encoding and decoding for caption segments."""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from ..errors import MalformedSubtitle
from ..models import CaptionSegment

logger = logging.getLogger(__name__)

_TIMING_RE = re.compile(
    r'^\s*(\d{2,}):(\d{2}):(\d{2}),(\d{3})\s*-->\s*(\d{2,}):(\d{2}):(\d{2}),(\d{3})\s*$'
)


def _to_millis(seconds: float) -> int:
    """
    Convert seconds to whole milliseconds, truncating.

    Goes through the shortest decimal repr so 4.35 gives 4350, not the 4349
    that float multiplication would truncate to.
    """
    return int(Decimal(repr(float(seconds))) * 1000)


def format_timestamp(seconds: float) -> str:
    """Format seconds as an SRT timestamp (HH:MM:SS,mmm)."""
    total_ms = _to_millis(seconds)
    if total_ms < 0:
        raise ValueError(f"Negative timestamp: {seconds}")

    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def encode(segments: Iterable[CaptionSegment]) -> str:
    """
    Encode segments as SRT text.

    Each cue is index, timing line, text and a blank line. An empty sequence
    encodes to an empty string.
    """
    blocks = []
    for index, segment in enumerate(segments, start=1):
        start = format_timestamp(segment.start_time)
        end = format_timestamp(segment.end_time)
        blocks.append(f"{index}\n{start} --> {end}\n{segment.text}\n\n")
    return "".join(blocks)


def _timing_to_seconds(h: str, m: str, s: str, ms: str) -> float:
    total_ms = int(h) * 3600000 + int(m) * 60000 + int(s) * 1000 + int(ms)
    return total_ms / 1000


def decode(content: str) -> list[CaptionSegment]:
    """
    Decode SRT text into segments.

    Stray blank lines between cues are skipped. Raises MalformedSubtitle when
    an index or timing line does not parse, or a cue ends before it starts.
    """
    lines = content.removeprefix("\ufeff").replace("\r\n", "\n").split("\n")
    segments: list[CaptionSegment] = []
    i = 0

    while i < len(lines):
        if not lines[i].strip():
            i += 1
            continue

        # Parse index
        index_line = lines[i].strip()
        if not index_line.isdigit():
            raise MalformedSubtitle(f"Line {i + 1}: expected cue index, got {index_line!r}")
        i += 1

        # Parse timestamp: 00:00:01,000 --> 00:00:05,500
        if i >= len(lines):
            raise MalformedSubtitle(f"Cue {index_line}: missing timing line")
        time_match = _TIMING_RE.match(lines[i])
        if not time_match:
            raise MalformedSubtitle(f"Line {i + 1}: invalid timing {lines[i]!r}")
        h1, m1, s1, ms1, h2, m2, s2, ms2 = time_match.groups()
        i += 1

        text_lines = []
        while i < len(lines) and lines[i].strip():
            text_lines.append(lines[i])
            i += 1

        try:
            segments.append(CaptionSegment(
                text="\n".join(text_lines),
                start_time=_timing_to_seconds(h1, m1, s1, ms1),
                end_time=_timing_to_seconds(h2, m2, s2, ms2),
            ))
        except ValidationError as e:
            raise MalformedSubtitle(f"Cue {index_line}: {e.errors()[0]['msg']}") from e

    return segments


def check_ordering(segments: list[CaptionSegment]) -> list[str]:
    """
    Report ordering and overlap problems in a caption track.

    Problems are logged as warnings and returned; they never reject the track.
    """
    problems = []
    for prev, cur in zip(segments, segments[1:]):
        if cur.start_time < prev.start_time:
            problems.append(f"segment at {cur.start_time}s starts before previous at {prev.start_time}s")
        elif cur.start_time < prev.end_time:
            problems.append(f"segment at {cur.start_time}s overlaps previous ending {prev.end_time}s")

    for problem in problems:
        logger.warning(f"Caption data quality: {problem}")
    return problems


def write_srt(segments: list[CaptionSegment], output_path: str | Path) -> Path:
    """Write segments to a UTF-8 SRT file for ffmpeg."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8", newline="\n") as f:
        f.write(encode(segments))
    logger.debug(f"Saved SRT file to {output_path}")
    return output_path
