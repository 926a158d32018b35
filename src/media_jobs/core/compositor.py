"""Burning captions into video with ffmpeg."""

from __future__ import annotations

import asyncio
import logging
import math
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict

from ..errors import SubprocessError
from ..models import CaptionStyle
from .media import probe_duration

logger = logging.getLogger(__name__)

# Client font sizes are preview points; libass size = preview size * FONT_SCALE
FONT_SCALE = 0.8

ProgressCallback = Callable[[float], None]


class BurnInStyle(BaseModel):
    """ASS style overrides handed to the ffmpeg subtitles filter."""

    model_config = ConfigDict(frozen=True)

    font_size: float
    primary_colour: str
    margin_v: int
    font_name: str = "Arial"
    back_colour: str = "&HE0000000"
    border_style: int = 3
    outline: int = 0
    shadow: int = 0
    alignment: int = 2


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def map_style(style: CaptionStyle) -> BurnInStyle:
    """
    Translate a client caption style into burn-in overrides.

    The client measures vertical position from the top of the frame while
    libass measures the margin from the bottom, hence the inversion.
    """
    return BurnInStyle(
        font_size=style.font_size * FONT_SCALE,
        primary_colour=style.primary_color,
        margin_v=_round_half_up((1 - style.vertical_position) * 100),
    )


def force_style(burn: BurnInStyle) -> str:
    return (
        f"Fontsize={burn.font_size:g},"
        f"FontName={burn.font_name},"
        f"PrimaryColour={burn.primary_colour},"
        f"BackColour={burn.back_colour},"
        f"BorderStyle={burn.border_style},"
        f"Outline={burn.outline},"
        f"Shadow={burn.shadow},"
        f"Alignment={burn.alignment},"
        f"MarginV={burn.margin_v}"
    )


def escape_filter_path(path: str | Path) -> str:
    """Escape a path for use inside an ffmpeg filter argument."""
    escaped = str(path).replace("\\", "\\\\").replace(":", "\\:")
    return escaped.replace("'", "\\'")


def subtitle_filter(subtitle_path: str | Path, style: CaptionStyle) -> str:
    return f"subtitles={escape_filter_path(subtitle_path)}:force_style='{force_style(map_style(style))}'"


def build_burn_in_command(
    ffmpeg: str,
    input_path: str | Path,
    subtitle_path: str | Path,
    style: CaptionStyle,
    output_path: str | Path,
) -> list[str]:
    return [
        ffmpeg, "-y",
        "-i", str(input_path),
        "-vf", subtitle_filter(subtitle_path, style),
        "-c:v", "libx264", "-preset", "medium", "-crf", "23",
        "-c:a", "aac", "-b:a", "128k",
        "-progress", "pipe:1", "-nostats",
        str(output_path),
    ]


def parse_progress(line: str, duration: float | None) -> float | None:
    """
    Percent complete from one line of ffmpeg -progress output.

    out_time_ms is reported in microseconds like out_time_us. Returns None
    for lines that carry no position or when the duration is unknown.
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    if key == "progress" and value == "end":
        return 100.0
    if key not in ("out_time_us", "out_time_ms") or not duration:
        return None
    try:
        position = int(value) / 1_000_000
    except ValueError:
        return None
    return max(0.0, min(100.0, position / duration * 100))


class BurnInProcess:
    """
    A running ffmpeg burn-in.

    Used as an async context manager: leaving the block kills and reaps the
    process if it is still running, whatever the exit path.
    """

    def __init__(self, cmd: list[str], duration: float | None = None, timeout: float | None = None):
        self.cmd = cmd
        self.duration = duration
        self.timeout = timeout
        self.process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None

    async def __aenter__(self) -> BurnInProcess:
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise SubprocessError(f"Executable not found: {self.cmd[0]}") from e
        self._stderr_task = asyncio.create_task(self.process.stderr.read())
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self.process and self.process.returncode is None:
            logger.warning(f"Killing ffmpeg (pid {self.process.pid})")
            self.process.kill()
            await self.process.wait()
        if self._stderr_task and not self._stderr_task.done():
            self._stderr_task.cancel()
            await asyncio.gather(self._stderr_task, return_exceptions=True)

    async def _read_progress(self, on_progress: ProgressCallback | None) -> None:
        last = -1.0
        async for raw in self.process.stdout:
            percent = parse_progress(raw.decode(errors="replace"), self.duration)
            if percent is None or percent <= last:
                continue
            last = percent
            if on_progress:
                on_progress(percent)

    async def _run(self, on_progress: ProgressCallback | None) -> None:
        await self._read_progress(on_progress)
        await self.process.wait()

    async def wait(self, on_progress: ProgressCallback | None = None) -> None:
        """
        Stream progress until ffmpeg exits.

        timeout bounds the whole render. Raises SubprocessError with ffmpeg's
        stderr on a nonzero exit, or after killing it on timeout.
        """
        try:
            await asyncio.wait_for(self._run(on_progress), self.timeout)
        except asyncio.TimeoutError:
            raise SubprocessError(f"ffmpeg timed out after {self.timeout}s")

        stderr = await self._stderr_task
        if self.process.returncode != 0:
            raise SubprocessError(stderr.decode(errors="replace"), returncode=self.process.returncode)


class Compositor:
    """Runs burn-ins with the configured ffmpeg/ffprobe binaries."""

    def __init__(self, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe", timeout: float | None = 900):
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> Compositor:
        return cls(
            ffmpeg=config["ffmpeg"],
            ffprobe=config["ffprobe"],
            timeout=float(config["render_timeout_seconds"]),
        )

    async def burn_in(
        self,
        input_path: str | Path,
        subtitle_path: str | Path,
        style: CaptionStyle,
        output_path: str | Path,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Render input with subtitles burned in. on_progress receives 0..100."""
        duration = await probe_duration(input_path, self.ffprobe)
        if duration is None:
            logger.warning(f"Unknown duration for {input_path}, progress will not be reported")

        cmd = build_burn_in_command(self.ffmpeg, input_path, subtitle_path, style, output_path)
        logger.info(f"Burning subtitles into {Path(input_path).name}")
        async with BurnInProcess(cmd, duration, self.timeout) as process:
            await process.wait(on_progress)

        output_path = Path(output_path)
        if not output_path.exists():
            raise SubprocessError(f"ffmpeg did not produce {output_path.name}")
        return output_path
