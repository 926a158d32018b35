"""Media fetching, probing and size-bounded compression."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable

import httpx

from ..errors import FetchError, PayloadTooLarge, SubprocessError

logger = logging.getLogger(__name__)

MiB = 1024 * 1024


async def _download(
    client: httpx.AsyncClient,
    url: str,
    destination: Path,
    on_progress: Callable[[int, int | None], None] | None,
) -> int:
    async with client.stream("GET", url) as response:
        if response.status_code >= 400 or response.status_code < 200:
            raise FetchError(
                f"Failed to fetch {url}: HTTP {response.status_code}",
                retryable=response.status_code >= 500,
            )

        total = response.headers.get("content-length")
        total_bytes = int(total) if total and total.isdigit() else None
        received = 0
        with open(destination, "wb") as f:
            async for chunk in response.aiter_bytes():
                f.write(chunk)
                received += len(chunk)
                if on_progress:
                    on_progress(received, total_bytes)
    return received


async def fetch_media(
    url: str,
    destination: str | Path,
    timeout: float = 120,
    transport: httpx.AsyncBaseTransport | None = None,
    on_progress: Callable[[int, int | None], None] | None = None,
) -> Path:
    """
    Stream a remote file to destination.

    timeout bounds the whole download, not each read. Raises FetchError on
    network failure or timeout (retryable), 5xx (retryable) and any other
    non-2xx response (not retryable).
    """
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with httpx.AsyncClient(
            timeout=timeout, follow_redirects=True, transport=transport
        ) as client:
            received = await asyncio.wait_for(
                _download(client, url, destination, on_progress), timeout
            )
    except asyncio.TimeoutError as e:
        raise FetchError(f"Fetching {url} took longer than {timeout:g}s") from e
    except httpx.InvalidURL as e:
        raise FetchError(f"Invalid media URL {url!r}: {e}", retryable=False) from e
    except httpx.HTTPError as e:
        raise FetchError(f"Failed to fetch {url}: {e}") from e

    logger.info(f"Fetched {received} bytes from {url}")
    return destination


def compute_target_bitrate(
    input_size: int,
    target_bytes: int = 20 * MiB,
    assumed_duration: float = 600,
) -> int:
    """
    Bitrate cap in kbit/s for the upload copy.

    Assumes the media is at most assumed_duration seconds long instead of
    probing it, so short clips get a generous cap and long ones may still
    come out too large.
    """
    target = min(target_bytes, input_size)
    bits_per_second = target * 8 / assumed_duration
    return max(1, int(bits_per_second // 1000))


async def run_process(
    cmd: list[str],
    timeout: float | None = None,
) -> tuple[bytes, bytes]:
    """
    Run a command to completion and return (stdout, stderr).

    A nonzero exit raises SubprocessError carrying stderr verbatim; on timeout
    the process is killed before SubprocessError is raised.
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise SubprocessError(f"Executable not found: {cmd[0]}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise SubprocessError(f"{cmd[0]} timed out after {timeout}s", returncode=process.returncode)
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    if process.returncode != 0:
        raise SubprocessError(stderr.decode(errors="replace"), returncode=process.returncode)
    return stdout, stderr


async def probe_duration(path: str | Path, ffprobe: str = "ffprobe", timeout: float = 60) -> float | None:
    """Media duration in seconds, or None if ffprobe cannot tell."""
    cmd = [
        ffprobe, "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    try:
        stdout, _ = await run_process(cmd, timeout)
    except SubprocessError as e:
        logger.warning(f"Could not probe duration of {path}: {e.message.strip()}")
        return None

    try:
        duration = float(stdout.decode().strip())
    except ValueError:
        return None
    return duration if duration > 0 else None


async def compress_for_upload(
    source: str | Path,
    destination: str | Path,
    config: dict[str, Any],
) -> Path:
    """
    Re-encode media so it fits the engine's upload ceiling.

    There is a single pass at the computed bitrate; if the result is still
    above max_upload_bytes, PayloadTooLarge is raised.
    """
    source = Path(source)
    destination = Path(destination)
    input_size = source.stat().st_size
    bitrate = compute_target_bitrate(
        input_size,
        int(config["target_bytes"]),
        float(config["assumed_max_duration_seconds"]),
    )

    cmd = [
        config["ffmpeg"], "-y",
        "-i", str(source),
        "-c:v", "libx264", "-preset", "medium", "-crf", "23",
        "-maxrate", f"{bitrate}k", "-bufsize", f"{bitrate * 2}k",
        "-c:a", "aac", "-b:a", "64k",
        str(destination),
    ]
    await run_process(cmd, float(config["compress_timeout_seconds"]))

    if not destination.exists():
        raise SubprocessError(f"ffmpeg did not produce {destination.name}")

    output_size = destination.stat().st_size
    logger.info(
        f"Compressed {input_size / MiB:.2f} MiB -> {output_size / MiB:.2f} MiB "
        f"(cap {bitrate}k)"
    )
    limit = int(config["max_upload_bytes"])
    if output_size > limit:
        raise PayloadTooLarge(
            f"Compressed media is {output_size / MiB:.2f} MiB, above the {limit / MiB:.0f} MiB limit"
        )
    return destination
