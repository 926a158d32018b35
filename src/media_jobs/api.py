"""REST and WebSocket API routes for media-jobs."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from .core.notifier import Subscription
from .core.service import MediaJobService
from .errors import JobNotFound, PipelineError, VideoNotFound
from .models import CaptionStyle, JobKind, JobSnapshot, JobStatus

logger = logging.getLogger(__name__)

router = APIRouter()


def get_service(request: Request) -> MediaJobService:
    return request.app.state.service


Service = Annotated[MediaJobService, Depends(get_service)]


class CreateJobRequest(BaseModel):
    """Request body for creating a job."""
    video_id: str
    kind: JobKind
    language: str = "en"
    style: CaptionStyle | None = None
    link_ttl_seconds: int | None = Field(default=None, gt=0)


@router.get("/health")
async def health():
    """Health check and service info."""
    return {
        "name": "media-jobs",
        "version": "0.1.0",
        "status": "healthy",
        "endpoints": {
            "api": "/api",
            "mcp": "/mcp",
            "docs": "/docs",
        },
    }


@router.post("/jobs")
async def api_create_job(request: CreateJobRequest, service: Service) -> JobSnapshot:
    """
    Create a transcription or export job.

    Returns immediately with the pending job; follow it with GET /jobs/{id}
    or the /jobs/{id}/events WebSocket.
    """
    try:
        job = service.create_job(
            request.video_id,
            request.kind,
            request.language,
            request.style,
            request.link_ttl_seconds,
        )
    except VideoNotFound:
        raise HTTPException(status_code=404, detail=f"Video not found: {request.video_id}")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PipelineError as e:
        logger.error(f"Could not create {request.kind.value} job for {request.video_id}: {e.message}")
        raise HTTPException(status_code=503, detail=e.message)
    return job.snapshot()


@router.get("/jobs/{job_id}")
async def api_get_job(job_id: str, service: Service) -> JobSnapshot:
    """Get the current state of a job."""
    try:
        return service.get_job(job_id).snapshot()
    except JobNotFound:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")


@router.get("/jobs")
async def api_list_jobs(
    service: Service,
    status: Annotated[
        JobStatus | None,
        Query(description="Filter by status (pending, processing, completed, failed)"),
    ] = None,
) -> list[JobSnapshot]:
    """List jobs, oldest first."""
    return [job.snapshot() for job in service.list_jobs(status)]


@router.websocket("/jobs/{job_id}/events")
async def api_job_events(websocket: WebSocket, job_id: str):
    """
    Stream job snapshots.

    The current snapshot is sent first, then every change. The socket is
    closed by the server once the job reaches a terminal state.
    """
    service: MediaJobService = websocket.app.state.service
    await websocket.accept()

    job = service.jobs.get(job_id)
    if job is None:
        await websocket.close(code=4404, reason="Job not found")
        return

    # Subscribe before reading the snapshot so no change falls in between
    async with service.subscribe(job_id) as subscription:
        current = service.get_job(job_id).snapshot()
        try:
            await websocket.send_json(current.model_dump(mode="json"))
            if not current.status.is_terminal:
                await _relay_until_disconnect(websocket, subscription, current)
        except WebSocketDisconnect:
            logger.debug(f"Subscriber of job {job_id} disconnected")
            return

    await websocket.close()


async def _relay_changes(websocket: WebSocket, subscription: Subscription, current: JobSnapshot) -> None:
    async for snapshot in subscription:
        if snapshot.updated_at <= current.updated_at:
            continue
        await websocket.send_json(snapshot.model_dump(mode="json"))


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))


async def _relay_until_disconnect(websocket: WebSocket, subscription: Subscription, current: JobSnapshot) -> None:
    """
    Forward changes until the job ends or the client goes away.

    Incoming client messages are read and ignored; a disconnect raises
    WebSocketDisconnect.
    """
    relay = asyncio.create_task(_relay_changes(websocket, subscription, current))
    listener = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        done, _ = await asyncio.wait({relay, listener}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (relay, listener):
            task.cancel()
        await asyncio.gather(relay, listener, return_exceptions=True)

    if listener in done:
        listener.result()
    relay.result()


@router.get("/queue/status")
async def api_queue_status(service: Service):
    """Task counts by state and whether the queue is paused."""
    return service.queue_status()


@router.post("/queue/pause")
async def api_queue_pause(service: Service):
    """Stop starting new tasks. Running attempts finish."""
    service.queue.pause()
    return service.queue_status()


@router.post("/queue/resume")
async def api_queue_resume(service: Service):
    """Resume starting tasks."""
    service.queue.resume()
    return service.queue_status()


async def _translate_in_background(service: MediaJobService, video_id: str, language: str, force: bool):
    try:
        await service.translate(video_id, language, force)
    except (PipelineError, VideoNotFound) as e:
        logger.error(f"Translation of {video_id} to {language} failed: {e}")


@router.post("/videos/{video_id}/translations/{language}")
async def api_translate_video(
    video_id: str,
    language: str,
    background_tasks: BackgroundTasks,
    service: Service,
    force: Annotated[bool, Query(description="Translate again even if a translation exists")] = False,
):
    """
    Translate a video's transcript into language.

    Runs in the background; the translation's status on the video record goes
    from pending to completed or failed.
    """
    video = service.videos.get(video_id)
    if video is None:
        raise HTTPException(status_code=404, detail=f"Video not found: {video_id}")
    if not video.transcription_segments:
        raise HTTPException(status_code=409, detail=f"Video {video_id} has no transcript")

    background_tasks.add_task(_translate_in_background, service, video_id, language, force)
    return {"video_id": video_id, "language": language, "status": "pending"}


@router.get("/artifacts/{key:path}")
async def api_download_artifact(
    key: str,
    service: Service,
    expires: Annotated[int, Query(description="Link expiry (unix seconds)")],
    signature: Annotated[str, Query(description="Link signature")],
):
    """Serve an exported file behind a signed, time-limited link."""
    try:
        path = service.objects.path(key)
    except ValueError:
        raise HTTPException(status_code=404, detail="Not found")

    if not service.objects.verify(key, expires, signature):
        raise HTTPException(status_code=403, detail="Invalid or expired link")
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Not found")

    media_type = "video/mp4" if path.suffix == ".mp4" else "application/octet-stream"
    return FileResponse(path, media_type=media_type, filename=Path(key).name)
