"""MCP server for media-jobs using FastMCP."""

from __future__ import annotations

from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings

from .core.service import MediaJobService
from .errors import JobNotFound, VideoNotFound
from .models import CaptionStyle, JobKind, JobStatus

# =============================================================================
# TOOL USAGE GUIDANCE FOR AI ASSISTANTS:
#
# To caption a video:
#   1. media_jobs_create_job (kind="transcription") → transcript on the video
#   2. media_jobs_get_job                            → poll until completed
#
# To export a video with burned-in captions:
#   1. media_jobs_create_job (kind="export")        → needs a transcript, or a
#                                                    translation for non-base
#                                                    languages
#   2. media_jobs_get_job                            → result.download_url
#
# Jobs run in the background. Exports are EXPENSIVE (download + re-encode);
# check media_jobs_queue_status before creating many at once.
# =============================================================================


def build_mcp(service: MediaJobService) -> FastMCP:
    """Create the FastMCP server with tools bound to service."""
    # Disable DNS rebinding protection to allow any Host header (for Docker/reverse proxy)
    mcp = FastMCP(
        "media-jobs",
        transport_security=TransportSecuritySettings(enable_dns_rebinding_protection=False),
    )

    @mcp.tool(name="media_jobs_create_job")
    def tool_create_job(
        video_id: str,
        kind: str,
        language: str = "en",
        font_size: float | None = None,
        primary_color: str | None = None,
        vertical_position: float | None = None,
        link_ttl_seconds: int | None = None,
    ) -> dict:
        """
        Create a transcription or export job for a video.

        Returns immediately with the job id; use media_jobs_get_job to follow it.

        Args:
            video_id: ID of the video record
            kind: "transcription" or "export"
            language: Caption language (export: base language or a translated one)
            font_size: Caption font size in points (export only, default 20)
            primary_color: ASS colour &H00BBGGRR& (export only, default white)
            vertical_position: 0 (top) to 1 (bottom) (export only, default 0.8)
            link_ttl_seconds: Download link lifetime (export only, default 24h)
        """
        try:
            job_kind = JobKind(kind)
        except ValueError:
            return {"success": False, "error": f"Unknown job kind: {kind}"}

        style = None
        if job_kind == JobKind.EXPORT:
            overrides = {
                "font_size": font_size,
                "primary_color": primary_color,
                "vertical_position": vertical_position,
            }
            try:
                style = CaptionStyle(**{k: v for k, v in overrides.items() if v is not None})
            except ValueError as e:
                return {"success": False, "error": f"Invalid caption style: {e}"}

        try:
            job = service.create_job(video_id, job_kind, language, style, link_ttl_seconds)
        except VideoNotFound:
            return {"success": False, "error": f"Video not found: {video_id}"}
        except ValueError as e:
            return {"success": False, "error": str(e)}

        return {"success": True, "job": job.snapshot().model_dump(mode="json")}

    @mcp.tool(name="media_jobs_get_job")
    def tool_get_job(job_id: str) -> dict:
        """
        Get the status, progress and result of a job.

        Args:
            job_id: The job ID returned from media_jobs_create_job
        """
        try:
            job = service.get_job(job_id)
        except JobNotFound:
            return {"success": False, "error": f"Job not found: {job_id}"}
        return {"success": True, "job": job.snapshot().model_dump(mode="json")}

    @mcp.tool(name="media_jobs_list_jobs")
    def tool_list_jobs(status: str | None = None) -> dict:
        """
        List jobs, oldest first.

        Args:
            status: Filter by status (pending, processing, completed, failed)
        """
        try:
            job_status = JobStatus(status) if status else None
        except ValueError:
            return {"success": False, "error": f"Unknown status: {status}"}

        jobs = service.list_jobs(job_status)
        return {
            "success": True,
            "total": len(jobs),
            "jobs": [job.snapshot().model_dump(mode="json") for job in jobs],
        }

    @mcp.tool(name="media_jobs_queue_status")
    def tool_queue_status() -> dict:
        """Get task counts by state (waiting, active, delayed, completed, failed)."""
        return {"success": True, **service.queue_status()}

    return mcp
