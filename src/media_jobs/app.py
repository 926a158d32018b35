"""FastAPI application for media-jobs."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import router as api_router
from .config import ensure_dirs
from .core.service import MediaJobService
from .server import build_mcp


def create_app(service: MediaJobService | None = None) -> FastAPI:
    """Create the app; without a service, one is built from config."""
    if service is None:
        ensure_dirs()
        service = MediaJobService.from_config()

    mcp = build_mcp(service)
    # streamable_http_app() also creates mcp.session_manager
    mcp_app = mcp.streamable_http_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        await service.start()
        async with mcp.session_manager.run():
            yield
        await service.stop()

    app = FastAPI(
        title="Media Jobs",
        description="Background transcription and caption burn-in jobs",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.service = service

    # Include REST API routes
    app.include_router(api_router, prefix="/api", tags=["API"])

    # Mount MCP server routes (streamable HTTP only, provides /mcp endpoint)
    app.mount("/", mcp_app)
    return app


def main():
    """Run the server."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "media_jobs.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=False,
    )


if __name__ == "__main__":
    main()
