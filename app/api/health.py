"""
Health check endpoint.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from app.models.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint.

    Reports:
    - Whether the pipeline is running
    - Pending queue length (a growing queue means deliveries keep failing)
    - Number of recorded uploads
    """
    pipeline = getattr(request.app.state, "pipeline", None)
    settings = request.app.state.settings

    running = bool(pipeline and pipeline.running)
    return HealthResponse(
        status="healthy" if running else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=settings.api_version,
        running=running,
        queue_length=pipeline.uploader.queue_length() if pipeline else 0,
        upload_count=pipeline.history.upload_count() if pipeline else 0,
        watch_path=str(pipeline.watcher.watch_path) if pipeline else None,
        delivery_mode="webhook" if settings.discord.uses_webhook else "bot",
    )
