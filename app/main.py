"""
Discord Image Uploader - FastAPI Application

Runs the upload pipeline inside the app lifespan and exposes its state:
- Pending queue length
- Recorded upload count
- Pipeline status
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from app.api import health
from app.models.schemas import ServiceInfo
from app.utils.config import Settings, get_settings
from app.utils.logging_config import configure_logging
from domains.image_upload.pipeline import Pipeline, build_pipeline


def create_app(
    settings: Optional[Settings] = None,
    pipeline_factory: Callable[[Settings], Pipeline] = build_pipeline,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use; loaded from config/config.json by default
        pipeline_factory: Builds the pipeline started in the lifespan

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info(f"Starting {settings.api_title} v{settings.api_version}")

        try:
            pipeline = pipeline_factory(settings)
            pipeline.start()
            app.state.pipeline = pipeline
        except Exception as e:
            logger.error(f"Failed to start pipeline: {e}")
            raise

        yield

        # Cleanup
        logger.info("Shutting down application...")
        await asyncio.to_thread(pipeline.stop)
        logger.success("Application shut down complete")

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Watches a folder and uploads new images to Discord",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = None

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.log_level.upper() == "DEBUG" else "An error occurred",
            },
        )

    app.include_router(health.router, tags=["Health"])

    @app.get("/", response_model=ServiceInfo)
    async def root():
        """Root endpoint."""
        pipeline = app.state.pipeline
        return ServiceInfo(
            service=settings.api_title,
            version=settings.api_version,
            status="operational" if pipeline and pipeline.running else "stopped",
        )

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=get_settings().api_port,
        log_level=get_settings().log_level.lower(),
    )
