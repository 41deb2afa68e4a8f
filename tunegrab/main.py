"""Tunegrab - audio extraction job service (FastAPI application)."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tunegrab.config import settings
from tunegrab.logging_config import configure_logging
from tunegrab.api.v1.router import v1_router
from tunegrab.api.v1 import downloads as downloads_api
from tunegrab.api.v1 import health as health_api
from tunegrab.api.v1 import jobs as jobs_api
from tunegrab.jobs.orchestrator import ExtractionOrchestrator

logger = logging.getLogger("tunegrab.main")

# Global dispatcher reference
_dispatcher = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    global _dispatcher

    configure_logging(settings.log_level, settings.log_file)
    logger.info("Starting Tunegrab on port %s", settings.port)
    logger.info("Download dir: %s", os.path.abspath(settings.download_dir))
    logger.info("Jobs dir: %s", os.path.abspath(settings.jobs_dir))
    logger.info("Extractor: %s", settings.extractor_binary)

    os.makedirs(settings.download_dir, exist_ok=True)

    _dispatcher = ExtractionOrchestrator.from_settings(settings)
    await _dispatcher.start()

    # Wire dispatcher and status service into API endpoints
    jobs_api.set_dispatcher(_dispatcher)
    jobs_api.set_status_service(_dispatcher.status_service)
    health_api.set_dispatcher(_dispatcher)
    downloads_api.set_download_dir(settings.download_dir)
    downloads_api.set_media_info_binary(settings.media_info_binary)

    yield

    # Shutdown
    logger.info("Shutting down Tunegrab")
    await _dispatcher.stop()
    jobs_api.set_dispatcher(None)
    jobs_api.set_status_service(None)
    health_api.set_dispatcher(None)
    _dispatcher = None


app = FastAPI(
    title="Tunegrab",
    description="Background audio extraction jobs with pollable status",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS — allow the dashboard frontend and any configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tunegrab.main:app", host="0.0.0.0", port=settings.port)
