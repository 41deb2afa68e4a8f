"""Health check endpoint."""

from fastapi import APIRouter
import os
import platform
import shutil
import sys

from tunegrab.config import settings

router = APIRouter()

# Set by main.py during lifespan
_dispatcher = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


@router.get("/health")
async def health_check():
    """Service health, extractor availability, and system info."""
    extractor_path = shutil.which(settings.extractor_binary)
    download_dir = os.path.abspath(settings.download_dir)

    return {
        "status": "healthy" if extractor_path else "degraded",
        "extractor": {
            "binary": settings.extractor_binary,
            "path": extractor_path,
            "available": extractor_path is not None,
        },
        "download_dir": {
            "path": download_dir,
            "exists": os.path.isdir(download_dir),
            "writable": os.access(download_dir, os.W_OK),
        },
        "active_jobs": len(_dispatcher.active_job_ids()) if _dispatcher else 0,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
