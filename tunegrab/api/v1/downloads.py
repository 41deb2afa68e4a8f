"""Serve produced audio files, and their tag metadata, from the download directory."""

import os
from urllib.parse import quote

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from tunegrab.errors import MediaInfoError
from tunegrab.jobs.media_info import read_media_info

router = APIRouter()

# Wired in during lifespan (same pattern as jobs.py)
_download_dir = None
_media_info_binary = "ffprobe"

_MEDIA_TYPES = {
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".opus": "audio/opus",
    ".webm": "audio/webm",
}


def set_download_dir(path):
    global _download_dir
    _download_dir = path


def set_media_info_binary(binary):
    global _media_info_binary
    _media_info_binary = binary


def _resolve(file_name: str) -> str:
    """Absolute path of an existing file directly inside the download directory."""
    if _download_dir is None:
        raise HTTPException(status_code=503, detail="Download directory not configured")

    base = os.path.realpath(_download_dir)
    path = os.path.realpath(os.path.join(base, file_name))
    if os.path.dirname(path) != base:
        raise HTTPException(status_code=403, detail="Access denied")
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="File not found")
    return path


@router.get("/downloads/{file_name}")
async def download_file(file_name: str):
    """Stream a finished artifact."""
    path = _resolve(file_name)
    media_type = _MEDIA_TYPES.get(os.path.splitext(path)[1].lower(), "application/octet-stream")
    return FileResponse(path, media_type=media_type, filename=file_name)


@router.get("/downloads/{file_name}/metadata")
async def file_metadata(file_name: str):
    """Container, stream and tag details of a finished artifact."""
    path = _resolve(file_name)
    try:
        metadata = await read_media_info(path, binary=_media_info_binary)
    except MediaInfoError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "fileName": file_name,
        "metadata": metadata.model_dump(by_alias=True),
        "resultReference": f"/api/v1/downloads/{quote(file_name)}",
    }
