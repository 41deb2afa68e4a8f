"""Reads container and tag metadata from a produced audio file with ffprobe."""

import json
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tunegrab.errors import MediaInfoError
from tunegrab.jobs.runner import ProcessRunner

logger = logging.getLogger(__name__)

_TAG_FIELDS = ("title", "artist", "album", "date", "genre", "track", "comment", "encoder")


class AudioMetadata(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    duration: float = 0.0
    bitrate: int = 0
    size: int = 0
    format: str = "unknown"
    audio_codec: str = "unknown"
    sample_rate: int = 0
    channels: int = 0
    title: str = ""
    artist: str = ""
    album: str = ""
    date: str = ""
    genre: str = ""
    track: str = ""
    comment: str = ""
    encoder: str = ""
    raw_tags: Dict[str, Any] = Field(default_factory=dict)


def build_media_info_command(binary: str, path: str) -> list:
    return [
        binary,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        path,
    ]


def _number(value, cast, default=0):
    try:
        return cast(float(value)) if cast is int else cast(value)
    except (TypeError, ValueError):
        return default


def summarize(data: Dict[str, Any]) -> AudioMetadata:
    """Flatten ffprobe's JSON into the fields clients display.

    Tag names are matched case-insensitively; the first spelling wins.
    """
    fmt = data.get("format") or {}
    tags = fmt.get("tags") or {}
    streams = data.get("streams") or []
    audio = next((s for s in streams if s.get("codec_type") == "audio"), {})

    folded: Dict[str, str] = {}
    for key, value in tags.items():
        folded.setdefault(key.lower(), str(value))

    return AudioMetadata(
        duration=_number(fmt.get("duration"), float, 0.0),
        bitrate=_number(fmt.get("bit_rate"), int),
        size=_number(fmt.get("size"), int),
        format=fmt.get("format_name") or "unknown",
        audio_codec=audio.get("codec_name") or "unknown",
        sample_rate=_number(audio.get("sample_rate"), int),
        channels=_number(audio.get("channels"), int),
        raw_tags=tags,
        **{name: folded.get(name, "") for name in _TAG_FIELDS},
    )


async def read_media_info(
    path: str, binary: str = "ffprobe", runner: Optional[ProcessRunner] = None
) -> AudioMetadata:
    """Run ffprobe on ``path``; raises MediaInfoError on any failure."""
    runner = runner or ProcessRunner(capture_limit=1024 * 1024)
    try:
        result = await runner.run(build_media_info_command(binary, path))
    except OSError as e:
        raise MediaInfoError(f"Failed to spawn {binary}: {e}") from e

    if result.exit_code != 0:
        raise MediaInfoError(
            f"{binary} exited with code {result.exit_code}: {result.stderr.strip()}"
        )
    try:
        data = json.loads(result.stdout)
    except ValueError as e:
        raise MediaInfoError(f"Failed to parse metadata: {e}") from e
    if not isinstance(data, dict):
        raise MediaInfoError("Failed to parse metadata: expected a JSON object")

    logger.debug("Read metadata for %s", path)
    return summarize(data)
