"""Output naming and discovery.

The extractor derives the final file name from our output template but may
normalise characters differently, so after it exits the produced file is
located by a series of progressively looser matches over the directory.
"""

import os
import re
import time
from dataclasses import dataclass
from typing import List, Optional

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x08\x0b\x0c\x0e-\x1f]')
_WHITESPACE = re.compile(r"\s+")

# files the extractor leaves behind while it is still working
_TEMP_SUFFIXES = (".part", ".ytdl", ".temp")

MAX_NAME_LENGTH = 100


def sanitize_file_name(text: str, max_length: int = MAX_NAME_LENGTH) -> str:
    cleaned = _ILLEGAL_CHARS.sub("", text or "")
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned[:max_length].strip()


@dataclass(frozen=True)
class NamingHints:
    base_name: str
    title: str = ""
    artist: str = ""


def derive_naming(job_id: str, title: str = "", artist: str = "") -> NamingHints:
    """``Artist - Title`` when both are known, else whichever exists, else the job id."""
    clean_title = sanitize_file_name(title)
    clean_artist = sanitize_file_name(artist)
    if clean_title and clean_artist:
        base = f"{clean_artist} - {clean_title}"
    else:
        base = clean_title or clean_artist or job_id
    return NamingHints(base_name=base, title=clean_title, artist=clean_artist)


def _list_candidates(directory: str) -> List[str]:
    names = []
    for entry in os.scandir(directory):
        if not entry.is_file():
            continue
        if entry.name.startswith(".") or entry.name.endswith(_TEMP_SUFFIXES):
            continue
        names.append(entry.name)
    return sorted(names)


def discover_output(
    directory: str,
    hints: NamingHints,
    job_id: str,
    recency_window: float = 60.0,
    now: Optional[float] = None,
) -> Optional[str]:
    """Return the name of the file produced for this job, or None."""
    try:
        names = _list_candidates(directory)
    except FileNotFoundError:
        return None

    for needle in (hints.base_name, hints.title, hints.artist):
        if not needle:
            continue
        for name in names:
            if needle in name:
                return name

    for name in names:
        if name.startswith(job_id):
            return name

    now = time.time() if now is None else now
    recent = []
    for name in names:
        try:
            mtime = os.path.getmtime(os.path.join(directory, name))
        except FileNotFoundError:
            continue
        if now - mtime < recency_window:
            recent.append((mtime, name))
    if recent:
        return max(recent)[1]
    return None
