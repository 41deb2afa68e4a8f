"""Spawns the external extractor and streams its output."""

import asyncio
import codecs
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

_LINE_SPLIT = re.compile(r"[\r\n]")

LineCallback = Callable[[str, str], Awaitable[None]]


def build_extract_command(
    binary: str,
    source_url: str,
    output_template: str,
    target_format: str = "mp3",
    custom_metadata: Optional[Dict[str, Any]] = None,
) -> List[str]:
    """Arguments for a yt-dlp compatible extractor, best audio quality."""
    args = [
        binary,
        "-f", "bestaudio/best",
        "--extract-audio",
        "--audio-format", target_format,
        "--audio-quality", "0",
        "--embed-metadata",
        "--add-metadata",
        "--newline",
        "--no-warnings",
        "--output", output_template,
    ]
    for key, value in (custom_metadata or {}).items():
        if value is None or value == "":
            continue
        replacement = str(value).replace("\\", "\\\\")
        args += ["--replace-in-metadata", key, ".*", replacement]
        if key == "artist":
            args += ["--replace-in-metadata", "uploader", ".*", replacement]
    args.append(source_url)
    return args


@dataclass
class RunResult:
    exit_code: int
    stdout: str
    stderr: str


class _Tail:
    """Keeps the last ``limit`` characters written to it."""

    def __init__(self, limit: int):
        self._limit = limit
        self._text = ""

    def write(self, text: str) -> None:
        self._text = (self._text + text)[-self._limit:]

    def getvalue(self) -> str:
        return self._text


class ProcessRunner:
    """Runs one extractor process to completion.

    Both output streams are consumed concurrently; each complete line
    (``\\r`` or ``\\n`` terminated, the tool redraws progress with ``\\r``)
    is handed to ``on_line(stream_name, line)``.
    """

    def __init__(self, capture_limit: int = 64 * 1024, chunk_size: int = 4096):
        self._capture_limit = capture_limit
        self._chunk_size = chunk_size

    async def _pump(
        self,
        name: str,
        stream: asyncio.StreamReader,
        tail: _Tail,
        on_line: Optional[LineCallback],
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            chunk = await stream.read(self._chunk_size)
            if not chunk:
                break
            text = decoder.decode(chunk)
            tail.write(text)
            *lines, pending = _LINE_SPLIT.split(pending + text)
            for line in lines:
                if line.strip() and on_line is not None:
                    await on_line(name, line)
        # flush a multibyte sequence cut off by EOF as a replacement character
        rest = decoder.decode(b"", final=True)
        if rest:
            tail.write(rest)
            pending += rest
        if pending.strip() and on_line is not None:
            await on_line(name, pending)

    async def run(self, command: List[str], on_line: Optional[LineCallback] = None) -> RunResult:
        """Spawn ``command`` and wait for it to exit.

        Raises OSError when the process cannot be started. Cancelling the
        awaiting task kills the process before the cancellation propagates.
        """
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        logger.info("Spawned %s pid=%s", command[0], process.pid)

        out_tail = _Tail(self._capture_limit)
        err_tail = _Tail(self._capture_limit)
        try:
            await asyncio.gather(
                self._pump("stdout", process.stdout, out_tail, on_line),
                self._pump("stderr", process.stderr, err_tail, on_line),
            )
            exit_code = await process.wait()
        except BaseException:
            if process.returncode is None:
                logger.warning("Killing %s pid=%s", command[0], process.pid)
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await asyncio.shield(process.wait())
            raise

        logger.info("%s pid=%s exited with code %s", command[0], process.pid, exit_code)
        return RunResult(exit_code, out_tail.getvalue(), err_tail.getvalue())
