"""Progress inference from extractor output.

The extractor only reports real progress during the transfer phase. The
later phases are recognised by their log prefixes and mapped onto fixed
checkpoints, and a stall heuristic nudges the number forward when the tool
goes quiet. The result is an approximation meant for a progress bar, not a
measurement of work done.
"""

import re
import time
from typing import Callable, Optional

_DOWNLOAD_PERCENT = re.compile(r"\[download\]\s+(\d+(?:\.\d+)?)%")

TRANSFER_CEILING = 85
EXTRACT_CHECKPOINT = 90
METADATA_CHECKPOINT = 95


class ProgressEstimator:
    """Maps a single line of tool output to a progress value, or None."""

    def estimate(self, line: str) -> Optional[int]:
        match = _DOWNLOAD_PERCENT.search(line)
        if match:
            return int(round(min(TRANSFER_CEILING, float(match.group(1)))))
        if "[ExtractAudio]" in line:
            return EXTRACT_CHECKPOINT
        if "[Metadata]" in line:
            return METADATA_CHECKPOINT
        return None


class ProgressTracker:
    """Per-job progress state: last value and when it last moved."""

    def __init__(
        self,
        estimator: Optional[ProgressEstimator] = None,
        initial: int = 0,
        stall_threshold: float = 30.0,
        stall_ceiling: int = 80,
        stall_increment: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._estimator = estimator or ProgressEstimator()
        self._clock = clock
        self.progress = initial
        self.last_update = clock()
        self.stall_threshold = stall_threshold
        self.stall_ceiling = stall_ceiling
        self.stall_increment = stall_increment

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def sync(self, value: int, now: Optional[float] = None) -> None:
        if value > self.progress:
            self.progress = value
            self.last_update = self._now(now)

    def observe(self, line: str, now: Optional[float] = None) -> Optional[int]:
        """Return the new progress if ``line`` moves it forward, else None."""
        value = self._estimator.estimate(line)
        if value is None or value <= self.progress:
            return None
        self.sync(value, now)
        return value

    def stall_tick(self, now: Optional[float] = None) -> Optional[int]:
        """Advance progress artificially when nothing has moved for too long.

        Never pushes past ``stall_ceiling``.
        """
        now = self._now(now)
        if now - self.last_update <= self.stall_threshold:
            return None
        if self.progress >= self.stall_ceiling:
            return None
        self.progress = min(self.stall_ceiling, self.progress + self.stall_increment)
        self.last_update = now
        return self.progress
