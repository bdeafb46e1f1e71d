"""Parsing of ffmpeg's stderr progress output.

ffmpeg rewrites its status line with carriage returns, so lines are split on
both ``\\r`` and ``\\n`` before looking for ``time=HH:MM:SS.ms`` tokens.
"""

import re
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

PROGRESS_TIME_RE = re.compile(r"time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")


def parse_progress_time(line: str) -> Optional[float]:
    """Extract the media position from an ffmpeg status line.

    Args:
        line: One line of ffmpeg diagnostics

    Returns:
        Position in seconds, or None when the line has no usable time token
        (including ``time=N/A``)
    """
    match = PROGRESS_TIME_RE.search(line)
    if match is None:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class DiagnosticLineSplitter:
    """Reassembles lines from arbitrary stderr chunks."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: bytes) -> Iterator[str]:
        """Consume a chunk and yield every line it completes."""
        self._buffer += chunk.decode("utf-8", errors="replace")
        parts = re.split(r"[\r\n]", self._buffer)
        self._buffer = parts.pop()
        for part in parts:
            if part:
                yield part

    def flush(self) -> Iterator[str]:
        """Yield whatever is left once the stream has ended."""
        rest, self._buffer = self._buffer, ""
        if rest:
            yield rest


@dataclass
class ProgressReport:
    percent: int
    position: float
    eta_seconds: float


class ProgressTracker:
    """Turns media positions into one report per crossed percentage step.

    ETA is estimated as ``elapsed / fraction - elapsed`` from wall time since
    the tracker was created.
    """

    def __init__(
        self,
        total_duration: float,
        step: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.total_duration = total_duration
        self.step = step
        self._clock = clock
        self._started = clock()
        self._last_reported = 0

    def update(self, position: float) -> Optional[ProgressReport]:
        """Record a new position.

        Returns:
            A report when a new step boundary was crossed, else None
        """
        if self.total_duration <= 0:
            return None

        fraction = min(position / self.total_duration, 1.0)
        percent = int(fraction * 100)
        boundary = percent - percent % self.step
        if boundary <= self._last_reported:
            return None

        self._last_reported = boundary
        elapsed = self._clock() - self._started
        eta = elapsed / fraction - elapsed if fraction > 0 else 0.0
        return ProgressReport(percent=boundary, position=position, eta_seconds=max(eta, 0.0))

    def feed_line(self, line: str) -> Optional[ProgressReport]:
        position = parse_progress_time(line)
        if position is None:
            return None
        return self.update(position)
