"""FFmpeg invocation for HLS renditions and thumbnails.

Each rendition is its own ffmpeg process writing an fMP4 HLS sub-playlist,
its init segment and numbered media segments into a shared output directory.
"""

import asyncio
import logging
import os
import time
from collections import deque
from dataclasses import dataclass
from typing import Optional

from app.core.config import settings
from app.core.metrics import RENDITION_ENCODE_DURATION_SECONDS
from app.modules.transcoding.exceptions import EncodeError, ThumbnailError
from app.modules.transcoding.ladder import RenditionSpec
from app.modules.transcoding.progress import DiagnosticLineSplitter, ProgressTracker

logger = logging.getLogger(__name__)

# Tail of stderr kept for error messages
_STDERR_TAIL_LINES = 5
_KILL_GRACE_SECONDS = 5


@dataclass
class FFmpegConfig:
    """Encoder settings shared by every rendition."""
    video_codec: str = "h264"
    profile: str = "main"
    crf: int = 23
    audio_codec: str = "aac"
    audio_sample_rate: int = 48000
    audio_bitrate: str = "128k"
    segment_duration: int = settings.HLS_SEGMENT_DURATION
    thumbnail_width: int = 480


@dataclass
class RenditionOutput:
    """Files produced by a finished rendition encode."""
    spec: RenditionSpec
    playlist_path: str
    elapsed: float


async def cleanup_process(process: asyncio.subprocess.Process, context: str) -> None:
    """Kill a child process if it is still running and reap it."""
    if process.returncode is None:
        try:
            process.kill()
        except (ProcessLookupError, OSError):
            pass
        try:
            await asyncio.wait_for(process.wait(), timeout=_KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"{context} process did not terminate after kill")


class FFmpegTranscoder:
    """Async wrapper around the ffmpeg binary."""

    def __init__(
        self,
        ffmpeg_path: str = settings.FFMPEG_PATH,
        config: Optional[FFmpegConfig] = None,
    ):
        """Initialize transcoder.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            config: Encoder settings
        """
        self.ffmpeg_path = ffmpeg_path
        self.config = config or FFmpegConfig()

    def build_rendition_command(
        self,
        source: str,
        output_dir: str,
        spec: RenditionSpec,
        segment_duration: Optional[int] = None,
    ) -> list[str]:
        """Build the ffmpeg command for one HLS rendition.

        Args:
            source: Local source file
            output_dir: Directory receiving playlist and segments
            spec: Rendition to produce
            segment_duration: Target segment length in seconds

        Returns:
            FFmpeg command as list of arguments
        """
        cfg = self.config
        seg = segment_duration or cfg.segment_duration
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-y",
            "-i", source,
            "-profile:v", cfg.profile,
            "-vf", f"scale=-2:{spec.height}",
            "-c:v", cfg.video_codec,
            "-crf", str(cfg.crf),
            "-b:v", f"{spec.bitrate}k",
            "-c:a", cfg.audio_codec,
            "-ar", str(cfg.audio_sample_rate),
            "-b:a", cfg.audio_bitrate,
            "-hls_time", str(seg),
            "-hls_list_size", "0",
            "-hls_segment_type", "fmp4",
            "-hls_fmp4_init_filename", f"init-{spec.name}.mp4",
            "-hls_segment_filename", os.path.join(output_dir, f"segment_{spec.name}_%03d.m4s"),
            os.path.join(output_dir, spec.playlist_name),
        ]

    def build_thumbnail_command(self, source: str, output_path: str, timestamp: float) -> list[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-y",
            "-ss", f"{timestamp:g}",
            "-i", source,
            "-vframes", "1",
            "-vf", f"scale={self.config.thumbnail_width}:-1",
            "-q:v", "2",
            output_path,
        ]

    async def _run(
        self,
        cmd: list[str],
        context: str,
        tracker: Optional[ProgressTracker] = None,
    ) -> tuple[int, list[str]]:
        """Run ffmpeg, streaming stderr through the progress tracker.

        The child is killed and reaped on every exit path, including
        cancellation of the awaiting task.

        Returns:
            Exit code and the last few diagnostic lines
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return -1, [f"cannot run {cmd[0]}: {e}"]

        splitter = DiagnosticLineSplitter()
        tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)

        def consume(line: str) -> None:
            tail.append(line)
            if tracker is None:
                return
            report = tracker.feed_line(line)
            if report is not None:
                logger.info(
                    f"{context}: {report.percent}% (ETA {report.eta_seconds:.0f}s)",
                    extra={"percent": report.percent, "eta_seconds": round(report.eta_seconds, 1)},
                )

        try:
            while True:
                chunk = await process.stderr.read(4096)
                if not chunk:
                    break
                for line in splitter.feed(chunk):
                    consume(line)
            for line in splitter.flush():
                consume(line)
            await process.wait()
        finally:
            await cleanup_process(process, context)

        return process.returncode, list(tail)

    async def encode_rendition(
        self,
        source: str,
        output_dir: str,
        spec: RenditionSpec,
        total_duration: float,
        segment_duration: Optional[int] = None,
    ) -> RenditionOutput:
        """Encode one rendition into ``output_dir``.

        Args:
            source: Local source file
            output_dir: HLS output directory shared by all renditions
            spec: Rendition to produce
            total_duration: Source duration used for progress percentages
            segment_duration: Target segment length in seconds

        Returns:
            Paths of the produced sub-playlist

        Raises:
            EncodeError: If ffmpeg exits with a non-zero code
        """
        cmd = self.build_rendition_command(source, output_dir, spec, segment_duration)
        tracker = ProgressTracker(total_duration)
        started = time.monotonic()

        logger.info(f"Encoding {spec.name} at {spec.bitrate}k", extra={"resolution": spec.name})
        try:
            exit_code, tail = await self._run(cmd, f"Encoding {spec.name}", tracker)
        except asyncio.CancelledError:
            RENDITION_ENCODE_DURATION_SECONDS.labels(resolution=spec.name, status="cancelled").observe(
                time.monotonic() - started
            )
            logger.warning(f"Encoding {spec.name} cancelled", extra={"resolution": spec.name})
            raise

        elapsed = time.monotonic() - started
        if exit_code != 0:
            RENDITION_ENCODE_DURATION_SECONDS.labels(resolution=spec.name, status="failed").observe(elapsed)
            raise EncodeError(spec.name, exit_code, tail[-1] if tail else None)

        RENDITION_ENCODE_DURATION_SECONDS.labels(resolution=spec.name, status="completed").observe(elapsed)
        logger.info(f"Encoded {spec.name} in {elapsed:.1f}s", extra={"resolution": spec.name})
        return RenditionOutput(
            spec=spec,
            playlist_path=os.path.join(output_dir, spec.playlist_name),
            elapsed=elapsed,
        )

    async def extract_thumbnail(
        self,
        source: str,
        output_path: str,
        duration: float,
        timestamp: float = settings.THUMBNAIL_TIMESTAMP_SECONDS,
    ) -> str:
        """Grab a single JPEG frame.

        Sources shorter than ``timestamp`` use the frame at half their length.

        Args:
            source: Local source file
            output_path: Destination image path
            duration: Source duration in seconds
            timestamp: Preferred frame position in seconds

        Returns:
            The written image path

        Raises:
            ThumbnailError: If ffmpeg fails or writes nothing
        """
        position = min(timestamp, duration / 2) if duration > 0 else 0.0
        cmd = self.build_thumbnail_command(source, output_path, position)
        exit_code, tail = await self._run(cmd, "Thumbnail")

        if exit_code != 0:
            raise ThumbnailError(exit_code, tail[-1] if tail else None)
        if not os.path.isfile(output_path) or os.path.getsize(output_path) == 0:
            raise ThumbnailError(exit_code, "no frame written")
        return output_path
