"""Source metadata extraction with ffprobe."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from app.core.config import settings
from app.modules.transcoding.exceptions import ProbeError

logger = logging.getLogger(__name__)


@dataclass
class StreamInfo:
    codec_type: str
    codec_name: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    bit_rate: Optional[int] = None


@dataclass
class VideoMetadata:
    """Container-level facts about a source file."""
    duration: float
    format_name: Optional[str] = None
    size: Optional[int] = None
    bit_rate: Optional[int] = None
    streams: list[StreamInfo] = field(default_factory=list)

    @property
    def video_stream(self) -> Optional[StreamInfo]:
        for stream in self.streams:
            if stream.codec_type == "video":
                return stream
        return None

    @property
    def has_audio(self) -> bool:
        return any(s.codec_type == "audio" for s in self.streams)


def _optional_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(path: str, raw: str) -> VideoMetadata:
    """Turn ffprobe JSON into VideoMetadata.

    Args:
        path: Probed file, for error messages
        raw: ffprobe stdout

    Returns:
        Parsed metadata

    Raises:
        ProbeError: If the output is not JSON or lacks a numeric duration
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProbeError(path, f"invalid ffprobe output: {e}") from e

    fmt = data.get("format") or {}
    try:
        duration = float(fmt["duration"])
    except (KeyError, TypeError, ValueError) as e:
        raise ProbeError(path, "no duration in ffprobe output") from e

    streams = [
        StreamInfo(
            codec_type=s.get("codec_type", "unknown"),
            codec_name=s.get("codec_name"),
            width=_optional_int(s.get("width")),
            height=_optional_int(s.get("height")),
            bit_rate=_optional_int(s.get("bit_rate")),
        )
        for s in data.get("streams", [])
    ]

    return VideoMetadata(
        duration=duration,
        format_name=fmt.get("format_name"),
        size=_optional_int(fmt.get("size")),
        bit_rate=_optional_int(fmt.get("bit_rate")),
        streams=streams,
    )


async def probe_video(path: str, ffprobe_path: str = settings.FFPROBE_PATH) -> VideoMetadata:
    """Run ffprobe on a local file.

    Args:
        path: Local source file
        ffprobe_path: ffprobe binary

    Returns:
        Parsed metadata

    Raises:
        ProbeError: If ffprobe is missing, fails, or returns unusable output
    """
    cmd = [
        ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        path,
    ]

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ProbeError(path, f"cannot run {ffprobe_path}: {e}") from e

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        raise ProbeError(path, f"ffprobe exited with code {process.returncode} {detail}".strip())

    metadata = parse_probe_output(path, stdout.decode("utf-8", errors="replace"))
    logger.info(
        "Probed source",
        extra={"path": path, "duration": metadata.duration, "streams": len(metadata.streams)},
    )
    return metadata
