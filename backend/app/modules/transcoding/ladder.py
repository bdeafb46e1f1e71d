"""Rendition ladders for adaptive bitrate HLS output."""

from dataclasses import dataclass

from app.core.config import settings


@dataclass(frozen=True)
class RenditionSpec:
    """One output rendition of the ladder."""
    height: int
    bitrate: int  # kbps

    @property
    def name(self) -> str:
        return f"{self.height}p"

    @property
    def playlist_name(self) -> str:
        return f"{self.height}p.m3u8"

    @property
    def bandwidth(self) -> int:
        """Peak bandwidth in bits per second, as advertised in the master playlist."""
        return self.bitrate * 1000


FULL_LADDER: tuple[RenditionSpec, ...] = (
    RenditionSpec(height=240, bitrate=400),
    RenditionSpec(height=360, bitrate=700),
    RenditionSpec(height=480, bitrate=1500),
    RenditionSpec(height=720, bitrate=2500),
    RenditionSpec(height=1080, bitrate=4500),
)

# Long sources get fewer rungs to bound encode time
REDUCED_LADDER: tuple[RenditionSpec, ...] = (
    RenditionSpec(height=360, bitrate=700),
    RenditionSpec(height=720, bitrate=2500),
)


def plan_renditions(
    duration: float,
    full_ladder_max_duration: float = settings.FULL_LADDER_MAX_DURATION,
) -> tuple[RenditionSpec, ...]:
    """Choose the rendition ladder for a source.

    Args:
        duration: Source duration in seconds
        full_ladder_max_duration: Longest source that still gets the full ladder

    Returns:
        Renditions in planning order (ascending height)
    """
    if duration <= full_ladder_max_duration:
        return FULL_LADDER
    return REDUCED_LADDER
