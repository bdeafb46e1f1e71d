"""HLS master playlist assembly."""

import os
from typing import Optional

from app.modules.transcoding.ladder import RenditionSpec

MASTER_PLAYLIST_NAME = "master.m3u8"
HLS_VERSION = 7


def stream_inf_entry(spec: RenditionSpec) -> str:
    """The two playlist lines advertising one rendition."""
    return (
        f"#EXT-X-STREAM-INF:BANDWIDTH={spec.bandwidth},RESOLUTION={spec.name}\n"
        f"{spec.playlist_name}\n"
    )


class MasterPlaylist:
    """Master playlist with one slot per planned rendition.

    Renditions finish in any order, but each one fills the slot of its
    ladder position, so the rendered playlist always follows planning order.
    """

    def __init__(self, slot_count: int):
        self._slots: list[Optional[str]] = [None] * slot_count

    def set_entry(self, index: int, spec: RenditionSpec) -> None:
        self._slots[index] = stream_inf_entry(spec)

    @property
    def is_complete(self) -> bool:
        return all(slot is not None for slot in self._slots)

    def render(self) -> str:
        header = f"#EXTM3U\n#EXT-X-VERSION:{HLS_VERSION}\n"
        return header + "".join(slot for slot in self._slots if slot is not None)

    def write(self, output_dir: str) -> str:
        """Write ``master.m3u8`` into the output directory and return its path."""
        path = os.path.join(output_dir, MASTER_PLAYLIST_NAME)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.render())
        return path
