"""Object key layout for episode and movie media.

    episodes/{movie}/{episode}/original.{ext}
    episodes/{movie}/{episode}/thumbnail.jpg
    episodes/{movie}/{episode}/hls/master.m3u8, {h}p.m3u8, init-{h}p.mp4, segment_{h}p_NNN.m4s
    movies/{movie}/poster.jpg | backdrop.jpg | trailer.mp4
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.modules.transcoding.playlist import MASTER_PLAYLIST_NAME

THUMBNAIL_NAME = "thumbnail.jpg"
HLS_DIR_NAME = "hls"
DEFAULT_VIDEO_EXTENSION = ".mp4"


def episode_prefix(movie_id: int, episode_id: int) -> str:
    return f"episodes/{movie_id}/{episode_id}"


def original_key(movie_id: int, episode_id: int, extension: str = DEFAULT_VIDEO_EXTENSION) -> str:
    """Key of the uploaded source video.

    Args:
        movie_id: Movie ID
        episode_id: Episode ID
        extension: File extension with or without the leading dot
    """
    ext = extension if extension.startswith(".") else f".{extension}"
    return f"{episode_prefix(movie_id, episode_id)}/original{ext.lower()}"


def original_key_prefix(movie_id: int, episode_id: int) -> str:
    """Prefix matching the source video whatever its extension."""
    return f"{episode_prefix(movie_id, episode_id)}/original."


def thumbnail_key(movie_id: int, episode_id: int) -> str:
    return f"{episode_prefix(movie_id, episode_id)}/{THUMBNAIL_NAME}"


def hls_prefix(movie_id: int, episode_id: int) -> str:
    return f"{episode_prefix(movie_id, episode_id)}/{HLS_DIR_NAME}"


def master_playlist_key(movie_id: int, episode_id: int) -> str:
    return f"{hls_prefix(movie_id, episode_id)}/{MASTER_PLAYLIST_NAME}"


def source_extension(source: str) -> str:
    """Extension of a source key or path, defaulting to ``.mp4``."""
    ext = os.path.splitext(source)[1]
    return ext.lower() if ext else DEFAULT_VIDEO_EXTENSION


class UploadFileType(str, Enum):
    """Kinds of file a client may upload directly with a presigned URL."""
    POSTER = "poster"
    BACKDROP = "backdrop"
    TRAILER = "trailer"
    VIDEO = "video"
    THUMBNAIL = "thumbnail"


@dataclass(frozen=True)
class UploadTarget:
    key: str
    content_type: str


class MissingEpisodeError(ValueError):
    """An episode-scoped upload was requested without an episode ID."""


def upload_target(
    file_type: UploadFileType,
    movie_id: int,
    episode_id: Optional[int] = None,
) -> UploadTarget:
    """Resolve where a direct upload of the given type must go.

    Args:
        file_type: Kind of file
        movie_id: Movie ID
        episode_id: Episode ID, required for ``video`` and ``thumbnail``

    Returns:
        Object key and the content type the upload must declare

    Raises:
        MissingEpisodeError: For episode files without an episode ID
    """
    if file_type == UploadFileType.POSTER:
        return UploadTarget(f"movies/{movie_id}/poster.jpg", "image/jpeg")
    if file_type == UploadFileType.BACKDROP:
        return UploadTarget(f"movies/{movie_id}/backdrop.jpg", "image/jpeg")
    if file_type == UploadFileType.TRAILER:
        return UploadTarget(f"movies/{movie_id}/trailer.mp4", "video/mp4")

    if episode_id is None:
        raise MissingEpisodeError(f"{file_type.value} uploads require an episode ID")
    if file_type == UploadFileType.VIDEO:
        return UploadTarget(original_key(movie_id, episode_id), "video/mp4")
    return UploadTarget(thumbnail_key(movie_id, episode_id), "image/jpeg")
