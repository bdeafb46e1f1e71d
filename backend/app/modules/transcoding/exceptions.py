"""Errors raised by the HLS ingestion pipeline."""

from typing import Optional


class TranscodingError(Exception):
    """Base class for pipeline failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ProbeError(TranscodingError):
    """ffprobe failed or returned unusable metadata."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to probe {path}: {reason}")


class EncodeError(TranscodingError):
    """An ffmpeg invocation exited unsuccessfully."""

    def __init__(self, resolution: str, exit_code: Optional[int], detail: Optional[str] = None):
        self.resolution = resolution
        self.exit_code = exit_code
        self.detail = detail
        message = f"Encoding {resolution} failed with exit code {exit_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ThumbnailError(EncodeError):
    """Frame extraction for the thumbnail failed."""

    def __init__(self, exit_code: Optional[int], detail: Optional[str] = None):
        super().__init__("thumbnail", exit_code, detail)


class EncodingTimeoutError(TranscodingError, TimeoutError):
    """The encoding phase ran past its deadline."""

    def __init__(self, deadline: float, completed: Optional[list[str]] = None):
        self.deadline = deadline
        self.completed = completed or []
        super().__init__(f"Encoding exceeded the {deadline:g}s deadline")


class DownloadExhaustedError(TranscodingError):
    """The source could not be fetched within the allowed attempts."""

    def __init__(self, key: str, attempts: int, last_error: Optional[BaseException]):
        self.key = key
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed to download {key} after {attempts} attempts: {last_error}")


class JobConflictError(TranscodingError):
    """Another job already holds the episode."""

    def __init__(self, episode_id: int, active_job_id: str):
        self.episode_id = episode_id
        self.active_job_id = active_job_id
        super().__init__(f"Episode {episode_id} is already being processed by job {active_job_id}")


class JobDispatchError(TranscodingError):
    """The job was recorded but could not be queued."""

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Failed to queue job {job_id}: {reason}")
