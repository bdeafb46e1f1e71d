"""End-to-end ingestion of one episode video into an HLS package.

The pipeline walks the job through

    STARTED -> DOWNLOADING -> PROBING -> THUMBNAILING -> ENCODING
            -> UPLOADING -> PERSISTING -> DONE

and records every transition. Any exception ends the job in FAILED with the
error stored on both the job and the episode. All intermediate files live in
one per-job directory that is removed on every exit path.
"""

import asyncio
import logging
import os
import shutil
import socket
import tempfile
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from app.core.config import settings
from app.core.logging import correlation_scope, log_error
from app.core.metrics import (
    ENCODING_JOB_DURATION_SECONDS,
    ENCODING_JOBS_IN_PROGRESS,
    ENCODING_JOBS_TOTAL,
)
from app.core.storage import StorageService
from app.core.tracing import create_span, record_exception
from app.modules.transcoding.callback import CallbackNotifier, build_callback_payload
from app.modules.transcoding.ffmpeg import FFmpegTranscoder
from app.modules.transcoding.ladder import plan_renditions
from app.modules.transcoding.models import JobState
from app.modules.transcoding.orchestrator import EncodingOrchestrator
from app.modules.transcoding.playlist import MASTER_PLAYLIST_NAME
from app.modules.transcoding.probe import VideoMetadata, probe_video
from app.modules.transcoding.repository import JobStateRecorder
from app.modules.transcoding.retry import DOWNLOAD_RETRY_CONFIG, RetryConfig, download_with_retry
from app.modules.transcoding.storage import (
    THUMBNAIL_NAME,
    hls_prefix,
    master_playlist_key,
    source_extension,
    thumbnail_key,
)

logger = logging.getLogger(__name__)


@dataclass
class JobRequest:
    job_id: str
    movie_id: int
    episode_id: int
    source: str  # storage key, or a worker-local path when local_source is set
    callback_url: Optional[str] = None
    local_source: bool = False


@dataclass
class JobOutcome:
    job_id: str
    success: bool
    playlist_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    duration: Optional[float] = None
    renditions: list[str] = field(default_factory=list)
    error: Optional[str] = None


class EpisodeJobPipeline:
    """Runs one encoding job from source video to published playlist."""

    def __init__(
        self,
        recorder: JobStateRecorder,
        storage: Optional[StorageService] = None,
        transcoder: Optional[FFmpegTranscoder] = None,
        orchestrator: Optional[EncodingOrchestrator] = None,
        notifier: Optional[CallbackNotifier] = None,
        probe: Callable[[str], Awaitable[VideoMetadata]] = probe_video,
        work_dir: Optional[str] = None,
        hostname: Optional[str] = None,
        retry_config: RetryConfig = DOWNLOAD_RETRY_CONFIG,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.recorder = recorder
        self.storage = storage or StorageService()
        self.transcoder = transcoder or FFmpegTranscoder()
        self.orchestrator = orchestrator or EncodingOrchestrator(self.transcoder)
        self.notifier = notifier or CallbackNotifier()
        self.probe = probe
        self.work_dir = work_dir or settings.TRANSCODE_WORK_DIR or tempfile.gettempdir()
        self.hostname = hostname or socket.gethostname()
        self.retry_config = retry_config
        self.sleep = sleep

    def job_dir(self, job_id: str) -> str:
        return os.path.join(self.work_dir, f"hls-{job_id}")

    async def run(self, request: JobRequest) -> JobOutcome:
        """Execute the job, record its outcome and send the callback.

        Failures never escape: they are persisted and reported in the
        returned outcome.

        Args:
            request: What to encode and where to report

        Returns:
            Final outcome of the job
        """
        with correlation_scope(request.job_id):
            job_dir = self.job_dir(request.job_id)
            started = time.monotonic()
            ENCODING_JOBS_IN_PROGRESS.inc()

            try:
                with create_span(
                    "encoding_job",
                    attributes={
                        "job.id": request.job_id,
                        "episode.id": request.episode_id,
                        "movie.id": request.movie_id,
                    },
                ):
                    try:
                        outcome = await self._execute(request, job_dir)
                    except Exception as e:
                        record_exception(e)
                        outcome = await self._record_failure(request, e)
            finally:
                self._cleanup(job_dir)
                ENCODING_JOBS_IN_PROGRESS.dec()

            ENCODING_JOBS_TOTAL.labels(status="completed" if outcome.success else "failed").inc()
            ENCODING_JOB_DURATION_SECONDS.observe(time.monotonic() - started)

            if request.callback_url:
                payload = build_callback_payload(
                    "completed" if outcome.success else "error",
                    request.movie_id,
                    request.episode_id,
                    request.job_id,
                    outcome.error,
                )
                await self.notifier.notify(request.callback_url, payload)

            return outcome

    async def _execute(self, request: JobRequest, job_dir: str) -> JobOutcome:
        await self.recorder.start(request.job_id, request.episode_id, self.hostname)
        logger.info(
            f"Job started for episode {request.episode_id}",
            extra={"source": request.source, "worker": self.hostname},
        )

        hls_dir = os.path.join(job_dir, "hls")
        os.makedirs(hls_dir, exist_ok=True)

        source_path = await self._resolve_source(request, job_dir)

        await self.recorder.set_state(request.job_id, JobState.PROBING)
        with create_span("probe"):
            metadata = await self.probe(source_path)
        specs = plan_renditions(metadata.duration)
        logger.info(
            f"Planned {len(specs)} renditions for {metadata.duration:.1f}s source",
            extra={"renditions": [s.name for s in specs]},
        )

        await self.recorder.set_state(request.job_id, JobState.THUMBNAILING)
        with create_span("thumbnail"):
            thumbnail_path = await self.transcoder.extract_thumbnail(
                source_path,
                os.path.join(job_dir, THUMBNAIL_NAME),
                metadata.duration,
            )

        await self.recorder.set_state(request.job_id, JobState.ENCODING)
        with create_span("encode", attributes={"renditions": len(specs)}):
            result = await self.orchestrator.encode_all(
                source_path,
                hls_dir,
                specs,
                metadata.duration,
            )

        await self.recorder.set_state(request.job_id, JobState.UPLOADING)
        with create_span("upload"):
            # master.m3u8 goes last so it never references missing files
            await self.storage.upload_directory(
                hls_dir,
                hls_prefix(request.movie_id, request.episode_id),
                defer=(MASTER_PLAYLIST_NAME,),
            )
            # The episode thumbnail is only replaced once every rendition exists
            thumbnail = await self.storage.upload(
                thumbnail_path,
                thumbnail_key(request.movie_id, request.episode_id),
                "image/jpeg",
            )
        playlist_url = self.storage.get_url(master_playlist_key(request.movie_id, request.episode_id))

        await self.recorder.set_state(request.job_id, JobState.PERSISTING)
        await self.recorder.complete(
            request.job_id,
            request.episode_id,
            playlist_url,
            thumbnail.url,
            metadata.duration,
        )

        logger.info(f"Job completed, playlist at {playlist_url}")
        return JobOutcome(
            job_id=request.job_id,
            success=True,
            playlist_url=playlist_url,
            thumbnail_url=thumbnail.url,
            duration=metadata.duration,
            renditions=[spec.name for spec in result.renditions],
        )

    async def _resolve_source(self, request: JobRequest, job_dir: str) -> str:
        """Use a trusted local source as is, otherwise download the storage key.

        Job sources coming from the API are always storage keys; only
        in-process callers may hand over a path on the worker.
        """
        if request.local_source:
            if not os.path.isfile(request.source):
                raise FileNotFoundError(f"Local source {request.source} does not exist")
            return request.source

        await self.recorder.set_state(request.job_id, JobState.DOWNLOADING)
        destination = os.path.join(job_dir, f"original{source_extension(request.source)}")
        with create_span("download", attributes={"key": request.source}):
            await download_with_retry(
                self.storage,
                request.source,
                destination,
                self.retry_config,
                self.sleep,
            )
        return destination

    async def _record_failure(self, request: JobRequest, error: Exception) -> JobOutcome:
        message = str(error) or error.__class__.__name__
        log_error(logger, f"Job failed: {message}", error, episode_id=request.episode_id)
        try:
            await self.recorder.fail(request.job_id, request.episode_id, message)
        except Exception as persist_error:
            log_error(logger, "Could not record job failure", persist_error)
        return JobOutcome(job_id=request.job_id, success=False, error=message)

    def _cleanup(self, job_dir: str) -> None:
        if not os.path.exists(job_dir):
            return
        try:
            shutil.rmtree(job_dir)
        except OSError as e:
            logger.warning(f"Failed to remove {job_dir}: {e}")
