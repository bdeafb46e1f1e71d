"""Service layer for episode video processing.

Handles job submission with the per-episode lease, status queries, direct
upload presigning, media cleanup and the reconciliation of jobs abandoned by
a crashed worker.
"""

import logging
import uuid
from typing import Callable, Optional

from fastapi import UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import log_error
from app.core.metrics import ORPHANED_JOBS_RECONCILED_TOTAL
from app.core.storage import StorageError, StorageService, guess_content_type
from app.modules.episode.repository import EpisodeNotFoundError, EpisodeRepository
from app.modules.episode.schemas import EpisodeProcessingStatus
from app.modules.transcoding.exceptions import JobConflictError, JobDispatchError
from app.modules.transcoding.models import EncodingJob, JobState
from app.modules.transcoding.repository import EncodingJobRepository, stale_cutoff
from app.modules.transcoding.schemas import (
    DeleteMediaResponse,
    PresignedUploadRequest,
    PresignedUploadResponse,
    ProcessVideoRequest,
)
from app.modules.transcoding.storage import (
    hls_prefix,
    original_key,
    original_key_prefix,
    source_extension,
    thumbnail_key,
    upload_target,
)

logger = logging.getLogger(__name__)

ORPHANED_BY_RESTART = "Worker restarted before the job finished"
ORPHANED_BY_STALL = "Job stalled without progress and was abandoned"


def generate_job_id() -> str:
    return f"job-{uuid.uuid4().hex[:16]}"


def dispatch_encoding_job(job_id: str) -> None:
    """Queue the encoding task for a persisted job."""
    from app.modules.transcoding.tasks import process_episode_video_task

    process_episode_video_task.delay(job_id)


class TranscodingService:
    """Service for submitting and inspecting episode encoding jobs."""

    def __init__(
        self,
        session: AsyncSession,
        storage: Optional[StorageService] = None,
        dispatch: Callable[[str], None] = dispatch_encoding_job,
    ):
        """Initialize service with database session.

        Args:
            session: Database session
            storage: Async storage service
            dispatch: Queues a job ID for background execution
        """
        self.session = session
        self.job_repo = EncodingJobRepository(session)
        self.episode_repo = EpisodeRepository(session)
        self.storage = storage or StorageService()
        self.dispatch = dispatch

    async def _ensure_episode_free(self, episode_id: int) -> None:
        """Enforce the lease: one live job per episode.

        A job that has not moved for JOB_STALE_AFTER_SECONDS no longer holds
        the lease and is failed here so a new job can take over.
        """
        cutoff = stale_cutoff(settings.JOB_STALE_AFTER_SECONDS)
        active = await self.job_repo.get_active_for_episode(episode_id)
        for job in active:
            if job.updated_at >= cutoff:
                raise JobConflictError(episode_id, job.id)
            await self.job_repo.update_state(job, JobState.FAILED, ORPHANED_BY_STALL)
            logger.warning(f"Abandoned stale job {job.id} for episode {episode_id}")

    async def submit_job(self, request: ProcessVideoRequest) -> EncodingJob:
        """Record a job for an episode and queue it.

        Args:
            request: Source, episode and optional job ID / callback URL

        Returns:
            The persisted job

        Raises:
            EpisodeNotFoundError: If the episode does not exist
            JobConflictError: If the episode already has a live job or the
                job ID is taken
            JobDispatchError: If the job could not be queued; the job and
                episode are marked failed first
        """
        job_id = request.job_id or generate_job_id()

        episode = await self.episode_repo.get_for_movie(request.movie_id, request.episode_id)
        if episode is None:
            raise EpisodeNotFoundError(request.episode_id)

        await self._ensure_episode_free(request.episode_id)
        if await self.job_repo.get_by_id(job_id) is not None:
            raise JobConflictError(request.episode_id, job_id)

        try:
            job = await self.job_repo.create(
                job_id=job_id,
                movie_id=request.movie_id,
                episode_id=request.episode_id,
                source=request.video_key,
                callback_url=request.callback_url,
            )
            await self.episode_repo.mark_processing_started(request.episode_id)
            await self.session.commit()
        except IntegrityError as e:
            # Lost a race with a concurrent submission for the same episode
            await self.session.rollback()
            raise JobConflictError(request.episode_id, job_id) from e

        try:
            self.dispatch(job.id)
        except Exception as e:
            await self._fail_undispatched(job, request.episode_id, e)
            raise JobDispatchError(job.id, str(e)) from e
        logger.info(
            f"Queued job {job.id} for episode {request.episode_id}",
            extra={"job_id": job.id, "source": request.video_key},
        )
        return job

    async def _fail_undispatched(self, job: EncodingJob, episode_id: int, error: Exception) -> None:
        """Release the lease of a job no worker will ever pick up."""
        reason = f"Failed to queue encoding job: {error}"
        log_error(logger, reason, error, job_id=job.id)
        await self.job_repo.update_state(job, JobState.FAILED, reason)
        await self.episode_repo.mark_failed(episode_id, reason)
        await self.session.commit()

    async def upload_and_submit(
        self,
        movie_id: int,
        episode_id: int,
        upload: UploadFile,
        callback_url: Optional[str] = None,
    ) -> tuple[EncodingJob, str]:
        """Store an uploaded source video and submit a job for it.

        Returns:
            The persisted job and the storage key of the original
        """
        episode = await self.episode_repo.get_for_movie(movie_id, episode_id)
        if episode is None:
            raise EpisodeNotFoundError(episode_id)
        # Refuse before overwriting the original another job may be reading
        await self._ensure_episode_free(episode_id)

        key = original_key(movie_id, episode_id, source_extension(upload.filename or ""))
        await self.storage.upload_fileobj(
            upload.file,
            key,
            upload.content_type or guess_content_type(key),
        )

        job = await self.submit_job(
            ProcessVideoRequest(
                video_key=key,
                movie_id=movie_id,
                episode_id=episode_id,
                callback_url=callback_url,
            )
        )
        return job, key

    async def get_job(self, job_id: str) -> Optional[EncodingJob]:
        return await self.job_repo.get_by_id(job_id)

    async def get_processing_status(self, episode_id: int) -> EpisodeProcessingStatus:
        episode = await self.episode_repo.get_by_id(episode_id)
        if episode is None:
            raise EpisodeNotFoundError(episode_id)
        return EpisodeProcessingStatus(
            episode_id=episode.id,
            is_processed=episode.is_processed,
            processing_error=episode.processing_error,
            playlist_url=episode.playlist_url,
            thumbnail_url=episode.thumbnail_url,
        )

    def create_presigned_upload(self, request: PresignedUploadRequest) -> PresignedUploadResponse:
        """Describe where and how a client uploads a media file directly.

        Raises:
            MissingEpisodeError: For episode files without an episode ID
        """
        target = upload_target(request.file_type, request.movie_id, request.episode_id)
        return PresignedUploadResponse(
            presigned_url=self.storage.presign(target.key, target.content_type),
            key=target.key,
            content_type=target.content_type,
            cdn_url=self.storage.get_url(target.key),
        )

    async def delete_episode_media(self, movie_id: int, episode_id: int) -> DeleteMediaResponse:
        """Delete the original, thumbnail and HLS package of an episode.

        Each step runs even if an earlier one failed; failures are logged and
        reported in the response.
        """
        deleted = 0
        errors: list[str] = []

        steps = (
            ("original", lambda: self.storage.delete_prefix(original_key_prefix(movie_id, episode_id))),
            ("thumbnail", lambda: self._delete_one(thumbnail_key(movie_id, episode_id))),
            ("hls", lambda: self.storage.delete_prefix(f"{hls_prefix(movie_id, episode_id)}/")),
        )
        for name, step in steps:
            try:
                deleted += await step()
            except StorageError as e:
                logger.warning(f"Failed to delete {name} of episode {episode_id}: {e}")
                errors.append(f"{name}: {e}")

        return DeleteMediaResponse(success=not errors, deleted=deleted, errors=errors)

    async def _delete_one(self, key: str) -> int:
        if not await self.storage.exists(key):
            return 0
        await self.storage.delete(key)
        return 1

    async def reconcile_orphaned_jobs(self, hostname: str) -> list[str]:
        """Fail jobs that can no longer finish.

        Covers every non-terminal job owned by ``hostname`` (called when that
        worker starts, so nothing there is still running) and every
        non-terminal job that has not moved for JOB_STALE_AFTER_SECONDS.

        Args:
            hostname: Host name of the starting worker

        Returns:
            IDs of the jobs that were failed
        """
        cutoff = stale_cutoff(settings.JOB_STALE_AFTER_SECONDS)
        orphans = await self.job_repo.get_orphaned(hostname, cutoff)

        for job in orphans:
            reason = ORPHANED_BY_RESTART if job.worker_hostname == hostname else ORPHANED_BY_STALL
            await self.job_repo.update_state(job, JobState.FAILED, reason)
            await self.episode_repo.mark_failed(job.episode_id, reason)
            logger.warning(f"Reconciled orphaned job {job.id}: {reason}", extra={"job_id": job.id})

        await self.session.commit()
        ORPHANED_JOBS_RECONCILED_TOTAL.inc(len(orphans))
        return [job.id for job in orphans]
