"""Repository for encoding job persistence."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.episode.repository import EpisodeRepository
from app.modules.transcoding.models import ACTIVE_STATES, EncodingJob, JobState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EncodingJobRepository:
    """Repository for EncodingJob operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        job_id: str,
        movie_id: int,
        episode_id: int,
        source: str,
        callback_url: Optional[str] = None,
    ) -> EncodingJob:
        """Create a job in the STARTED state.

        Args:
            job_id: Caller-supplied or generated job ID
            movie_id: Movie ID
            episode_id: Episode ID
            source: Storage key or local path of the source video
            callback_url: Optional completion webhook

        Returns:
            Created EncodingJob
        """
        now = _utcnow()
        job = EncodingJob(
            id=job_id,
            movie_id=movie_id,
            episode_id=episode_id,
            source=source,
            callback_url=callback_url,
            state=JobState.STARTED.value,
            created_at=now,
            updated_at=now,
        )
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: str) -> Optional[EncodingJob]:
        result = await self.session.execute(
            select(EncodingJob).where(EncodingJob.id == job_id)
        )
        return result.scalar_one_or_none()

    async def get_active_for_episode(self, episode_id: int) -> list[EncodingJob]:
        """Non-terminal jobs of an episode, newest first."""
        result = await self.session.execute(
            select(EncodingJob)
            .where(
                EncodingJob.episode_id == episode_id,
                EncodingJob.state.in_(ACTIVE_STATES),
            )
            .order_by(EncodingJob.updated_at.desc())
        )
        return list(result.scalars().all())

    async def get_orphaned(self, hostname: str, stale_before: datetime) -> list[EncodingJob]:
        """Non-terminal jobs owned by ``hostname`` or not touched since ``stale_before``."""
        result = await self.session.execute(
            select(EncodingJob).where(
                EncodingJob.state.in_(ACTIVE_STATES),
                or_(
                    EncodingJob.worker_hostname == hostname,
                    EncodingJob.updated_at < stale_before,
                ),
            )
        )
        return list(result.scalars().all())

    async def claim(self, job: EncodingJob, hostname: str) -> None:
        job.worker_hostname = hostname
        job.updated_at = _utcnow()
        await self.session.flush()

    async def update_state(
        self,
        job: EncodingJob,
        state: JobState,
        error_message: Optional[str] = None,
    ) -> None:
        """Move a job to a new state.

        Args:
            job: The job to update
            state: New state
            error_message: Failure reason, for FAILED
        """
        now = _utcnow()
        job.state = state.value
        job.updated_at = now
        if error_message is not None:
            job.error_message = error_message
        if state in (JobState.DONE, JobState.FAILED):
            job.completed_at = now
        await self.session.flush()


class JobStateRecorder:
    """Commits job and episode state for a running pipeline.

    Each call opens its own session and commits, so every transition is
    durable as soon as it happens.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    async def start(self, job_id: str, episode_id: int, hostname: str) -> None:
        """Claim the job for this worker and reset the episode's processing fields."""
        async with self.session_factory() as session:
            job = await self._require_job(session, job_id)
            await EncodingJobRepository(session).claim(job, hostname)
            await EpisodeRepository(session).mark_processing_started(episode_id)
            await session.commit()

    async def set_state(self, job_id: str, state: JobState) -> None:
        async with self.session_factory() as session:
            job = await self._require_job(session, job_id)
            await EncodingJobRepository(session).update_state(job, state)
            await session.commit()

    async def complete(
        self,
        job_id: str,
        episode_id: int,
        playlist_url: str,
        thumbnail_url: Optional[str],
        duration: float,
    ) -> None:
        """Record success on the episode and the job in one transaction."""
        async with self.session_factory() as session:
            job = await self._require_job(session, job_id)
            await EpisodeRepository(session).mark_processed(
                episode_id, playlist_url, thumbnail_url, duration
            )
            await EncodingJobRepository(session).update_state(job, JobState.DONE)
            await session.commit()

    async def fail(self, job_id: str, episode_id: int, error: str) -> None:
        """Record failure on the episode and the job in one transaction."""
        async with self.session_factory() as session:
            job = await EncodingJobRepository(session).get_by_id(job_id)
            if job is not None:
                await EncodingJobRepository(session).update_state(job, JobState.FAILED, error)
            await EpisodeRepository(session).mark_failed(episode_id, error)
            await session.commit()

    async def _require_job(self, session: AsyncSession, job_id: str) -> EncodingJob:
        job = await EncodingJobRepository(session).get_by_id(job_id)
        if job is None:
            raise LookupError(f"Encoding job {job_id} not found")
        return job


def stale_cutoff(stale_after_seconds: float) -> datetime:
    return _utcnow() - timedelta(seconds=stale_after_seconds)
