"""Celery tasks for episode encoding.

Each task runs its coroutine in a fresh event loop with asyncio.run. The
shared async engine is disposed at the end of every run so no pooled
connection outlives the loop it was created on.
"""

import asyncio
import logging
import socket
from typing import Any, Coroutine, Optional

from celery import Task
from celery.signals import worker_ready

from app.core.celery_app import celery_app
from app.core.database import async_session_maker, engine
from app.core.logging import log_error
from app.modules.episode.repository import EpisodeRepository
from app.modules.transcoding.models import JobState
from app.modules.transcoding.pipeline import EpisodeJobPipeline, JobRequest
from app.modules.transcoding.repository import EncodingJobRepository, JobStateRecorder
from app.modules.transcoding.service import TranscodingService

logger = logging.getLogger(__name__)


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    async def runner():
        try:
            return await coro
        finally:
            await engine.dispose()

    return asyncio.run(runner())


class EncodeEpisodeTask(Task):
    """Base task for episode encoding.

    The pipeline records its own failures; this only catches errors that
    escape it, such as the database being unreachable when the job starts.
    """
    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        job_id = args[0] if args else kwargs.get("job_id")
        if job_id:
            _run(self._mark_job_failed(job_id, str(exc)))

    async def _mark_job_failed(self, job_id: str, error: str) -> None:
        async with async_session_maker() as session:
            repo = EncodingJobRepository(session)
            job = await repo.get_by_id(job_id)
            if job and not job.is_terminal():
                await repo.update_state(job, JobState.FAILED, error)
                await EpisodeRepository(session).mark_failed(job.episode_id, error)
                await session.commit()


@celery_app.task(bind=True, base=EncodeEpisodeTask, name="transcoding.process_episode_video")
def process_episode_video_task(self, job_id: str) -> dict:
    """Run the ingestion pipeline for a persisted job.

    Args:
        job_id: EncodingJob ID

    Returns:
        Summary of the outcome
    """
    return _run(_process_episode_video_async(job_id))


async def _process_episode_video_async(job_id: str) -> dict:
    async with async_session_maker() as session:
        job = await EncodingJobRepository(session).get_by_id(job_id)
        if job is None:
            logger.error(f"Encoding job {job_id} not found")
            return {"job_id": job_id, "status": "missing"}
        if job.is_terminal():
            # Redelivered after the job was finished or reconciled
            logger.warning(f"Encoding job {job_id} already {job.state}, skipping")
            return {"job_id": job_id, "status": job.state}

        request = JobRequest(
            job_id=job.id,
            movie_id=job.movie_id,
            episode_id=job.episode_id,
            source=job.source,
            callback_url=job.callback_url,
        )

    pipeline = EpisodeJobPipeline(JobStateRecorder(async_session_maker))
    outcome = await pipeline.run(request)

    return {
        "job_id": job_id,
        "status": JobState.DONE.value if outcome.success else JobState.FAILED.value,
        "playlist_url": outcome.playlist_url,
        "renditions": outcome.renditions,
        "error": outcome.error,
    }


@celery_app.task(name="transcoding.reconcile_orphaned_jobs")
def reconcile_orphaned_jobs_task(hostname: Optional[str] = None) -> list[str]:
    """Fail jobs left behind by a dead worker on ``hostname`` and stale jobs anywhere."""
    return _run(_reconcile_async(hostname or socket.gethostname()))


async def _reconcile_async(hostname: str) -> list[str]:
    async with async_session_maker() as session:
        return await TranscodingService(session, dispatch=lambda job_id: None).reconcile_orphaned_jobs(hostname)


@worker_ready.connect
def reconcile_on_worker_ready(sender=None, **kwargs) -> None:
    """Sweep orphaned jobs once the worker is up."""
    hostname = socket.gethostname()
    try:
        failed = _run(_reconcile_async(hostname))
    except Exception as e:
        log_error(logger, "Orphaned job reconciliation failed", e, hostname=hostname)
        return
    if failed:
        logger.warning(f"Failed {len(failed)} orphaned jobs on startup", extra={"job_ids": failed})
