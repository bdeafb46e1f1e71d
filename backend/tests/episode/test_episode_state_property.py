"""Property-based tests for episode and job state persistence.

**Feature: episode-hls-pipeline, Property 12: Processing State Persistence**
"""

import asyncio
import math
from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import given, settings, strategies as st

from app.modules.episode.models import Episode
from app.modules.episode.repository import EpisodeNotFoundError, EpisodeRepository
from app.modules.transcoding.models import EncodingJob, JobState
from app.modules.transcoding.repository import EncodingJobRepository


def session_returning(obj):
    session = AsyncMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = obj
    session.execute.return_value = result
    return session


def make_episode(**overrides) -> Episode:
    fields = dict(
        id=2,
        movie_id=1,
        title="Pilot",
        is_processed=False,
        processing_error=None,
        playlist_url=None,
        thumbnail_url=None,
        duration=None,
    )
    fields.update(overrides)
    return Episode(**fields)


class TestEpisodeProcessingState:
    """Property tests for the episode's processing fields."""

    @given(duration=st.floats(min_value=0, max_value=100000, allow_nan=False))
    @settings(max_examples=100)
    def test_processed_duration_is_floored(self, duration: float) -> None:
        """The stored duration SHALL be the source duration rounded down to whole seconds."""
        episode = make_episode(processing_error="previous failure")
        repo = EpisodeRepository(session_returning(episode))

        asyncio.run(repo.mark_processed(2, "https://cdn/hls/master.m3u8", "https://cdn/thumb.jpg", duration))

        assert episode.duration == math.floor(duration)
        assert episode.is_processed is True
        assert episode.processing_error is None
        assert episode.playlist_url == "https://cdn/hls/master.m3u8"

    @pytest.mark.asyncio
    async def test_restart_keeps_previous_playlist(self) -> None:
        episode = make_episode(is_processed=True, playlist_url="https://cdn/old/master.m3u8", processing_error="x")
        repo = EpisodeRepository(session_returning(episode))

        await repo.mark_processing_started(2)

        assert episode.is_processed is False
        assert episode.processing_error is None
        assert episode.playlist_url == "https://cdn/old/master.m3u8"

    @pytest.mark.asyncio
    async def test_failure_recorded(self) -> None:
        episode = make_episode()
        repo = EpisodeRepository(session_returning(episode))

        await repo.mark_failed(2, "Encoding 720p failed with exit code 1")

        assert episode.is_processed is False
        assert episode.processing_error == "Encoding 720p failed with exit code 1"

    @pytest.mark.asyncio
    async def test_failure_for_missing_episode_is_ignored(self) -> None:
        repo = EpisodeRepository(session_returning(None))

        assert await repo.mark_failed(2, "boom") is None

    @pytest.mark.asyncio
    async def test_start_for_missing_episode_raises(self) -> None:
        repo = EpisodeRepository(session_returning(None))

        with pytest.raises(EpisodeNotFoundError):
            await repo.mark_processing_started(2)


class TestJobStateTransitions:
    """Property tests for job state updates."""

    @given(state=st.sampled_from(list(JobState)))
    @settings(max_examples=100)
    def test_completed_at_set_only_for_terminal_states(self, state: JobState) -> None:
        job = EncodingJob(id="job-1", movie_id=1, episode_id=2, source="k", state=JobState.STARTED.value)
        repo = EncodingJobRepository(AsyncMock())

        asyncio.run(repo.update_state(job, state))

        assert job.state == state.value
        assert (job.completed_at is not None) == (state in (JobState.DONE, JobState.FAILED))
        assert job.is_terminal() == (state in (JobState.DONE, JobState.FAILED))

    @pytest.mark.asyncio
    async def test_failure_message_stored(self) -> None:
        job = EncodingJob(id="job-1", movie_id=1, episode_id=2, source="k", state=JobState.ENCODING.value)
        repo = EncodingJobRepository(AsyncMock())

        await repo.update_state(job, JobState.FAILED, "Encoding exceeded the 1800s deadline")

        assert job.error_message == "Encoding exceeded the 1800s deadline"
