"""Property-based tests for the end-to-end episode ingestion pipeline.

**Feature: episode-hls-pipeline, Property 9: Job Lifecycle**
"""

import asyncio
import json
import os

import httpx
import pytest
from hypothesis import given, settings, strategies as st

from app.core.storage import Storage, StorageConfig, StorageService
from app.modules.transcoding.callback import CallbackNotifier
from app.modules.transcoding.exceptions import EncodeError
from app.modules.transcoding.ffmpeg import RenditionOutput
from app.modules.transcoding.models import JobState
from app.modules.transcoding.orchestrator import EncodingOrchestrator
from app.modules.transcoding.pipeline import EpisodeJobPipeline, JobRequest
from app.modules.transcoding.probe import VideoMetadata
from app.modules.transcoding.retry import RetryConfig


class FakeRecorder:
    def __init__(self) -> None:
        self.states: list[JobState] = []
        self.completed = None
        self.failed = None

    async def start(self, job_id, episode_id, hostname) -> None:
        self.states.append(JobState.STARTED)

    async def set_state(self, job_id, state) -> None:
        self.states.append(state)

    async def complete(self, job_id, episode_id, playlist_url, thumbnail_url, duration) -> None:
        self.states.append(JobState.DONE)
        self.completed = (playlist_url, thumbnail_url, duration)

    async def fail(self, job_id, episode_id, error) -> None:
        self.states.append(JobState.FAILED)
        self.failed = error


class FakeTranscoder:
    """Writes what ffmpeg would write, optionally failing one rendition."""

    def __init__(self, fail=None, hang=False) -> None:
        self.fail = fail or {}
        self.hang = hang

    async def extract_thumbnail(self, source, output_path, duration, timestamp=10.0):
        with open(output_path, "wb") as f:
            f.write(b"\xff\xd8jpeg")
        return output_path

    async def encode_rendition(self, source, output_dir, spec, total_duration, segment_duration=None):
        await asyncio.sleep(3600 if self.hang else 0)
        if spec.name in self.fail:
            raise EncodeError(spec.name, self.fail[spec.name])
        for name in (spec.playlist_name, f"init-{spec.name}.mp4", f"segment_{spec.name}_000.m4s"):
            with open(os.path.join(output_dir, name), "w") as f:
                f.write(name)
        return RenditionOutput(spec, os.path.join(output_dir, spec.playlist_name), 0.0)


class Harness:
    def __init__(self, root, duration: float, fail=None, hang=False, deadline: float = 30) -> None:
        self.storage = Storage(
            StorageConfig(
                backend="local",
                local_path=str(root / "bucket"),
                cdn_domain="cdn.example.com",
                cdn_enabled=True,
            )
        )
        self.work_dir = root / "work"
        self.work_dir.mkdir()
        self.recorder = FakeRecorder()
        self.callbacks: list[dict] = []
        self.sleeps: list[float] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.callbacks.append(json.loads(request.content))
            return httpx.Response(200)

        async def probe(path: str) -> VideoMetadata:
            return VideoMetadata(duration=duration)

        async def sleep(seconds: float) -> None:
            self.sleeps.append(seconds)

        transcoder = FakeTranscoder(fail, hang)
        self.pipeline = EpisodeJobPipeline(
            self.recorder,
            storage=StorageService(self.storage),
            transcoder=transcoder,
            orchestrator=EncodingOrchestrator(transcoder, deadline=deadline),
            notifier=CallbackNotifier(secret="s", transport=httpx.MockTransport(handler)),
            probe=probe,
            work_dir=str(self.work_dir),
            hostname="worker-1",
            retry_config=RetryConfig(max_attempts=3, initial_delay=2.0, max_delay=2.0, backoff_multiplier=1.0),
            sleep=sleep,
        )

    def put_source(self, key: str = "episodes/1/2/original.mp4") -> str:
        source = self.work_dir.parent / "upload.mp4"
        source.write_bytes(b"source-video")
        self.storage.upload(str(source), key)
        return key


def request(source: str) -> JobRequest:
    return JobRequest(
        job_id="job-0123456789abcdef",
        movie_id=1,
        episode_id=2,
        source=source,
        callback_url="http://backend/api/episodes/callback",
    )


class TestSuccessfulJob:
    """Property tests for jobs that run to completion."""

    @given(duration=st.floats(min_value=1, max_value=5000, allow_nan=False))
    @settings(max_examples=100, deadline=None)
    def test_published_package_matches_ladder(self, tmp_path_factory, duration: float) -> None:
        """A finished job SHALL publish one playlist per planned rendition plus the master."""
        harness = Harness(tmp_path_factory.mktemp("job"), duration)
        key = harness.put_source()

        outcome = asyncio.run(harness.pipeline.run(request(key)))

        expected = ["240p", "360p", "480p", "720p", "1080p"] if duration <= 1200 else ["360p", "720p"]
        assert outcome.success
        assert outcome.renditions == expected
        playlists = [
            k.rsplit("/", 1)[1]
            for k in harness.storage.list_files("episodes/1/2/hls/")
            if k.endswith(".m3u8")
        ]
        assert sorted(playlists) == sorted([f"{name}.m3u8" for name in expected] + ["master.m3u8"])

    @pytest.mark.asyncio
    async def test_short_episode_end_to_end(self, tmp_path) -> None:
        harness = Harness(tmp_path, 900.0)
        key = harness.put_source()

        outcome = await harness.pipeline.run(request(key))

        assert outcome.success
        assert len(outcome.renditions) == 5
        assert outcome.playlist_url == "https://cdn.example.com/episodes/1/2/hls/master.m3u8"
        assert outcome.thumbnail_url == "https://cdn.example.com/episodes/1/2/thumbnail.jpg"
        assert harness.recorder.states == [
            JobState.STARTED,
            JobState.DOWNLOADING,
            JobState.PROBING,
            JobState.THUMBNAILING,
            JobState.ENCODING,
            JobState.UPLOADING,
            JobState.PERSISTING,
            JobState.DONE,
        ]
        assert harness.recorder.completed == (outcome.playlist_url, outcome.thumbnail_url, 900.0)
        assert harness.storage.exists("episodes/1/2/thumbnail.jpg")
        assert not os.path.exists(harness.pipeline.job_dir("job-0123456789abcdef"))
        assert harness.callbacks == [
            {"status": "completed", "movieId": 1, "episodeId": 2, "jobId": "job-0123456789abcdef"}
        ]

    @pytest.mark.asyncio
    async def test_local_source_skips_download(self, tmp_path) -> None:
        harness = Harness(tmp_path, 60.0)
        source = tmp_path / "local.mp4"
        source.write_bytes(b"source-video")

        job = request(str(source))
        job.local_source = True

        outcome = await harness.pipeline.run(job)

        assert outcome.success
        assert JobState.DOWNLOADING not in harness.recorder.states
        assert source.exists()


class TestFailedJob:
    """Tests for jobs that end in FAILED."""

    @pytest.mark.asyncio
    async def test_failed_rendition_publishes_nothing(self, tmp_path) -> None:
        harness = Harness(tmp_path, 1500.0, fail={"720p": 1})
        key = harness.put_source()

        outcome = await harness.pipeline.run(request(key))

        assert not outcome.success
        assert "720p" in outcome.error
        assert "exit code 1" in outcome.error
        assert harness.recorder.failed == outcome.error
        assert harness.recorder.states[-1] == JobState.FAILED
        assert harness.storage.list_files("episodes/1/2/hls/") == []
        assert not os.path.exists(harness.pipeline.job_dir("job-0123456789abcdef"))
        assert harness.callbacks == [
            {
                "status": "error",
                "movieId": 1,
                "episodeId": 2,
                "jobId": "job-0123456789abcdef",
                "error": outcome.error,
            }
        ]

    @pytest.mark.asyncio
    async def test_missing_source_exhausts_retries(self, tmp_path) -> None:
        harness = Harness(tmp_path, 60.0)

        outcome = await harness.pipeline.run(request("episodes/1/2/original.mp4"))

        assert not outcome.success
        assert "after 3 attempts" in outcome.error
        assert harness.sleeps == [2.0, 2.0]
        assert JobState.PROBING not in harness.recorder.states

    @pytest.mark.asyncio
    async def test_no_callback_without_url(self, tmp_path) -> None:
        harness = Harness(tmp_path, 60.0)
        key = harness.put_source()
        job = request(key)
        job.callback_url = None

        outcome = await harness.pipeline.run(job)

        assert outcome.success
        assert harness.callbacks == []

    @pytest.mark.asyncio
    async def test_worker_path_is_treated_as_storage_key(self, tmp_path) -> None:
        """A job source naming a file on the worker SHALL still be fetched from storage."""
        harness = Harness(tmp_path, 60.0)
        private = tmp_path / "outside" / "private.bin"
        private.parent.mkdir()
        private.write_bytes(b"not for publishing")

        outcome = await harness.pipeline.run(request(str(private)))

        assert not outcome.success
        assert JobState.DOWNLOADING in harness.recorder.states
        assert JobState.PROBING not in harness.recorder.states
        assert harness.storage.list_files("episodes/") == []

    @pytest.mark.asyncio
    async def test_encoding_deadline_fails_job(self, tmp_path) -> None:
        harness = Harness(tmp_path, 60.0, hang=True, deadline=0.05)
        key = harness.put_source()

        outcome = await harness.pipeline.run(request(key))

        assert not outcome.success
        assert "deadline" in outcome.error
        assert "0.05s" in outcome.error
        assert harness.recorder.failed == outcome.error
        assert harness.storage.list_files("episodes/1/2/hls/") == []
        assert not os.path.exists(harness.pipeline.job_dir("job-0123456789abcdef"))
        assert harness.callbacks == [
            {
                "status": "error",
                "movieId": 1,
                "episodeId": 2,
                "jobId": "job-0123456789abcdef",
                "error": outcome.error,
            }
        ]

    @pytest.mark.asyncio
    async def test_failed_reencode_keeps_published_thumbnail(self, tmp_path) -> None:
        harness = Harness(tmp_path, 60.0, fail={"720p": 1})
        key = harness.put_source()
        previous = tmp_path / "previous.jpg"
        previous.write_bytes(b"last-good-thumbnail")
        harness.storage.upload(str(previous), "episodes/1/2/thumbnail.jpg")

        outcome = await harness.pipeline.run(request(key))

        assert not outcome.success
        harness.storage.download("episodes/1/2/thumbnail.jpg", str(tmp_path / "after.jpg"))
        assert (tmp_path / "after.jpg").read_bytes() == b"last-good-thumbnail"
