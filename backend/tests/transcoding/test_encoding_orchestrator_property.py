"""Property-based tests for concurrent rendition encoding.

**Feature: episode-hls-pipeline, Property 4: Encoding Orchestration**
"""

import asyncio
import os

import pytest
from hypothesis import given, settings, strategies as st

from app.modules.transcoding.exceptions import EncodeError, EncodingTimeoutError
from app.modules.transcoding.ffmpeg import RenditionOutput
from app.modules.transcoding.ladder import FULL_LADDER, REDUCED_LADDER
from app.modules.transcoding.orchestrator import EncodingOrchestrator, TaskStatus
from app.modules.transcoding.playlist import MASTER_PLAYLIST_NAME


class FakeTranscoder:
    """Writes a placeholder playlist per rendition after a per-rendition delay."""

    def __init__(self, delays=None, fail=None, hang=False):
        self.delays = delays or {}
        self.fail = fail or {}
        self.hang = hang
        self.started: list[str] = []
        self.cancelled: list[str] = []

    async def encode_rendition(self, source, output_dir, spec, total_duration, segment_duration=None):
        self.started.append(spec.name)
        try:
            if self.hang:
                await asyncio.sleep(3600)
            await asyncio.sleep(self.delays.get(spec.name, 0))
        except asyncio.CancelledError:
            self.cancelled.append(spec.name)
            raise
        if spec.name in self.fail:
            raise EncodeError(spec.name, self.fail[spec.name])
        path = os.path.join(output_dir, spec.playlist_name)
        with open(path, "w") as f:
            f.write("#EXTM3U\n")
        return RenditionOutput(spec=spec, playlist_path=path, elapsed=0.0)


class TestEncodingSuccess:
    """Property tests for jobs where every rendition succeeds."""

    @given(
        ladder=st.sampled_from([FULL_LADDER, REDUCED_LADDER]),
        delays=st.lists(st.integers(min_value=0, max_value=5), min_size=5, max_size=5),
    )
    @settings(max_examples=100, deadline=None)
    def test_master_lists_renditions_in_planning_order(self, tmp_path_factory, ladder, delays) -> None:
        """Whatever order renditions complete in, master SHALL list them in ladder order."""
        output_dir = tmp_path_factory.mktemp("hls")
        transcoder = FakeTranscoder(
            delays={spec.name: delays[i] / 1000 for i, spec in enumerate(ladder)}
        )
        orchestrator = EncodingOrchestrator(transcoder, deadline=30)

        result = asyncio.run(orchestrator.encode_all("src.mp4", str(output_dir), ladder, 100.0))

        assert result.renditions == list(ladder)
        assert all(t.status == TaskStatus.DONE and t.exit_code == 0 for t in result.tasks)

        lines = (output_dir / MASTER_PLAYLIST_NAME).read_text().splitlines()
        playlists = [line for line in lines if line.endswith(".m3u8")]
        assert playlists == [spec.playlist_name for spec in ladder]

    @pytest.mark.asyncio
    async def test_renditions_run_concurrently(self, tmp_path) -> None:
        transcoder = FakeTranscoder(delays={spec.name: 0.2 for spec in FULL_LADDER})
        orchestrator = EncodingOrchestrator(transcoder, deadline=30)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await orchestrator.encode_all("src.mp4", str(tmp_path), FULL_LADDER, 100.0)

        assert sorted(transcoder.started) == sorted(s.name for s in FULL_LADDER)
        assert loop.time() - started < 0.2 * len(FULL_LADDER)


class TestEncodingFailure:
    """Tests for fail-fast behavior."""

    @given(failing=st.sampled_from([spec.name for spec in FULL_LADDER]), exit_code=st.integers(min_value=1, max_value=255))
    @settings(max_examples=100, deadline=None)
    def test_failure_cancels_others_and_skips_master(self, tmp_path_factory, failing, exit_code) -> None:
        """One failed rendition SHALL cancel the rest and no master SHALL be written."""
        output_dir = tmp_path_factory.mktemp("hls")
        delays = {spec.name: 10.0 for spec in FULL_LADDER}
        delays[failing] = 0
        transcoder = FakeTranscoder(delays=delays, fail={failing: exit_code})
        orchestrator = EncodingOrchestrator(transcoder, deadline=30)

        with pytest.raises(EncodeError) as exc_info:
            asyncio.run(orchestrator.encode_all("src.mp4", str(output_dir), FULL_LADDER, 100.0))

        assert exc_info.value.resolution == failing
        assert exc_info.value.exit_code == exit_code
        assert f"exit code {exit_code}" in str(exc_info.value)
        assert sorted(transcoder.cancelled) == sorted(s.name for s in FULL_LADDER if s.name != failing)
        assert not (output_dir / MASTER_PLAYLIST_NAME).exists()


class TestEncodingDeadline:
    """Tests for the watchdog deadline."""

    @pytest.mark.asyncio
    async def test_deadline_cancels_everything(self, tmp_path) -> None:
        transcoder = FakeTranscoder(hang=True)
        orchestrator = EncodingOrchestrator(transcoder, deadline=0.05)

        with pytest.raises(EncodingTimeoutError) as exc_info:
            await orchestrator.encode_all("src.mp4", str(tmp_path), REDUCED_LADDER, 100.0)

        assert isinstance(exc_info.value, TimeoutError)
        assert sorted(transcoder.cancelled) == ["360p", "720p"]
        assert not (tmp_path / MASTER_PLAYLIST_NAME).exists()

    @pytest.mark.asyncio
    async def test_timeout_reports_completed_renditions(self, tmp_path) -> None:
        transcoder = FakeTranscoder(delays={"360p": 0, "720p": 10.0})

        with pytest.raises(EncodingTimeoutError) as exc_info:
            await EncodingOrchestrator(transcoder).encode_all(
                "src.mp4", str(tmp_path), REDUCED_LADDER, 100.0, deadline=0.1
            )

        assert exc_info.value.completed == ["360p"]
        assert not (tmp_path / MASTER_PLAYLIST_NAME).exists()


class TestTimeoutMessage:
    @given(deadline=st.sampled_from([0.05, 0.5, 1.5, 90.0, 1800.0]))
    @settings(max_examples=100)
    def test_deadline_rendered_without_rounding(self, deadline: float) -> None:
        message = str(EncodingTimeoutError(deadline))

        assert f"{deadline:g}s deadline" in message
        assert "the 0s deadline" not in message
