"""Property-based tests for ffmpeg and ffprobe integration.

**Feature: episode-hls-pipeline, Property 8: Encoder Invocation**
"""

import json
import os
import stat

import pytest
from hypothesis import given, settings, strategies as st

from app.modules.transcoding.exceptions import EncodeError, ProbeError, ThumbnailError
from app.modules.transcoding.ffmpeg import FFmpegTranscoder
from app.modules.transcoding.ladder import FULL_LADDER, RenditionSpec
from app.modules.transcoding.probe import parse_probe_output


def write_script(path, body: str) -> str:
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return str(path)


class TestRenditionCommand:
    """Property tests for the per-rendition command line."""

    @given(spec=st.sampled_from(FULL_LADDER), segment=st.integers(min_value=1, max_value=20))
    @settings(max_examples=100)
    def test_command_encodes_rendition_parameters(self, spec: RenditionSpec, segment: int) -> None:
        transcoder = FFmpegTranscoder(ffmpeg_path="ffmpeg")

        cmd = transcoder.build_rendition_command("/work/original.mp4", "/work/hls", spec, segment)

        assert cmd == [
            "ffmpeg", "-hide_banner", "-y",
            "-i", "/work/original.mp4",
            "-profile:v", "main",
            "-vf", f"scale=-2:{spec.height}",
            "-c:v", "h264",
            "-crf", "23",
            "-b:v", f"{spec.bitrate}k",
            "-c:a", "aac",
            "-ar", "48000",
            "-b:a", "128k",
            "-hls_time", str(segment),
            "-hls_list_size", "0",
            "-hls_segment_type", "fmp4",
            "-hls_fmp4_init_filename", f"init-{spec.height}p.mp4",
            "-hls_segment_filename", f"/work/hls/segment_{spec.height}p_%03d.m4s",
            f"/work/hls/{spec.height}p.m3u8",
        ]

    def test_thumbnail_seeks_before_input(self) -> None:
        cmd = FFmpegTranscoder(ffmpeg_path="ffmpeg").build_thumbnail_command("in.mp4", "t.jpg", 10.0)

        assert cmd.index("-ss") < cmd.index("-i")
        assert cmd[cmd.index("-ss") + 1] == "10"
        assert cmd[-1] == "t.jpg"


class TestRunningEncoder:
    """Tests against stand-in ffmpeg executables."""

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_encode_error(self, tmp_path) -> None:
        ffmpeg = write_script(tmp_path / "ffmpeg", 'echo "Conversion failed!" >&2\nexit 1\n')
        transcoder = FFmpegTranscoder(ffmpeg_path=ffmpeg)

        with pytest.raises(EncodeError) as exc_info:
            await transcoder.encode_rendition("in.mp4", str(tmp_path), FULL_LADDER[3], 60.0)

        assert exc_info.value.resolution == "720p"
        assert exc_info.value.exit_code == 1
        assert "Conversion failed!" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_progress_output_is_consumed(self, tmp_path) -> None:
        ffmpeg = write_script(
            tmp_path / "ffmpeg",
            "printf 'frame=1 time=00:00:30.00 bitrate=N/A\\rframe=2 time=00:01:00.00 bitrate=N/A\\r' >&2\n"
            "exit 0\n",
        )
        transcoder = FFmpegTranscoder(ffmpeg_path=ffmpeg)

        output = await transcoder.encode_rendition("in.mp4", str(tmp_path), FULL_LADDER[0], 60.0)

        assert output.playlist_path == os.path.join(str(tmp_path), "240p.m3u8")

    @pytest.mark.asyncio
    async def test_missing_binary_is_an_encode_error(self, tmp_path) -> None:
        transcoder = FFmpegTranscoder(ffmpeg_path=str(tmp_path / "no-such-ffmpeg"))

        with pytest.raises(EncodeError) as exc_info:
            await transcoder.encode_rendition("in.mp4", str(tmp_path), FULL_LADDER[0], 60.0)

        assert exc_info.value.exit_code == -1

    @pytest.mark.asyncio
    async def test_thumbnail_without_output_fails(self, tmp_path) -> None:
        ffmpeg = write_script(tmp_path / "ffmpeg", "exit 0\n")
        transcoder = FFmpegTranscoder(ffmpeg_path=ffmpeg)

        with pytest.raises(ThumbnailError):
            await transcoder.extract_thumbnail("in.mp4", str(tmp_path / "t.jpg"), 4.0)


class TestProbeParsing:
    """Tests for ffprobe JSON handling."""

    @given(duration=st.floats(min_value=0.1, max_value=20000, allow_nan=False))
    @settings(max_examples=100)
    def test_duration_parsed(self, duration: float) -> None:
        raw = json.dumps({
            "format": {"duration": str(duration), "format_name": "mov,mp4", "size": "1000"},
            "streams": [
                {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080},
                {"codec_type": "audio", "codec_name": "aac"},
            ],
        })

        metadata = parse_probe_output("in.mp4", raw)

        assert metadata.duration == pytest.approx(duration)
        assert metadata.video_stream.height == 1080
        assert metadata.has_audio

    @pytest.mark.parametrize("raw", ["not json", json.dumps({"format": {}}), json.dumps({"format": {"duration": "N/A"}})])
    def test_unusable_output_raises(self, raw: str) -> None:
        with pytest.raises(ProbeError):
            parse_probe_output("in.mp4", raw)
