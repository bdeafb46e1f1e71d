"""Property-based tests for master playlist assembly.

**Feature: episode-hls-pipeline, Property 3: Master Playlist Ordering**
"""

from hypothesis import given, settings, strategies as st

from app.modules.transcoding.ladder import FULL_LADDER, REDUCED_LADDER
from app.modules.transcoding.playlist import MASTER_PLAYLIST_NAME, MasterPlaylist


ladder_strategy = st.sampled_from([FULL_LADDER, REDUCED_LADDER])


class TestMasterPlaylistOrdering:
    """Property tests for planning-order output."""

    @given(ladder=ladder_strategy, data=st.data())
    @settings(max_examples=100)
    def test_any_completion_order_renders_planning_order(self, ladder, data) -> None:
        """Whatever order renditions finish in, entries SHALL follow the ladder."""
        order = data.draw(st.permutations(range(len(ladder))))
        master = MasterPlaylist(len(ladder))

        for index in order:
            master.set_entry(index, ladder[index])

        lines = master.render().splitlines()
        assert lines[0] == "#EXTM3U"
        assert lines[1] == "#EXT-X-VERSION:7"

        entries = lines[2:]
        assert len(entries) == 2 * len(ladder)
        for i, spec in enumerate(ladder):
            assert entries[2 * i] == (
                f"#EXT-X-STREAM-INF:BANDWIDTH={spec.bitrate * 1000},RESOLUTION={spec.height}p"
            )
            assert entries[2 * i + 1] == f"{spec.height}p.m3u8"

    @given(ladder=ladder_strategy, data=st.data())
    @settings(max_examples=100)
    def test_partial_playlist_skips_empty_slots(self, ladder, data) -> None:
        filled = data.draw(st.sets(st.integers(min_value=0, max_value=len(ladder) - 1)))
        master = MasterPlaylist(len(ladder))
        for index in filled:
            master.set_entry(index, ladder[index])

        rendered = master.render()

        assert rendered.count("#EXT-X-STREAM-INF") == len(filled)
        assert master.is_complete == (len(filled) == len(ladder))

    def test_write_creates_master_file(self, tmp_path) -> None:
        master = MasterPlaylist(len(REDUCED_LADDER))
        for i, spec in enumerate(REDUCED_LADDER):
            master.set_entry(i, spec)

        path = master.write(str(tmp_path))

        assert path == str(tmp_path / MASTER_PLAYLIST_NAME)
        assert (tmp_path / MASTER_PLAYLIST_NAME).read_text() == (
            "#EXTM3U\n#EXT-X-VERSION:7\n"
            "#EXT-X-STREAM-INF:BANDWIDTH=700000,RESOLUTION=360p\n360p.m3u8\n"
            "#EXT-X-STREAM-INF:BANDWIDTH=2500000,RESOLUTION=720p\n720p.m3u8\n"
        )
