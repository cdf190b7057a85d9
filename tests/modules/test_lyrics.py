"""
Tests for the Lyrics module: loading, highlighting and offset editing.

Run with: pytest tests/modules/test_lyrics.py -v -s
"""
from unittest.mock import MagicMock

import pytest

from domain_types import LyricLine, find_active_line_index
from storage import PersistenceError


LINES = [LyricLine(0.0, "a b"), LyricLine(5.0, "c d e"), LyricLine(10.0, "f")]


@pytest.fixture
def song(store):
    return store.create_song(
        video_id="vid-1", title="Song", artist="Artist",
        lyrics=[line.to_dict() for line in LINES], lyrics_offset=-1.0,
    )


class TestLyricsLifecycle:
    """Test Lyrics module lifecycle."""

    def test_module_starts_and_stops_cleanly(self):
        """Lyrics module starts and stops without errors."""
        from modules.lyrics import LyricsModule, LyricsConfig

        lyrics = LyricsModule(LyricsConfig(), fetcher=MagicMock())
        assert not lyrics.is_started

        assert lyrics.start()
        assert lyrics.is_started
        status = lyrics.get_status()
        assert status["started"] is True
        assert status["line_count"] == 0

        lyrics.stop()
        assert not lyrics.is_started

    def test_fetch_uses_fetcher(self):
        from modules.lyrics import LyricsModule

        fetcher = MagicMock()
        fetcher.fetch_lines.return_value = LINES
        lyrics = LyricsModule(fetcher=fetcher)

        assert lyrics.fetch("Artist", "Song", duration=200)
        fetcher.fetch_lines.assert_called_once_with("Artist", "Song", 200)
        assert lyrics.line_count == 3
        assert len(lyrics.words) == 6
        assert lyrics.current_track == ("Artist", "Song")

    def test_fetch_without_lyrics(self):
        from modules.lyrics import LyricsModule

        fetcher = MagicMock()
        fetcher.fetch_lines.return_value = None
        lyrics = LyricsModule(fetcher=fetcher)

        assert not lyrics.fetch("Nobody", "Nothing")
        assert not lyrics.has_lyrics
        assert lyrics.update_position(3.0) is None


class TestLyricsSync:
    """Test position updates and callbacks."""

    def test_callbacks_fire_on_change_only(self):
        from modules.lyrics import LyricsModule

        lyrics = LyricsModule()
        events = []
        lyrics.on_active_line = lambda idx, line: events.append(("line", idx))
        lyrics.on_active_word = lambda idx, word: events.append(("word", idx))
        lyrics.load_lines(LINES)

        lyrics.update_position(0.0)
        lyrics.update_position(0.1)
        assert events == [("line", 0), ("word", 0)]

        changed = lyrics.update_position(5.0)
        assert changed == LINES[1]
        assert events[-2:] == [("line", 1), ("word", 2)]
        assert lyrics.update_position(5.1) is None

    def test_offset_applied_to_raw_time(self):
        """Working offset shifts lookups like querying with t + offset."""
        from modules.lyrics import LyricsModule

        lyrics = LyricsModule()
        lyrics.load_lines(LINES, offset_sec=1.5)
        for step in range(-20, 140):
            t = step * 0.1
            assert lyrics.active_line_at(t) == find_active_line_index(LINES, t + 1.5)

    def test_lyrics_loaded_callback(self):
        from modules.lyrics import LyricsModule

        counts = []
        lyrics = LyricsModule()
        lyrics.on_lyrics_loaded = counts.append
        lyrics.load_lines(LINES)
        assert counts == [3]


class TestOffsetEditing:
    """Test offset adjust/reset/save."""

    def test_adjust_clamp_and_reset(self):
        from modules.lyrics import LyricsModule

        lyrics = LyricsModule()
        assert lyrics.step_offset(1) == 0.5
        assert lyrics.adjust_offset(30) == 20.0
        assert lyrics.offset_dirty
        assert lyrics.reset_offset() == 0.0
        assert not lyrics.offset_dirty

    def test_load_song_uses_saved_offset(self, store, song):
        from modules.lyrics import LyricsModule

        lyrics = LyricsModule(store=store)
        assert lyrics.load_song(song)
        assert lyrics.song_id == song.id
        assert lyrics.offset == -1.0
        assert lyrics.saved_offset == -1.0
        assert lyrics.active_line_at(5.5) == 0

    def test_save_offset_round_trip(self, tmp_path, store, song):
        """Saved +1.5 reloads and highlights like t + 1.5."""
        from modules.lyrics import LyricsModule
        from storage import JsonRecordStore

        lyrics = LyricsModule(store=store)
        lyrics.load_song(song)
        lyrics.set_offset(1.5)
        assert lyrics.save_offset()
        assert not lyrics.offset_dirty

        reopened = JsonRecordStore(tmp_path / "records.json")
        reloaded = LyricsModule(store=reopened)
        reloaded.load_song(reopened.get_song(song.id))
        for step in range(-20, 140):
            t = step * 0.1
            assert reloaded.active_line_at(t) == find_active_line_index(LINES, t + 1.5)

    def test_save_failure_keeps_working_offset(self, store, song, monkeypatch):
        from modules.lyrics import LyricsModule

        lyrics = LyricsModule(store=store)
        lyrics.load_song(song)
        lyrics.adjust_offset(2.0)

        def fail(*args, **kwargs):
            raise PersistenceError("disk full")

        monkeypatch.setattr(store, "update_lyrics_offset", fail)
        assert lyrics.save_offset() is False
        assert lyrics.offset == 1.0
        assert lyrics.saved_offset == -1.0
        assert lyrics.offset_dirty

    def test_save_without_song(self, store):
        from modules.lyrics import LyricsModule

        lyrics = LyricsModule(store=store)
        lyrics.load_lines(LINES)
        lyrics.adjust_offset(0.5)
        assert lyrics.save_offset() is False
