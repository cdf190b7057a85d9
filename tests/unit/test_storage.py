"""
Unit tests for the JSON record store.
"""
import json

import pytest

from domain_types import ScoreBreakdown, find_active_line_index
from storage import (
    JsonRecordStore, Song, PersistenceError, DuplicateRecordError, RecordNotFoundError,
)


LYRICS = [{"time": 0.0, "text": "first"}, {"time": 5.0, "text": "second"}, {"time": 10.0, "text": "third"}]


@pytest.fixture
def song(store):
    return store.create_song(video_id="vid-1", title="Song", artist="Artist", lyrics=LYRICS)


class TestSongs:
    """Test song records."""

    def test_create_and_get(self, store, song):
        loaded = store.get_song(song.id)
        assert loaded == song
        assert loaded.lyrics_offset == 0.0
        assert [line.text for line in loaded.lines] == ["first", "second", "third"]

    def test_video_id_is_unique(self, store, song):
        with pytest.raises(DuplicateRecordError):
            store.create_song(video_id="vid-1", title="Other", artist="Other")

    def test_get_by_video_id(self, store, song):
        assert store.get_song_by_video_id("vid-1").id == song.id
        assert store.get_song_by_video_id("missing") is None

    def test_update_missing_song_returns_none(self, store):
        assert store.update_song("nope", title="x") is None

    def test_increment_play_count(self, store, song):
        store.increment_play_count(song.id)
        store.increment_play_count(song.id)
        assert store.get_song(song.id).play_count == 2

    def test_persists_across_instances(self, tmp_path, store, song):
        reopened = JsonRecordStore(tmp_path / "records.json")
        assert reopened.get_song(song.id) == song
        assert len(reopened.list_songs()) == 1


class TestLyricsOffset:
    """Test offset persistence."""

    def test_save_and_reload_offset(self, tmp_path, store, song):
        """Reloaded offset gives the same highlighting as querying with t + offset."""
        store.update_lyrics_offset(song.id, 1.5)

        reloaded = JsonRecordStore(tmp_path / "records.json").get_song(song.id)
        assert reloaded.lyrics_offset == 1.5

        lines = reloaded.lines
        for step in range(-20, 140):
            t = step * 0.1
            assert find_active_line_index(lines, t + reloaded.lyrics_offset) == \
                find_active_line_index(song.lines, t + 1.5)

    @pytest.mark.parametrize("offset", [20.5, -20.1, float("nan"), "2"])
    def test_rejects_invalid_offset(self, store, song, offset):
        with pytest.raises(ValueError):
            store.update_lyrics_offset(song.id, offset)
        assert store.get_song(song.id).lyrics_offset == 0.0

    def test_update_song_validates_offset(self, store, song):
        with pytest.raises(ValueError):
            store.update_song(song.id, lyrics_offset=30)

    def test_model_rejects_out_of_range_offset(self):
        with pytest.raises(ValueError):
            Song(video_id="v", title="t", artist="a", lyrics_offset=-21)


class TestPerformances:
    """Test performance records."""

    def test_create_performance(self, store, song):
        scores = ScoreBreakdown(pitch_score=80, timing_score=70, rhythm_score=75, total_score=75)
        performance = store.create_performance(song.id, scores, user_id="user-1")

        assert performance.breakdown == scores
        saved = store.get_performances_by_song(song.id)[0]
        assert saved.id == performance.id
        assert saved.user_id == "user-1"

    def test_unknown_song(self, store):
        with pytest.raises(RecordNotFoundError):
            store.create_performance("missing", ScoreBreakdown(1, 2, 3, 4))


class TestPlaylists:
    """Test playlists and ordered membership."""

    def test_playlist_membership_ordering(self, store):
        a = store.create_song(video_id="a", title="A", artist="X")
        b = store.create_song(video_id="b", title="B", artist="X")
        playlist = store.create_playlist("user-1", "Party")

        store.add_song_to_playlist(playlist.id, b.id, position=1)
        store.add_song_to_playlist(playlist.id, a.id, position=0)
        assert [entry.song_id for entry in store.get_playlist_songs(playlist.id)] == [a.id, b.id]

        store.reorder_playlist_songs(playlist.id, [b.id, a.id])
        assert [entry.song_id for entry in store.get_playlist_songs(playlist.id)] == [b.id, a.id]

        store.remove_song_from_playlist(playlist.id, b.id)
        assert [entry.song_id for entry in store.get_playlist_songs(playlist.id)] == [a.id]

    def test_update_and_delete_cascades(self, store, song):
        playlist = store.create_playlist("user-1", "Old name")
        store.add_song_to_playlist(playlist.id, song.id, position=0)

        updated = store.update_playlist(playlist.id, name="New name")
        assert updated.name == "New name"
        assert store.get_user_playlists("user-1")[0].name == "New name"

        store.delete_playlist(playlist.id)
        assert store.get_playlist(playlist.id) is None
        assert store.get_playlist_songs(playlist.id) == []

    def test_add_to_unknown_playlist(self, store, song):
        with pytest.raises(RecordNotFoundError):
            store.add_song_to_playlist("missing", song.id, position=0)


class TestPersistenceFailures:
    """Test I/O failure handling."""

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "records.json"
        path.write_text("{not json")
        with pytest.raises(PersistenceError):
            JsonRecordStore(path)

    def test_failed_write_keeps_memory_consistent(self, store, song, monkeypatch):
        """A failed save leaves the previous value in place and can be retried."""
        def broken_open(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("builtins.open", broken_open)
        with pytest.raises(PersistenceError):
            store.update_lyrics_offset(song.id, 2.0)
        monkeypatch.undo()

        assert store.get_song(song.id).lyrics_offset == 0.0
        store.update_lyrics_offset(song.id, 2.0)
        assert store.get_song(song.id).lyrics_offset == 2.0

    def test_failed_playlist_writes_keep_memory_consistent(self, tmp_path, store, monkeypatch):
        """Playlist delete, remove and reorder roll back when the write fails."""
        a = store.create_song(video_id="a", title="A", artist="X")
        b = store.create_song(video_id="b", title="B", artist="X")
        playlist = store.create_playlist("user-1", "Party")
        store.add_song_to_playlist(playlist.id, a.id, position=0)
        store.add_song_to_playlist(playlist.id, b.id, position=1)

        def broken_open(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("builtins.open", broken_open)
        with pytest.raises(PersistenceError):
            store.reorder_playlist_songs(playlist.id, [b.id, a.id])
        with pytest.raises(PersistenceError):
            store.remove_song_from_playlist(playlist.id, a.id)
        with pytest.raises(PersistenceError):
            store.delete_playlist(playlist.id)
        monkeypatch.undo()

        assert store.get_playlist(playlist.id) is not None
        assert [entry.song_id for entry in store.get_playlist_songs(playlist.id)] == [a.id, b.id]

        reopened = JsonRecordStore(tmp_path / "records.json")
        assert [entry.song_id for entry in reopened.get_playlist_songs(playlist.id)] == [a.id, b.id]

        store.delete_playlist(playlist.id)
        assert store.get_playlist(playlist.id) is None

    def test_document_layout(self, tmp_path, store, song):
        with open(tmp_path / "records.json") as f:
            data = json.load(f)
        assert data["version"] == "1.0"
        assert song.id in data["songs"]
        assert data["performances"] == {}
