#!/usr/bin/env python3
"""
Record Store

Songs, performances and playlists behind a small CRUD interface.
The bundled implementation keeps everything in one JSON document that is
rewritten atomically (temp file + rename) on every change.
"""

import copy
import json
import time
import uuid
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, Field, ValidationError

from domain_types import (
    LyricLine, ScoreBreakdown, OFFSET_MIN_SEC, OFFSET_MAX_SEC, validate_offset,
)
from infrastructure import Config

logger = logging.getLogger('karaoke')


# =============================================================================
# ERRORS
# =============================================================================

class StoreError(Exception):
    """Base class for record store errors."""


class PersistenceError(StoreError):
    """Reading or writing the backing store failed. Safe to retry."""


class DuplicateRecordError(StoreError):
    """A record with the same unique key already exists."""


class RecordNotFoundError(StoreError):
    """A referenced record does not exist."""


# =============================================================================
# RECORDS
# =============================================================================

def _new_id() -> str:
    return str(uuid.uuid4())


class LyricEntry(BaseModel):
    """Stored lyric line ({time, text})."""
    time: float
    text: str


class Song(BaseModel):
    id: str = Field(default_factory=_new_id)
    video_id: str
    title: str
    artist: str
    thumbnail_url: Optional[str] = None
    genre: str = ""
    gender: str = ""  # 'male', 'female', 'duet'
    year: int = 0
    lyrics: List[LyricEntry] = Field(default_factory=list)
    play_count: int = Field(default=0, ge=0)
    lyrics_offset: float = Field(default=0.0, ge=OFFSET_MIN_SEC, le=OFFSET_MAX_SEC)

    @property
    def lines(self) -> List[LyricLine]:
        return [LyricLine(time_sec=entry.time, text=entry.text) for entry in self.lyrics]


class Performance(BaseModel):
    id: str = Field(default_factory=_new_id)
    song_id: str
    user_id: Optional[str] = None
    pitch_score: int = Field(ge=0, le=100)
    timing_score: int = Field(ge=0, le=100)
    rhythm_score: int = Field(ge=0, le=100)
    total_score: int = Field(ge=0, le=100)
    created_at: float = Field(default_factory=time.time)

    @property
    def breakdown(self) -> ScoreBreakdown:
        return ScoreBreakdown(
            pitch_score=self.pitch_score,
            timing_score=self.timing_score,
            rhythm_score=self.rhythm_score,
            total_score=self.total_score,
        )


class Playlist(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    name: str
    description: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


class PlaylistSong(BaseModel):
    id: str = Field(default_factory=_new_id)
    playlist_id: str
    song_id: str
    position: int
    added_at: float = Field(default_factory=time.time)


# =============================================================================
# INTERFACE
# =============================================================================

class RecordStore(ABC):
    """CRUD contract used by the lyrics module and the session controller."""

    @abstractmethod
    def get_song(self, song_id: str) -> Optional[Song]:
        pass

    @abstractmethod
    def create_song(self, **fields: Any) -> Song:
        pass

    @abstractmethod
    def update_song(self, song_id: str, **updates: Any) -> Optional[Song]:
        pass

    @abstractmethod
    def create_performance(self, song_id: str, scores: ScoreBreakdown,
                           user_id: Optional[str] = None) -> Performance:
        pass

    def update_lyrics_offset(self, song_id: str, offset_sec: float) -> Optional[Song]:
        """Persist a validated offset. Raises ValueError when out of range."""
        return self.update_song(song_id, lyrics_offset=validate_offset(offset_sec))


# =============================================================================
# JSON IMPLEMENTATION
# =============================================================================

class JsonRecordStore(RecordStore):
    """
    File-backed record store.

    Document format:
    {
        "version": "1.0",
        "updated_at": 1733234567.89,
        "songs": {"<id>": {...}},
        "performances": {"<id>": {...}},
        "playlists": {"<id>": {...}},
        "playlist_songs": {"<id>": {...}}
    }
    """

    STORE_VERSION = "1.0"
    _TABLES = ("songs", "performances", "playlists", "playlist_songs")

    def __init__(self, file_path: Optional[Path] = None):
        self.file_path = file_path or Config.DEFAULT_STORE_FILE
        self._data = self._read()

    # -------------------------------------------------------------------------
    # Songs
    # -------------------------------------------------------------------------

    def get_song(self, song_id: str) -> Optional[Song]:
        raw = self._data["songs"].get(song_id)
        return Song.model_validate(raw) if raw else None

    def get_song_by_video_id(self, video_id: str) -> Optional[Song]:
        for raw in self._data["songs"].values():
            if raw["video_id"] == video_id:
                return Song.model_validate(raw)
        return None

    def list_songs(self) -> List[Song]:
        return [Song.model_validate(raw) for raw in self._data["songs"].values()]

    def create_song(self, **fields: Any) -> Song:
        song = Song(**fields)
        if self.get_song_by_video_id(song.video_id):
            raise DuplicateRecordError(f"Song with video id {song.video_id} already exists")
        self._commit("songs", song.id, song.model_dump())
        logger.info(f"Created song {song.artist} - {song.title} ({song.id})")
        return song

    def update_song(self, song_id: str, **updates: Any) -> Optional[Song]:
        raw = self._data["songs"].get(song_id)
        if raw is None:
            return None
        merged = {**raw, **updates, "id": song_id}
        try:
            song = Song.model_validate(merged)
        except ValidationError as e:
            raise ValueError(str(e)) from e
        self._commit("songs", song_id, song.model_dump())
        return song

    def increment_play_count(self, song_id: str) -> Optional[Song]:
        song = self.get_song(song_id)
        if song is None:
            return None
        return self.update_song(song_id, play_count=song.play_count + 1)

    # -------------------------------------------------------------------------
    # Performances
    # -------------------------------------------------------------------------

    def create_performance(self, song_id: str, scores: ScoreBreakdown,
                           user_id: Optional[str] = None) -> Performance:
        if song_id not in self._data["songs"]:
            raise RecordNotFoundError(f"Unknown song {song_id}")
        performance = Performance(
            song_id=song_id,
            user_id=user_id,
            pitch_score=scores.pitch_score,
            timing_score=scores.timing_score,
            rhythm_score=scores.rhythm_score,
            total_score=scores.total_score,
        )
        self._commit("performances", performance.id, performance.model_dump())
        return performance

    def get_performances_by_song(self, song_id: str) -> List[Performance]:
        found = [
            Performance.model_validate(raw)
            for raw in self._data["performances"].values()
            if raw["song_id"] == song_id
        ]
        return sorted(found, key=lambda p: p.created_at, reverse=True)

    # -------------------------------------------------------------------------
    # Playlists
    # -------------------------------------------------------------------------

    def create_playlist(self, user_id: str, name: str, description: Optional[str] = None) -> Playlist:
        playlist = Playlist(user_id=user_id, name=name, description=description)
        self._commit("playlists", playlist.id, playlist.model_dump())
        return playlist

    def get_playlist(self, playlist_id: str) -> Optional[Playlist]:
        raw = self._data["playlists"].get(playlist_id)
        return Playlist.model_validate(raw) if raw else None

    def get_user_playlists(self, user_id: str) -> List[Playlist]:
        found = [
            Playlist.model_validate(raw)
            for raw in self._data["playlists"].values()
            if raw["user_id"] == user_id
        ]
        return sorted(found, key=lambda p: p.updated_at, reverse=True)

    def update_playlist(self, playlist_id: str, **updates: Any) -> Optional[Playlist]:
        raw = self._data["playlists"].get(playlist_id)
        if raw is None:
            return None
        playlist = Playlist.model_validate({**raw, **updates, "id": playlist_id, "updated_at": time.time()})
        self._commit("playlists", playlist_id, playlist.model_dump())
        return playlist

    def delete_playlist(self, playlist_id: str) -> None:
        """Delete a playlist and its membership rows."""
        with self._rollback("playlists", "playlist_songs"):
            self._data["playlists"].pop(playlist_id, None)
            for entry_id in [k for k, v in self._data["playlist_songs"].items() if v["playlist_id"] == playlist_id]:
                del self._data["playlist_songs"][entry_id]

    def add_song_to_playlist(self, playlist_id: str, song_id: str, position: int) -> PlaylistSong:
        if playlist_id not in self._data["playlists"]:
            raise RecordNotFoundError(f"Unknown playlist {playlist_id}")
        if song_id not in self._data["songs"]:
            raise RecordNotFoundError(f"Unknown song {song_id}")
        entry = PlaylistSong(playlist_id=playlist_id, song_id=song_id, position=position)
        self._commit("playlist_songs", entry.id, entry.model_dump())
        return entry

    def remove_song_from_playlist(self, playlist_id: str, song_id: str) -> None:
        with self._rollback("playlist_songs"):
            for entry_id in [
                k for k, v in self._data["playlist_songs"].items()
                if v["playlist_id"] == playlist_id and v["song_id"] == song_id
            ]:
                del self._data["playlist_songs"][entry_id]

    def get_playlist_songs(self, playlist_id: str) -> List[PlaylistSong]:
        found = [
            PlaylistSong.model_validate(raw)
            for raw in self._data["playlist_songs"].values()
            if raw["playlist_id"] == playlist_id
        ]
        return sorted(found, key=lambda entry: entry.position)

    def reorder_playlist_songs(self, playlist_id: str, song_ids: List[str]) -> List[PlaylistSong]:
        """Assign positions 0..n-1 following song_ids order."""
        positions = {song_id: index for index, song_id in enumerate(song_ids)}
        with self._rollback("playlist_songs"):
            for raw in self._data["playlist_songs"].values():
                if raw["playlist_id"] == playlist_id and raw["song_id"] in positions:
                    raw["position"] = positions[raw["song_id"]]
        return self.get_playlist_songs(playlist_id)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _empty(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"version": self.STORE_VERSION, "updated_at": time.time()}
        for table in self._TABLES:
            data[table] = {}
        return data

    def _read(self) -> Dict[str, Any]:
        if not self.file_path.exists():
            return self._empty()
        try:
            with open(self.file_path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to read record store {self.file_path}: {e}") from e
        for table in self._TABLES:
            data.setdefault(table, {})
        return data

    def _commit(self, table: str, record_id: str, record: Dict[str, Any]) -> None:
        previous = self._data[table].get(record_id)
        self._data[table][record_id] = record
        try:
            self._write()
        except PersistenceError:
            # keep memory consistent with disk
            if previous is None:
                del self._data[table][record_id]
            else:
                self._data[table][record_id] = previous
            raise

    @contextmanager
    def _rollback(self, *tables: str) -> Iterator[None]:
        """Write after the block; restore the given tables if the write fails."""
        snapshot = {table: copy.deepcopy(self._data[table]) for table in tables}
        yield
        try:
            self._write()
        except PersistenceError:
            self._data.update(snapshot)
            raise

    def _write(self) -> None:
        self._data["updated_at"] = time.time()
        temp_file = self.file_path.with_suffix('.tmp')
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, 'w') as f:
                json.dump(self._data, f, indent=2)
            temp_file.replace(self.file_path)
        except OSError as e:
            logger.error(f"Failed to write record store: {e}")
            if temp_file.exists():
                temp_file.unlink()
            raise PersistenceError(f"Failed to write record store: {e}") from e
