"""
Lyrics Module - synced lyrics, word timeline and offset-corrected highlighting.

Wraps LyricsFetcher and the pure timeline functions with a Module interface,
adding position sync callbacks and per-song timing offset editing.

Usage as module:
    from modules.lyrics import LyricsModule

    lyrics = LyricsModule(store=store)
    lyrics.on_active_line = lambda idx, line: print(f"[{idx}] {line.text if line else ''}")
    lyrics.load_song(song)            # lines + saved offset from the record store
    lyrics.update_position(45.5)      # raw player time; offset is applied here
    lyrics.adjust_offset(+0.5)
    lyrics.save_offset()
    lyrics.stop()

Standalone CLI:
    python -m modules.lyrics --artist "Queen" --title "Bohemian Rhapsody"
    python -m modules.lyrics --artist "Queen" --title "Bohemian Rhapsody" --sync --words
"""
import argparse
import logging
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from domain_types import (
    LyricLine, LyricWord,
    build_word_timeline, clamp_offset, find_active_line_index, find_active_word_index,
    format_lrc, format_timestamp,
)
from infrastructure import Config
from modules.base import Module

logger = logging.getLogger(__name__)


@dataclass
class LyricsConfig:
    """Configuration for Lyrics module."""
    offset_sec: float = 0.0  # Positive = lyrics advance earlier
    offset_step_sec: float = Config.OFFSET_STEP_SEC


OnActiveLine = Callable[[int, Optional[LyricLine]], None]
OnActiveWord = Callable[[int, Optional[LyricWord]], None]
OnLyricsLoaded = Callable[[int], None]  # Called with line count


class LyricsModule(Module):
    """
    Lyrics module with fetching, word timing and sync.

    Provides:
    - Lyrics fetching from LRCLIB or loading from a Song record
    - Word-level timeline derived from line timing
    - Offset-corrected active line / active word detection
    - Offset editing with explicit save through the record store
    """

    def __init__(self, config: Optional[LyricsConfig] = None, fetcher=None, store=None):
        super().__init__()
        self._config = config or LyricsConfig()
        self._fetcher = fetcher
        self._store = store
        self._lines: List[LyricLine] = []
        self._words: List[LyricWord] = []
        self._song_id: Optional[str] = None
        self._current_track: Optional[tuple] = None  # (artist, title)
        self._active_index: int = -1
        self._active_word_index: int = -1

        self._saved_offset = clamp_offset(self._config.offset_sec)
        self._offset = self._saved_offset

        # Callbacks
        self._on_active_line: Optional[OnActiveLine] = None
        self._on_active_word: Optional[OnActiveWord] = None
        self._on_lyrics_loaded: Optional[OnLyricsLoaded] = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def config(self) -> LyricsConfig:
        return self._config

    @property
    def lines(self) -> List[LyricLine]:
        return list(self._lines)

    @property
    def words(self) -> List[LyricWord]:
        return list(self._words)

    @property
    def line_count(self) -> int:
        return len(self._lines)

    @property
    def has_lyrics(self) -> bool:
        return bool(self._lines)

    @property
    def song_id(self) -> Optional[str]:
        return self._song_id

    @property
    def current_track(self) -> Optional[tuple]:
        return self._current_track

    @property
    def active_index(self) -> int:
        return self._active_index

    @property
    def active_word_index(self) -> int:
        return self._active_word_index

    @property
    def offset(self) -> float:
        """Working offset in seconds (may be unsaved)."""
        return self._offset

    @property
    def saved_offset(self) -> float:
        return self._saved_offset

    @property
    def offset_dirty(self) -> bool:
        return self._offset != self._saved_offset

    @property
    def on_active_line(self) -> Optional[OnActiveLine]:
        return self._on_active_line

    @on_active_line.setter
    def on_active_line(self, callback: Optional[OnActiveLine]) -> None:
        self._on_active_line = callback

    @property
    def on_active_word(self) -> Optional[OnActiveWord]:
        return self._on_active_word

    @on_active_word.setter
    def on_active_word(self, callback: Optional[OnActiveWord]) -> None:
        self._on_active_word = callback

    @property
    def on_lyrics_loaded(self) -> Optional[OnLyricsLoaded]:
        return self._on_lyrics_loaded

    @on_lyrics_loaded.setter
    def on_lyrics_loaded(self, callback: Optional[OnLyricsLoaded]) -> None:
        self._on_lyrics_loaded = callback

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> bool:
        if self._started:
            return True

        if self._fetcher is None:
            from adapters import LyricsFetcher
            self._fetcher = LyricsFetcher()
        self._started = True
        return True

    def stop(self) -> None:
        if not self._started:
            return

        self._set_lines([])
        self._song_id = None
        self._current_track = None
        self._started = False

    # =========================================================================
    # LOADING
    # =========================================================================

    def fetch(self, artist: str, title: str, duration: float = 0) -> bool:
        """
        Fetch lyrics for a track from LRCLIB.

        Returns True if synced lyrics were found. The offset starts at the
        configured default because the track is not tied to a Song record.
        """
        if not self._started:
            self.start()

        self._current_track = (artist, title)
        self._song_id = None
        lines = self._fetcher.fetch_lines(artist, title, duration) or []
        self._saved_offset = self._offset = clamp_offset(self._config.offset_sec)
        self._set_lines(lines)
        return bool(lines)

    def load_song(self, song) -> bool:
        """Load lines and the saved offset from a Song record."""
        self._song_id = song.id
        self._current_track = (song.artist, song.title)
        self._saved_offset = self._offset = clamp_offset(song.lyrics_offset)
        self._set_lines(song.lines)
        return bool(self._lines)

    def load_lines(self, lines: List[LyricLine], offset_sec: float = 0.0) -> bool:
        """Load lines directly (e.g. from a lyrics provider response)."""
        self._song_id = None
        self._saved_offset = self._offset = clamp_offset(offset_sec)
        self._set_lines(lines)
        return bool(self._lines)

    def _set_lines(self, lines: List[LyricLine]) -> None:
        self._lines = list(lines)
        self._words = build_word_timeline(self._lines)
        self._active_index = -1
        self._active_word_index = -1

        if self._lines:
            logger.info(f"Loaded {len(self._lines)} lines / {len(self._words)} words")
            if self._on_lyrics_loaded:
                try:
                    self._on_lyrics_loaded(len(self._lines))
                except Exception:
                    logger.exception("on_lyrics_loaded callback failed")

    # =========================================================================
    # SYNC
    # =========================================================================

    def adjusted_time(self, raw_time: float) -> float:
        return raw_time + self._offset

    def active_line_at(self, raw_time: float) -> int:
        """Active line for a raw player time, without touching module state."""
        return find_active_line_index(self._lines, self.adjusted_time(raw_time))

    def active_word_at(self, raw_time: float) -> int:
        return find_active_word_index(self._words, self.adjusted_time(raw_time))

    def update_position(self, raw_time: float) -> Optional[LyricLine]:
        """
        Update playback position and detect the active line and word.

        Returns the active line if the line changed, None otherwise.
        Fires on_active_line, then on_active_word, each only on change.
        """
        if not self._lines:
            return None

        adjusted = self.adjusted_time(raw_time)
        new_index = find_active_line_index(self._lines, adjusted)
        new_word = find_active_word_index(self._words, adjusted)

        changed_line = None
        if new_index != self._active_index:
            self._active_index = new_index
            changed_line = self._lines[new_index] if new_index >= 0 else None
            if self._on_active_line:
                try:
                    self._on_active_line(new_index, changed_line)
                except Exception:
                    logger.exception("on_active_line callback failed")

        if new_word != self._active_word_index:
            self._active_word_index = new_word
            word = self._words[new_word] if new_word >= 0 else None
            if self._on_active_word:
                try:
                    self._on_active_word(new_word, word)
                except Exception:
                    logger.exception("on_active_word callback failed")

        return changed_line

    def get_line(self, index: int) -> Optional[LyricLine]:
        if index < 0 or index >= len(self._lines):
            return None
        return self._lines[index]

    # =========================================================================
    # OFFSET EDITING
    # =========================================================================

    def adjust_offset(self, delta_sec: float) -> float:
        """Shift the working offset, clamped to the supported range. Returns new offset."""
        self._offset = clamp_offset(self._offset + delta_sec)
        return self._offset

    def step_offset(self, steps: int) -> float:
        return self.adjust_offset(steps * self._config.offset_step_sec)

    def set_offset(self, offset_sec: float) -> float:
        self._offset = clamp_offset(offset_sec)
        return self._offset

    def reset_offset(self) -> float:
        self._offset = 0.0
        return self._offset

    def save_offset(self) -> bool:
        """
        Persist the working offset for the loaded song.

        Returns False on failure; the working offset is kept so the user can
        retry without re-adjusting.
        """
        from storage import StoreError

        if self._store is None or self._song_id is None:
            logger.warning("Cannot save offset: no song record loaded")
            return False

        try:
            song = self._store.update_lyrics_offset(self._song_id, self._offset)
        except (StoreError, ValueError) as e:
            logger.error(f"Failed to save lyrics offset: {e}")
            return False

        if song is None:
            logger.error(f"Failed to save lyrics offset: song {self._song_id} not found")
            return False

        self._saved_offset = song.lyrics_offset
        logger.info(f"Saved lyrics offset {self._saved_offset:+.1f}s for song {self._song_id}")
        return True

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status["line_count"] = len(self._lines)
        status["word_count"] = len(self._words)
        status["active_index"] = self._active_index
        status["active_word_index"] = self._active_word_index
        status["offset_sec"] = self._offset
        status["offset_dirty"] = self.offset_dirty

        if self._current_track:
            status["current_track"] = f"{self._current_track[0]} - {self._current_track[1]}"

        return status


def main():
    """CLI entry point: print a track's synced lyrics or play them back."""
    parser = argparse.ArgumentParser(description="Lyrics Module - fetch and sync lyrics")
    parser.add_argument("--artist", "-a", required=True, help="Artist name")
    parser.add_argument("--title", "-t", required=True, help="Song title")
    parser.add_argument("--sync", action="store_true", help="Highlight lines in real time")
    parser.add_argument("--words", action="store_true", help="Highlight individual words while syncing")
    parser.add_argument("--offset", type=float, default=0.0, help="Timing offset in seconds (positive = earlier)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    with LyricsModule(LyricsConfig(offset_sec=args.offset)) as lyrics:
        if not lyrics.fetch(args.artist, args.title):
            print("No synced lyrics found for this track.", file=sys.stderr)
            sys.exit(1)

        if not args.sync:
            print(format_lrc(lyrics.lines))
            return

        def on_line(idx: int, line: Optional[LyricLine]):
            if line is not None:
                print(f"\n{format_timestamp(line.time_sec)} ", end="", flush=True)
                if not args.words:
                    print(line.text, end="", flush=True)

        def on_word(idx: int, word: Optional[LyricWord]):
            if word is not None:
                print(f"{word.word} ", end="", flush=True)

        lyrics.on_active_line = on_line
        if args.words:
            lyrics.on_active_word = on_word

        end = lyrics.lines[-1].time_sec + 5.0
        started = time.monotonic()
        try:
            while time.monotonic() - started <= end:
                lyrics.update_position(time.monotonic() - started)
                time.sleep(Config.SAMPLE_INTERVAL)
        except KeyboardInterrupt:
            pass
        print("\n\nPlayback complete.")


if __name__ == "__main__":
    main()
