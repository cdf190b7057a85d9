#!/usr/bin/env python3
"""
External Service Adapters

Deep modules that hide protocol complexity behind simple interfaces.
Currently one provider: LRCLIB for synced (LRC) lyrics and lyric search.
"""

import json
import time
import logging
import requests
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any, List

from domain_types import LyricLine, parse_lrc
from infrastructure import Config, ServiceHealth

logger = logging.getLogger('karaoke')


@dataclass(frozen=True)
class LyricsSearchResult:
    """A track on LRCLIB that has synced lyrics."""
    id: int
    track_name: str
    artist_name: str
    album_name: Optional[str] = None
    duration: float = 0.0


def sanitize_cache_filename(artist: str, title: str) -> str:
    """Create a safe cache filename from artist and title."""
    safe = ''.join(c if c.isalnum() or c in ' -_' else '' for c in f"{artist}_{title}".lower())
    return '_'.join(safe.split())


def rank_search_results(query: str, results: List[LyricsSearchResult]) -> List[LyricsSearchResult]:
    """
    Order results for single-word queries: exact title match first, then
    single-word titles alphabetically, then fewer words, then alphabetically.
    Multi-word queries keep the provider's order.
    """
    query_words = query.split()
    if len(query_words) != 1:
        return list(results)

    search_word = query_words[0].lower()

    def sort_key(result: LyricsSearchResult):
        title = result.track_name.lower()
        word_count = len(result.track_name.split())
        return (title != search_word, word_count != 1, word_count, title)

    return sorted(results, key=sort_key)


# =============================================================================
# LYRICS FETCHER - LRCLIB with disk cache
# =============================================================================

class LyricsFetcher:
    """
    Fetches synced lyrics from LRCLIB.

    Simple interface:
        fetch(artist, title) -> Optional[str]          # raw LRC text
        fetch_lines(artist, title) -> Optional[List]   # parsed LyricLine list
        search(query) -> List[LyricsSearchResult]      # tracks with synced lyrics

    Found lyrics are cached on disk; misses are not cached so a later
    upload to LRCLIB is picked up.
    """

    BASE_URL = "https://lrclib.net/api"
    USER_AGENT = "Karaoke-Stage/1.0"
    TIMEOUT_SEC = 10

    def __init__(self, cache_dir: Optional[Path] = None, session: Optional[requests.Session] = None):
        self._cache_dir = cache_dir or Config.DEFAULT_LYRICS_CACHE_DIR
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = self.USER_AGENT
        self._health = ServiceHealth("LRCLIB")

    @property
    def health(self) -> ServiceHealth:
        return self._health

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def fetch(self, artist: str, title: str, duration: float = 0) -> Optional[str]:
        """
        Fetch synced LRC lyrics. Returns LRC string or None.
        Tracks that only have plain lyrics return None.
        """
        cache = self._load_cache(artist, title)
        if cache.get('syncedLyrics'):
            logger.debug(f"Using cached LRC: {artist} - {title}")
            return cache['syncedLyrics']

        lrc = self._fetch_from_lrclib(artist, title, duration)
        if lrc:
            cache['syncedLyrics'] = lrc
            cache['fetched_at'] = time.time()
            self._save_cache(artist, title, cache)
            logger.info(f"Fetched LRC from LRCLIB: {artist} - {title}")
            return lrc

        logger.info(f"No synced lyrics found for: {artist} - {title}")
        return None

    def fetch_lines(self, artist: str, title: str, duration: float = 0) -> Optional[List[LyricLine]]:
        """Fetch and parse synced lyrics. None when not found or empty."""
        lrc = self.fetch(artist, title, duration)
        if not lrc:
            return None
        lines = parse_lrc(lrc)
        return lines or None

    def search(self, query: str) -> List[LyricsSearchResult]:
        """Search LRCLIB for tracks that have synced lyrics."""
        try:
            resp = self._session.get(
                f"{self.BASE_URL}/search",
                params={"q": query},
                timeout=self.TIMEOUT_SEC,
            )
            if resp.status_code != 200:
                self._health.mark_unavailable(f"search error {resp.status_code}")
                return []
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            self._health.mark_unavailable(f"search failed: {e}")
            return []

        self._health.mark_available("search reachable")
        if not isinstance(data, list):
            logger.error(f"LRCLIB search returned unexpected payload: {type(data).__name__}")
            return []
        results = [
            LyricsSearchResult(
                id=item.get('id', 0),
                track_name=item.get('trackName') or '',
                artist_name=item.get('artistName') or '',
                album_name=item.get('albumName'),
                duration=float(item.get('duration') or 0),
            )
            for item in data
            if isinstance(item, dict) and item.get('syncedLyrics') is not None
        ]
        return rank_search_results(query, results)

    # =========================================================================
    # PRIVATE - LRCLIB
    # =========================================================================

    def _fetch_from_lrclib(self, artist: str, title: str, duration: float) -> Optional[str]:
        """Fetch synced LRC from the LRCLIB get endpoint."""
        params = {"track_name": title, "artist_name": artist}
        if duration > 0:
            params["duration"] = str(int(duration))

        try:
            resp = self._session.get(f"{self.BASE_URL}/get", params=params, timeout=self.TIMEOUT_SEC)
        except requests.RequestException as e:
            self._health.mark_unavailable(f"fetch error: {e}")
            return None

        if resp.status_code == 404:
            self._health.mark_available("reachable")
            return None
        if resp.status_code != 200:
            self._health.mark_unavailable(f"LRCLIB error {resp.status_code}")
            return None

        self._health.mark_available("reachable")
        try:
            data = resp.json()
        except ValueError as e:
            logger.error(f"LRCLIB returned invalid JSON: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"LRCLIB returned unexpected payload: {type(data).__name__}")
            return None

        synced = data.get('syncedLyrics')
        if not synced:
            logger.info(f"Only plain lyrics available for: {artist} - {title}")
        return synced or None

    # =========================================================================
    # PRIVATE - CACHE
    # =========================================================================

    def _cache_path(self, artist: str, title: str) -> Path:
        return self._cache_dir / f"{sanitize_cache_filename(artist, title)}.json"

    def _load_cache(self, artist: str, title: str) -> Dict[str, Any]:
        path = self._cache_path(artist, title)
        if path.exists():
            try:
                with open(path, 'r') as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Ignoring unreadable lyrics cache {path.name}: {e}")
        return {}

    def _save_cache(self, artist: str, title: str, data: Dict[str, Any]):
        try:
            with open(self._cache_path(artist, title), 'w') as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to write lyrics cache: {e}")
