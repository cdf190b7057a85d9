#!/usr/bin/env python3
"""
Karaoke Stage - command-line composition of the karaoke modules

ARCHITECTURE:
- domain_types.py: Pure calculations, immutable data structures
- infrastructure.py: Config, settings, logging setup, service health
- adapters.py: LRCLIB lyrics provider with disk cache
- storage.py: Song / Performance / Playlist record store
- modules/: Sampler, lyrics sync, playback clock, session controller
- karaoke_engine.py: Command-line entry point (this file)

Performances run against a simulated playback clock, so the tool works
without a video player: the clock starts when recording starts.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from domain_types import LyricLine, format_timestamp, parse_lrc
from infrastructure import Config, Settings, setup_logging
from adapters import LyricsFetcher
from storage import DuplicateRecordError, JsonRecordStore, StoreError
from modules.lyrics import LyricsConfig, LyricsModule
from modules.playback import PlaybackModule, SimulatedPlayback
from modules.sampler import SignalSampler, list_input_devices
from modules.session import SessionController

logger = logging.getLogger('karaoke')

DEFAULT_PERFORMANCE_SEC = 30.0


def _open_store(args) -> JsonRecordStore:
    return JsonRecordStore(Path(args.store) if args.store else None)


def _print_lines(lines: List[LyricLine]) -> None:
    for line in lines:
        print(f"{format_timestamp(line.time_sec)} {line.text}")


def _print_scores(scores) -> None:
    print()
    print("=" * 32)
    print(f"  Pitch   {scores.pitch_score:>3}")
    print(f"  Timing  {scores.timing_score:>3}")
    print(f"  Rhythm  {scores.rhythm_score:>3}")
    print("-" * 32)
    print(f"  Total   {scores.total_score:>3}")
    print("=" * 32)


def _load_lyrics(args, store: Optional[JsonRecordStore]) -> Optional[LyricsModule]:
    """Load lyrics from the record store (--video-id) or from LRCLIB."""
    lyrics = LyricsModule(LyricsConfig(offset_sec=getattr(args, 'offset', 0.0)), store=store)

    video_id = getattr(args, 'video_id', None)
    if video_id and store is not None:
        song = store.get_song_by_video_id(video_id)
        if song is None:
            print(f"No song with video id {video_id} in the store.", file=sys.stderr)
            return None
        lyrics.load_song(song)
        return lyrics

    if not args.artist or not args.title:
        print("Either --video-id or both --artist and --title are required.", file=sys.stderr)
        return None

    lyrics.fetch(args.artist, args.title)
    return lyrics


# =============================================================================
# COMMANDS
# =============================================================================

async def _sync_lyrics(lyrics: LyricsModule, show_words: bool) -> None:
    clock = SimulatedPlayback(duration=lyrics.lines[-1].time_sec + 5.0)
    playback = PlaybackModule(clock)
    finished = asyncio.Event()

    def on_line(idx: int, line: Optional[LyricLine]):
        if line is not None:
            print(f"\n{format_timestamp(line.time_sec)} ", end="", flush=True)
            if not show_words:
                print(line.text, end="", flush=True)

    def on_word(idx: int, word):
        if word is not None:
            print(f"{word.word} ", end="", flush=True)

    def on_position(position: float, is_playing: bool):
        lyrics.update_position(position)
        if not is_playing:
            finished.set()

    lyrics.on_active_line = on_line
    if show_words:
        lyrics.on_active_word = on_word
    playback.on_position_update = on_position

    clock.play()
    playback.start()
    try:
        await finished.wait()
    finally:
        playback.stop()
    print("\n\nPlayback complete.")


def cmd_lyrics(args) -> int:
    lyrics = _load_lyrics(args, None)
    if lyrics is None:
        return 2
    if not lyrics.has_lyrics:
        print(f"No synced lyrics found for: {args.artist} - {args.title}", file=sys.stderr)
        return 1

    print(f"Loaded {lyrics.line_count} lines for {args.artist} - {args.title}")
    if args.sync:
        asyncio.run(_sync_lyrics(lyrics, args.words))
    else:
        _print_lines(lyrics.lines)
    lyrics.stop()
    return 0


async def _perform(args, lyrics: LyricsModule, store: JsonRecordStore) -> int:
    settings = Settings()
    if args.volume is not None:
        settings.monitoring_volume = args.volume
    clock = SimulatedPlayback()
    device = args.device if args.device is not None else settings.input_device

    session = SessionController(
        clock,
        lyrics=lyrics,
        store=store,
        sampler_factory=lambda: SignalSampler(device=device),
    )
    session.set_monitoring_volume(settings.monitoring_volume)
    session.on_error = lambda message: print(f"! {message}", file=sys.stderr)
    session.on_score = _print_scores

    playback = PlaybackModule(clock)
    playback.on_position_update = lambda position, playing: lyrics.update_position(position)

    def on_line(idx: int, line: Optional[LyricLine]):
        if line is not None:
            print(f"{format_timestamp(line.time_sec)} {line.text}")

    lyrics.on_active_line = on_line

    if args.duration:
        duration = args.duration
    elif lyrics.has_lyrics:
        duration = lyrics.lines[-1].time_sec + 5.0
    else:
        duration = DEFAULT_PERFORMANCE_SEC

    async with session:
        if args.monitor:
            await session.toggle_monitoring()
        if not await session.start():
            return 1

        print(f"Recording for {duration:.0f}s - sing along! (Ctrl+C to finish early)")
        clock.play()
        playback.start()
        try:
            await asyncio.sleep(duration)
        except asyncio.CancelledError:
            logger.info("Performance interrupted")
        finally:
            playback.stop()
            session.stop()

        if lyrics.song_id is not None:
            if session.save_performance():
                store.increment_play_count(lyrics.song_id)
                print("Score saved.")
    return 0


def cmd_perform(args) -> int:
    store = _open_store(args)
    lyrics = _load_lyrics(args, store)
    if lyrics is None:
        return 2
    if not lyrics.has_lyrics:
        print("No synced lyrics - timing will use the default score.")
    return asyncio.run(_perform(args, lyrics, store))


def cmd_search(args) -> int:
    fetcher = LyricsFetcher()
    results = fetcher.search(args.query)
    if not results:
        print("No tracks with synced lyrics found.")
        return 1
    for result in results:
        mins, secs = divmod(int(result.duration), 60)
        album = f" [{result.album_name}]" if result.album_name else ""
        print(f"{result.artist_name} - {result.track_name}{album} ({mins}:{secs:02d})")
    return 0


def cmd_add_song(args) -> int:
    store = _open_store(args)
    if args.lrc:
        lines = parse_lrc(Path(args.lrc).read_text(encoding='utf-8'))
    else:
        lines = LyricsFetcher().fetch_lines(args.artist, args.title, args.length or 0) or []

    try:
        song = store.create_song(
            video_id=args.video_id,
            title=args.title,
            artist=args.artist,
            lyrics=[line.to_dict() for line in lines],
        )
    except DuplicateRecordError as e:
        print(str(e), file=sys.stderr)
        return 1
    except StoreError as e:
        print(f"Could not save song: {e}", file=sys.stderr)
        return 1

    print(f"Added {song.artist} - {song.title} ({len(lines)} synced lines), id {song.id}")
    return 0


def cmd_offset(args) -> int:
    store = _open_store(args)
    song = store.get_song_by_video_id(args.video_id)
    if song is None:
        print(f"No song with video id {args.video_id} in the store.", file=sys.stderr)
        return 1

    if args.set is None:
        print(f"{song.artist} - {song.title}: offset {song.lyrics_offset:+.1f}s")
        return 0

    try:
        store.update_lyrics_offset(song.id, args.set)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    except StoreError as e:
        print(f"Could not save offset: {e}", file=sys.stderr)
        return 1

    print(f"{song.artist} - {song.title}: offset {args.set:+.1f}s saved")
    return 0


def cmd_list_devices(args) -> int:
    devices = list_input_devices()
    if not devices:
        print("No input devices found (is PortAudio installed?)")
        return 1
    settings = Settings()
    if args.select is not None:
        if args.select not in [dev['index'] for dev in devices]:
            print(f"No input device with index {args.select}", file=sys.stderr)
            return 2
        settings.input_device = args.select
    default = settings.input_device
    for dev in devices:
        marker = "*" if dev['index'] == default else " "
        print(f"{marker} [{dev['index']}] {dev['name']} ({dev['channels']} ch, {dev['sample_rate']} Hz)")
    return 0


# =============================================================================
# MAIN
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='karaoke-stage',
        description='Karaoke Stage - synced lyrics and scored singing sessions',
    )
    parser.add_argument('--store', help=f'Record store file (default: {Config.DEFAULT_STORE_FILE})')
    parser.add_argument('-v', '--verbose', action='store_true')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('lyrics', help='Fetch synced lyrics and print or play them')
    p.add_argument('--artist', '-a', required=True)
    p.add_argument('--title', '-t', required=True)
    p.add_argument('--sync', action='store_true', help='Simulate playback with live highlighting')
    p.add_argument('--words', action='store_true', help='Highlight individual words while syncing')
    p.add_argument('--offset', type=float, default=0.0, help='Timing offset in seconds (positive = earlier)')
    p.set_defaults(func=cmd_lyrics)

    p = sub.add_parser('perform', help='Sing along and get scored')
    p.add_argument('--artist', '-a')
    p.add_argument('--title', '-t')
    p.add_argument('--video-id', help='Use a song from the record store')
    p.add_argument('--duration', type=float, help='Seconds to record (default: song length)')
    p.add_argument('--monitor', action='store_true', help='Hear yourself through the speakers')
    p.add_argument('--device', type=int, help='sounddevice input index')
    p.add_argument('--volume', type=float, help='Monitoring volume 0.0 - 1.0 (remembered)')
    p.set_defaults(func=cmd_perform, offset=0.0)

    p = sub.add_parser('search', help='Search LRCLIB for tracks with synced lyrics')
    p.add_argument('query')
    p.set_defaults(func=cmd_search)

    p = sub.add_parser('add-song', help='Add a song to the record store')
    p.add_argument('--video-id', required=True)
    p.add_argument('--artist', '-a', required=True)
    p.add_argument('--title', '-t', required=True)
    p.add_argument('--lrc', help='Read lyrics from an LRC file instead of LRCLIB')
    p.add_argument('--length', type=float, help='Track length in seconds (improves LRCLIB matching)')
    p.set_defaults(func=cmd_add_song)

    p = sub.add_parser('offset', help='Show or save the lyrics offset of a stored song')
    p.add_argument('--video-id', required=True)
    p.add_argument('--set', type=float, help='New offset in seconds (-20 to 20)')
    p.set_defaults(func=cmd_offset)

    p = sub.add_parser('list-devices', help='List audio input devices')
    p.add_argument('--select', type=int, help='Remember this input device for performances')
    p.set_defaults(func=cmd_list_devices)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging('DEBUG' if args.verbose else None)

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nStopped")
        return 130


if __name__ == '__main__':
    sys.exit(main())
