"""
Playback Module - playback clock contract and position polling.

The video player is an external collaborator: it exposes the elapsed time
and whether it is playing, and is polled rather than pushing updates.

Usage as module:
    from modules.playback import PlaybackModule, SimulatedPlayback

    clock = SimulatedPlayback()
    playback = PlaybackModule(clock)
    playback.on_position_update = lambda pos, playing: print(pos, playing)
    playback.start()   # needs a running asyncio loop
    clock.play()
    ...
    playback.stop()
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from infrastructure import Config
from modules.base import Module
from modules.scheduler import PeriodicTask, start_periodic

logger = logging.getLogger(__name__)


class PlaybackClock(ABC):
    """Read-only view of the player's clock."""

    @abstractmethod
    def current_time(self) -> float:
        """Elapsed playback time in seconds."""

    @abstractmethod
    def is_playing(self) -> bool:
        """True while the media is advancing."""


class SimulatedPlayback(PlaybackClock):
    """
    Playback clock driven by a monotonic time source.

    Used for the CLI and for tests, where `time_func` can be a fake clock.
    """

    def __init__(self, time_func: Callable[[], float] = time.monotonic, duration: float = 0.0):
        self._time_func = time_func
        self.duration = duration
        self._position = 0.0
        self._started_at: Optional[float] = None

    def current_time(self) -> float:
        position = self._position
        if self._started_at is not None:
            position += self._time_func() - self._started_at
        if self.duration > 0:
            position = min(position, self.duration)
        return position

    def is_playing(self) -> bool:
        if self._started_at is None:
            return False
        return self.duration <= 0 or self.current_time() < self.duration

    def play(self) -> None:
        if self._started_at is None:
            self._started_at = self._time_func()

    def pause(self) -> None:
        if self._started_at is not None:
            self._position = self.current_time()
            self._started_at = None

    def seek(self, position: float) -> None:
        self._position = max(0.0, position)
        if self._started_at is not None:
            self._started_at = self._time_func()


@dataclass
class PlaybackConfig:
    """Configuration for Playback module."""
    poll_interval: float = Config.PLAYBACK_POLL_INTERVAL


OnPositionUpdate = Callable[[float, bool], None]  # (position_sec, is_playing)


class PlaybackModule(Module):
    """
    Polls a PlaybackClock on the event loop and republishes the position.

    Consumers (lyric highlighting) read `position`/`is_playing` or subscribe
    through `on_position_update`, which fires on every poll.
    """

    def __init__(self, clock: PlaybackClock, config: Optional[PlaybackConfig] = None):
        super().__init__()
        self._clock = clock
        self._config = config or PlaybackConfig()
        self._task: Optional[PeriodicTask] = None
        self._position = 0.0
        self._is_playing = False
        self._on_position_update: Optional[OnPositionUpdate] = None

    @property
    def clock(self) -> PlaybackClock:
        return self._clock

    @property
    def position(self) -> float:
        return self._position

    @property
    def is_playing(self) -> bool:
        return self._is_playing

    @property
    def on_position_update(self) -> Optional[OnPositionUpdate]:
        return self._on_position_update

    @on_position_update.setter
    def on_position_update(self, callback: Optional[OnPositionUpdate]) -> None:
        self._on_position_update = callback

    def start(self) -> bool:
        """Begin polling. Requires a running asyncio loop."""
        if self._started:
            return True
        self._task = start_periodic(self._config.poll_interval, self.poll, name="playback-poll")
        self._started = True
        return True

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._started = False

    def poll(self) -> None:
        """Read the clock once and notify the subscriber."""
        self._position = self._clock.current_time()
        self._is_playing = self._clock.is_playing()
        if self._on_position_update:
            try:
                self._on_position_update(self._position, self._is_playing)
            except Exception:
                logger.exception("on_position_update callback failed")

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status["position"] = self._position
        status["is_playing"] = self._is_playing
        status["poll_interval"] = self._config.poll_interval
        return status
