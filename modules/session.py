"""
Performance Session - scored singing sessions on the asyncio event loop.

Lifecycle:  IDLE ──start()──► RECORDING ──stop()──► IDLE  (repeatable)

While recording, a 100 ms periodic task takes a loudness reading and, when
the song has synced lyrics, scores how far the playback clock has moved
past the start of the line that was last reached. stop() cancels that task
before anything else, reduces the histories into a ScoreBreakdown, releases
the microphone and hands the result to the presentation layer.

Live monitoring (hearing yourself through the speakers) is independent of
recording and shares the same single sampler instance.

Usage:
    session = SessionController(clock, lyrics=lyrics, store=store)
    session.on_score = show_scores
    session.on_error = show_toast
    if await session.start():
        ...
        session.stop()
    session.save_performance()
"""
import asyncio
import logging
import random
from enum import Enum
from typing import Any, Callable, Dict, Optional

from domain_types import ScoreBreakdown, find_reached_line_index
from infrastructure import Config
from modules.playback import PlaybackClock
from modules.sampler import SignalSampler
from modules.scheduler import PeriodicTask, start_periodic

logger = logging.getLogger(__name__)

MIC_ERROR = "Could not access microphone. Please check permissions."
MIC_REQUIRED = "Please allow microphone access to use this feature."
SAVE_ERROR = "Could not save your score. Please try again."


class SessionState(Enum):
    IDLE = "idle"
    RECORDING = "recording"


class SessionError(Exception):
    """Raised when a session operation would break the single-sampler rule."""


OnStateChange = Callable[[SessionState], None]
OnScore = Callable[[ScoreBreakdown], None]
OnError = Callable[[str], None]
OnMonitoringChange = Callable[[bool], None]


class SessionController:
    """
    Owns the one live SignalSampler and the sampling task.

    The controller is the only place a sampler is created or released, so
    at most one microphone handle exists at any time.
    """

    def __init__(
        self,
        clock: PlaybackClock,
        lyrics=None,
        store=None,
        sampler_factory: Optional[Callable[[], SignalSampler]] = None,
        sample_interval: float = Config.SAMPLE_INTERVAL,
        rng: Optional[random.Random] = None,
    ):
        self._clock = clock
        self._lyrics = lyrics
        self._store = store
        self._sampler_factory = sampler_factory or SignalSampler
        self._sample_interval = sample_interval
        self._rng = rng

        self._state = SessionState.IDLE
        self._sampler: Optional[SignalSampler] = None
        self._task: Optional[PeriodicTask] = None
        self._acquiring = False
        self._closed = False
        self._monitoring_volume = 1.0
        self._last_scores: Optional[ScoreBreakdown] = None
        self._scored_song_id: Optional[str] = None

        # Callbacks
        self._on_state_change: Optional[OnStateChange] = None
        self._on_score: Optional[OnScore] = None
        self._on_error: Optional[OnError] = None
        self._on_monitoring_change: Optional[OnMonitoringChange] = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is SessionState.RECORDING

    @property
    def is_monitoring(self) -> bool:
        return self._sampler is not None and self._sampler.is_monitoring

    @property
    def sampler(self) -> Optional[SignalSampler]:
        return self._sampler

    @property
    def last_scores(self) -> Optional[ScoreBreakdown]:
        return self._last_scores

    @property
    def on_state_change(self) -> Optional[OnStateChange]:
        return self._on_state_change

    @on_state_change.setter
    def on_state_change(self, callback: Optional[OnStateChange]) -> None:
        self._on_state_change = callback

    @property
    def on_score(self) -> Optional[OnScore]:
        return self._on_score

    @on_score.setter
    def on_score(self, callback: Optional[OnScore]) -> None:
        self._on_score = callback

    @property
    def on_error(self) -> Optional[OnError]:
        return self._on_error

    @on_error.setter
    def on_error(self, callback: Optional[OnError]) -> None:
        self._on_error = callback

    @property
    def on_monitoring_change(self) -> Optional[OnMonitoringChange]:
        return self._on_monitoring_change

    @on_monitoring_change.setter
    def on_monitoring_change(self, callback: Optional[OnMonitoringChange]) -> None:
        self._on_monitoring_change = callback

    # =========================================================================
    # RECORDING
    # =========================================================================

    async def start(self) -> bool:
        """
        Open the microphone (if monitoring has not already) and begin sampling.

        Returns False and reports through on_error when the microphone is
        unavailable; the state stays IDLE. A close() during the microphone
        grant also returns False, without an error report.
        """
        if self._closed:
            raise SessionError("Session controller is closed")
        if self._state is SessionState.RECORDING:
            raise SessionError("A session is already recording")

        sampler = await self._ensure_sampler()
        if sampler is None:
            if not self._closed:
                self._notify_error(MIC_ERROR)
            return False

        sampler.reset()
        self._last_scores = None
        self._scored_song_id = None
        self._task = start_periodic(self._sample_interval, self._tick, name="sampling")
        self._set_state(SessionState.RECORDING)
        logger.info("Recording started - your performance is being analyzed")
        return True

    def stop(self) -> Optional[ScoreBreakdown]:
        """
        Finish the session: cancel sampling, score, release the microphone.

        Returns the ScoreBreakdown (also delivered via on_score), or None if
        nothing was recording.
        """
        if self._state is not SessionState.RECORDING:
            logger.debug("stop() ignored: not recording")
            return None

        self._cancel_task()

        sampler = self._sampler
        scores = sampler.calculate_scores(rng=self._rng)
        self._last_scores = scores
        self._scored_song_id = self._current_song_id()
        was_monitoring = sampler.is_monitoring
        self._release_sampler()

        self._set_state(SessionState.IDLE)
        if was_monitoring:
            self._notify_monitoring(False)

        logger.info(
            f"Session scored: total {scores.total_score} "
            f"(pitch {scores.pitch_score}, timing {scores.timing_score}, rhythm {scores.rhythm_score})"
        )
        if self._on_score:
            try:
                self._on_score(scores)
            except Exception:
                logger.exception("on_score callback failed")
        return scores

    def save_performance(self, song_id: Optional[str] = None, user_id: Optional[str] = None) -> bool:
        """
        Persist the last ScoreBreakdown, by default for the song that was sung.

        Failure is reported through on_error; the scores stay in memory so
        the save can be retried.
        """
        from storage import StoreError

        song_id = song_id or self._scored_song_id
        if self._last_scores is None or song_id is None or self._store is None:
            logger.warning("Nothing to save: no scored session for a stored song")
            return False

        try:
            self._store.create_performance(song_id, self._last_scores, user_id=user_id)
        except StoreError as e:
            logger.error(f"Failed to save performance: {e}")
            self._notify_error(SAVE_ERROR)
            return False
        return True

    # =========================================================================
    # MONITORING
    # =========================================================================

    async def toggle_monitoring(self) -> bool:
        """Flip live monitoring, opening the microphone first if needed. Returns the new state."""
        if self._closed:
            raise SessionError("Session controller is closed")

        sampler = await self._ensure_sampler()
        if sampler is None:
            if not self._closed:
                self._notify_error(MIC_REQUIRED)
            return False

        if sampler.is_monitoring:
            sampler.disable_monitoring()
        else:
            sampler.enable_monitoring()
        self._notify_monitoring(sampler.is_monitoring)
        return sampler.is_monitoring

    def set_monitoring_volume(self, volume: float) -> float:
        self._monitoring_volume = max(0.0, min(1.0, float(volume)))
        if self._sampler is not None:
            self._sampler.set_monitoring_volume(self._monitoring_volume)
        return self._monitoring_volume

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    def close(self) -> None:
        """Cancel any sampling and release the microphone without scoring."""
        self._closed = True
        self._cancel_task()
        was_monitoring = self.is_monitoring
        self._release_sampler()
        if self._state is not SessionState.IDLE:
            self._set_state(SessionState.IDLE)
        if was_monitoring:
            self._notify_monitoring(False)

    async def __aenter__(self) -> 'SessionController':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "monitoring": self.is_monitoring,
            "monitoring_volume": self._monitoring_volume,
            "ticks": self._task.tick_count if self._task else 0,
            "last_scores": self._last_scores.to_dict() if self._last_scores else None,
            "sampler": self._sampler.get_status() if self._sampler else None,
        }

    # =========================================================================
    # PRIVATE
    # =========================================================================

    def _tick(self) -> None:
        """One sampling step: pitch first, then timing."""
        sampler = self._sampler
        if sampler is None:
            return

        sampler.detect_pitch()

        lines = self._lyrics.lines if self._lyrics is not None else []
        if not lines:
            return

        position = self._clock.current_time()
        if self._lyrics is not None:
            position = self._lyrics.adjusted_time(position)
        reached = find_reached_line_index(lines, position)
        if reached >= 0:
            sampler.record_timing(lines[reached].time_sec, position)

    async def _ensure_sampler(self) -> Optional[SignalSampler]:
        if self._sampler is not None:
            return self._sampler
        if self._acquiring:
            raise SessionError("Microphone request already pending")

        self._acquiring = True
        sampler = self._sampler_factory()
        try:
            ok = await asyncio.to_thread(sampler.initialize)
        finally:
            self._acquiring = False

        if not ok:
            sampler.cleanup()
            return None
        if self._closed:
            # torn down while waiting for the microphone grant
            sampler.cleanup()
            return None

        sampler.set_monitoring_volume(self._monitoring_volume)
        self._sampler = sampler
        return sampler

    def _release_sampler(self) -> None:
        sampler, self._sampler = self._sampler, None
        if sampler is not None:
            sampler.cleanup()

    def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()

    def _current_song_id(self) -> Optional[str]:
        return self._lyrics.song_id if self._lyrics is not None else None

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception:
                logger.exception("on_state_change callback failed")

    def _notify_error(self, message: str) -> None:
        logger.warning(message)
        if self._on_error:
            try:
                self._on_error(message)
            except Exception:
                logger.exception("on_error callback failed")

    def _notify_monitoring(self, enabled: bool) -> None:
        if self._on_monitoring_change:
            try:
                self._on_monitoring_change(enabled)
            except Exception:
                logger.exception("on_monitoring_change callback failed")
