"""Modules package for the karaoke stage."""
from modules.base import Module
from modules.scheduler import PeriodicTask, start_periodic
from modules.sampler import SignalSampler, list_input_devices
from modules.lyrics import LyricsModule, LyricsConfig
from modules.playback import PlaybackClock, PlaybackConfig, PlaybackModule, SimulatedPlayback
from modules.session import SessionController, SessionError, SessionState

__all__ = [
    "Module",
    "PeriodicTask",
    "start_periodic",
    "SignalSampler",
    "list_input_devices",
    "LyricsModule",
    "LyricsConfig",
    "PlaybackClock",
    "PlaybackConfig",
    "PlaybackModule",
    "SimulatedPlayback",
    "SessionController",
    "SessionError",
    "SessionState",
]
