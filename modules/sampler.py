"""
Signal Sampler - microphone capture, loudness readings and score histories.

Owns the capture stream, the 2048-sample analysis window and the optional
monitoring output (captured audio routed to the speakers). Exactly one
sampler should hold the microphone at a time; the session controller
enforces that.

Audio flows:

    microphone ──► InputStream callback ──► capture queue ──► analysis window
                                     └────► monitor queue ──► OutputStream (x gain)

The PortAudio callbacks only copy blocks into bounded queues. All analysis
(detect_pitch) runs on the caller's thread when the window is drained.

Usage as module:
    from modules.sampler import SignalSampler

    sampler = SignalSampler()
    if not sampler.initialize():
        print("Microphone unavailable")
    sampler.detect_pitch()
    sampler.record_timing(12.0, 12.3)
    print(sampler.calculate_scores())
    sampler.cleanup()

Standalone CLI:
    python -m modules.sampler --seconds 5
"""
import argparse
import logging
import queue
import random
import sys
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional

import numpy as np

from domain_types import (
    ScoreBreakdown, calculate_rms, calculate_scores, pitch_from_rms, timing_accuracy,
)
from infrastructure import Config
from modules.base import Module

# sounddevice needs the PortAudio library
try:
    import sounddevice as sd
    SOUNDDEVICE_AVAILABLE = True
except (ImportError, OSError):
    SOUNDDEVICE_AVAILABLE = False
    sd = None

logger = logging.getLogger(__name__)

if not SOUNDDEVICE_AVAILABLE:
    logger.warning("sounddevice not available - microphone input disabled")


def list_input_devices(backend: Any = None) -> List[Dict[str, Any]]:
    """List available audio input devices."""
    backend = backend if backend is not None else sd
    if backend is None:
        return []

    devices = []
    try:
        for i, dev in enumerate(backend.query_devices()):
            if dev['max_input_channels'] > 0:
                devices.append({
                    'index': i,
                    'name': dev['name'],
                    'channels': dev['max_input_channels'],
                    'sample_rate': int(dev['default_samplerate']),
                })
    except Exception as e:
        logger.error(f"Failed to list devices: {e}")
    return devices


class SignalSampler(Module):
    """
    Live microphone sampler producing loudness-based pitch readings.

    Provides:
    - initialize()/cleanup() (aliases acquire()/release()) for the capture device
    - enable_monitoring()/disable_monitoring()/set_monitoring_volume()
    - detect_pitch() and record_timing() feeding bounded FIFO histories
    - calculate_scores() reducing histories into a ScoreBreakdown
    """

    BLOCK_SIZE = 512
    CAPTURE_QUEUE_SIZE = 64
    MONITOR_QUEUE_SIZE = 16

    def __init__(
        self,
        sample_rate: Optional[int] = None,
        window_size: int = Config.WINDOW_SIZE,
        history_size: int = Config.HISTORY_SIZE,
        device: Optional[int] = None,
        backend: Any = None,
    ):
        super().__init__()
        self._sd = backend if backend is not None else sd
        self.sample_rate = sample_rate or Config.SAMPLE_RATE
        self.window_size = window_size
        self.device = device

        self._input_stream: Optional[Any] = None
        self._output_stream: Optional[Any] = None
        self._capture_queue: "queue.Queue[np.ndarray]" = queue.Queue(maxsize=self.CAPTURE_QUEUE_SIZE)
        self._monitor_queue: "queue.Queue[np.ndarray]" = queue.Queue(maxsize=self.MONITOR_QUEUE_SIZE)
        self._monitor_pending = np.zeros(0, dtype=np.float32)
        self._window: Optional[np.ndarray] = None

        self._gain = 1.0
        self._monitoring = False
        self._dropped_blocks = 0

        self._pitch_history: Deque[float] = deque(maxlen=history_size)
        self._timing_history: Deque[float] = deque(maxlen=history_size)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_initialized(self) -> bool:
        return self._input_stream is not None

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def monitoring_volume(self) -> float:
        return self._gain

    @property
    def pitch_history(self) -> List[float]:
        return list(self._pitch_history)

    @property
    def timing_history(self) -> List[float]:
        return list(self._timing_history)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def initialize(self) -> bool:
        """
        Open the microphone. Returns False (never raises) when access is
        denied or no device exists; the caller decides how to tell the user.
        """
        if self.is_initialized:
            return True
        if self._sd is None:
            logger.warning("Cannot open microphone: sounddevice not available")
            return False

        stream = None
        try:
            stream = self._sd.InputStream(
                samplerate=self.sample_rate,
                blocksize=self.BLOCK_SIZE,
                channels=1,
                dtype='float32',
                device=self.device,
                callback=self._audio_callback,
            )
            stream.start()
        except Exception as e:
            logger.warning(f"Failed to open microphone: {e}")
            if stream is not None:
                try:
                    stream.close()
                except Exception as close_error:
                    logger.debug(f"Ignoring close error after failed open: {close_error}")
            return False

        self._input_stream = stream
        self._window = np.zeros(self.window_size, dtype=np.float32)
        self._gain = 1.0
        self._monitoring = False
        self._started = True
        logger.info(f"Microphone open @ {self.sample_rate}Hz (window {self.window_size} samples)")
        return True

    def cleanup(self) -> None:
        """Release capture and monitoring streams. Safe to call repeatedly."""
        self.disable_monitoring()

        if self._input_stream is not None:
            stream, self._input_stream = self._input_stream, None
            try:
                stream.stop()
                stream.close()
                logger.info("Microphone closed")
            except Exception as e:
                logger.error(f"Error closing microphone: {e}")

        self._drain_queue(self._capture_queue)
        self._window = None
        self._started = False

    acquire = initialize
    release = cleanup

    def start(self) -> bool:
        return self.initialize()

    def stop(self) -> None:
        self.cleanup()

    # =========================================================================
    # MONITORING
    # =========================================================================

    def enable_monitoring(self) -> None:
        """Route captured audio to the output device. No-op if uninitialized or already on."""
        if not self.is_initialized or self._monitoring:
            return

        stream = None
        try:
            stream = self._sd.OutputStream(
                samplerate=self.sample_rate,
                blocksize=self.BLOCK_SIZE,
                channels=1,
                dtype='float32',
                callback=self._output_callback,
            )
            stream.start()
        except Exception as e:
            logger.warning(f"Failed to open monitoring output: {e}")
            if stream is not None:
                try:
                    stream.close()
                except Exception as close_error:
                    logger.debug(f"Ignoring close error after failed open: {close_error}")
            return

        self._output_stream = stream
        self._monitor_pending = np.zeros(0, dtype=np.float32)
        self._monitoring = True
        logger.info("Mic monitoring ON")

    def disable_monitoring(self) -> None:
        """Disconnect the monitoring output. No-op if uninitialized or already off."""
        if not self.is_initialized or not self._monitoring:
            return

        self._monitoring = False
        stream, self._output_stream = self._output_stream, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                logger.error(f"Error closing monitoring output: {e}")
        self._drain_queue(self._monitor_queue)
        logger.info("Mic monitoring OFF")

    def set_monitoring_volume(self, volume: float) -> None:
        """Clamp to [0, 1] and apply as output gain, whether monitoring is on or not."""
        self._gain = max(0.0, min(1.0, float(volume)))

    # =========================================================================
    # SAMPLING
    # =========================================================================

    def detect_pitch(self) -> float:
        """
        Take a loudness reading over the current window and append it to the
        pitch history. Returns the reading, or 0 when uninitialized.
        """
        if not self.is_initialized:
            return 0.0

        self._drain_capture()
        pitch = pitch_from_rms(calculate_rms(self._window))
        self._pitch_history.append(pitch)
        return pitch

    def record_timing(self, expected_time: float, actual_time: float) -> float:
        """Score how far actual lags expected (10 points per 0.1 s) and store it."""
        accuracy = timing_accuracy(expected_time, actual_time)
        self._timing_history.append(accuracy)
        return accuracy

    def calculate_scores(self, rng: Optional[random.Random] = None) -> ScoreBreakdown:
        return calculate_scores(self._pitch_history, self._timing_history, rng=rng)

    def reset(self) -> None:
        """Clear both histories, keeping the audio streams open."""
        self._pitch_history.clear()
        self._timing_history.clear()

    def read_window(self) -> np.ndarray:
        """Copy of the current analysis window (empty when uninitialized)."""
        if not self.is_initialized:
            return np.zeros(0, dtype=np.float32)
        self._drain_capture()
        return self._window.copy()

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status["initialized"] = self.is_initialized
        status["monitoring"] = self._monitoring
        status["monitoring_volume"] = self._gain
        status["pitch_samples"] = len(self._pitch_history)
        status["timing_samples"] = len(self._timing_history)
        status["dropped_blocks"] = self._dropped_blocks
        return status

    # =========================================================================
    # PRIVATE - audio callbacks (PortAudio thread)
    # =========================================================================

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        """Keep this minimal - just copy data to the queues."""
        if status:
            logger.debug(f"Audio input status: {status}")

        block = np.array(indata[:, 0] if indata.ndim > 1 else indata, dtype=np.float32)
        try:
            self._capture_queue.put_nowait(block)
        except queue.Full:
            self._dropped_blocks += 1

        if self._monitoring:
            try:
                self._monitor_queue.put_nowait(block)
            except queue.Full:
                pass

    def _output_callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        pending = self._monitor_pending
        while len(pending) < frames:
            try:
                pending = np.concatenate([pending, self._monitor_queue.get_nowait()])
            except queue.Empty:
                break

        chunk = pending[:frames]
        self._monitor_pending = pending[frames:]

        outdata.fill(0)
        outdata[:len(chunk), 0] = chunk * self._gain

    # =========================================================================
    # PRIVATE - window management
    # =========================================================================

    def _drain_capture(self) -> None:
        """Move queued blocks into the sliding analysis window."""
        blocks = []
        while True:
            try:
                blocks.append(self._capture_queue.get_nowait())
            except queue.Empty:
                break
        if not blocks:
            return

        fresh = np.concatenate(blocks)
        if len(fresh) >= self.window_size:
            self._window = fresh[-self.window_size:].astype(np.float32)
        else:
            self._window = np.concatenate([self._window[len(fresh):], fresh]).astype(np.float32)

    @staticmethod
    def _drain_queue(q: queue.Queue) -> None:
        while True:
            try:
                q.get_nowait()
            except queue.Empty:
                return


def main():
    """CLI entry point: print live loudness readings."""
    parser = argparse.ArgumentParser(description="Signal Sampler - live microphone readings")
    parser.add_argument("--seconds", type=float, default=5.0, help="How long to sample")
    parser.add_argument("--device", type=int, default=None, help="sounddevice input index")
    parser.add_argument("--monitor", action="store_true", help="Route the microphone to the speakers")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    sampler = SignalSampler(device=args.device)
    if not sampler.initialize():
        print("Could not access microphone. Please check permissions.", file=sys.stderr)
        sys.exit(1)
    if args.monitor:
        sampler.enable_monitoring()

    end = time.monotonic() + args.seconds
    try:
        while time.monotonic() < end:
            reading = sampler.detect_pitch()
            print(f"{reading:6.1f} {'#' * int(reading / 2)}")
            time.sleep(Config.SAMPLE_INTERVAL)
    except KeyboardInterrupt:
        pass
    finally:
        scores = sampler.calculate_scores()
        sampler.cleanup()

    print(f"\nPitch {scores.pitch_score}  Rhythm {scores.rhythm_score}  Total {scores.total_score}")


if __name__ == "__main__":
    main()
