#!/usr/bin/env python3
"""
Infrastructure and Cross-Cutting Concerns

Configuration, settings persistence, logging setup and
service health monitoring.
"""

import os
import json
import time
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from threading import Lock

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger('karaoke')


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name, '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}")
        return default


# =============================================================================
# CONFIGURATION - Smart defaults, overridable from environment / .env
# =============================================================================

class Config:
    """Configuration with smart defaults for a single-singer karaoke setup."""

    # Cache/state locations
    APP_DATA_DIR = Path(os.environ.get('KARAOKE_DATA_DIR', '') or Path.home() / ".karaoke_stage")
    DEFAULT_SETTINGS_FILE = APP_DATA_DIR / "settings.json"
    DEFAULT_STORE_FILE = APP_DATA_DIR / "records.json"
    DEFAULT_LYRICS_CACHE_DIR = APP_DATA_DIR / "lyrics"

    # Audio capture
    SAMPLE_RATE = _env_int('KARAOKE_SAMPLE_RATE', 44100)
    INPUT_DEVICE = _env_int('KARAOKE_INPUT_DEVICE', None)
    WINDOW_SIZE = 2048  # samples per analysis window
    HISTORY_SIZE = 100  # samples kept per score history

    # Polling cadence (seconds)
    SAMPLE_INTERVAL = 0.1
    PLAYBACK_POLL_INTERVAL = 0.25

    # Lyrics timing adjustment (seconds)
    OFFSET_STEP_SEC = 0.5

    LOG_LEVEL = os.environ.get('KARAOKE_LOG_LEVEL', 'INFO').upper()


# =============================================================================
# LOGGING
# =============================================================================

def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for command-line entry points."""
    name = (level or Config.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    )


# =============================================================================
# SETTINGS - Persistent user settings (monitoring volume, input device)
# =============================================================================

class Settings:
    """Persistent settings storage for per-user audio preferences."""

    def __init__(self, file_path: Optional[Path] = None):
        self.file_path = file_path or Config.DEFAULT_SETTINGS_FILE
        self._data = self._load()

    def _load(self) -> Dict[str, Any]:
        """Load settings from disk."""
        if self.file_path.exists():
            try:
                with open(self.file_path, 'r') as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load settings: {e}")
        return {}

    def _save(self):
        """Save settings to disk (temp file + rename)."""
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.file_path.with_suffix('.tmp')
        with open(temp_file, 'w') as f:
            json.dump(self._data, f, indent=2)
        temp_file.replace(self.file_path)

    @property
    def monitoring_volume(self) -> float:
        """Gain applied to live mic monitoring, 0.0 - 1.0."""
        return float(self._data.get('monitoring_volume', 1.0))

    @monitoring_volume.setter
    def monitoring_volume(self, value: float):
        self._data['monitoring_volume'] = max(0.0, min(1.0, float(value)))
        self._save()

    @property
    def input_device(self) -> Optional[int]:
        """sounddevice input index, None for the system default."""
        value = self._data.get('input_device', Config.INPUT_DEVICE)
        return int(value) if value is not None else None

    @input_device.setter
    def input_device(self, value: Optional[int]):
        self._data['input_device'] = value
        self._save()


# =============================================================================
# SERVICE HEALTH - Tracks external service availability
# =============================================================================

class ServiceHealth:
    """
    Tracks service health so repeated failures are logged once, not per call.
    """

    def __init__(self, name: str):
        self.name = name
        self._available = False
        self._last_check = 0.0
        self._last_error = ""
        self._error_count = 0
        self._lock = Lock()

    @property
    def available(self) -> bool:
        with self._lock:
            return self._available

    def mark_available(self, message: str = ""):
        with self._lock:
            was_unavailable = not self._available
            self._available = True
            self._last_check = time.time()
            self._last_error = ""
            if was_unavailable and message:
                logger.info(f"{self.name}: {message}")

    def mark_unavailable(self, error: str = ""):
        with self._lock:
            was_available = self._available
            self._available = False
            self._last_check = time.time()
            self._error_count += 1
            if error != self._last_error:
                self._last_error = error
                if was_available or self._error_count == 1:
                    logger.warning(f"{self.name}: {error}")

    def get_status(self) -> Dict[str, Any]:
        """Get status dict for UI display."""
        with self._lock:
            return {
                'name': self.name,
                'available': self._available,
                'error': self._last_error,
                'error_count': self._error_count,
                'last_check': self._last_check,
            }
