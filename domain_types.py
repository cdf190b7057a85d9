#!/usr/bin/env python3
"""
Domain Models and Pure Functions

Pure calculations with no side effects - immutable data structures
and stateless functions for lyric timing and performance scoring.
"""

import math
import random
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np


# =============================================================================
# CONSTANTS
# =============================================================================

FINAL_LINE_DURATION_SEC = 5.0
OFFSET_MIN_SEC = -20.0
OFFSET_MAX_SEC = 20.0

DEFAULT_PITCH_SCORE = 70
DEFAULT_TIMING_SCORE = 75
RHYTHM_NOISE = 5.0

PITCH_RMS_GAIN = 200.0
TIMING_PENALTY_PER_SEC = 10.0
SCORE_MAX = 100.0


# =============================================================================
# IMMUTABLE DATA STRUCTURES - Pure domain models
# =============================================================================

@dataclass(frozen=True)
class LyricLine:
    """A single line of lyrics with timing. Immutable."""
    time_sec: float
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time_sec, "text": self.text}


@dataclass(frozen=True)
class LyricWord:
    """A single word with an estimated start time. Derived, never persisted."""
    time_sec: float
    word: str
    line_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time_sec, "word": self.word, "lineIndex": self.line_index}


@dataclass(frozen=True)
class ScoreBreakdown:
    """Final result of one performance. Every field is an int in [0, 100]."""
    pitch_score: int
    timing_score: int
    rhythm_score: int
    total_score: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "pitchScore": self.pitch_score,
            "timingScore": self.timing_score,
            "rhythmScore": self.rhythm_score,
            "totalScore": self.total_score,
        }


# =============================================================================
# PURE FUNCTIONS - LRC format
# =============================================================================

_LRC_TIMESTAMP = re.compile(r'\[(\d{2,}):(\d{2})(?:\.(\d{2,3}))?\]')


def parse_lrc(lrc_text: str) -> List[LyricLine]:
    """
    Parse LRC format lyrics into LyricLine objects. Pure function.

    LRC Format: [mm:ss], [mm:ss.xx] or [mm:ss.xxx] followed by the lyric text;
    minutes may run past two digits for tracks over 100 minutes.
    When a line carries several timestamps the last one wins. Fractions are
    truncated to centiseconds. Lines without text are skipped.
    """
    if not lrc_text:
        return []

    lines = []
    for raw_line in lrc_text.split('\n'):
        matches = list(_LRC_TIMESTAMP.finditer(raw_line))
        if not matches:
            continue

        last = matches[-1]
        minutes, seconds, fraction = last.groups()
        centiseconds = int(fraction.ljust(2, '0')[:2]) if fraction else 0
        time_sec = int(minutes) * 60 + int(seconds) + centiseconds / 100.0

        text = raw_line[last.end():].strip()
        if text:
            lines.append(LyricLine(time_sec=time_sec, text=text))

    # sorted() is stable, so equal timestamps keep source order
    return sorted(lines, key=lambda line: line.time_sec)


def format_timestamp(time_sec: float) -> str:
    """Format seconds as an LRC [mm:ss.xx] tag."""
    total_centis = max(0, int(round(time_sec * 100)))
    minutes, rest = divmod(total_centis, 6000)
    seconds, centis = divmod(rest, 100)
    return f"[{minutes:02d}:{seconds:02d}.{centis:02d}]"


def format_lrc(lines: Iterable[LyricLine]) -> str:
    """Serialize lines back to LRC text. Pure function."""
    return '\n'.join(f"{format_timestamp(line.time_sec)} {line.text}" for line in lines)


def parse_lyric_payload(items: Optional[Sequence[Dict[str, Any]]]) -> List[LyricLine]:
    """
    Convert stored/provider {time, text} dicts into LyricLine objects.

    Entries without a numeric time are dropped; order is preserved because
    providers already deliver lines sorted by time.
    """
    if not items:
        return []

    lines = []
    for item in items:
        raw_time = item.get('time')
        if isinstance(raw_time, bool) or not isinstance(raw_time, (int, float)):
            continue
        lines.append(LyricLine(time_sec=float(raw_time), text=str(item.get('text', ''))))
    return lines


# =============================================================================
# PURE FUNCTIONS - Lyric timeline
# =============================================================================

def build_word_timeline(lines: Sequence[LyricLine]) -> List[LyricWord]:
    """
    Spread each line's words evenly between its start and the next line's start.

    The final line is given FINAL_LINE_DURATION_SEC. A non-positive duration
    places every word of the line at the line start. Lines without words
    contribute nothing.
    """
    words: List[LyricWord] = []

    for i, line in enumerate(lines):
        tokens = line.text.split()
        if not tokens:
            continue

        if i + 1 < len(lines):
            line_end = lines[i + 1].time_sec
        else:
            line_end = line.time_sec + FINAL_LINE_DURATION_SEC

        duration = max(0.0, line_end - line.time_sec)
        step = duration / len(tokens)

        for k, token in enumerate(tokens):
            words.append(LyricWord(time_sec=line.time_sec + k * step, word=token, line_index=i))

    return words


def find_active_line_index(lines: Sequence[LyricLine], position: float) -> int:
    """
    Find the line whose right-open interval [start, next_start) contains position.

    A position exactly on a boundary belongs to the later line. The last line
    stays active forever. Returns -1 before the first line or for no lines.
    """
    active = -1
    last = len(lines) - 1
    for i, line in enumerate(lines):
        if position >= line.time_sec and (i == last or position < lines[i + 1].time_sec):
            active = i
    return active


def find_active_word_index(words: Sequence[LyricWord], position: float) -> int:
    """
    Find the last word reached by position, scanning forward from the start.

    The scan stops at the first word not yet reached, so a malformed
    (non-monotonic) list never moves the highlight backwards past a gap.
    Returns -1 before the first word or for no words.
    """
    active = -1
    for i, word in enumerate(words):
        if word.time_sec <= position:
            active = i
        else:
            break
    return active


def find_reached_line_index(lines: Sequence[LyricLine], position: float) -> int:
    """Greatest index whose start time has been reached, checking every line."""
    reached = -1
    for i, line in enumerate(lines):
        if position >= line.time_sec:
            reached = i
    return reached


def clamp_offset(offset_sec: float) -> float:
    """Clamp a timing offset to the supported range."""
    return max(OFFSET_MIN_SEC, min(OFFSET_MAX_SEC, float(offset_sec)))


def validate_offset(offset_sec: Any) -> float:
    """Return offset as float or raise ValueError when not a number in range."""
    if isinstance(offset_sec, bool) or not isinstance(offset_sec, (int, float)):
        raise ValueError(f"Invalid offset value: {offset_sec!r}")
    if math.isnan(offset_sec) or not OFFSET_MIN_SEC <= offset_sec <= OFFSET_MAX_SEC:
        raise ValueError(f"Invalid offset value: {offset_sec!r}")
    return float(offset_sec)


# =============================================================================
# PURE FUNCTIONS - Scoring
# =============================================================================

def round_half_up(value: float) -> int:
    """Round .5 upwards (toward +inf), unlike Python's banker's rounding."""
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    return int(max(0, min(SCORE_MAX, value)))


def calculate_rms(samples: np.ndarray) -> float:
    """Root mean square of samples normalized to [-1, 1]."""
    if samples.size == 0:
        return 0.0
    clean = np.nan_to_num(samples.astype(np.float64), nan=0.0, posinf=1.0, neginf=-1.0)
    return float(np.sqrt(np.mean(clean ** 2)))


def pitch_from_rms(rms: float) -> float:
    """Map loudness to a pitch-accuracy proxy in [0, 100]."""
    if not rms > 0:
        return 0.0
    return min(SCORE_MAX, rms * PITCH_RMS_GAIN)


def timing_accuracy(expected_sec: float, actual_sec: float) -> float:
    """100 minus 10 points per second of lag, floored at 0."""
    penalty = abs(expected_sec - actual_sec) * TIMING_PENALTY_PER_SEC
    if math.isnan(penalty):
        return 0.0
    return max(0.0, SCORE_MAX - penalty)


def calculate_scores(
    pitch_history: Sequence[float],
    timing_history: Sequence[float],
    rng: Optional[random.Random] = None,
) -> ScoreBreakdown:
    """
    Reduce sample histories into a ScoreBreakdown.

    Each component is rounded first and clamped afterwards. The rhythm score
    is the mean of pitch and timing with +/-5 points of uniform noise.
    """
    rng = rng or random

    if pitch_history:
        pitch = min(int(SCORE_MAX), round_half_up(sum(pitch_history) / len(pitch_history)))
    else:
        pitch = DEFAULT_PITCH_SCORE

    if timing_history:
        timing = round_half_up(sum(timing_history) / len(timing_history))
    else:
        timing = DEFAULT_TIMING_SCORE

    noise = rng.random() * (2 * RHYTHM_NOISE) - RHYTHM_NOISE
    rhythm = round_half_up((pitch + timing) / 2 + noise)
    total = round_half_up((pitch + timing + rhythm) / 3)

    return ScoreBreakdown(
        pitch_score=clamp_score(pitch),
        timing_score=clamp_score(timing),
        rhythm_score=clamp_score(rhythm),
        total_score=clamp_score(total),
    )
