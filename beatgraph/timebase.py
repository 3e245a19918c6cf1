"""
Timebase Module - Musical Time and Analysis Grid Utilities

Provides the tempo map used to convert between seconds and beats, and the
deterministic analysis grid sampled by the statistics pre-pass and the
event extractor.

DESIGN CONSTRAINTS:
- Beats are the unit of most durations; tempo may change between segments
- A missing tempo map (or a gap between segments) falls back to DEFAULT_BPM
- Grid: n = ceil(duration / time_step), t[i] = i * time_step
- Deterministic: same inputs -> same outputs
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import math

import numpy as np


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_BPM: float = 120.0
EPSILON_SEC: float = 1e-6  # Floating point tolerance for comparisons


# =============================================================================
# TEMPO MAP
# =============================================================================

@dataclass(frozen=True)
class BeatPosition:
    """
    Beat position at a point in time.

    Attributes:
        segment_id: Id of the tempo segment that covers the time
        beat_index: Integer beat number (floor of beat_position)
        beat_phase: Position within the beat, in [0, 1)
        beat_position: Continuous beat count since the segment's phase anchor
        bpm: Tempo of the covering segment
    """
    segment_id: str
    beat_index: int
    beat_phase: float
    beat_position: float
    bpm: float


@dataclass(frozen=True)
class MusicalTimeSegment:
    """
    Constant-tempo region of a track, active for start_time <= t < end_time.

    Attributes:
        id: Segment identifier
        bpm: Beats per minute
        phase_offset: Time in seconds of beat 0
        start_time: Segment start in seconds (inclusive)
        end_time: Segment end in seconds (exclusive)
        confidence: Tempo estimate confidence in [0, 1]
        provenance: Where the segment came from (e.g. 'detected', 'manual')
    """
    id: str
    bpm: float
    phase_offset: float
    start_time: float
    end_time: float
    confidence: float = 1.0
    provenance: str = 'manual'

    @property
    def beat_period(self) -> float:
        return 60.0 / self.bpm

    def contains(self, time: float) -> bool:
        return self.start_time <= time < self.end_time

    def beat_position_at(self, time: float) -> BeatPosition:
        beats = (time - self.phase_offset) / self.beat_period
        beat_index = math.floor(beats)
        return BeatPosition(
            segment_id=self.id,
            beat_index=int(beat_index),
            beat_phase=beats - beat_index,
            beat_position=beats,
            bpm=self.bpm,
        )

    def beats_to_seconds(self, beats: float) -> float:
        return beats * self.beat_period

    def seconds_to_beats(self, seconds: float) -> float:
        return seconds / self.beat_period

    def beat_time(self, beat_index: int) -> float:
        """Time in seconds at which the given beat starts."""
        return self.phase_offset + beat_index * self.beat_period


class MusicalTimeStructure:
    """
    Ordered collection of tempo segments.

    Any object exposing bpm_at(time) and beat_position_at(time) (both
    returning None when nothing covers the time) can stand in for this
    class as a musical time provider.
    """

    def __init__(self, segments: Optional[List[MusicalTimeSegment]] = None):
        self.segments: List[MusicalTimeSegment] = sorted(
            segments or [], key=lambda s: s.start_time
        )
        for segment in self.segments:
            if not segment.bpm > 0:
                raise ValueError(f"Segment '{segment.id}' has non-positive bpm {segment.bpm}")

    @classmethod
    def constant(
        cls,
        bpm: float,
        duration: float,
        phase_offset: float = 0.0
    ) -> 'MusicalTimeStructure':
        """Single segment covering [0, duration) at a fixed tempo."""
        return cls([MusicalTimeSegment(
            id='constant',
            bpm=bpm,
            phase_offset=phase_offset,
            start_time=0.0,
            end_time=duration,
        )])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MusicalTimeStructure':
        """Build from {'segments': [{'id', 'bpm', 'phase_offset', 'start_time', 'end_time', ...}]}."""
        segments = []
        for i, raw in enumerate(data.get('segments', [])):
            segments.append(MusicalTimeSegment(
                id=str(raw.get('id', f'segment_{i}')),
                bpm=float(raw['bpm']),
                phase_offset=float(raw.get('phase_offset', 0.0)),
                start_time=float(raw['start_time']),
                end_time=float(raw['end_time']),
                confidence=float(raw.get('confidence', 1.0)),
                provenance=str(raw.get('provenance', 'manual')),
            ))
        return cls(segments)

    def is_empty(self) -> bool:
        return not self.segments

    def segment_at(self, time: float) -> Optional[MusicalTimeSegment]:
        for segment in self.segments:
            if segment.contains(time):
                return segment
        return None

    def bpm_at(self, time: float) -> Optional[float]:
        segment = self.segment_at(time)
        return segment.bpm if segment is not None else None

    def beat_position_at(self, time: float) -> Optional[BeatPosition]:
        segment = self.segment_at(time)
        if segment is None:
            return None
        return segment.beat_position_at(time)


# =============================================================================
# FALLBACK CONVERSIONS
# =============================================================================

def bpm_at(musical_time, time: float) -> float:
    """Tempo at time, or DEFAULT_BPM when no provider or segment covers it."""
    if musical_time is not None:
        bpm = musical_time.bpm_at(time)
        if bpm is not None:
            return bpm
    return DEFAULT_BPM


def beat_info_at(musical_time, time: float) -> Tuple[float, float]:
    """
    Beat position and phase at time.

    Returns:
        Tuple of (beat_position, beat_phase); falls back to DEFAULT_BPM
        counted from t=0 when no segment covers the time
    """
    if musical_time is not None:
        position = musical_time.beat_position_at(time)
        if position is not None:
            return position.beat_position, position.beat_phase

    beat_position = time * DEFAULT_BPM / 60.0
    return beat_position, beat_position - math.floor(beat_position)


def beats_to_seconds(musical_time, beats: float, time: float) -> float:
    return beats * 60.0 / bpm_at(musical_time, time)


# =============================================================================
# ANALYSIS GRID
# =============================================================================

def compute_grid_step_count(duration_sec: float, time_step_sec: float) -> int:
    """
    Number of grid samples covering [0, duration).

    CONTRACT:
    - Output: ceil(duration / time_step), 0 for a zero duration
    - Callers validate that time_step is positive

    Parameters:
        duration_sec: Track duration in seconds
        time_step_sec: Grid spacing in seconds

    Returns:
        Number of grid samples
    """
    if duration_sec <= 0:
        return 0

    ratio = duration_sec / time_step_sec
    nearest = round(ratio)
    # 1.0 / 0.01 style ratios must not gain a step from rounding noise
    if abs(ratio - nearest) < EPSILON_SEC:
        return int(nearest)
    return int(math.ceil(ratio))


def compute_grid_times(n_steps: int, time_step_sec: float) -> np.ndarray:
    """
    Grid sample times t[i] = i * time_step.

    Returns:
        Array of times (n_steps,), dtype float64
    """
    if n_steps <= 0:
        return np.array([], dtype=np.float64)
    return np.arange(n_steps, dtype=np.float64) * time_step_sec
