"""
Evaluation Context

Everything one evaluation call needs: the current time and frame delta,
the tempo map, raw buffers, read-only statistics and the mutable runtime
state store of the active execution mode.
"""

from typing import Dict, Optional
import math

import numpy as np

from beatgraph import timebase
from beatgraph.inputs import InputBuffers
from beatgraph.state import SignalState
from beatgraph.stats import StatisticsCache


# Track end used when no duration is known
FLOAT32_MAX: float = float(np.finfo(np.float32).max)


class EvalContext:
    """
    Per-evaluation bundle.

    Parameters:
        time: Current time in seconds
        dt: Frame delta in seconds
        frame_count: Frame (or grid step) index
        inputs: Raw input buffers
        statistics: Precomputed statistics (read-only during evaluation)
        state: Runtime state store of the current execution mode
        musical_time: Optional tempo map (bpm_at / beat_position_at)
        track_duration: Optional track duration in seconds
        collector: Optional DebugCollector receiving probe values
    """

    def __init__(
        self,
        time: float,
        dt: float,
        frame_count: int,
        inputs: Optional[InputBuffers],
        statistics: Optional[StatisticsCache],
        state: SignalState,
        musical_time=None,
        track_duration: Optional[float] = None,
        collector=None
    ):
        self.time = float(time)
        self.dt = float(dt)
        self.frame_count = int(frame_count)
        self.inputs = inputs if inputs is not None else InputBuffers()
        self.statistics = statistics if statistics is not None else StatisticsCache()
        self.state = state
        self.musical_time = musical_time
        self.track_duration = track_duration
        self.collector = collector
        # Values already reduced at this time, keyed by signal id
        self.frame_cache: Dict[int, float] = {}

        if collector is not None:
            collector.set_time(self.time)

    def current_bpm(self) -> float:
        bpm = timebase.bpm_at(self.musical_time, self.time)
        if self.musical_time is None or self.musical_time.bpm_at(self.time) is None:
            self.state.warn_once(
                ('musical_time',),
                f"No musical time available - using default {timebase.DEFAULT_BPM:g} BPM"
            )
        return bpm

    def beats_to_seconds(self, beats: float) -> float:
        return beats * 60.0 / self.current_bpm()

    def seconds_to_beats(self, seconds: float) -> float:
        return seconds * self.current_bpm() / 60.0

    def seconds_to_frames(self, seconds: float) -> float:
        if self.dt <= 0:
            return 0.0
        return seconds / self.dt

    def beat_position(self) -> float:
        if self.musical_time is not None:
            position = self.musical_time.beat_position_at(self.time)
            if position is not None:
                return position.beat_position
        return self.time * self.current_bpm() / 60.0

    def beat_phase(self) -> float:
        position = self.beat_position()
        return position - math.floor(position)

    def track_end(self) -> float:
        if self.track_duration is None:
            return FLOAT32_MAX
        return self.track_duration
