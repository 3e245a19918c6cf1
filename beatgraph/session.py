"""
Playback Session

Frame-by-frame evaluation with a long-lived runtime state store, so
stateful filters and gates carry over from one rendered frame to the next.
A session never shares its SignalState with analysis runs.
"""

from typing import Dict, Iterable, Mapping, Optional

from beatgraph.analysis import precompute_statistics
from beatgraph.context import EvalContext
from beatgraph.evaluate import evaluate_signal
from beatgraph.inputs import InputBuffers
from beatgraph.params import AnalysisConfig
from beatgraph.state import SignalState
from beatgraph.stats import StatisticsCache


class PlaybackSession:
    """
    Long-lived evaluation for real-time playback.

    Parameters:
        inputs: Raw input buffers for the loaded track
        musical_time: Optional tempo map
        track_duration: Track duration in seconds (defaults to the longest buffer)
        collector: Optional DebugCollector receiving probe values
    """

    def __init__(
        self,
        inputs: Optional[InputBuffers] = None,
        musical_time=None,
        track_duration: Optional[float] = None,
        collector=None
    ):
        self.inputs = inputs if inputs is not None else InputBuffers()
        self.musical_time = musical_time
        if track_duration is None and self.inputs.longest_duration() > 0:
            track_duration = self.inputs.longest_duration()
        self.track_duration = track_duration
        self.collector = collector
        self.state = SignalState()
        self.statistics = StatisticsCache()
        self.frame_count = 0

    def prepare(self, signals: Iterable, config: AnalysisConfig) -> StatisticsCache:
        """Run the statistics pre-pass for the loaded graph."""
        self.statistics = precompute_statistics(
            list(signals), self.inputs, config, self.musical_time, self.statistics
        )
        return self.statistics

    def _context(self, time: float, dt: float) -> EvalContext:
        return EvalContext(
            time=time,
            dt=dt,
            frame_count=self.frame_count,
            inputs=self.inputs,
            statistics=self.statistics,
            state=self.state,
            musical_time=self.musical_time,
            track_duration=self.track_duration,
            collector=self.collector,
        )

    def evaluate(self, signal, time: float, dt: float) -> float:
        """Evaluate one signal as one frame."""
        value = evaluate_signal(signal, self._context(time, dt))
        self.frame_count += 1
        return value

    def evaluate_frame(
        self,
        signals: Mapping[str, object],
        time: float,
        dt: float
    ) -> Dict[str, float]:
        """
        Evaluate several signals for the same frame.

        Shared subexpressions are reduced once and their state advances once.
        """
        ctx = self._context(time, dt)
        values = {name: evaluate_signal(signal, ctx) for name, signal in signals.items()}
        self.frame_count += 1
        return values

    def reload(self) -> None:
        """Drop runtime state and statistics, e.g. after the graph changed."""
        self.state.clear()
        self.statistics = StatisticsCache()
        self.frame_count = 0
