"""
Analysis Module - Statistics Pre-Pass and Pending Extractions

Whole-track work that cannot happen per frame:
- precompute_statistics: sample every sub-signal feeding a Normalise.Global
  or Normalise.Robust node across the track and cache its descriptor
- ExtractionQueue: collect Pick.Events requests during graph construction,
  then run them all once the track is known

DESIGN CONSTRAINTS:
- Each pre-pass source and each extraction gets its own fresh SignalState
- Statistics are complete before any extraction runs and read-only after
- The pre-pass is skipped entirely when no source needs statistics
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
import warnings

import numpy as np

from beatgraph import timebase
from beatgraph.context import EvalContext
from beatgraph.evaluate import evaluate_signal
from beatgraph.events import EventStream
from beatgraph.extractor import EventExtractor, ExtractionDebug
from beatgraph.inputs import InputBuffers
from beatgraph.params import AnalysisConfig, PickEventsOptions
from beatgraph.state import SignalState, SignalWarning
from beatgraph.stats import SignalStatistics, StatisticsCache


# =============================================================================
# STATISTICS PRE-PASS
# =============================================================================

def collect_statistics_sources(signals: Iterable) -> List:
    """
    Unique sub-signals that need statistics, inner-most first.

    Parameters:
        signals: Root signals of the loaded graph

    Returns:
        List of source signals, each identity once
    """
    sources = []
    seen = set()
    for root in signals:
        for source in root.collect_normalise_sources():
            if source.id not in seen:
                seen.add(source.id)
                sources.append(source)
    return sources


def sample_signal(
    signal,
    inputs: Optional[InputBuffers],
    config: AnalysisConfig,
    musical_time=None,
    statistics: Optional[StatisticsCache] = None
) -> np.ndarray:
    """
    Evaluate signal over the analysis grid with a fresh state store.

    Returns:
        Array of values (n_steps,), dtype float32
    """
    n_steps = timebase.compute_grid_step_count(config.duration, config.time_step)
    times = timebase.compute_grid_times(n_steps, config.time_step)
    values = np.zeros(n_steps, dtype=np.float32)

    state = SignalState()
    for i in range(n_steps):
        ctx = EvalContext(
            time=float(times[i]),
            dt=config.time_step,
            frame_count=i,
            inputs=inputs,
            statistics=statistics,
            state=state,
            musical_time=musical_time,
            track_duration=config.duration,
        )
        values[i] = evaluate_signal(signal, ctx)

    return values


def precompute_statistics(
    signals: Iterable,
    inputs: Optional[InputBuffers],
    config: AnalysisConfig,
    musical_time=None,
    statistics: Optional[StatisticsCache] = None
) -> StatisticsCache:
    """
    Fill a statistics cache for every normalisation source in the graph.

    Sources are processed inner-most first, so a source that itself contains
    a normalisation node is sampled with its inner statistics in place.
    Sources already present in the cache are not recomputed.

    Parameters:
        signals: Root signals of the loaded graph
        inputs: Raw input buffers
        config: Analysis grid
        musical_time: Optional tempo map
        statistics: Cache to fill (a new one when None)

    Returns:
        The filled StatisticsCache
    """
    cache = statistics if statistics is not None else StatisticsCache()
    sources = collect_statistics_sources(signals)
    if not sources:
        return cache

    for source in sources:
        if cache.contains(source.id):
            continue
        values = sample_signal(source, inputs, config, musical_time, cache)
        cache.insert(source.id, SignalStatistics.from_samples(values))

    return cache


# =============================================================================
# PENDING EXTRACTIONS
# =============================================================================

@dataclass(frozen=True)
class PendingExtraction:
    """
    A requested but not yet computed extraction.

    Attributes:
        source: Signal to extract events from
        options: Extraction options
        name: Generated name results are stored under
    """
    source: object
    options: PickEventsOptions
    name: str


@dataclass
class AnalysisResult:
    """
    Output of ExtractionQueue.run.

    Attributes:
        statistics: Statistics cache used by all extractions
        event_streams: Extracted streams by request name
        debug: Diagnostics by request name (only when collected)
        failed: Request names whose extraction raised
    """
    statistics: StatisticsCache
    event_streams: Dict[str, EventStream] = field(default_factory=dict)
    debug: Dict[str, ExtractionDebug] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)


class ExtractionQueue:
    """
    Collects Pick.Events requests and runs them as one batch.

    Usage:
        queue = ExtractionQueue()
        onsets = energy.pick.events(queue, {'hysteresis_beats': 0.5})  # empty for now
        result = queue.run(inputs, AnalysisConfig(duration=180.0))
        onsets = queue.get(queue.pending[0].name)                      # extracted
    """

    def __init__(self):
        self._requests: List[PendingExtraction] = []
        self._streams: Dict[str, EventStream] = {}
        self._counter = 0

    @property
    def pending(self) -> List[PendingExtraction]:
        return list(self._requests)

    def __len__(self) -> int:
        return len(self._requests)

    def request(self, source, options=None) -> PendingExtraction:
        """
        Queue an extraction.

        Parameters:
            source: Signal to extract from
            options: PickEventsOptions, mapping for PickEventsOptions.from_dict, or None

        Returns:
            The queued PendingExtraction
        """
        if options is None:
            options = PickEventsOptions()
        elif isinstance(options, dict):
            options = PickEventsOptions.from_dict(options)

        name = f"events_{self._counter}"
        self._counter += 1
        pending = PendingExtraction(source=source, options=options, name=name)
        self._requests.append(pending)
        return pending

    def get(self, name: str) -> EventStream:
        """Stored stream for name, or an empty stream before extraction."""
        stream = self._streams.get(name)
        return stream if stream is not None else EventStream.empty()

    def store(self, name: str, stream: EventStream) -> None:
        self._streams[name] = stream

    def clear(self) -> None:
        """Forget requests and results, e.g. when a graph is reloaded."""
        self._requests = []
        self._streams = {}

    def run(
        self,
        inputs: Optional[InputBuffers],
        config: AnalysisConfig,
        musical_time=None,
        statistics: Optional[StatisticsCache] = None,
        collect_debug: bool = False
    ) -> AnalysisResult:
        """
        Compute statistics for every queued source, then extract each request.

        A request whose extraction raises ValueError is reported with a
        SignalWarning and skipped; the others still run.

        Parameters:
            inputs: Raw input buffers
            config: Analysis grid (validated on construction)
            musical_time: Optional tempo map
            statistics: Existing statistics to extend (a new cache when None)
            collect_debug: Capture per-stage diagnostics

        Returns:
            AnalysisResult with streams keyed by request name
        """
        requests = list(self._requests)
        cache = precompute_statistics(
            [r.source for r in requests], inputs, config, musical_time, statistics
        )
        result = AnalysisResult(statistics=cache)

        for pending in requests:
            try:
                extractor = EventExtractor(
                    pending.source,
                    pending.options,
                    duration=config.duration,
                    time_step=config.time_step,
                    musical_time=musical_time,
                    statistics=cache,
                    collect_debug=collect_debug,
                )
                stream, debug = extractor.extract(inputs)
            except ValueError as exc:
                warnings.warn(
                    f"Event extraction '{pending.name}' failed: {exc}",
                    SignalWarning,
                    stacklevel=2,
                )
                result.failed.append(pending.name)
                continue

            self._streams[pending.name] = stream
            result.event_streams[pending.name] = stream
            if debug is not None:
                result.debug[pending.name] = debug

        return result
