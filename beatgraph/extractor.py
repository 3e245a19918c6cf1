"""
Event Extractor Module - Peak-Picking Pipeline

Samples one Signal over a whole-track grid and reduces it to a sparse,
time-ordered EventStream.

Pipeline (strict order, each stage pure given the previous output):
1. Grid evaluation       - fresh SignalState, shared statistics/tempo
2. Adaptive threshold    - mean + factor * std, floored at min_threshold
3. Candidate detection   - strict interior local maxima >= threshold
4. Beat-aware hysteresis - compare with the last accepted event only
5. Similarity clustering - merge near-equal peaks within 0.5 beats
6. Density constraint    - cap per 4-beat window, keep near-duplicates
7. Phase bias            - re-weight towards on-beat events
8. Weight assignment     - peak height or integrated energy
9. Normalisation         - min-max into [0, 1]; equal weights become 1.0
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import math

import numpy as np
from scipy import signal as scipy_signal

from beatgraph import timebase
from beatgraph.context import EvalContext
from beatgraph.evaluate import evaluate_signal
from beatgraph.events import Event, EventStream
from beatgraph.inputs import InputBuffers
from beatgraph.params import PickEventsOptions, validate_pick_options
from beatgraph.state import SignalState
from beatgraph.stats import StatisticsCache


DENSITY_WINDOW_BEATS: float = 4.0
CLUSTER_MAX_BEAT_GAP: float = 0.5


# =============================================================================
# DIAGNOSTICS
# =============================================================================

@dataclass(frozen=True)
class EventCluster:
    """
    Summary of one similarity cluster.

    Attributes:
        id: Cluster index (cluster_id on the representative event)
        representative_time: Centroid time in seconds
        member_count: Number of merged candidates
        mean_weight: Mean member weight
    """
    id: int
    representative_time: float
    member_count: int
    mean_weight: float


@dataclass
class ExtractionDebug:
    """
    Per-stage capture of one extraction run.

    Attributes:
        grid_times: Grid sample times
        grid_values: Source signal at each grid time
        threshold: Adaptive threshold used for candidate detection
        raw_candidates: Candidates before hysteresis
        post_hysteresis: Candidates surviving hysteresis
        clusters: Cluster summaries
        rejected_similarity: Candidates merged into an existing cluster
        rejected_density: Events dropped by the density constraint
        accepted: Final events
    """
    grid_times: np.ndarray = field(default_factory=lambda: np.array([], dtype=np.float64))
    grid_values: np.ndarray = field(default_factory=lambda: np.array([], dtype=np.float32))
    threshold: float = 0.0
    raw_candidates: List[Event] = field(default_factory=list)
    post_hysteresis: List[Event] = field(default_factory=list)
    clusters: List[EventCluster] = field(default_factory=list)
    rejected_similarity: List[Event] = field(default_factory=list)
    rejected_density: List[Event] = field(default_factory=list)
    accepted: List[Event] = field(default_factory=list)

    def summary(self) -> Dict:
        return {
            'threshold': self.threshold,
            'n_grid_samples': len(self.grid_values),
            'n_raw_candidates': len(self.raw_candidates),
            'n_post_hysteresis': len(self.post_hysteresis),
            'n_clusters': len(self.clusters),
            'n_rejected_similarity': len(self.rejected_similarity),
            'n_rejected_density': len(self.rejected_density),
            'n_accepted': len(self.accepted),
        }


# =============================================================================
# STAGES
# =============================================================================

def _beat_of(event: Event) -> float:
    if event.beat_position is not None:
        return event.beat_position
    return event.time * timebase.DEFAULT_BPM / 60.0


def _weight_ratio(a: float, b: float) -> float:
    high = max(a, b)
    if high == 0:
        return 1.0
    return min(a, b) / high


def compute_threshold(values: np.ndarray, options: PickEventsOptions) -> float:
    """
    Adaptive threshold: mean + adaptive_factor * std, at least min_threshold.

    Uses the population standard deviation over the finite samples only;
    NaN and infinite samples never take part in the statistics.
    """
    finite = values[np.isfinite(values)]
    if len(finite) == 0:
        return options.min_threshold
    mean = float(np.mean(finite, dtype=np.float64))
    std = float(np.std(finite, dtype=np.float64))
    threshold = mean + options.adaptive_factor * std
    if not np.isfinite(threshold):
        return options.min_threshold
    return max(threshold, options.min_threshold)


def find_candidates(
    times: np.ndarray,
    values: np.ndarray,
    threshold: float,
    musical_time=None
) -> List[Event]:
    """
    Strict interior local maxima with value >= threshold.

    Grid boundary samples and plateaus are never candidates.

    Parameters:
        times: Grid times
        values: Grid values
        threshold: Minimum peak value
        musical_time: Optional tempo map for beat info

    Returns:
        Candidate events in time order, source 'raw_peak'
    """
    if len(values) < 3:
        return []

    peaks, _ = scipy_signal.find_peaks(values, height=threshold)
    if len(peaks) == 0:
        return []
    strict = (values[peaks] > values[peaks - 1]) & (values[peaks] > values[peaks + 1])
    peaks = peaks[strict]

    candidates = []
    for index in peaks:
        time = float(times[index])
        beat_position, beat_phase = timebase.beat_info_at(musical_time, time)
        candidates.append(Event(
            time=time,
            weight=float(values[index]),
            source='raw_peak',
            beat_position=beat_position,
            beat_phase=beat_phase,
        ))
    return candidates


def apply_hysteresis(candidates: List[Event], hysteresis_beats: float) -> List[Event]:
    """
    Keep at most one event per hysteresis window.

    Each candidate is compared with the most recently accepted event only:
    a gap >= hysteresis_beats accepts it, otherwise a stronger candidate
    replaces the accepted one and a weaker one is dropped.
    """
    accepted: List[Event] = []
    for candidate in candidates:
        if not accepted:
            accepted.append(candidate)
            continue

        last = accepted[-1]
        if _beat_of(candidate) - _beat_of(last) >= hysteresis_beats:
            accepted.append(candidate)
        elif candidate.weight > last.weight:
            accepted[-1] = candidate
    return accepted


def cluster_similar(
    events: List[Event],
    similarity_tolerance: float,
    musical_time=None
) -> Tuple[List[Event], List[EventCluster], List[Event]]:
    """
    Merge near-duplicate peaks.

    Events are visited strongest first. An event joins the first cluster
    whose running mean weight is within similarity_tolerance (min/max ratio)
    and whose first member lies within 0.5 beats; otherwise it starts a new
    cluster. Each cluster emits one event at its centroid time and mean
    weight.

    Returns:
        Tuple of (representatives sorted by time, cluster summaries,
        events merged into an existing cluster)
    """
    if not events:
        return [], [], []

    ordered = sorted(events, key=lambda e: e.weight, reverse=True)
    clusters: List[Dict] = []
    merged: List[Event] = []

    for event in ordered:
        for cluster in clusters:
            ratio = _weight_ratio(event.weight, cluster['mean_weight'])
            beat_gap = abs(_beat_of(event) - _beat_of(cluster['members'][0]))
            if ratio >= 1.0 - similarity_tolerance and beat_gap < CLUSTER_MAX_BEAT_GAP:
                cluster['members'].append(event)
                cluster['centroid_time'] = float(np.mean([e.time for e in cluster['members']]))
                cluster['mean_weight'] = float(np.mean([e.weight for e in cluster['members']]))
                merged.append(event)
                break
        else:
            clusters.append({
                'members': [event],
                'centroid_time': event.time,
                'mean_weight': event.weight,
            })

    representatives = []
    summaries = []
    for cluster_id, cluster in enumerate(clusters):
        beat_position, beat_phase = timebase.beat_info_at(musical_time, cluster['centroid_time'])
        representatives.append(Event(
            time=cluster['centroid_time'],
            weight=cluster['mean_weight'],
            cluster_id=cluster_id,
            source='clustered',
            beat_position=beat_position,
            beat_phase=beat_phase,
        ))
        summaries.append(EventCluster(
            id=cluster_id,
            representative_time=cluster['centroid_time'],
            member_count=len(cluster['members']),
            mean_weight=cluster['mean_weight'],
        ))

    representatives.sort(key=lambda e: e.time)
    return representatives, summaries, merged


def apply_density_constraint(
    events: List[Event],
    target_density: float,
    similarity_tolerance: float
) -> Tuple[List[Event], List[Event]]:
    """
    Soft cap on events per 4-beat window.

    Windows are floor(beat_position / 4). A window over
    ceil(target_density * 4) events keeps its strongest target_count events
    plus any further event whose weight ratio to an already kept event is
    >= 1 - similarity_tolerance.

    Returns:
        Tuple of (kept events sorted by time, rejected events)
    """
    if not events:
        return [], []

    target_count = int(math.ceil(target_density * DENSITY_WINDOW_BEATS))
    windows: Dict[int, List[Event]] = {}
    for event in events:
        window_index = int(math.floor(_beat_of(event) / DENSITY_WINDOW_BEATS))
        windows.setdefault(window_index, []).append(event)

    kept: List[Event] = []
    rejected: List[Event] = []
    for window_index in sorted(windows):
        window_events = windows[window_index]
        if len(window_events) <= target_count:
            kept.extend(window_events)
            continue

        window_kept: List[Event] = []
        for event in sorted(window_events, key=lambda e: e.weight, reverse=True):
            if len(window_kept) < target_count:
                window_kept.append(event)
            elif any(_weight_ratio(event.weight, k.weight) >= 1.0 - similarity_tolerance
                     for k in window_kept):
                window_kept.append(event)
            else:
                rejected.append(event)
        kept.extend(window_kept)

    kept.sort(key=lambda e: e.time)
    return kept, rejected


def apply_phase_bias(events: List[Event], phase_bias: float) -> List[Event]:
    """
    Re-weight events towards integer beat positions; never removes events.

    weight *= 1 - bias + bias * (cos(min(phase, 1 - phase) * pi) + 1) / 2
    """
    if phase_bias <= 0:
        return list(events)

    adjusted = []
    for event in events:
        phase = event.beat_phase if event.beat_phase is not None else 0.0
        on_beat_distance = min(phase, 1.0 - phase)
        phase_factor = (math.cos(on_beat_distance * math.pi) + 1.0) / 2.0
        adjusted.append(event.with_weight(event.weight * (1.0 - phase_bias + phase_bias * phase_factor)))
    return adjusted


def assign_weights(
    events: List[Event],
    times: np.ndarray,
    values: np.ndarray,
    options: PickEventsOptions,
    duration: float,
    musical_time=None
) -> List[Event]:
    """
    Final weights: peak height as-is, or RMS of the grid values within
    +/- half the energy window (tempo-converted, clamped to the track).
    """
    if options.weight_mode == 'peak_height':
        return list(events)

    squared = values.astype(np.float64) ** 2
    weighted = []
    for event in events:
        window_sec = timebase.beats_to_seconds(musical_time, options.energy_window_beats, event.time)
        half_window = window_sec / 2.0
        start = max(event.time - half_window, 0.0)
        end = min(event.time + half_window, duration)

        mask = (times >= start) & (times <= end)
        if np.any(mask):
            weighted.append(event.with_weight(float(np.sqrt(np.mean(squared[mask])))))
        else:
            weighted.append(event)
    return weighted


def normalize_weights(events: List[Event]) -> List[Event]:
    """Min-max scale weights into [0, 1]; equal weights all become 1.0."""
    if not events:
        return []

    weights = [e.weight for e in events]
    low = min(weights)
    span = max(weights) - low
    if span > 0:
        return [e.with_weight((e.weight - low) / span) for e in events]
    return [e.with_weight(1.0) for e in events]


# =============================================================================
# EXTRACTOR
# =============================================================================

class EventExtractor:
    """
    Whole-track event extraction for one source signal.

    Parameters:
        source: Signal to sample
        options: PickEventsOptions (defaults when None)
        duration: Track duration in seconds
        time_step: Grid spacing in seconds
        musical_time: Optional tempo map
        statistics: Optional precomputed statistics, read-only
        collect_debug: Capture per-stage diagnostics

    Raises:
        ValueError: On a negative or non-finite duration, a non-positive
                    time step, or invalid options
    """

    def __init__(
        self,
        source,
        options: Optional[PickEventsOptions] = None,
        duration: float = 0.0,
        time_step: float = 0.01,
        musical_time=None,
        statistics: Optional[StatisticsCache] = None,
        collect_debug: bool = False
    ):
        if not math.isfinite(duration) or duration < 0:
            raise ValueError(f"Duration must be a non-negative number, got {duration}")
        if not math.isfinite(time_step) or time_step <= 0:
            raise ValueError(f"Time step must be positive, got {time_step}")

        self.source = source
        self.options = options if options is not None else PickEventsOptions()
        validate_pick_options(self.options)
        self.duration = float(duration)
        self.time_step = float(time_step)
        self.musical_time = musical_time
        self.statistics = statistics if statistics is not None else StatisticsCache()
        self.collect_debug = collect_debug

    def with_debug(self, collect_debug: bool = True) -> 'EventExtractor':
        return EventExtractor(
            self.source, self.options, self.duration, self.time_step,
            self.musical_time, self.statistics, collect_debug,
        )

    def evaluate_grid(self, inputs: Optional[InputBuffers]) -> Tuple[np.ndarray, np.ndarray]:
        """
        Sample the source at every grid time with a fresh state store.

        Returns:
            Tuple of (times float64, values float32)
        """
        n_steps = timebase.compute_grid_step_count(self.duration, self.time_step)
        times = timebase.compute_grid_times(n_steps, self.time_step)
        values = np.zeros(n_steps, dtype=np.float32)

        state = SignalState()
        for i in range(n_steps):
            ctx = EvalContext(
                time=float(times[i]),
                dt=self.time_step,
                frame_count=i,
                inputs=inputs,
                statistics=self.statistics,
                state=state,
                musical_time=self.musical_time,
                track_duration=self.duration,
            )
            values[i] = evaluate_signal(self.source, ctx)

        return times, values

    def extract(
        self,
        inputs: Optional[InputBuffers]
    ) -> Tuple[EventStream, Optional[ExtractionDebug]]:
        """
        Run the full pipeline.

        Parameters:
            inputs: Raw input buffers

        Returns:
            Tuple of (EventStream, ExtractionDebug or None)
        """
        options = self.options
        description = self.source.describe()
        times, values = self.evaluate_grid(inputs)

        debug = ExtractionDebug(grid_times=times, grid_values=values) if self.collect_debug else None

        if len(values) == 0:
            if debug is not None:
                debug.threshold = options.min_threshold
            return EventStream([], description, options), debug

        threshold = compute_threshold(values, options)
        raw_candidates = find_candidates(times, values, threshold, self.musical_time)
        post_hysteresis = apply_hysteresis(raw_candidates, options.hysteresis_beats)
        clustered, clusters, rejected_similarity = cluster_similar(
            post_hysteresis, options.similarity_tolerance, self.musical_time
        )
        density_kept, rejected_density = apply_density_constraint(
            clustered, options.target_density, options.similarity_tolerance
        )
        biased = apply_phase_bias(density_kept, options.phase_bias)
        weighted = assign_weights(
            biased, times, values, options, self.duration, self.musical_time
        )
        final_events = normalize_weights(weighted)

        if debug is not None:
            debug.threshold = threshold
            debug.raw_candidates = raw_candidates
            debug.post_hysteresis = post_hysteresis
            debug.clusters = clusters
            debug.rejected_similarity = rejected_similarity
            debug.rejected_density = rejected_density
            debug.accepted = final_events

        return EventStream(final_events, description, options), debug
