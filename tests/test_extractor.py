"""
Event Extractor Tests

Tests for each peak-picking stage in isolation and for the full
EventExtractor pipeline on synthetic curves.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from beatgraph.events import Event
from beatgraph.extractor import (
    EventExtractor,
    apply_density_constraint,
    apply_hysteresis,
    apply_phase_bias,
    assign_weights,
    cluster_similar,
    compute_threshold,
    find_candidates,
    normalize_weights,
)
from beatgraph.graph import Signal
from beatgraph.inputs import InputBuffers
from beatgraph.params import PickEventsOptions
from beatgraph.timebase import MusicalTimeStructure


SAMPLE_RATE = 100.0


def make_buffers(values) -> InputBuffers:
    return InputBuffers.from_arrays({'x': np.asarray(values, dtype=np.float32)}, SAMPLE_RATE)


def triangle_peak() -> np.ndarray:
    """One second of samples with a single triangular peak at 0.5s."""
    index = np.arange(100)
    return np.maximum(0.0, 1.0 - np.abs(index - 50) / 10.0).astype(np.float32)


def three_peaks() -> np.ndarray:
    values = np.zeros(100, dtype=np.float32)
    values[20] = 0.5
    values[60] = 1.0
    values[90] = 0.75
    return values


def extract(values, options=None, **kwargs):
    extractor = EventExtractor(
        Signal.input('x'), options, duration=len(values) / SAMPLE_RATE, **kwargs
    )
    return extractor.extract(make_buffers(values))


# =============================================================================
# STAGES
# =============================================================================

class TestThreshold:
    """Tests for compute_threshold."""

    def test_mean_plus_factor_std(self):
        values = np.array([0.0, 0.0, 1.0, 1.0], dtype=np.float32)
        options = PickEventsOptions(min_threshold=0.0, adaptive_factor=0.5)
        assert compute_threshold(values, options) == pytest.approx(0.75)

    def test_floored_at_min_threshold(self):
        values = np.zeros(10, dtype=np.float32)
        assert compute_threshold(values, PickEventsOptions(min_threshold=0.1)) == pytest.approx(0.1)

    def test_empty(self):
        empty = np.array([], dtype=np.float32)
        assert compute_threshold(empty, PickEventsOptions(min_threshold=0.2)) == 0.2

    def test_ignores_non_finite_samples(self):
        values = np.array([0.0, 1.0, np.inf, np.nan], dtype=np.float32)
        options = PickEventsOptions(min_threshold=0.0, adaptive_factor=0.5)
        assert compute_threshold(values, options) == pytest.approx(0.75)

    def test_all_non_finite(self):
        values = np.array([np.nan, np.inf], dtype=np.float32)
        assert compute_threshold(values, PickEventsOptions(min_threshold=0.2)) == 0.2


class TestCandidates:
    """Tests for find_candidates."""

    def test_strict_interior_maxima_only(self):
        values = np.array([1.0, 0.0, 2.0, 2.0, 0.0, 3.0, 0.5, 4.0], dtype=np.float32)
        times = np.arange(8) * 0.1
        candidates = find_candidates(times, values, 0.0)
        # edges and the 2.0 plateau are skipped
        assert len(candidates) == 1
        assert candidates[0].time == pytest.approx(0.5)
        assert candidates[0].weight == pytest.approx(3.0)
        assert candidates[0].source == 'raw_peak'

    def test_threshold_applied(self):
        values = np.array([0.0, 0.5, 0.0, 1.0, 0.0], dtype=np.float32)
        times = np.arange(5) * 0.1
        candidates = find_candidates(times, values, 0.6)
        assert [c.time for c in candidates] == [pytest.approx(0.3)]

    def test_beat_info_attached(self):
        values = np.array([0.0, 1.0, 0.0], dtype=np.float32)
        times = np.array([0.0, 0.75, 1.5])
        candidate = find_candidates(times, values, 0.0)[0]
        # 120 BPM fallback: 0.75s is beat 1.5
        assert candidate.beat_position == pytest.approx(1.5)
        assert candidate.beat_phase == pytest.approx(0.5)

    def test_too_short(self):
        assert find_candidates(np.array([0.0, 0.1]), np.array([0.0, 1.0], dtype=np.float32), 0.0) == []


class TestHysteresis:
    """Tests for apply_hysteresis."""

    def test_far_apart_events_kept(self):
        events = [Event(0.0, 0.5), Event(1.0, 0.4)]
        assert len(apply_hysteresis(events, 0.5)) == 2

    def test_stronger_replaces_last_accepted(self):
        # 0.1s = 0.2 beats at the fallback tempo
        events = [Event(0.0, 0.5), Event(0.1, 0.9)]
        kept = apply_hysteresis(events, 0.5)
        assert [e.time for e in kept] == [0.1]

    def test_weaker_dropped(self):
        events = [Event(0.0, 0.9), Event(0.1, 0.5)]
        assert [e.time for e in apply_hysteresis(events, 0.5)] == [0.0]

    def test_compares_with_last_accepted_only(self):
        events = [Event(0.0, 1.0), Event(0.3, 0.5), Event(0.4, 0.6)]
        kept = apply_hysteresis(events, 0.5)
        assert [e.time for e in kept] == [0.0, 0.4]


class TestClustering:
    """Tests for cluster_similar."""

    def test_near_duplicates_merge(self):
        events = [Event(0.0, 1.0), Event(0.1, 0.95), Event(1.0, 1.0)]
        representatives, clusters, merged = cluster_similar(events, 0.15)

        assert [e.time for e in representatives] == pytest.approx([0.05, 1.0])
        assert representatives[0].weight == pytest.approx(0.975)
        assert representatives[0].source == 'clustered'
        assert [c.member_count for c in clusters] == [2, 1]
        assert [e.time for e in merged] == [0.1]

    def test_dissimilar_weights_stay_apart(self):
        events = [Event(0.0, 1.0), Event(0.1, 0.5)]
        representatives, clusters, merged = cluster_similar(events, 0.15)
        assert len(representatives) == 2
        assert merged == []

    def test_cluster_ids(self):
        events = [Event(0.0, 0.3), Event(2.0, 1.0)]
        representatives, _, _ = cluster_similar(events, 0.15)
        # strongest event is visited first and owns cluster 0
        assert representatives[1].cluster_id == 0
        assert representatives[0].cluster_id == 1

    def test_empty(self):
        assert cluster_similar([], 0.15) == ([], [], [])


class TestDensity:
    """Tests for apply_density_constraint."""

    def test_caps_window(self):
        events = [Event(0.0, 1.0), Event(0.5, 0.5), Event(1.0, 0.3), Event(1.5, 0.95)]
        kept, rejected = apply_density_constraint(events, 0.5, 0.15)
        assert [e.time for e in kept] == [0.0, 1.5]
        assert sorted(e.weight for e in rejected) == [0.3, 0.5]

    def test_keeps_near_duplicates(self):
        events = [Event(0.0, 1.0), Event(0.5, 0.9), Event(1.0, 0.95), Event(1.5, 0.2)]
        kept, rejected = apply_density_constraint(events, 0.5, 0.15)
        assert [e.time for e in kept] == [0.0, 0.5, 1.0]
        assert [e.time for e in rejected] == [1.5]

    def test_windows_are_independent(self):
        # 2.5s is beat 5, the second 4-beat window
        events = [Event(0.0, 1.0), Event(0.5, 0.2), Event(2.5, 0.1)]
        kept, _ = apply_density_constraint(events, 0.25, 0.15)
        assert [e.time for e in kept] == [0.0, 2.5]


class TestPhaseBias:
    """Tests for apply_phase_bias."""

    def test_on_beat_unchanged(self):
        event = Event(1.0, 0.8).with_beat_info(2.0, 0.0)
        assert apply_phase_bias([event], 1.0)[0].weight == pytest.approx(0.8)

    def test_off_beat_halved_at_full_bias(self):
        event = Event(1.25, 0.8).with_beat_info(2.5, 0.5)
        assert apply_phase_bias([event], 1.0)[0].weight == pytest.approx(0.4)
        assert apply_phase_bias([event], 0.5)[0].weight == pytest.approx(0.6)

    def test_zero_bias(self):
        event = Event(1.25, 0.8).with_beat_info(2.5, 0.5)
        assert apply_phase_bias([event], 0.0)[0].weight == 0.8


class TestWeights:
    """Tests for assign_weights and normalize_weights."""

    def test_peak_height_unchanged(self):
        events = [Event(0.5, 3.0)]
        times = np.arange(100) * 0.01
        values = np.full(100, 0.5, dtype=np.float32)
        weighted = assign_weights(events, times, values, PickEventsOptions(), 1.0)
        assert weighted[0].weight == 3.0

    def test_integrated_energy_is_rms(self):
        events = [Event(0.5, 3.0), Event(0.0, 3.0)]
        times = np.arange(100) * 0.01
        values = np.full(100, 0.5, dtype=np.float32)
        options = PickEventsOptions(weight_mode='integrated_energy')
        weighted = assign_weights(events, times, values, options, 1.0)
        assert [e.weight for e in weighted] == pytest.approx([0.5, 0.5])

    def test_normalize(self):
        events = [Event(0.0, 0.5), Event(1.0, 1.0), Event(2.0, 0.75)]
        assert [e.weight for e in normalize_weights(events)] == pytest.approx([0.0, 1.0, 0.5])

    def test_equal_weights_become_one(self):
        events = [Event(0.0, 0.3), Event(1.0, 0.3)]
        assert [e.weight for e in normalize_weights(events)] == [1.0, 1.0]
        assert normalize_weights([]) == []


# =============================================================================
# PIPELINE
# =============================================================================

class TestEventExtractor:
    """End-to-end extraction on synthetic curves."""

    def test_single_peak(self):
        stream, debug = extract(triangle_peak())
        assert debug is None
        assert len(stream) == 1
        assert stream[0].time == pytest.approx(0.5, abs=0.05)
        assert stream[0].weight == pytest.approx(1.0)
        assert stream.source_description == 'Input("x")'

    def test_hysteresis_keeps_stronger_peak(self):
        values = np.zeros(100, dtype=np.float32)
        values[45] = 0.8
        values[50] = 1.0
        options = PickEventsOptions(hysteresis_beats=0.5)
        stream, debug = extract(values, options, collect_debug=True)

        assert [e.time for e in stream] == [pytest.approx(0.5)]
        summary = debug.summary()
        assert summary['n_raw_candidates'] == 2
        assert summary['n_post_hysteresis'] == 1

    def test_weights_normalised(self):
        stream, _ = extract(three_peaks())
        assert list(stream.times) == pytest.approx([0.2, 0.6, 0.9])
        assert list(stream.weights) == pytest.approx([0.0, 1.0, 0.5])

    def test_nan_sample_does_not_suppress_events(self):
        values = three_peaks()
        values[80] = np.nan
        stream, debug = extract(values, collect_debug=True)
        assert np.isfinite(debug.threshold)
        assert list(stream.times) == pytest.approx([0.2, 0.6, 0.9])

    def test_events_sorted_and_weights_bounded(self):
        rng = np.random.default_rng(3)
        values = rng.uniform(0.0, 1.0, 400).astype(np.float32)
        stream, _ = extract(values)
        assert np.all(np.diff(stream.times) >= 0)
        assert np.all((stream.weights >= 0.0) & (stream.weights <= 1.0))

    def test_deterministic(self):
        rng = np.random.default_rng(11)
        values = rng.uniform(0.0, 1.0, 300).astype(np.float32)
        first, _ = extract(values)
        second, _ = extract(values)
        np.testing.assert_array_equal(first.times, second.times)
        np.testing.assert_array_equal(first.weights, second.weights)

    def test_musical_time_beat_info(self):
        tempo = MusicalTimeStructure.constant(60.0, 1.0)
        stream, _ = extract(triangle_peak(), musical_time=tempo)
        assert stream[0].beat_position == pytest.approx(0.5)

    def test_stream_carries_options(self):
        options = PickEventsOptions(hysteresis_beats=0.5)
        stream, _ = extract(triangle_peak(), options)
        assert stream.options is options

    def test_debug_capture(self):
        values = three_peaks()
        stream, debug = extract(values, collect_debug=True)
        np.testing.assert_allclose(debug.grid_values, values)
        assert debug.threshold == pytest.approx(0.1)
        assert debug.accepted == list(stream.events)
        assert set(debug.summary()) == {
            'threshold', 'n_grid_samples', 'n_raw_candidates', 'n_post_hysteresis',
            'n_clusters', 'n_rejected_similarity', 'n_rejected_density', 'n_accepted',
        }
        assert debug.summary()['n_grid_samples'] == 100

    def test_with_debug(self):
        extractor = EventExtractor(Signal.input('x'), duration=1.0)
        assert extractor.with_debug().collect_debug
        assert not extractor.collect_debug

    def test_zero_duration(self):
        extractor = EventExtractor(Signal.input('x'), duration=0.0, collect_debug=True)
        stream, debug = extractor.extract(make_buffers(triangle_peak()))
        assert stream.is_empty()
        assert debug.threshold == PickEventsOptions().min_threshold

    def test_missing_input_gives_empty_stream(self):
        with pytest.warns(UserWarning):
            stream, _ = EventExtractor(Signal.input('absent'), duration=1.0).extract(InputBuffers())
        assert stream.is_empty()

    def test_invalid_arguments(self):
        source = Signal.input('x')
        with pytest.raises(ValueError):
            EventExtractor(source, duration=-1.0)
        with pytest.raises(ValueError):
            EventExtractor(source, duration=float('nan'))
        with pytest.raises(ValueError):
            EventExtractor(source, duration=1.0, time_step=0.0)
        with pytest.raises(ValueError):
            EventExtractor(source, PickEventsOptions(phase_bias=2.0), duration=1.0)


class TestPickOptions:
    """Tests for PickEventsOptions parsing and validation."""

    def test_from_dict_defaults(self):
        assert PickEventsOptions.from_dict(None) == PickEventsOptions()
        assert PickEventsOptions.from_dict({'hysteresis_beats': '0.5'}).hysteresis_beats == 0.5

    def test_from_dict_rejects_bad_values(self):
        with pytest.raises(ValueError):
            PickEventsOptions.from_dict({'target_density': 'lots'})
        with pytest.raises(ValueError):
            PickEventsOptions.from_dict({'weight_mode': 'loudness'})
        with pytest.raises(ValueError):
            PickEventsOptions.from_dict({'similarity_tolerance': 1.5})

    def test_with_overrides(self):
        options = PickEventsOptions().with_overrides(phase_bias=0.3)
        assert options.phase_bias == 0.3
        with pytest.raises(ValueError):
            PickEventsOptions().with_overrides(target_density=0.0)

    def test_to_dict(self):
        assert PickEventsOptions().to_dict()['weight_mode'] == 'peak_height'
