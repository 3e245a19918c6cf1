"""
Analysis and Playback Tests

Tests for the statistics pre-pass, the pending-extraction queue and the
long-lived playback session.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from beatgraph.analysis import (
    ExtractionQueue,
    collect_statistics_sources,
    precompute_statistics,
    sample_signal,
)
from beatgraph.graph import Signal
from beatgraph.inputs import InputBuffers
from beatgraph.params import AnalysisConfig, PickEventsOptions
from beatgraph.session import PlaybackSession
from beatgraph.state import SignalWarning
from beatgraph.stats import SignalStatistics, StatisticsCache


def ramp_buffers() -> InputBuffers:
    """Ten samples 0..9 at 10 Hz."""
    return InputBuffers.from_arrays({'x': np.arange(10, dtype=np.float32)}, 10.0)


def peak_buffers() -> InputBuffers:
    index = np.arange(100)
    values = np.maximum(0.0, 1.0 - np.abs(index - 50) / 10.0)
    return InputBuffers.from_arrays({'x': values.astype(np.float32)}, 100.0)


RAMP_CONFIG = AnalysisConfig(duration=1.0, time_step=0.1)
PEAK_CONFIG = AnalysisConfig(duration=1.0, time_step=0.01)


# =============================================================================
# STATISTICS PRE-PASS
# =============================================================================

class TestStatisticsPrePass:
    """Tests for collect_statistics_sources and precompute_statistics."""

    def test_sources_deduplicated_across_roots(self):
        x = Signal.input('x')
        a = x.normalise.global_()
        b = x.normalise.robust() + 1
        assert [s.id for s in collect_statistics_sources([a, b])] == [x.id]

    def test_sample_signal(self):
        values = sample_signal(Signal.input('x'), ramp_buffers(), RAMP_CONFIG)
        assert values.dtype == np.float32
        np.testing.assert_allclose(values, np.arange(10))

    def test_skipped_without_sources(self):
        cache = StatisticsCache()
        result = precompute_statistics([Signal.input('x') + 1], ramp_buffers(), RAMP_CONFIG, statistics=cache)
        assert result is cache
        assert cache.is_empty()

    def test_computes_source_statistics(self):
        x = Signal.input('x')
        cache = precompute_statistics([x.normalise.robust()], ramp_buffers(), RAMP_CONFIG)
        stats = cache.get(x.id)
        assert stats.min == 0.0
        assert stats.max == 9.0
        assert stats.sample_count == 10

    def test_inner_statistics_available_to_outer_source(self):
        x = Signal.input('x')
        inner = x.normalise.global_()
        outer_source = inner * 2
        root = outer_source.normalise.robust()
        cache = precompute_statistics([root], ramp_buffers(), RAMP_CONFIG)
        # sampled with the inner normalisation in place: 0..1 scaled by 2
        assert cache.get(outer_source.id).max == pytest.approx(2.0)
        assert cache.get(outer_source.id).min == 0.0

    def test_cached_sources_not_recomputed(self):
        x = Signal.input('x')
        existing = SignalStatistics(min=-5.0, max=5.0)
        cache = StatisticsCache()
        cache.insert(x.id, existing)
        precompute_statistics([x.normalise.global_()], ramp_buffers(), RAMP_CONFIG, statistics=cache)
        assert cache.get(x.id) is existing

    def test_analysis_config_validation(self):
        with pytest.raises(ValueError):
            AnalysisConfig(duration=0.0)
        with pytest.raises(ValueError):
            AnalysisConfig(duration=1.0, time_step=-0.1)
        assert AnalysisConfig(duration=2.0).to_dict() == {'duration': 2.0, 'time_step': 0.01}


# =============================================================================
# EXTRACTION QUEUE
# =============================================================================

class TestExtractionQueue:
    """Tests for queued Pick.Events requests."""

    def test_request_names(self):
        queue = ExtractionQueue()
        first = queue.request(Signal.input('x'))
        second = queue.request(Signal.input('x'), {'hysteresis_beats': 0.5})
        assert (first.name, second.name) == ('events_0', 'events_1')
        assert second.options.hysteresis_beats == 0.5
        assert len(queue) == 2

    def test_empty_before_run(self):
        queue = ExtractionQueue()
        stream = Signal.input('x').pick.events(queue)
        assert stream.is_empty()
        assert queue.get('events_0').is_empty()

    def test_run_fills_streams(self):
        queue = ExtractionQueue()
        source = Signal.input('x').normalise.global_()
        source.pick.events(queue)
        result = queue.run(peak_buffers(), PEAK_CONFIG)

        assert list(result.event_streams) == ['events_0']
        stream = queue.get('events_0')
        assert stream is result.event_streams['events_0']
        assert len(stream) == 1
        assert stream[0].time == pytest.approx(0.5)
        assert result.statistics.contains(source.node.source.id)
        assert result.failed == []
        assert result.debug == {}

    def test_shares_given_statistics(self):
        queue = ExtractionQueue()
        queue.request(Signal.input('x').normalise.robust())
        cache = StatisticsCache()
        result = queue.run(peak_buffers(), PEAK_CONFIG, statistics=cache)
        assert result.statistics is cache
        assert not cache.is_empty()

    def test_debug_collected(self):
        queue = ExtractionQueue()
        queue.request(Signal.input('x'))
        result = queue.run(peak_buffers(), PEAK_CONFIG, collect_debug=True)
        assert result.debug['events_0'].summary()['n_accepted'] == 1

    def test_failed_request_reported(self):
        queue = ExtractionQueue()
        queue.request(Signal.input('x'), PickEventsOptions(phase_bias=2.0))
        queue.request(Signal.input('x'))
        with pytest.warns(SignalWarning, match="events_0"):
            result = queue.run(peak_buffers(), PEAK_CONFIG)
        assert result.failed == ['events_0']
        assert list(result.event_streams) == ['events_1']
        assert queue.get('events_0').is_empty()

    def test_bad_mapping_rejected_at_request(self):
        with pytest.raises(ValueError):
            ExtractionQueue().request(Signal.input('x'), {'weight_mode': 'loudness'})

    def test_clear(self):
        queue = ExtractionQueue()
        queue.request(Signal.input('x'))
        queue.run(peak_buffers(), PEAK_CONFIG)
        queue.clear()
        assert len(queue) == 0
        assert queue.pending == []
        assert queue.get('events_0').is_empty()


# =============================================================================
# PLAYBACK SESSION
# =============================================================================

class TestPlaybackSession:
    """Tests for frame-by-frame evaluation."""

    def test_state_persists_across_frames(self):
        session = PlaybackSession()
        accumulated = Signal.constant(1.0).integrate()
        values = [session.evaluate(accumulated, i * 0.5, 0.5) for i in range(3)]
        assert values == pytest.approx([0.5, 1.0, 1.5])
        assert session.frame_count == 3

    def test_evaluate_frame_advances_shared_state_once(self):
        session = PlaybackSession()
        accumulated = Signal.constant(1.0).integrate()
        frame = session.evaluate_frame({'a': accumulated, 'b': accumulated + 0}, 0.0, 0.5)
        assert frame == pytest.approx({'a': 0.5, 'b': 0.5})
        frame = session.evaluate_frame({'a': accumulated}, 0.5, 0.5)
        assert frame['a'] == pytest.approx(1.0)

    def test_reload(self):
        session = PlaybackSession()
        accumulated = Signal.constant(1.0).integrate()
        session.evaluate(accumulated, 0.0, 0.5)
        session.reload()
        assert session.frame_count == 0
        assert session.statistics.is_empty()
        assert session.evaluate(accumulated, 0.0, 0.5) == pytest.approx(0.5)

    def test_prepare_does_not_touch_session_state(self):
        session = PlaybackSession(ramp_buffers())
        accumulated = Signal.input('x').integrate()
        root = accumulated.normalise.global_()
        statistics = session.prepare([root], RAMP_CONFIG)
        assert statistics.contains(accumulated.id)
        assert session.state.integrators == {}

    def test_normalised_playback(self):
        session = PlaybackSession(ramp_buffers())
        root = Signal.input('x').normalise.global_()
        session.prepare([root], RAMP_CONFIG)
        assert session.evaluate(root, 0.9, 0.1) == pytest.approx(1.0)
        assert session.evaluate(root, 0.45, 0.1) == pytest.approx(4.0 / 9.0)

    def test_track_duration_from_inputs(self):
        assert PlaybackSession(ramp_buffers()).track_duration == pytest.approx(1.0)
        assert PlaybackSession().track_duration is None
