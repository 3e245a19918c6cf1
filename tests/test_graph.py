"""
Signal Graph Tests

Tests for Signal identity, immutability, construction and introspection.
"""

import pytest
import dataclasses
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from beatgraph import nodes
from beatgraph.events import Event, EventStream
from beatgraph.graph import Gen, Signal


class TestIdentity:
    """Tests for identity assignment."""

    def test_ids_are_unique_and_increasing(self):
        a = Signal.input('energy')
        b = Signal.input('energy')
        c = a + b
        assert a.id < b.id < c.id

    def test_structurally_equal_signals_differ(self):
        a = Signal.input('energy')
        b = Signal.input('energy')
        assert a != b
        assert a == a

    def test_signals_are_frozen(self):
        signal = Signal.constant(1.0)
        with pytest.raises(dataclasses.FrozenInstanceError):
            signal.id = 99

    def test_combinators_do_not_modify_source(self):
        source = Signal.input('energy')
        node_before = source.node
        smoothed = source.smooth.moving_average(1.0)
        assert source.node is node_before
        assert smoothed.node.source is source


class TestConstruction:
    """Tests for combinators and operators."""

    def test_numbers_become_constants(self):
        signal = Signal.input('x').add(2)
        assert isinstance(signal.node.b.node, nodes.Constant)
        assert signal.node.b.node.value == 2.0

    def test_rejects_non_numeric_params(self):
        with pytest.raises(TypeError):
            Signal.input('x').add('2')
        with pytest.raises(TypeError):
            Signal.input('x').mul(True)

    def test_operators(self):
        x = Signal.input('x')
        assert (x + 1).node.op == 'add'
        assert (x - 1).node.op == 'sub'
        assert (x * 2).node.op == 'mul'
        assert (x / 2).node.op == 'div'
        assert (-x).node.op == 'neg'

    def test_reflected_operators_keep_order(self):
        x = Signal.input('x')
        signal = 1 - x
        assert isinstance(signal.node.a.node, nodes.Constant)
        assert signal.node.b is x
        assert (2 / x).node.b is x

    def test_sampling_overrides(self):
        x = Signal.input('x')
        assert x.node.sampling.strategy == 'peak'
        assert x.interpolate().node.sampling.strategy == 'interpolate'
        window = x.peak_window_beats(0.5).node.sampling
        assert (window.window, window.window_size) == ('beats', 0.5)
        assert x.interpolate().peak().node.sampling.is_default()

    def test_sampling_override_on_non_source_is_noop(self):
        derived = Signal.input('x') + 1
        assert derived.interpolate() is derived

    def test_bad_sampling_config(self):
        with pytest.raises(ValueError):
            nodes.SamplingConfig(strategy='median')


class TestWalk:
    """Tests for walk and statistics source discovery."""

    def test_post_order_unique(self):
        x = Signal.input('x')
        shared = x * 2
        root = shared + shared
        ids = [s.id for s in root.walk()]
        assert ids[-1] == root.id
        assert len(ids) == len(set(ids))
        assert ids.index(x.id) < ids.index(shared.id)

    def test_collect_normalise_sources(self):
        x = Signal.input('x')
        smoothed = x.smooth.exponential(0.1, 0.5)
        inner = smoothed.normalise.global_()
        outer = (inner * 2).normalise.robust()
        sources = outer.collect_normalise_sources()
        assert [s.id for s in sources] == [smoothed.id, outer.node.source.id]

    def test_range_needs_no_statistics(self):
        signal = Signal.input('x').normalise.range(0.0, 10.0)
        assert signal.collect_normalise_sources() == []
        assert not signal.requires_statistics()
        assert Signal.input('x').normalise.robust().requires_statistics()

    def test_shared_source_listed_once(self):
        x = Signal.input('x')
        a = x.normalise.global_()
        b = x.normalise.robust()
        assert [s.id for s in (a + b).collect_normalise_sources()] == [x.id]

    def test_find_root_source(self):
        x = Signal.input('x')
        chain = x.smooth.exponential(0.1, 0.2).scale(2.0).normalise.range(0, 1)
        assert nodes.find_root_source(chain) is x.node
        assert nodes.find_root_source(x + 1) is None


class TestDescribe:
    """Tests for human-readable descriptions."""

    def test_chain(self):
        signal = Signal.input('energy').smooth.exponential(0.1, 0.5).normalise.robust()
        assert signal.describe() == 'Input("energy").Smooth.Exponential(0.1,0.5).Normalise.Robust()'

    def test_signal_valued_params(self):
        signal = Signal.input('a').mix(Signal.input('b'), 0.25)
        assert signal.describe() == 'Input("a").Mix(Input("b"),0.25)'

    def test_sampling_and_sources(self):
        assert Signal.input('x').interpolate().describe() == 'Input("x").Interpolate()'
        assert Signal.band('low', 'energy').peak_window_seconds(0.1).describe() == \
            'Band("low","energy").PeakWindowSeconds(0.1)'
        assert Signal.constant(3).describe() == 'Constant(3)'

    def test_generators(self):
        assert Gen.sin(2.0).describe() == 'Gen.Sin(2,0)'
        assert Gen.square(1.0, 0.0, 0.25).describe() == 'Gen.Square(1,0,0.25)'
        assert Gen.pink_noise(7).describe() == 'Gen.PinkNoise(7)'

    def test_event_sources(self):
        stream = EventStream([Event(1.0), Event(2.0)])
        assert stream.impulse().describe() == 'Events(2).Impulse()'
        assert stream.beats_from_prev().describe() == 'Events(2).BeatsFromPrev()'
        assert stream.density_next_seconds(2.0).describe() == 'Events(2).DensityNextSeconds(2)'

    def test_repr_contains_description(self):
        signal = Signal.input('x').gate.threshold(0.5)
        assert 'Gate.Threshold(0.5)' in repr(signal)
