"""
Export and CLI Tests

Tests for JSON/plot export and the command line entry point.
"""

import pytest
import numpy as np
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from beatgraph import cli
from beatgraph import config
from beatgraph import export
from beatgraph.events import Event, EventStream
from beatgraph.extractor import EventExtractor
from beatgraph.graph import Signal
from beatgraph.inputs import InputBuffers
from beatgraph.params import AnalysisConfig, PickEventsOptions


def extracted_stream():
    values = np.zeros(200, dtype=np.float32)
    values[40] = 0.6
    values[100] = 1.0
    values[160] = 0.8
    buffers = InputBuffers.from_arrays({'x': values}, 100.0)
    extractor = EventExtractor(Signal.input('x'), duration=2.0, collect_debug=True)
    return extractor.extract(buffers)


# =============================================================================
# JSON
# =============================================================================

class TestEventsJson:
    """Tests for create_events_json / create_summary_json."""

    def test_events_json_structure(self):
        stream, debug = extracted_stream()
        data = export.create_events_json(
            stream, debug, AnalysisConfig(duration=2.0), {'track_name': 'test'}
        )
        assert data['schema_version'] == config.SCHEMA_VERSION
        assert data['track_metadata'] == {'track_name': 'test'}
        assert data['analysis'] == {'duration': 2.0, 'time_step': 0.01}
        assert data['stream']['n_events'] == 3
        assert data['debug']['n_accepted'] == 3

    def test_without_debug(self):
        data = export.create_events_json(EventStream([Event(1.0)]))
        assert 'debug' not in data
        assert data['analysis'] is None
        assert data['track_metadata'] == {}

    def test_summary(self):
        stream = EventStream([Event(1.0, 0.2), Event(2.0, 1.0), Event(4.0, 0.6)], 'src')
        summary = export.create_summary_json(export.create_events_json(stream))
        assert summary['source'] == 'src'
        assert summary['num_events'] == 3
        assert summary['first_event_sec'] == 1.0
        assert summary['last_event_sec'] == 4.0
        assert summary['mean_interval_sec'] == pytest.approx(1.5)
        assert summary['mean_weight'] == pytest.approx(0.6)
        assert [e['time'] for e in summary['strongest_events']] == [2.0, 4.0, 1.0]

    def test_summary_of_empty_stream(self):
        summary = export.create_summary_json(export.create_events_json(EventStream()))
        assert summary['num_events'] == 0
        assert summary['first_event_sec'] is None
        assert summary['mean_interval_sec'] == 0.0
        assert summary['strongest_events'] == []

    def test_save_json_handles_numpy(self, tmp_path):
        path = tmp_path / 'nested' / 'out.json'
        export.save_json({
            'count': np.int64(3),
            'value': np.float32(0.5),
            'flag': np.bool_(True),
            'values': np.arange(3),
        }, path)
        with open(path) as f:
            loaded = json.load(f)
        assert loaded == {'count': 3, 'value': 0.5, 'flag': True, 'values': [0, 1, 2]}


# =============================================================================
# PLOTS AND BATCH EXPORT
# =============================================================================

class TestExportFiles:
    """Tests for plot_extraction and export_all_outputs."""

    def test_plot_created(self, tmp_path):
        stream, debug = extracted_stream()
        path = tmp_path / 'plot.png'
        export.plot_extraction(debug, stream, path, title='test')
        assert path.exists()
        assert path.stat().st_size > 0

    def test_export_all_outputs(self, tmp_path):
        stream, debug = extracted_stream()
        created = export.export_all_outputs(
            {'events_0': stream}, {'events_0': debug}, tmp_path, 'track'
        )
        names = [p.name for p in created]
        assert names == ['track_events_0.json', 'track_events_0_summary.json', 'track_events_0.png']
        assert all(p.exists() for p in created)

    def test_no_plot_without_debug(self, tmp_path):
        stream, _ = extracted_stream()
        created = export.export_all_outputs({'events_0': stream}, {}, tmp_path, 'track')
        assert [p.suffix for p in created] == ['.json', '.json']

    def test_no_plots_flag(self, tmp_path):
        stream, debug = extracted_stream()
        created = export.export_all_outputs(
            {'events_0': stream}, {'events_0': debug}, tmp_path, 'track', generate_plots=False
        )
        assert len(created) == 2


# =============================================================================
# CLI
# =============================================================================

class TestCli:
    """Tests for the command line entry point."""

    def test_demo_track_shape(self):
        values = cli.generate_demo_track(duration=2.0, bpm=120.0, sample_rate=100.0)
        assert values.shape == (200,)
        assert values.dtype == np.float32
        # pulses start on every beat
        assert values[50] > values[49]
        assert values[0] == pytest.approx(config.DEMO_ACCENTS[0])

    def test_build_pipeline(self):
        assert cli.build_pipeline('energy').describe() == (
            'Input("energy").Smooth.Exponential(0.1,0.5).Normalise.Robust()'
        )
        assert cli.build_pipeline('flux', smooth=False).describe() == 'Input("flux").Normalise.Robust()'

    def test_demo_run(self, tmp_path):
        assert cli.main(['--demo', '--no-plots', '--output', str(tmp_path)]) == 0
        events_path = tmp_path / 'demo_pulses_events_0.json'
        assert events_path.exists()
        with open(events_path) as f:
            data = json.load(f)
        assert data['stream']['n_events'] > 0
        assert (tmp_path / 'demo_pulses_events_0_summary.json').exists()

    def test_json_input(self, tmp_path):
        curve = cli.generate_demo_track(duration=4.0, bpm=120.0, sample_rate=100.0)
        input_path = tmp_path / 'pulses.json'
        with open(input_path, 'w') as f:
            json.dump({'sample_rate': 100.0, 'values': curve.tolist()}, f)

        out_dir = tmp_path / 'out'
        status = cli.main([str(input_path), '--output', str(out_dir), '--no-plots',
                           '--hysteresis-beats', '0.5'])
        assert status == 0
        with open(out_dir / 'pulses_events_0.json') as f:
            data = json.load(f)
        assert data['stream']['options']['hysteresis_beats'] == 0.5
        assert data['track_metadata']['feature_name'] == 'energy'

    def test_missing_input_file(self, tmp_path):
        assert cli.main([str(tmp_path / 'nope.json'), '--output', str(tmp_path)]) == 1

    def test_invalid_override(self, tmp_path):
        status = cli.main(['--demo', '--no-plots', '--output', str(tmp_path),
                           '--phase-bias', '3.0'])
        assert status == 1

    def test_requires_input_or_demo(self, tmp_path):
        with pytest.raises(SystemExit):
            cli.main(['--output', str(tmp_path)])

    def test_modules_namespaced_under_package(self):
        assert cli.__name__ == 'beatgraph.cli'
        assert config.__name__ == 'beatgraph.config'
        assert export.config is config


class TestLoadFeatureFile:
    """Tests for load_feature_file."""

    def test_npy_needs_sample_rate(self, tmp_path):
        path = tmp_path / 'curve.npy'
        np.save(path, np.zeros(10, dtype=np.float32))
        with pytest.raises(ValueError):
            cli.load_feature_file(path)
        values, sample_rate = cli.load_feature_file(path, 50.0)
        assert values.shape == (10,)
        assert sample_rate == 50.0

    def test_json_needs_values(self, tmp_path):
        path = tmp_path / 'curve.json'
        path.write_text(json.dumps({'sample_rate': 100.0}))
        with pytest.raises(ValueError):
            cli.load_feature_file(path)

    def test_rejects_2d(self, tmp_path):
        path = tmp_path / 'curve.json'
        path.write_text(json.dumps({'sample_rate': 100.0, 'values': [[1.0, 2.0]]}))
        with pytest.raises(ValueError):
            cli.load_feature_file(path)

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / 'curve.wav'
        path.write_bytes(b'')
        with pytest.raises(ValueError):
            cli.load_feature_file(path)

    def test_options_overrides_validated(self):
        with pytest.raises(ValueError):
            PickEventsOptions().with_overrides(hysteresis_beats=-1.0)
