#!/usr/bin/env python3
"""
beatgraph - Command Line Interface

Extract beat-aware events from a pre-computed feature curve and export
them as JSON (plus diagnostic plots).

Pipeline per track:
    Input(feature) -> Smooth.Exponential -> Normalise.Robust -> Pick.Events
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np

from beatgraph import config
from beatgraph import export
from beatgraph.analysis import ExtractionQueue
from beatgraph.graph import Signal
from beatgraph.inputs import InputBuffers, InputSignal
from beatgraph.params import AnalysisConfig, PickEventsOptions
from beatgraph.timebase import MusicalTimeStructure


def load_feature_file(path: Path, sample_rate: Optional[float] = None) -> Tuple[np.ndarray, float]:
    """
    Load a feature curve from disk.

    Supported formats:
        .npy   1-D array; --sample-rate is required
        .json  {"sample_rate": float, "values": [...]}

    Returns:
        (values, sample_rate)

    Raises:
        ValueError: If the file is malformed or the sample rate is missing
    """
    if path.suffix == '.npy':
        values = np.load(path)
        if sample_rate is None:
            raise ValueError("--sample-rate is required for .npy input")
    elif path.suffix == '.json':
        with open(path) as f:
            data = json.load(f)
        if 'values' not in data:
            raise ValueError(f"{path.name}: missing 'values'")
        values = np.asarray(data['values'], dtype=np.float32)
        sample_rate = float(data.get('sample_rate', sample_rate or 0.0))
        if sample_rate <= 0:
            raise ValueError(f"{path.name}: missing or invalid 'sample_rate'")
    else:
        raise ValueError(f"Unsupported input format: {path.suffix}")

    values = np.asarray(values, dtype=np.float32)
    if values.ndim != 1:
        raise ValueError(f"Expected a 1-D feature curve, got shape {values.shape}")
    return values, float(sample_rate)


def generate_demo_track(
    duration: float = config.DEMO_DURATION_SEC,
    bpm: float = config.DEMO_BPM,
    sample_rate: float = config.DEMO_SAMPLE_RATE
) -> np.ndarray:
    """
    Synthetic energy envelope: one decaying pulse per beat, accented per bar.

    Returns:
        Array (n_samples,), dtype float32
    """
    n_samples = int(round(duration * sample_rate))
    t = np.arange(n_samples, dtype=np.float64) / sample_rate
    values = np.zeros(n_samples, dtype=np.float64)

    beat_period = 60.0 / bpm
    n_beats = int(duration / beat_period)
    for beat in range(n_beats):
        onset = beat * beat_period
        accent = config.DEMO_ACCENTS[beat % len(config.DEMO_ACCENTS)]
        after = t >= onset
        values[after] += accent * np.exp(-(t[after] - onset) / 0.08)

    return values.astype(np.float32)


def build_pipeline(feature_name: str, smooth: bool = True) -> Signal:
    """Signal graph evaluated by the CLI before picking."""
    signal = Signal.input(feature_name)
    if smooth:
        signal = signal.smooth.exponential(
            config.DEFAULT_SMOOTH_ATTACK_BEATS,
            config.DEFAULT_SMOOTH_RELEASE_BEATS,
        )
    return signal.normalise.robust()


def process_feature_curve(
    values: np.ndarray,
    sample_rate: float,
    track_name: str,
    output_dir: Path,
    params: Dict,
    verbose: bool = False
) -> bool:
    """
    Run extraction on one feature curve and export results.

    Parameters:
        values: Feature samples
        sample_rate: Feature sample rate (Hz)
        track_name: Name used for output files
        output_dir: Output directory for results
        params: CLI parameters
        verbose: Print verbose progress messages

    Returns:
        True if successful, False otherwise
    """
    try:
        if verbose:
            print(f"\nProcessing: {track_name}")
            print("-" * 60)

        feature = InputSignal(values, sample_rate)
        duration = feature.duration
        if duration <= 0:
            raise ValueError("Feature curve is empty")
        if duration > config.MAX_TRACK_DURATION_SEC:
            raise ValueError(
                f"Track duration {duration:.1f}s exceeds {config.MAX_TRACK_DURATION_SEC:.0f}s"
            )

        inputs = InputBuffers(signals={params['feature_name']: feature})
        musical_time = MusicalTimeStructure.constant(params['bpm'], duration)
        analysis_config = AnalysisConfig(duration=duration, time_step=params['time_step'])

        if verbose:
            print(f"1. Loaded {len(values)} samples at {sample_rate:g} Hz ({duration:.2f}s)")
            print(f"   Tempo: {params['bpm']:g} BPM, grid step {params['time_step']:g}s")

        # Step 2: Build graph and queue extraction
        source = build_pipeline(params['feature_name'], smooth=params['smooth'])
        options = PickEventsOptions().with_overrides(**params['pick_overrides'])

        queue = ExtractionQueue()
        source.pick.events(queue, options)

        if verbose:
            print(f"2. Graph: {source.describe()}")
            print("3. Computing statistics and extracting events...")

        result = queue.run(
            inputs,
            analysis_config,
            musical_time=musical_time,
            collect_debug=True,
        )
        if result.failed:
            raise ValueError(f"Extraction failed for {', '.join(result.failed)}")

        if verbose:
            for name, debug in result.debug.items():
                summary = debug.summary()
                print(f"   {name}: {summary['n_raw_candidates']} candidates, "
                      f"{summary['n_accepted']} accepted")
            print("4. Exporting results...")

        metadata = {
            'track_name': track_name,
            'feature_name': params['feature_name'],
            'sample_rate': sample_rate,
            'duration': duration,
            'bpm': params['bpm'],
        }
        created_files = export.export_all_outputs(
            result.event_streams,
            result.debug,
            output_dir,
            track_name,
            analysis_config=analysis_config,
            metadata=metadata,
            generate_plots=params['generate_plots'],
        )

        if verbose:
            print(f"   Created {len(created_files)} output files")

        for name, stream in result.event_streams.items():
            events_json = export.create_events_json(stream, None, analysis_config, metadata)
            export.print_extraction_summary(export.create_summary_json(events_json), name)

        return True

    except (OSError, ValueError) as e:
        print(f"ERROR processing {track_name}: {e}", file=sys.stderr)
        if verbose:
            import traceback
            traceback.print_exc()
        return False


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description='beatgraph - Beat-aware event extraction',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Extract events from a JSON feature curve
  %(prog)s energy.json --bpm 128 --output results/

  # Raw numpy curve at 100 Hz
  %(prog)s onsets.npy --sample-rate 100 --output results/

  # Synthetic demo track
  %(prog)s --demo --output demo_results/ --verbose
        """
    )

    parser.add_argument(
        'input',
        nargs='?',
        type=str,
        help='Feature curve (.npy or .json); not needed for --demo'
    )
    parser.add_argument(
        '--output', '-o',
        type=str,
        required=True,
        help='Output directory for results'
    )
    parser.add_argument(
        '--demo',
        action='store_true',
        help='Run on a synthetic pulse track (no input file needed)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Print verbose progress messages'
    )
    parser.add_argument(
        '--no-plots',
        action='store_true',
        help='Skip plot generation'
    )
    parser.add_argument(
        '--no-smooth',
        action='store_true',
        help='Pick directly on the normalised input without smoothing'
    )

    parser.add_argument(
        '--sample-rate',
        type=float,
        help='Sample rate of a .npy feature curve (Hz)'
    )
    parser.add_argument(
        '--feature-name',
        type=str,
        default=config.DEFAULT_FEATURE_NAME,
        help=f'Input name the curve is bound to (default: {config.DEFAULT_FEATURE_NAME})'
    )
    parser.add_argument(
        '--bpm',
        type=float,
        help=f'Constant tempo (default: {config.DEFAULT_BPM:g}, demo: {config.DEMO_BPM:g})'
    )
    parser.add_argument(
        '--time-step',
        type=float,
        default=config.DEFAULT_TIME_STEP_SEC,
        help=f'Analysis grid step in seconds (default: {config.DEFAULT_TIME_STEP_SEC})'
    )

    # Pick.Events overrides
    parser.add_argument(
        '--hysteresis-beats',
        type=float,
        help='Minimum beats between events'
    )
    parser.add_argument(
        '--target-density',
        type=float,
        help='Maximum events per beat'
    )
    parser.add_argument(
        '--phase-bias',
        type=float,
        help='Preference for on-beat events in [0, 1]'
    )

    args = parser.parse_args(argv)

    if not args.demo and not args.input:
        parser.error("Either provide an input file or use --demo")

    overrides = {
        'hysteresis_beats': args.hysteresis_beats,
        'target_density': args.target_density,
        'phase_bias': args.phase_bias,
    }
    params = {
        'feature_name': args.feature_name,
        'bpm': args.bpm or (config.DEMO_BPM if args.demo else config.DEFAULT_BPM),
        'time_step': args.time_step,
        'smooth': not args.no_smooth,
        'generate_plots': not args.no_plots,
        'pick_overrides': {k: v for k, v in overrides.items() if v is not None},
    }

    output_dir = Path(args.output)

    if args.demo:
        print("Running demo mode with a synthetic pulse track...")
        values = generate_demo_track(bpm=params['bpm'])
        success = process_feature_curve(
            values, config.DEMO_SAMPLE_RATE, 'demo_pulses', output_dir, params, args.verbose
        )
        if success:
            print(f"Demo complete! Results saved to {output_dir}")
        return 0 if success else 1

    input_path = Path(args.input)
    if not input_path.is_file():
        print(f"ERROR: Input file does not exist: {input_path}", file=sys.stderr)
        return 1

    try:
        values, sample_rate = load_feature_file(input_path, args.sample_rate)
    except (OSError, ValueError) as e:
        print(f"ERROR loading {input_path.name}: {e}", file=sys.stderr)
        return 1

    success = process_feature_curve(
        values, sample_rate, input_path.stem, output_dir, params, args.verbose
    )
    return 0 if success else 1


if __name__ == '__main__':
    sys.exit(main())
