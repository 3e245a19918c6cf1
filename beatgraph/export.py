"""
Export Module

JSON and plot outputs for event extraction runs.
All JSON outputs carry config.SCHEMA_VERSION.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt

from beatgraph import config
from beatgraph.events import EventStream
from beatgraph.extractor import ExtractionDebug
from beatgraph.params import AnalysisConfig


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, np.bool_):
            return bool(obj)
        return super().default(obj)


def create_events_json(
    stream: EventStream,
    debug: Optional[ExtractionDebug] = None,
    analysis_config: Optional[AnalysisConfig] = None,
    metadata: Optional[Dict] = None
) -> Dict:
    """
    Create the events JSON for one extraction.

    Parameters:
        stream: Extracted event stream
        debug: Optional stage diagnostics (summary only is exported)
        analysis_config: Grid the extraction ran on
        metadata: Free-form track metadata (name, sample rate, ...)

    Returns:
        Dict ready for JSON serialization
    """
    data = {
        'schema_version': config.SCHEMA_VERSION,
        'track_metadata': dict(metadata) if metadata else {},
        'analysis': analysis_config.to_dict() if analysis_config is not None else None,
        'stream': stream.to_dict(),
    }
    if debug is not None:
        data['debug'] = debug.summary()
    return data


def create_summary_json(events_json: Dict) -> Dict:
    """
    Summary statistics of an events JSON.

    Parameters:
        events_json: Output of create_events_json

    Returns:
        Dict with event count, span, inter-onset interval and strongest events
    """
    events = events_json['stream']['events']
    times = np.array([e['time'] for e in events], dtype=np.float64)
    weights = np.array([e['weight'] for e in events], dtype=np.float64)

    if len(times) > 1:
        intervals = np.diff(times)
        mean_interval = float(np.mean(intervals))
    else:
        mean_interval = 0.0

    strongest = sorted(events, key=lambda e: (-e['weight'], e['time']))[:5]

    return {
        'schema_version': config.SCHEMA_VERSION,
        'source': events_json['stream']['source'],
        'num_events': len(events),
        'first_event_sec': float(times[0]) if len(times) else None,
        'last_event_sec': float(times[-1]) if len(times) else None,
        'mean_interval_sec': mean_interval,
        'mean_weight': float(np.mean(weights)) if len(weights) else 0.0,
        'strongest_events': [
            {'time': e['time'], 'weight': e['weight']} for e in strongest
        ],
    }


def save_json(data: Dict, output_path: Path) -> None:
    """
    Save data as JSON with pretty printing.

    Parameters:
        data: Dictionary to save
        output_path: Path to output file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        json.dump(data, f, indent=config.JSON_INDENT, cls=NumpyEncoder)


def plot_extraction(
    debug: ExtractionDebug,
    stream: EventStream,
    output_path: Path,
    title: str = "Event Extraction"
) -> None:
    """
    Plot the sampled source with each extraction stage marked.

    Top panel: grid values, threshold, raw candidates, hysteresis survivors
    and accepted events. Bottom panel: accepted event weights against the
    candidates rejected by the similarity and density stages.

    Parameters:
        debug: Diagnostics captured with collect_debug=True
        stream: Final event stream
        output_path: Path to save plot
        title: Plot title
    """
    fig, axes = plt.subplots(2, 1, figsize=config.PLOT_FIGSIZE, sharex=True)

    ax1 = axes[0]
    ax1.plot(debug.grid_times, debug.grid_values,
             label='Source', color='gray', linewidth=1)
    ax1.axhline(debug.threshold, color='red', linestyle='--', alpha=0.6,
                linewidth=1, label=f'Threshold ({debug.threshold:.3f})')

    if debug.raw_candidates:
        ax1.scatter([e.time for e in debug.raw_candidates],
                    [e.weight for e in debug.raw_candidates],
                    marker='x', color='orange', s=20, label='Candidates')
    if debug.post_hysteresis:
        ax1.scatter([e.time for e in debug.post_hysteresis],
                    [e.weight for e in debug.post_hysteresis],
                    marker='o', facecolors='none', edgecolors='blue', s=40,
                    label='After hysteresis')
    for event in debug.accepted:
        ax1.axvline(event.time, color='green', alpha=0.4, linewidth=1)

    ax1.set_ylabel('Value', fontsize=10)
    ax1.set_title(title, fontsize=12, fontweight='bold')
    ax1.legend(loc='upper right', fontsize=8)
    ax1.grid(True, alpha=0.3)

    ax2 = axes[1]
    if len(stream) > 0:
        ax2.stem(stream.times, stream.weights, linefmt='g-',
                 markerfmt='go', basefmt=' ', label='Accepted')
    if debug.rejected_similarity:
        ax2.scatter([e.time for e in debug.rejected_similarity],
                    np.zeros(len(debug.rejected_similarity)),
                    marker='|', color='purple', s=80, label='Merged (similarity)')
    if debug.rejected_density:
        ax2.scatter([e.time for e in debug.rejected_density],
                    np.zeros(len(debug.rejected_density)),
                    marker='|', color='red', s=80, label='Dropped (density)')

    ax2.set_xlabel('Time (seconds)', fontsize=10)
    ax2.set_ylabel('Weight', fontsize=10)
    ax2.legend(loc='upper right', fontsize=8)
    ax2.grid(True, alpha=0.3)
    ax2.set_ylim(-0.05, 1.05)

    plt.tight_layout()

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_path, dpi=config.PLOT_DPI, bbox_inches='tight')
    plt.close(fig)


def export_all_outputs(
    event_streams: Dict[str, EventStream],
    debug: Dict[str, ExtractionDebug],
    output_dir: Path,
    track_name: str,
    analysis_config: Optional[AnalysisConfig] = None,
    metadata: Optional[Dict] = None,
    generate_plots: bool = True
) -> List[Path]:
    """
    Write events and summary JSON (and plots) for every extracted stream.

    Parameters:
        event_streams: Streams by request name (AnalysisResult.event_streams)
        debug: Diagnostics by request name (AnalysisResult.debug)
        output_dir: Output directory path
        track_name: Name of track (for filenames)
        analysis_config: Grid the extraction ran on
        metadata: Track metadata copied into each events JSON
        generate_plots: Whether to generate plot files (needs debug)

    Returns:
        List of paths to created files
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    created_files = []

    for name, stream in event_streams.items():
        stage_debug = debug.get(name)

        events_json = create_events_json(stream, stage_debug, analysis_config, metadata)
        events_path = output_dir / f"{track_name}_{name}.json"
        save_json(events_json, events_path)
        created_files.append(events_path)

        summary_path = output_dir / f"{track_name}_{name}_summary.json"
        save_json(create_summary_json(events_json), summary_path)
        created_files.append(summary_path)

        if generate_plots and stage_debug is not None:
            plot_path = output_dir / f"{track_name}_{name}.png"
            plot_extraction(stage_debug, stream, plot_path,
                            title=f"{track_name}: {stream.source_description}")
            created_files.append(plot_path)

    return created_files


def print_extraction_summary(summary_json: Dict, name: str) -> None:
    """
    Print concise extraction summary to console.

    Parameters:
        summary_json: Output of create_summary_json
        name: Stream name
    """
    print(f"\n{'='*60}")
    print(f"Extraction Summary: {name}")
    print(f"{'='*60}")
    print(f"Source: {summary_json['source']}")
    print(f"Events: {summary_json['num_events']}")

    if summary_json['num_events'] > 0:
        print(f"Span: {summary_json['first_event_sec']:.2f}s - {summary_json['last_event_sec']:.2f}s")
        print(f"Mean interval: {summary_json['mean_interval_sec']:.3f}s")
        print(f"\nStrongest {len(summary_json['strongest_events'])} events:")
        for i, event in enumerate(summary_json['strongest_events'], 1):
            print(f"  {i}. Time: {event['time']:.2f}s, Weight: {event['weight']:.3f}")

    print(f"{'='*60}\n")
