"""
Option Parameters Module - Extraction, Envelope and Analysis Options

Every tunable of the event pipeline and of event-derived envelopes lives
here as a frozen dataclass. Instances are immutable so an EventStream can
carry the exact options that produced it.

USAGE:
    from beatgraph.params import PickEventsOptions, DEFAULT_PICK_OPTIONS

    # Use defaults
    options = DEFAULT_PICK_OPTIONS

    # Override selected fields
    custom = PickEventsOptions(hysteresis_beats=0.5, phase_bias=0.3)

    # Parse a loose mapping (as handed over by a scripting layer)
    parsed = PickEventsOptions.from_dict({'weight_mode': 'integrated_energy'})
"""

from dataclasses import dataclass, asdict, replace
from typing import Dict, Optional, Tuple, Any
import math


# =============================================================================
# MODE NAMES
# =============================================================================

WEIGHT_MODES: Tuple[str, ...] = ('peak_height', 'integrated_energy')

ENVELOPE_SHAPES: Tuple[str, ...] = (
    'impulse', 'step', 'attack_decay', 'adsr', 'gaussian', 'exponential_decay'
)

EASING_FUNCTIONS: Tuple[str, ...] = (
    'linear',
    'quadratic_in', 'quadratic_out', 'quadratic_in_out',
    'cubic_in', 'cubic_out', 'cubic_in_out',
    'exponential_in', 'exponential_out',
    'smoothstep', 'elastic',
)

OVERLAP_MODES: Tuple[str, ...] = ('sum', 'max')

MERGE_MODES: Tuple[str, ...] = ('sum', 'max', 'mean')


def _float_option(data: Dict[str, Any], key: str, default: float) -> float:
    """Read a numeric option, keeping the default when the key is absent."""
    if key not in data or data[key] is None:
        return default
    try:
        return float(data[key])
    except (TypeError, ValueError):
        raise ValueError(f"Option '{key}' must be numeric, got {data[key]!r}")


def _mode_option(data: Dict[str, Any], key: str, default: str) -> str:
    if key not in data or data[key] is None:
        return default
    return str(data[key]).lower()


# =============================================================================
# PEAK PICKING
# =============================================================================

@dataclass(frozen=True)
class PickEventsOptions:
    """
    Peak-picking pipeline parameters.

    Attributes:
        hysteresis_beats: Minimum beat gap between accepted peaks (default 0.25)
        target_density: Target events per beat, applied per 4-beat window (default 1.0)
        similarity_tolerance: Weight ratio tolerance for clustering/near-duplicates (default 0.15)
        phase_bias: 0 = no bias, 1 = strongly favour on-beat events (default 0.0)
        weight_mode: 'peak_height' or 'integrated_energy' (default 'peak_height')
        energy_window_beats: Window for 'integrated_energy' weighting (default 0.25)
        min_threshold: Floor for the adaptive threshold (default 0.1)
        adaptive_factor: Standard deviations above the mean (default 0.5)
    """
    hysteresis_beats: float = 0.25
    target_density: float = 1.0
    similarity_tolerance: float = 0.15
    phase_bias: float = 0.0
    weight_mode: str = 'peak_height'
    energy_window_beats: float = 0.25
    min_threshold: float = 0.1
    adaptive_factor: float = 0.5

    def to_dict(self) -> Dict:
        """Convert options to dictionary for JSON export."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'PickEventsOptions':
        """
        Build options from a loose mapping; absent keys keep their defaults.

        Raises:
            ValueError: On non-numeric values or unknown modes
        """
        data = data or {}
        defaults = cls()
        options = cls(
            hysteresis_beats=_float_option(data, 'hysteresis_beats', defaults.hysteresis_beats),
            target_density=_float_option(data, 'target_density', defaults.target_density),
            similarity_tolerance=_float_option(data, 'similarity_tolerance', defaults.similarity_tolerance),
            phase_bias=_float_option(data, 'phase_bias', defaults.phase_bias),
            weight_mode=_mode_option(data, 'weight_mode', defaults.weight_mode),
            energy_window_beats=_float_option(data, 'energy_window_beats', defaults.energy_window_beats),
            min_threshold=_float_option(data, 'min_threshold', defaults.min_threshold),
            adaptive_factor=_float_option(data, 'adaptive_factor', defaults.adaptive_factor),
        )
        validate_pick_options(options)
        return options

    def with_overrides(self, **changes) -> 'PickEventsOptions':
        options = replace(self, **changes)
        validate_pick_options(options)
        return options


def validate_pick_options(options: PickEventsOptions) -> None:
    """
    Validate peak-picking options.

    Raises:
        ValueError: If any parameter is invalid
    """
    for name in ('hysteresis_beats', 'target_density', 'similarity_tolerance',
                 'phase_bias', 'energy_window_beats', 'min_threshold',
                 'adaptive_factor'):
        value = getattr(options, name)
        if not math.isfinite(value):
            raise ValueError(f"{name} must be finite, got {value}")

    if options.hysteresis_beats < 0:
        raise ValueError(f"hysteresis_beats must be non-negative, got {options.hysteresis_beats}")

    if options.target_density <= 0:
        raise ValueError(f"target_density must be positive, got {options.target_density}")

    if not 0.0 <= options.similarity_tolerance <= 1.0:
        raise ValueError(
            f"similarity_tolerance must be in [0, 1], got {options.similarity_tolerance}"
        )

    if not 0.0 <= options.phase_bias <= 1.0:
        raise ValueError(f"phase_bias must be in [0, 1], got {options.phase_bias}")

    if options.weight_mode not in WEIGHT_MODES:
        raise ValueError(
            f"weight_mode must be one of {WEIGHT_MODES}, got '{options.weight_mode}'"
        )

    if options.energy_window_beats <= 0:
        raise ValueError(
            f"energy_window_beats must be positive, got {options.energy_window_beats}"
        )


# =============================================================================
# EVENT ENVELOPES
# =============================================================================

@dataclass(frozen=True)
class ToSignalOptions:
    """
    Event-to-signal envelope parameters. All durations are in beats.

    Attributes:
        envelope: Envelope shape name (default 'impulse')
        attack_beats: Rise time for attack_decay/adsr (default 0.1)
        decay_beats: Fall time for attack_decay/adsr/exponential_decay (default 0.5)
        sustain_level: ADSR sustain level relative to weight (default 0.7)
        sustain_beats: ADSR sustain hold time (default 0.5)
        release_beats: ADSR release time (default 0.3)
        width_beats: Gaussian full width (default 0.25)
        easing: Easing curve for attack/decay segments (default 'linear')
        overlap_mode: 'sum' or 'max' of overlapping envelopes (default 'sum')
        group_within_beats: Collapse events closer than this many beats (default None = off)
        merge_mode: How grouped weights combine: 'sum', 'max' or 'mean' (default 'sum')
    """
    envelope: str = 'impulse'
    attack_beats: float = 0.1
    decay_beats: float = 0.5
    sustain_level: float = 0.7
    sustain_beats: float = 0.5
    release_beats: float = 0.3
    width_beats: float = 0.25
    easing: str = 'linear'
    overlap_mode: str = 'sum'
    group_within_beats: Optional[float] = None
    merge_mode: str = 'sum'

    def to_dict(self) -> Dict:
        """Convert options to dictionary for JSON export."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ToSignalOptions':
        """
        Build envelope options from a loose mapping; absent keys keep defaults.

        Raises:
            ValueError: On non-numeric values or unknown modes
        """
        data = data or {}
        defaults = cls()
        group = data.get('group_within_beats')
        options = cls(
            envelope=_mode_option(data, 'envelope', defaults.envelope),
            attack_beats=_float_option(data, 'attack_beats', defaults.attack_beats),
            decay_beats=_float_option(data, 'decay_beats', defaults.decay_beats),
            sustain_level=_float_option(data, 'sustain_level', defaults.sustain_level),
            sustain_beats=_float_option(data, 'sustain_beats', defaults.sustain_beats),
            release_beats=_float_option(data, 'release_beats', defaults.release_beats),
            width_beats=_float_option(data, 'width_beats', defaults.width_beats),
            easing=_mode_option(data, 'easing', defaults.easing),
            overlap_mode=_mode_option(data, 'overlap_mode', defaults.overlap_mode),
            group_within_beats=None if group is None else _float_option(data, 'group_within_beats', 0.0),
            merge_mode=_mode_option(data, 'merge_mode', defaults.merge_mode),
        )
        validate_to_signal_options(options)
        return options


def validate_to_signal_options(options: ToSignalOptions) -> None:
    """
    Validate envelope options.

    Raises:
        ValueError: If any parameter is invalid
    """
    if options.envelope not in ENVELOPE_SHAPES:
        raise ValueError(f"envelope must be one of {ENVELOPE_SHAPES}, got '{options.envelope}'")

    if options.easing not in EASING_FUNCTIONS:
        raise ValueError(f"easing must be one of {EASING_FUNCTIONS}, got '{options.easing}'")

    if options.overlap_mode not in OVERLAP_MODES:
        raise ValueError(
            f"overlap_mode must be one of {OVERLAP_MODES}, got '{options.overlap_mode}'"
        )

    if options.merge_mode not in MERGE_MODES:
        raise ValueError(f"merge_mode must be one of {MERGE_MODES}, got '{options.merge_mode}'")

    for name in ('attack_beats', 'decay_beats', 'sustain_beats', 'release_beats', 'width_beats'):
        value = getattr(options, name)
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"{name} must be a non-negative number, got {value}")

    if not 0.0 <= options.sustain_level <= 1.0:
        raise ValueError(f"sustain_level must be in [0, 1], got {options.sustain_level}")

    if options.group_within_beats is not None and not options.group_within_beats > 0:
        raise ValueError(
            f"group_within_beats must be positive when set, got {options.group_within_beats}"
        )


# =============================================================================
# ANALYSIS GRID
# =============================================================================

@dataclass(frozen=True)
class AnalysisConfig:
    """
    Whole-track analysis grid.

    Attributes:
        duration: Track duration in seconds
        time_step: Grid spacing in seconds (default 0.01 = 100 Hz)
    """
    duration: float
    time_step: float = 0.01

    def __post_init__(self):
        validate_analysis_config(self)

    def to_dict(self) -> Dict:
        return asdict(self)


def validate_analysis_config(config: AnalysisConfig) -> None:
    """
    Validate the analysis grid.

    Raises:
        ValueError: If duration or time step is not a positive finite number
    """
    if not math.isfinite(config.duration) or config.duration <= 0:
        raise ValueError(f"Duration must be positive, got {config.duration}")

    if not math.isfinite(config.time_step) or config.time_step <= 0:
        raise ValueError(f"Time step must be positive, got {config.time_step}")


# Default configuration instances
DEFAULT_PICK_OPTIONS = PickEventsOptions()
DEFAULT_TO_SIGNAL_OPTIONS = ToSignalOptions()

# Validate defaults on import
validate_pick_options(DEFAULT_PICK_OPTIONS)
validate_to_signal_options(DEFAULT_TO_SIGNAL_OPTIONS)
