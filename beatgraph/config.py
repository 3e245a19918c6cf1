"""
beatgraph - Configuration

Tunable defaults for the command line tool and the export layer, with
rationale. Node and extraction defaults live beside their parameter
dataclasses in beatgraph/params.py.
"""

from typing import Tuple

# =============================================================================
# ANALYSIS GRID
# =============================================================================

# Analysis grid spacing (seconds)
# Why: 10ms (100 Hz) resolves onsets finer than a 32nd note at 180 BPM
#      while keeping a 10 minute track under 60k grid samples
DEFAULT_TIME_STEP_SEC: float = 0.01

# Maximum track duration accepted by the CLI (seconds)
# Why: Every extraction walks the full grid once per request; 10 minutes
#      bounds the pre-pass plus extraction cost for a single run
MAX_TRACK_DURATION_SEC: float = 600.0

# Tempo assumed when no --bpm is given
# Why: 120 BPM is the musical-time fallback used during evaluation too,
#      so beat-denominated windows behave identically with or without a map
DEFAULT_BPM: float = 120.0

# =============================================================================
# CLI PIPELINE
# =============================================================================

# Name of the input buffer loaded from the command line
# Why: Feature files are usually an onset or energy envelope
DEFAULT_FEATURE_NAME: str = 'energy'

# Exponential smoothing applied before picking (beats)
# Why: Fast attack keeps onsets sharp, slower release suppresses the
#      ripple after each hit that would otherwise yield double picks
DEFAULT_SMOOTH_ATTACK_BEATS: float = 0.1
DEFAULT_SMOOTH_RELEASE_BEATS: float = 0.5

# =============================================================================
# DEMO TRACK
# =============================================================================

# Synthetic pulse track used by --demo
# Why: 16 seconds at 120 BPM gives 8 bars, enough for the density and
#      phase-bias stages to have something to choose between
DEMO_DURATION_SEC: float = 16.0
DEMO_BPM: float = 120.0
DEMO_SAMPLE_RATE: float = 100.0

# Accent pattern repeated every bar (one weight per beat)
# Why: Downbeat accent with a weaker backbeat exercises weight assignment
DEMO_ACCENTS: Tuple[float, ...] = (1.0, 0.4, 0.7, 0.4)

# =============================================================================
# OUTPUT FORMAT
# =============================================================================

# Schema version for JSON outputs
# Why: Bump whenever field names or nesting change
SCHEMA_VERSION: str = "1.0.0"

# JSON indentation level
# Why: Human-readable; event files stay small enough that size is not a concern
JSON_INDENT: int = 2

# Plot DPI for saved figures
# Why: 150 DPI is sharp on screen without multi-megabyte files
PLOT_DPI: int = 150

# Figure size in inches (width, height)
# Why: Wide aspect ratio suits time-series data
PLOT_FIGSIZE: Tuple[int, int] = (14, 8)


def validate_config() -> bool:
    """
    Validate configuration parameters for consistency.

    Returns:
        True if config is valid

    Raises:
        ValueError: If configuration is invalid
    """
    if DEFAULT_TIME_STEP_SEC <= 0:
        raise ValueError("DEFAULT_TIME_STEP_SEC must be positive")

    if MAX_TRACK_DURATION_SEC <= 0:
        raise ValueError("MAX_TRACK_DURATION_SEC must be positive")

    if DEFAULT_BPM <= 0 or DEMO_BPM <= 0:
        raise ValueError("DEFAULT_BPM and DEMO_BPM must be positive")

    if DEFAULT_SMOOTH_ATTACK_BEATS < 0 or DEFAULT_SMOOTH_RELEASE_BEATS < 0:
        raise ValueError("Smoothing times must be non-negative")

    if not (0 < DEMO_DURATION_SEC <= MAX_TRACK_DURATION_SEC):
        raise ValueError("DEMO_DURATION_SEC must be in (0, MAX_TRACK_DURATION_SEC]")

    if DEMO_SAMPLE_RATE <= 0:
        raise ValueError("DEMO_SAMPLE_RATE must be positive")

    if not DEMO_ACCENTS or min(DEMO_ACCENTS) < 0:
        raise ValueError("DEMO_ACCENTS must be a non-empty list of non-negative weights")

    return True


# Validate on import
validate_config()
