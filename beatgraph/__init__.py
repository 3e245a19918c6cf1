"""
beatgraph - Signal Graph and Event Extraction Core

This package contains the core modules for tempo-aware signal evaluation:
- params: Frozen option dataclasses (pick, envelope, analysis) with validation
- timebase: Musical time structure, beat conversions and time grids
- inputs: Raw sampled input buffers
- nodes: Closed set of signal-graph node types
- graph: Immutable Signal values and their construction surface
- state: Identity-keyed runtime state store (filters, ring buffers, noise)
- stats: Whole-track statistics descriptors and cache
- context: Per-evaluation context bundle
- evaluate: Recursive node reducer
- generators: Oscillators and deterministic hash-based noise
- envelopes: Easing curves and event envelope shapes
- events: Event and EventStream with derived-signal constructors
- extractor: Multi-stage peak-picking pipeline
- analysis: Statistics pre-pass and pending extraction runner
- session: Long-lived playback evaluation
- debug: Probe collector side channel
- export: JSON and plot generation
- config: CLI and export tunables
- cli: Command line entry point (python -m beatgraph.cli)
"""

__version__ = "1.0.0"
