"""
Signal Node Types

The closed set of node types a Signal can wrap. Nodes are frozen and carry
no runtime state; child signals and signal-valued parameters are listed in
each class's CHILD_FIELDS so graph walks need no per-type code.

Families:
- Sources: Input, BandInput, StemInput, CustomInput, Constant, Oscillator,
  Noise, Perlin and the event-derived sources
- Arithmetic/math: BinaryOp, UnaryOp, Mix, Lerp, Clamp, Wrap, Sigmoid
- Mapping: Map, Smoothstep
- Rate/accumulation: Diff, Integrate
- Time shift: Delay, Anticipate
- Smoothing: MovingAverage, ExponentialSmooth, GaussianSmooth
- Normalisation: NormaliseGlobal, NormaliseRobust, NormaliseRange
- Gating: GateThreshold, GateHysteresis
- Debug: Probe
"""

from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Optional, Tuple


# =============================================================================
# SAMPLING CONFIGURATION
# =============================================================================

SAMPLING_STRATEGIES: Tuple[str, ...] = ('peak', 'interpolate')
SAMPLING_WINDOWS: Tuple[str, ...] = ('frame_dt', 'beats', 'seconds')


@dataclass(frozen=True)
class SamplingConfig:
    """
    How a source node reads its raw buffer.

    Attributes:
        strategy: 'peak' (largest |value| in a trailing window) or 'interpolate'
        window: 'frame_dt' (current dt), 'beats' or 'seconds'
        window_size: Window length for 'beats' / 'seconds'
    """
    strategy: str = 'peak'
    window: str = 'frame_dt'
    window_size: float = 0.0

    def __post_init__(self):
        if self.strategy not in SAMPLING_STRATEGIES:
            raise ValueError(f"strategy must be one of {SAMPLING_STRATEGIES}, got '{self.strategy}'")
        if self.window not in SAMPLING_WINDOWS:
            raise ValueError(f"window must be one of {SAMPLING_WINDOWS}, got '{self.window}'")

    def is_default(self) -> bool:
        return self == DEFAULT_SAMPLING


DEFAULT_SAMPLING = SamplingConfig()
INTERPOLATE_SAMPLING = SamplingConfig(strategy='interpolate')


# =============================================================================
# BASE
# =============================================================================

@dataclass(frozen=True, eq=False)
class SignalNode:
    """Base class; CHILD_FIELDS names the attributes that hold Signals."""

    CHILD_FIELDS = ()

    def children(self) -> Iterator[Any]:
        for name in self.CHILD_FIELDS:
            yield getattr(self, name)


# =============================================================================
# SOURCES
# =============================================================================

@dataclass(frozen=True, eq=False)
class Input(SignalNode):
    name: str
    sampling: SamplingConfig = DEFAULT_SAMPLING


@dataclass(frozen=True, eq=False)
class BandInput(SignalNode):
    band_key: str
    feature: str
    sampling: SamplingConfig = DEFAULT_SAMPLING


@dataclass(frozen=True, eq=False)
class StemInput(SignalNode):
    stem_id: str
    feature: str
    sampling: SamplingConfig = DEFAULT_SAMPLING


@dataclass(frozen=True, eq=False)
class CustomInput(SignalNode):
    signal_id: str
    sampling: SamplingConfig = DEFAULT_SAMPLING


SAMPLED_SOURCES = (Input, BandInput, StemInput, CustomInput)


def with_sampling(node: SignalNode, sampling: SamplingConfig) -> SignalNode:
    """Copy of a sampled source with new sampling; other nodes are returned as-is."""
    if isinstance(node, SAMPLED_SOURCES):
        return replace(node, sampling=sampling)
    return node


@dataclass(frozen=True, eq=False)
class Constant(SignalNode):
    value: float


OSCILLATOR_SHAPES: Tuple[str, ...] = ('sin', 'square', 'triangle', 'saw')
NOISE_COLORS: Tuple[str, ...] = ('white', 'pink')


@dataclass(frozen=True, eq=False)
class Oscillator(SignalNode):
    """Periodic generator; frequency is in cycles per beat."""
    shape: str
    frequency: float = 1.0
    phase: float = 0.0
    duty: float = 0.5


@dataclass(frozen=True, eq=False)
class Noise(SignalNode):
    color: str = 'white'
    seed: int = 0


@dataclass(frozen=True, eq=False)
class Perlin(SignalNode):
    scale_beats: float = 1.0
    seed: int = 0


# =============================================================================
# EVENT-DERIVED SOURCES
# =============================================================================

EVENT_UNITS: Tuple[str, ...] = ('seconds', 'beats', 'frames')
EVENT_DIRECTIONS: Tuple[str, ...] = ('prev', 'next')


@dataclass(frozen=True, eq=False)
class EventSource(SignalNode):
    """Base for sources reading a time-sorted tuple of events."""
    events: Tuple[Any, ...]
    times: Tuple[float, ...] = field(init=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'times', tuple(e.time for e in self.events))


@dataclass(frozen=True, eq=False)
class EventImpulse(EventSource):
    pass


@dataclass(frozen=True, eq=False)
class EventEnvelope(EventSource):
    options: Any = None


@dataclass(frozen=True, eq=False)
class EventDistance(EventSource):
    unit: str = 'beats'
    direction: str = 'prev'


@dataclass(frozen=True, eq=False)
class EventWindowCount(EventSource):
    """Events in a trailing/leading window; density divides by the window."""
    CHILD_FIELDS = ('window',)
    window: Any = None
    unit: str = 'beats'
    direction: str = 'prev'
    density: bool = False


@dataclass(frozen=True, eq=False)
class EventPhase(EventSource):
    pass


# =============================================================================
# ARITHMETIC AND MATH
# =============================================================================

BINARY_OPS: Tuple[str, ...] = (
    'add', 'sub', 'mul', 'div', 'scale', 'offset', 'pow', 'mod', 'rem', 'log', 'atan2'
)

UNARY_OPS: Tuple[str, ...] = (
    'neg', 'floor', 'ceil', 'abs', 'round', 'sign',
    'sin', 'cos', 'tan', 'asin', 'acos', 'atan',
    'sqrt', 'exp', 'ln', 'fract',
)


@dataclass(frozen=True, eq=False)
class BinaryOp(SignalNode):
    op: str
    a: Any
    b: Any
    CHILD_FIELDS = ('a', 'b')


@dataclass(frozen=True, eq=False)
class UnaryOp(SignalNode):
    op: str
    source: Any
    CHILD_FIELDS = ('source',)


@dataclass(frozen=True, eq=False)
class Mix(SignalNode):
    a: Any
    b: Any
    weight: Any
    CHILD_FIELDS = ('a', 'b', 'weight')


@dataclass(frozen=True, eq=False)
class Lerp(SignalNode):
    a: Any
    b: Any
    t: Any
    CHILD_FIELDS = ('a', 'b', 't')


@dataclass(frozen=True, eq=False)
class Clamp(SignalNode):
    source: Any
    min: Any
    max: Any
    CHILD_FIELDS = ('source', 'min', 'max')


@dataclass(frozen=True, eq=False)
class Wrap(SignalNode):
    source: Any
    min: Any
    max: Any
    CHILD_FIELDS = ('source', 'min', 'max')


@dataclass(frozen=True, eq=False)
class Sigmoid(SignalNode):
    source: Any
    steepness: Any
    CHILD_FIELDS = ('source', 'steepness')


# =============================================================================
# MAPPING
# =============================================================================

@dataclass(frozen=True, eq=False)
class Map(SignalNode):
    source: Any
    in_min: Any
    in_max: Any
    out_min: Any
    out_max: Any
    CHILD_FIELDS = ('source', 'in_min', 'in_max', 'out_min', 'out_max')


@dataclass(frozen=True, eq=False)
class Smoothstep(SignalNode):
    source: Any
    edge0: Any
    edge1: Any
    CHILD_FIELDS = ('source', 'edge0', 'edge1')


# =============================================================================
# STATEFUL: RATE, TIME SHIFT, SMOOTHING, GATING
# =============================================================================

@dataclass(frozen=True, eq=False)
class Diff(SignalNode):
    source: Any
    CHILD_FIELDS = ('source',)


@dataclass(frozen=True, eq=False)
class Integrate(SignalNode):
    source: Any
    decay_beats: Any
    CHILD_FIELDS = ('source', 'decay_beats')


@dataclass(frozen=True, eq=False)
class Delay(SignalNode):
    source: Any
    beats: Any
    CHILD_FIELDS = ('source', 'beats')


@dataclass(frozen=True, eq=False)
class Anticipate(SignalNode):
    source: Any
    beats: Any
    CHILD_FIELDS = ('source', 'beats')


@dataclass(frozen=True, eq=False)
class MovingAverage(SignalNode):
    source: Any
    window_beats: Any
    CHILD_FIELDS = ('source', 'window_beats')


@dataclass(frozen=True, eq=False)
class ExponentialSmooth(SignalNode):
    source: Any
    attack_beats: Any
    release_beats: Any
    CHILD_FIELDS = ('source', 'attack_beats', 'release_beats')


@dataclass(frozen=True, eq=False)
class GaussianSmooth(SignalNode):
    source: Any
    sigma_beats: Any
    CHILD_FIELDS = ('source', 'sigma_beats')


@dataclass(frozen=True, eq=False)
class NormaliseGlobal(SignalNode):
    source: Any
    CHILD_FIELDS = ('source',)


@dataclass(frozen=True, eq=False)
class NormaliseRobust(SignalNode):
    source: Any
    CHILD_FIELDS = ('source',)


@dataclass(frozen=True, eq=False)
class NormaliseRange(SignalNode):
    source: Any
    min: Any
    max: Any
    CHILD_FIELDS = ('source', 'min', 'max')


@dataclass(frozen=True, eq=False)
class GateThreshold(SignalNode):
    source: Any
    threshold: Any
    CHILD_FIELDS = ('source', 'threshold')


@dataclass(frozen=True, eq=False)
class GateHysteresis(SignalNode):
    source: Any
    on_threshold: Any
    off_threshold: Any
    CHILD_FIELDS = ('source', 'on_threshold', 'off_threshold')


@dataclass(frozen=True, eq=False)
class Probe(SignalNode):
    source: Any
    name: str
    CHILD_FIELDS = ('source',)


# Nodes that wrap a single source without changing where its samples come
# from; Anticipate and GaussianSmooth look through them to a raw input.
TRANSPARENT_WRAPPERS = (
    MovingAverage, ExponentialSmooth, GaussianSmooth,
    NormaliseGlobal, NormaliseRobust, NormaliseRange,
    GateThreshold, GateHysteresis, Sigmoid, Probe,
)

STATISTICS_NODES = (NormaliseGlobal, NormaliseRobust)


def find_root_source(signal) -> Optional[Any]:
    """
    Follow transparent wrappers down to a sampled source.

    Returns:
        The sampled source node, or None if the chain reaches anything else
    """
    node = signal.node
    while True:
        if isinstance(node, TRANSPARENT_WRAPPERS):
            node = node.source.node
        elif isinstance(node, BinaryOp) and node.op == 'scale':
            node = node.a.node
        else:
            break
    if isinstance(node, SAMPLED_SOURCES):
        return node
    return None
