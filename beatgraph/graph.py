"""
Signal Graph Module - Immutable Signals and Their Construction Surface

A Signal is an identity plus a frozen node. Combinators never modify a
Signal; they wrap it in a new node under a fresh identity, so graphs are
shared-subexpression DAGs that cannot contain cycles.

USAGE:
    from beatgraph.graph import Signal, Gen

    energy = Signal.input('energy')
    curve = energy.smooth.exponential(0.1, 0.5).normalise.robust()
    pulse = curve * Gen.sin(1.0) + 0.5

    print(curve.describe())
    # Input("energy").Smooth.Exponential(0.1,0.5).Normalise.Robust()

DESIGN CONSTRAINTS:
- Identity comes from a process-wide, lock-protected monotonic counter
- Runtime state and statistics are keyed by identity, never by structure
- Literal parameters are wrapped as Constant signals
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Set, Union
import threading

from beatgraph import nodes
from beatgraph.nodes import SamplingConfig


class IdentityCounter:
    """Thread-safe monotonically increasing id generator."""

    def __init__(self):
        self._lock = threading.Lock()
        self._next = 0

    def next(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
        return value


_SIGNAL_IDS = IdentityCounter()

Param = Union['Signal', float, int]


def _as_signal(value: Param) -> 'Signal':
    if isinstance(value, Signal):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Expected a Signal or a number, got {type(value).__name__}")
    return Signal(nodes.Constant(float(value)))


@dataclass(frozen=True, eq=False)
class Signal:
    """
    Immutable handle on a signal-graph node.

    Attributes:
        node: The frozen node this signal evaluates
        id: Unique identity, assigned at construction
    """
    node: nodes.SignalNode
    id: int = field(default_factory=_SIGNAL_IDS.next, init=False)

    def __repr__(self) -> str:
        return f"Signal(id={self.id}, {self.describe()})"

    # =========================================================================
    # SOURCES
    # =========================================================================

    @classmethod
    def input(cls, name: str) -> 'Signal':
        """Named raw input (also accepts built-ins like 'time' or 'time.beats')."""
        return cls(nodes.Input(name))

    @classmethod
    def band(cls, band_key: str, feature: str) -> 'Signal':
        return cls(nodes.BandInput(band_key, feature))

    @classmethod
    def stem(cls, stem_id: str, feature: str) -> 'Signal':
        return cls(nodes.StemInput(stem_id, feature))

    @classmethod
    def custom(cls, signal_id: str) -> 'Signal':
        return cls(nodes.CustomInput(signal_id))

    @classmethod
    def constant(cls, value: float) -> 'Signal':
        return cls(nodes.Constant(float(value)))

    # =========================================================================
    # SAMPLING OVERRIDES
    # =========================================================================

    def _resampled(self, sampling: SamplingConfig) -> 'Signal':
        if not isinstance(self.node, nodes.SAMPLED_SOURCES):
            return self
        return Signal(nodes.with_sampling(self.node, sampling))

    def interpolate(self) -> 'Signal':
        return self._resampled(nodes.INTERPOLATE_SAMPLING)

    def peak(self) -> 'Signal':
        return self._resampled(nodes.DEFAULT_SAMPLING)

    def peak_window_beats(self, beats: float) -> 'Signal':
        return self._resampled(SamplingConfig('peak', 'beats', float(beats)))

    def peak_window_seconds(self, seconds: float) -> 'Signal':
        return self._resampled(SamplingConfig('peak', 'seconds', float(seconds)))

    # =========================================================================
    # ARITHMETIC
    # =========================================================================

    def _binary(self, op: str, other: Param) -> 'Signal':
        return Signal(nodes.BinaryOp(op, self, _as_signal(other)))

    def _unary(self, op: str) -> 'Signal':
        return Signal(nodes.UnaryOp(op, self))

    def add(self, other: Param) -> 'Signal':
        return self._binary('add', other)

    def sub(self, other: Param) -> 'Signal':
        return self._binary('sub', other)

    def mul(self, other: Param) -> 'Signal':
        return self._binary('mul', other)

    def div(self, other: Param) -> 'Signal':
        """Division; a denominator with |d| < 1e-10 yields 0."""
        return self._binary('div', other)

    def scale(self, factor: Param) -> 'Signal':
        return self._binary('scale', factor)

    def offset(self, amount: Param) -> 'Signal':
        return self._binary('offset', amount)

    def pow(self, exponent: Param) -> 'Signal':
        return self._binary('pow', exponent)

    def mod(self, divisor: Param) -> 'Signal':
        """Euclidean modulo, never negative."""
        return self._binary('mod', divisor)

    def rem(self, divisor: Param) -> 'Signal':
        """Remainder carrying the sign of the dividend."""
        return self._binary('rem', divisor)

    def log(self, base: Param) -> 'Signal':
        return self._binary('log', base)

    def atan2(self, x: Param) -> 'Signal':
        """atan2(self, x)."""
        return self._binary('atan2', x)

    def mix(self, other: Param, weight: Param) -> 'Signal':
        return Signal(nodes.Mix(self, _as_signal(other), _as_signal(weight)))

    def lerp(self, other: Param, t: Param) -> 'Signal':
        return Signal(nodes.Lerp(self, _as_signal(other), _as_signal(t)))

    def clamp(self, low: Param, high: Param) -> 'Signal':
        return Signal(nodes.Clamp(self, _as_signal(low), _as_signal(high)))

    def wrap(self, low: Param, high: Param) -> 'Signal':
        return Signal(nodes.Wrap(self, _as_signal(low), _as_signal(high)))

    def sigmoid(self, steepness: Param = 10.0) -> 'Signal':
        """Logistic curve centred at 0.5; steepness 0 passes the value through."""
        return Signal(nodes.Sigmoid(self, _as_signal(steepness)))

    def neg(self) -> 'Signal':
        return self._unary('neg')

    def floor(self) -> 'Signal':
        return self._unary('floor')

    def ceil(self) -> 'Signal':
        return self._unary('ceil')

    def abs(self) -> 'Signal':
        return self._unary('abs')

    def round(self) -> 'Signal':
        return self._unary('round')

    def sign(self) -> 'Signal':
        return self._unary('sign')

    def sin(self) -> 'Signal':
        return self._unary('sin')

    def cos(self) -> 'Signal':
        return self._unary('cos')

    def tan(self) -> 'Signal':
        return self._unary('tan')

    def asin(self) -> 'Signal':
        return self._unary('asin')

    def acos(self) -> 'Signal':
        return self._unary('acos')

    def atan(self) -> 'Signal':
        return self._unary('atan')

    def sqrt(self) -> 'Signal':
        return self._unary('sqrt')

    def exp(self) -> 'Signal':
        return self._unary('exp')

    def ln(self) -> 'Signal':
        return self._unary('ln')

    def fract(self) -> 'Signal':
        return self._unary('fract')

    def __add__(self, other: Param) -> 'Signal':
        return self.add(other)

    def __radd__(self, other: Param) -> 'Signal':
        return _as_signal(other).add(self)

    def __sub__(self, other: Param) -> 'Signal':
        return self.sub(other)

    def __rsub__(self, other: Param) -> 'Signal':
        return _as_signal(other).sub(self)

    def __mul__(self, other: Param) -> 'Signal':
        return self.mul(other)

    def __rmul__(self, other: Param) -> 'Signal':
        return _as_signal(other).mul(self)

    def __truediv__(self, other: Param) -> 'Signal':
        return self.div(other)

    def __rtruediv__(self, other: Param) -> 'Signal':
        return _as_signal(other).div(self)

    def __neg__(self) -> 'Signal':
        return self.neg()

    # =========================================================================
    # MAPPING
    # =========================================================================

    def map(self, in_min: Param, in_max: Param, out_min: Param, out_max: Param) -> 'Signal':
        return Signal(nodes.Map(
            self, _as_signal(in_min), _as_signal(in_max),
            _as_signal(out_min), _as_signal(out_max)
        ))

    def smoothstep(self, edge0: Param, edge1: Param) -> 'Signal':
        return Signal(nodes.Smoothstep(self, _as_signal(edge0), _as_signal(edge1)))

    # =========================================================================
    # STATEFUL TRANSFORMS
    # =========================================================================

    def diff(self) -> 'Signal':
        return Signal(nodes.Diff(self))

    def integrate(self, decay_beats: Param = 0.0) -> 'Signal':
        return Signal(nodes.Integrate(self, _as_signal(decay_beats)))

    def delay(self, beats: Param) -> 'Signal':
        return Signal(nodes.Delay(self, _as_signal(beats)))

    def anticipate(self, beats: Param) -> 'Signal':
        return Signal(nodes.Anticipate(self, _as_signal(beats)))

    def probe(self, name: str) -> 'Signal':
        return Signal(nodes.Probe(self, name))

    @property
    def smooth(self) -> 'SmoothBuilder':
        return SmoothBuilder(self)

    @property
    def normalise(self) -> 'NormaliseBuilder':
        return NormaliseBuilder(self)

    @property
    def gate(self) -> 'GateBuilder':
        return GateBuilder(self)

    @property
    def pick(self) -> 'PickBuilder':
        return PickBuilder(self)

    # =========================================================================
    # EVALUATION AND INTROSPECTION
    # =========================================================================

    def evaluate(self, ctx) -> float:
        """Reduce this signal to a value for the context's current time."""
        from beatgraph.evaluate import evaluate_signal
        return evaluate_signal(self, ctx)

    def children(self) -> Iterator['Signal']:
        return self.node.children()

    def walk(self) -> Iterator['Signal']:
        """Depth-first, children before parents, each identity once."""
        seen: Set[int] = set()
        stack = [(self, False)]
        while stack:
            signal, expanded = stack.pop()
            if expanded:
                yield signal
                continue
            if signal.id in seen:
                continue
            seen.add(signal.id)
            stack.append((signal, True))
            for child in reversed(list(signal.children())):
                if child.id not in seen:
                    stack.append((child, False))

    def collect_normalise_sources(self) -> List['Signal']:
        """
        Sub-signals feeding Normalise.Global / Normalise.Robust nodes.

        Inner-most sources come first so a pre-pass can fill the cache in
        dependency order. Each identity appears once; Range is stats-free
        and is not listed.
        """
        sources: List[Signal] = []
        seen: Set[int] = set()
        for signal in self.walk():
            if isinstance(signal.node, nodes.STATISTICS_NODES):
                source = signal.node.source
                if source.id not in seen:
                    seen.add(source.id)
                    sources.append(source)
        return sources

    def requires_statistics(self) -> bool:
        return any(isinstance(s.node, nodes.STATISTICS_NODES) for s in self.walk())

    def describe(self) -> str:
        return describe(self)


# =============================================================================
# BUILDERS
# =============================================================================

class SmoothBuilder:
    def __init__(self, signal: Signal):
        self.signal = signal

    def moving_average(self, window_beats: Param) -> Signal:
        return Signal(nodes.MovingAverage(self.signal, _as_signal(window_beats)))

    def exponential(self, attack_beats: Param, release_beats: Param) -> Signal:
        return Signal(nodes.ExponentialSmooth(
            self.signal, _as_signal(attack_beats), _as_signal(release_beats)
        ))

    def gaussian(self, sigma_beats: Param) -> Signal:
        return Signal(nodes.GaussianSmooth(self.signal, _as_signal(sigma_beats)))


class NormaliseBuilder:
    def __init__(self, signal: Signal):
        self.signal = signal

    def global_(self) -> Signal:
        """Whole-track min/max normalisation (needs the statistics pre-pass)."""
        return Signal(nodes.NormaliseGlobal(self.signal))

    def robust(self) -> Signal:
        """Whole-track 5th/95th percentile normalisation (needs the pre-pass)."""
        return Signal(nodes.NormaliseRobust(self.signal))

    def range(self, low: Param, high: Param) -> Signal:
        return Signal(nodes.NormaliseRange(self.signal, _as_signal(low), _as_signal(high)))


class GateBuilder:
    def __init__(self, signal: Signal):
        self.signal = signal

    def threshold(self, threshold: Param) -> Signal:
        return Signal(nodes.GateThreshold(self.signal, _as_signal(threshold)))

    def hysteresis(self, on_threshold: Param, off_threshold: Param) -> Signal:
        return Signal(nodes.GateHysteresis(
            self.signal, _as_signal(on_threshold), _as_signal(off_threshold)
        ))


class PickBuilder:
    def __init__(self, signal: Signal):
        self.signal = signal

    def events(self, queue, options=None):
        """
        Request whole-track event extraction for this signal.

        Extraction cannot run per frame, so the request is queued and the
        returned stream is whatever the queue holds under the request's
        name: empty until the queue has been run.

        Parameters:
            queue: analysis.ExtractionQueue collecting requests
            options: PickEventsOptions or a mapping parsed by from_dict

        Returns:
            EventStream stored for this request (empty before extraction)
        """
        request = queue.request(self.signal, options)
        return queue.get(request.name)


# =============================================================================
# GENERATORS
# =============================================================================

class Gen:
    """Beat-synchronised generators and deterministic noise."""

    @staticmethod
    def sin(frequency: float = 1.0, phase: float = 0.0) -> Signal:
        return Signal(nodes.Oscillator('sin', float(frequency), float(phase)))

    @staticmethod
    def square(frequency: float = 1.0, phase: float = 0.0, duty: float = 0.5) -> Signal:
        return Signal(nodes.Oscillator('square', float(frequency), float(phase), float(duty)))

    @staticmethod
    def triangle(frequency: float = 1.0, phase: float = 0.0) -> Signal:
        return Signal(nodes.Oscillator('triangle', float(frequency), float(phase)))

    @staticmethod
    def saw(frequency: float = 1.0, phase: float = 0.0) -> Signal:
        return Signal(nodes.Oscillator('saw', float(frequency), float(phase)))

    @staticmethod
    def white_noise(seed: int = 0) -> Signal:
        return Signal(nodes.Noise('white', int(seed)))

    @staticmethod
    def pink_noise(seed: int = 0) -> Signal:
        return Signal(nodes.Noise('pink', int(seed)))

    @staticmethod
    def perlin(scale_beats: float = 1.0, seed: int = 0) -> Signal:
        return Signal(nodes.Perlin(float(scale_beats), int(seed)))


# =============================================================================
# DESCRIBE
# =============================================================================

_UNIT_NAMES = {'seconds': 'Seconds', 'beats': 'Beats', 'frames': 'Frames'}


def _num(value: float) -> str:
    return f"{value:g}"


def _param(signal: Signal) -> str:
    if isinstance(signal.node, nodes.Constant):
        return _num(signal.node.value)
    return describe(signal)


def _params(*signals: Signal) -> str:
    return ','.join(_param(s) for s in signals)


def _sampling_suffix(sampling: SamplingConfig) -> str:
    if sampling.strategy == 'interpolate':
        return '.Interpolate()'
    if sampling.window == 'beats':
        return f'.PeakWindowBeats({_num(sampling.window_size)})'
    if sampling.window == 'seconds':
        return f'.PeakWindowSeconds({_num(sampling.window_size)})'
    return ''


def describe(signal: Signal) -> str:
    """
    Human-readable construction chain of a graph.

    Used for diagnostics and UI only; the output is not meant to be parsed.
    """
    node = signal.node

    if isinstance(node, nodes.Input):
        return f'Input("{node.name}")' + _sampling_suffix(node.sampling)
    if isinstance(node, nodes.BandInput):
        return f'Band("{node.band_key}","{node.feature}")' + _sampling_suffix(node.sampling)
    if isinstance(node, nodes.StemInput):
        return f'Stem("{node.stem_id}","{node.feature}")' + _sampling_suffix(node.sampling)
    if isinstance(node, nodes.CustomInput):
        return f'Custom("{node.signal_id}")' + _sampling_suffix(node.sampling)
    if isinstance(node, nodes.Constant):
        return f'Constant({_num(node.value)})'
    if isinstance(node, nodes.Oscillator):
        args = [_num(node.frequency), _num(node.phase)]
        if node.shape == 'square':
            args.append(_num(node.duty))
        return f'Gen.{node.shape.capitalize()}({",".join(args)})'
    if isinstance(node, nodes.Noise):
        return f'Gen.{node.color.capitalize()}Noise({node.seed})'
    if isinstance(node, nodes.Perlin):
        return f'Gen.Perlin({_num(node.scale_beats)},{node.seed})'

    if isinstance(node, nodes.EventSource):
        prefix = f'Events({len(node.events)})'
        if isinstance(node, nodes.EventImpulse):
            return f'{prefix}.Impulse()'
        if isinstance(node, nodes.EventEnvelope):
            return f'{prefix}.ToSignal("{node.options.envelope}")'
        if isinstance(node, nodes.EventDistance):
            relation = 'FromPrev' if node.direction == 'prev' else 'ToNext'
            return f'{prefix}.{_UNIT_NAMES[node.unit]}{relation}()'
        if isinstance(node, nodes.EventWindowCount):
            kind = 'Density' if node.density else 'Count'
            direction = node.direction.capitalize()
            return f'{prefix}.{kind}{direction}{_UNIT_NAMES[node.unit]}({_param(node.window)})'
        if isinstance(node, nodes.EventPhase):
            return f'{prefix}.BeatPhaseBetween()'

    if isinstance(node, nodes.BinaryOp):
        return f'{describe(node.a)}.{node.op.capitalize()}({_param(node.b)})'
    if isinstance(node, nodes.UnaryOp):
        return f'{describe(node.source)}.{node.op.capitalize()}()'
    if isinstance(node, nodes.Mix):
        return f'{describe(node.a)}.Mix({_params(node.b, node.weight)})'
    if isinstance(node, nodes.Lerp):
        return f'{describe(node.a)}.Lerp({_params(node.b, node.t)})'
    if isinstance(node, nodes.Clamp):
        return f'{describe(node.source)}.Clamp({_params(node.min, node.max)})'
    if isinstance(node, nodes.Wrap):
        return f'{describe(node.source)}.Wrap({_params(node.min, node.max)})'
    if isinstance(node, nodes.Sigmoid):
        return f'{describe(node.source)}.Sigmoid({_param(node.steepness)})'
    if isinstance(node, nodes.Map):
        args = _params(node.in_min, node.in_max, node.out_min, node.out_max)
        return f'{describe(node.source)}.Map({args})'
    if isinstance(node, nodes.Smoothstep):
        return f'{describe(node.source)}.Smoothstep({_params(node.edge0, node.edge1)})'

    if isinstance(node, nodes.Diff):
        return f'{describe(node.source)}.Diff()'
    if isinstance(node, nodes.Integrate):
        return f'{describe(node.source)}.Integrate({_param(node.decay_beats)})'
    if isinstance(node, nodes.Delay):
        return f'{describe(node.source)}.Delay({_param(node.beats)})'
    if isinstance(node, nodes.Anticipate):
        return f'{describe(node.source)}.Anticipate({_param(node.beats)})'
    if isinstance(node, nodes.MovingAverage):
        return f'{describe(node.source)}.Smooth.MovingAverage({_param(node.window_beats)})'
    if isinstance(node, nodes.ExponentialSmooth):
        args = _params(node.attack_beats, node.release_beats)
        return f'{describe(node.source)}.Smooth.Exponential({args})'
    if isinstance(node, nodes.GaussianSmooth):
        return f'{describe(node.source)}.Smooth.Gaussian({_param(node.sigma_beats)})'
    if isinstance(node, nodes.NormaliseGlobal):
        return f'{describe(node.source)}.Normalise.Global()'
    if isinstance(node, nodes.NormaliseRobust):
        return f'{describe(node.source)}.Normalise.Robust()'
    if isinstance(node, nodes.NormaliseRange):
        return f'{describe(node.source)}.Normalise.Range({_params(node.min, node.max)})'
    if isinstance(node, nodes.GateThreshold):
        return f'{describe(node.source)}.Gate.Threshold({_param(node.threshold)})'
    if isinstance(node, nodes.GateHysteresis):
        args = _params(node.on_threshold, node.off_threshold)
        return f'{describe(node.source)}.Gate.Hysteresis({args})'
    if isinstance(node, nodes.Probe):
        return f'{describe(node.source)}.Probe("{node.name}")'

    raise TypeError(f"Unknown signal node type: {type(node).__name__}")
