"""
Evaluation Module - Recursive Signal Reducer

Reduces a Signal to a single float32 value for the time held by an
EvalContext. One function dispatches over the closed node set; stateful
nodes read and write ctx.state under their own signal id.

CONTRACT:
- Never raises on data: missing buffers, statistics or tempo degrade to the
  documented fallback plus a one-time SignalWarning
- Math domain errors resolve to NaN / inf / 0 as documented per node
- A signal is reduced at most once per context (ctx.frame_cache), so a
  shared subexpression advances its state once per frame
- Values are rounded to float32 after every node
"""

from typing import Optional
import bisect
import math

import numpy as np

from beatgraph import generators, nodes
from beatgraph.context import EvalContext, FLOAT32_MAX
from beatgraph.envelopes import envelope_value, combine_contributions
from beatgraph.inputs import InputSignal
from beatgraph.state import MAX_RING_CAPACITY


# Denominators below this are treated as zero
DIV_EPSILON: float = 1e-10

# Floor applied to logarithm arguments
LOG_FLOOR: float = 1e-10

# Smallest exponential-smoothing time constant (seconds)
MIN_SMOOTH_TAU_SEC: float = 0.001

GAUSSIAN_TAPS: int = 7


def _to_f32(value: float) -> float:
    if math.isfinite(value) and abs(value) > FLOAT32_MAX:
        return math.copysign(math.inf, value)
    return float(np.float32(value))


def evaluate_signal(signal, ctx: EvalContext) -> float:
    """
    Evaluate signal at ctx.time.

    Parameters:
        signal: Signal to reduce
        ctx: Evaluation context (time, dt, buffers, statistics, state)

    Returns:
        float32-rounded value
    """
    cached = ctx.frame_cache.get(signal.id)
    if cached is not None:
        return cached
    value = _to_f32(_reduce(signal, ctx))
    ctx.frame_cache[signal.id] = value
    return value


# =============================================================================
# SOURCES
# =============================================================================

def _builtin_time_input(name: str, ctx: EvalContext) -> Optional[float]:
    if name in ('time', 'time.seconds'):
        return ctx.time
    if name in ('dt', 'time.dt'):
        return ctx.dt
    if name == 'time.frames':
        return float(ctx.frame_count)
    if name == 'time.beats':
        return ctx.beat_position()
    if name == 'time.beatIndex':
        return float(math.floor(ctx.beat_position()))
    if name == 'time.phase':
        return ctx.beat_phase()
    if name == 'time.bpm':
        return ctx.current_bpm()
    return None


def _lookup_buffer(node, ctx: EvalContext) -> Optional[InputSignal]:
    inputs = ctx.inputs
    if isinstance(node, nodes.Input):
        return inputs.get(node.name)
    if isinstance(node, nodes.BandInput):
        return inputs.get_band(node.band_key, node.feature)
    if isinstance(node, nodes.StemInput):
        return inputs.get_stem(node.stem_id, node.feature)
    if isinstance(node, nodes.CustomInput):
        return inputs.get_custom(node.signal_id)
    return None


def _missing_buffer_message(node) -> str:
    if isinstance(node, nodes.Input):
        label = f'inputs["{node.name}"]'
    elif isinstance(node, nodes.BandInput):
        label = f'inputs.bands["{node.band_key}"].{node.feature}'
    elif isinstance(node, nodes.StemInput):
        label = f'inputs.stems["{node.stem_id}"].{node.feature}'
    else:
        label = f'inputs.custom["{node.signal_id}"]'
    return f"Input signal not found: {label} - returning 0.0"


def _sample_buffer(buffer: InputSignal, sampling: nodes.SamplingConfig, ctx: EvalContext) -> float:
    if sampling.strategy == 'interpolate':
        return buffer.sample(ctx.time)

    if sampling.window == 'beats':
        window = ctx.beats_to_seconds(sampling.window_size)
    elif sampling.window == 'seconds':
        window = sampling.window_size
    else:
        window = ctx.dt
    return buffer.sample_window(ctx.time, window)


def _evaluate_sampled_source(signal, ctx: EvalContext) -> float:
    node = signal.node
    if isinstance(node, nodes.Input):
        builtin = _builtin_time_input(node.name, ctx)
        if builtin is not None:
            return builtin

    buffer = _lookup_buffer(node, ctx)
    if buffer is None:
        ctx.state.warn_once(('missing_input', signal.id), _missing_buffer_message(node))
        return 0.0
    return _sample_buffer(buffer, node.sampling, ctx)


def _evaluate_noise(signal, ctx: EvalContext) -> float:
    node = signal.node
    white = generators.white_noise(ctx.time, node.seed)
    if node.color == 'pink':
        return ctx.state.pink(signal.id).next(white)
    return white


# =============================================================================
# EVENT-DERIVED SOURCES
# =============================================================================

def _evaluate_impulse(node: nodes.EventImpulse, ctx: EvalContext) -> float:
    half_frame = ctx.dt * 0.5
    index = bisect.bisect_left(node.times, ctx.time - half_frame)
    if index < len(node.times) and node.times[index] <= ctx.time + half_frame:
        return node.events[index].weight
    return 0.0


def _evaluate_envelope(node: nodes.EventEnvelope, ctx: EvalContext) -> float:
    if not node.events:
        return 0.0

    options = node.options
    seconds = {
        'attack': ctx.beats_to_seconds(options.attack_beats),
        'decay': ctx.beats_to_seconds(options.decay_beats),
        'sustain': ctx.beats_to_seconds(options.sustain_beats),
        'release': ctx.beats_to_seconds(options.release_beats),
        'width': ctx.beats_to_seconds(options.width_beats),
    }

    # Only events whose envelope can reach ctx.time contribute
    time = ctx.time
    half_frame = ctx.dt * 0.5
    times = node.times
    shape = options.envelope
    if shape == 'impulse':
        lo = bisect.bisect_left(times, time - half_frame)
        hi = bisect.bisect_right(times, time + half_frame)
    elif shape == 'attack_decay':
        lo = bisect.bisect_left(times, time - (seconds['attack'] + seconds['decay']))
        hi = bisect.bisect_right(times, time)
    elif shape == 'adsr':
        span = seconds['attack'] + seconds['decay'] + seconds['sustain'] + seconds['release']
        lo = bisect.bisect_left(times, time - span)
        hi = bisect.bisect_right(times, time)
    elif shape in ('step', 'exponential_decay'):
        lo = 0
        hi = bisect.bisect_right(times, time)
    else:
        lo, hi = 0, len(times)

    contributions = [
        envelope_value(time - event.time, event.weight, options, seconds, ctx.dt)
        for event in node.events[lo:hi]
    ]
    return combine_contributions(contributions, options.overlap_mode)


def _seconds_to_unit(seconds: float, unit: str, ctx: EvalContext) -> float:
    if unit == 'beats':
        return ctx.seconds_to_beats(seconds)
    if unit == 'frames':
        return ctx.seconds_to_frames(seconds)
    return seconds


def _unit_to_seconds(value: float, unit: str, ctx: EvalContext) -> float:
    if unit == 'beats':
        return ctx.beats_to_seconds(value)
    if unit == 'frames':
        return value * ctx.dt
    return value


def _evaluate_distance(node: nodes.EventDistance, ctx: EvalContext) -> float:
    times = node.times
    time = ctx.time
    # first index with event time > time
    after = bisect.bisect_right(times, time)

    if node.direction == 'prev':
        if not times:
            return 0.0
        if after == 0:
            # before the first event: distance to it
            return _seconds_to_unit(times[0] - time, node.unit, ctx)
        return _seconds_to_unit(time - times[after - 1], node.unit, ctx)

    if after < len(times):
        return _seconds_to_unit(times[after] - time, node.unit, ctx)
    return _seconds_to_unit(max(ctx.track_end() - time, 0.0), node.unit, ctx)


def _evaluate_window_count(signal, ctx: EvalContext) -> float:
    node = signal.node
    window = evaluate_signal(node.window, ctx)
    if not window > 0 or not node.times:
        return 0.0

    window_sec = _unit_to_seconds(window, node.unit, ctx)
    if node.direction == 'prev':
        start, end = ctx.time - window_sec, ctx.time
    else:
        start, end = ctx.time, ctx.time + window_sec

    count = bisect.bisect_left(node.times, end) - bisect.bisect_left(node.times, start)
    if node.density:
        return count / window
    return float(count)


def _evaluate_phase(node: nodes.EventPhase, ctx: EvalContext) -> float:
    times = node.times
    if not times:
        return 0.0

    after = bisect.bisect_right(times, ctx.time)
    if after == 0:
        return 0.0
    if after == len(times):
        return 1.0

    prev_time = times[after - 1]
    interval = times[after] - prev_time
    if interval <= 0:
        return 0.5
    return (ctx.time - prev_time) / interval


# =============================================================================
# MATH
# =============================================================================

def _rem_euclid(value: float, divisor: float) -> float:
    remainder = math.fmod(value, divisor)
    if remainder < 0:
        remainder += abs(divisor)
    return remainder


def _pow(base: float, exponent: float) -> float:
    try:
        return math.pow(base, exponent)
    except OverflowError:
        return math.inf
    except ValueError:
        if base == 0.0:
            return math.inf
        return math.nan


def _exp(value: float) -> float:
    try:
        return math.exp(value)
    except OverflowError:
        return math.inf


def _round_half_away(value: float) -> float:
    return math.copysign(math.floor(abs(value) + 0.5), value)


def _binary(op: str, a: float, b: float) -> float:
    if op in ('add', 'offset'):
        return a + b
    if op == 'sub':
        return a - b
    if op in ('mul', 'scale'):
        return a * b
    if op == 'div':
        return 0.0 if abs(b) < DIV_EPSILON else a / b
    if op == 'pow':
        return _pow(a, b)
    if op == 'atan2':
        return math.atan2(a, b)
    if op == 'log':
        base = max(b, LOG_FLOOR)
        log_base = math.log(base)
        if abs(log_base) < DIV_EPSILON:
            return 0.0
        return math.log(max(a, LOG_FLOOR)) / log_base
    if op in ('mod', 'rem'):
        if abs(b) < DIV_EPSILON:
            return 0.0
        if not math.isfinite(a) or math.isnan(b):
            return math.nan
        if op == 'rem':
            return math.fmod(a, b)
        return _rem_euclid(a, b)
    raise ValueError(f"Unknown binary op '{op}'")


def _unary(op: str, x: float) -> float:
    if op == 'neg':
        return -x
    if op == 'abs':
        return abs(x)
    if op == 'sign':
        if x > 0:
            return 1.0
        if x < 0:
            return -1.0
        return 0.0

    if op in ('floor', 'ceil', 'round', 'fract'):
        if not math.isfinite(x):
            return x if op != 'fract' else math.nan
        if op == 'floor':
            return float(math.floor(x))
        if op == 'ceil':
            return float(math.ceil(x))
        if op == 'round':
            return _round_half_away(x)
        return x - math.trunc(x)

    if op in ('sin', 'cos', 'tan'):
        if not math.isfinite(x):
            return math.nan
        return {'sin': math.sin, 'cos': math.cos, 'tan': math.tan}[op](x)
    if op == 'asin':
        return math.asin(min(max(x, -1.0), 1.0))
    if op == 'acos':
        return math.acos(min(max(x, -1.0), 1.0))
    if op == 'atan':
        return math.atan(x)
    if op == 'sqrt':
        return math.sqrt(max(x, 0.0))
    if op == 'exp':
        return _exp(x)
    if op == 'ln':
        return math.log(max(x, LOG_FLOOR))
    raise ValueError(f"Unknown unary op '{op}'")


def _sigmoid(x: float, steepness: float) -> float:
    if steepness == 0.0:
        return x
    return 1.0 / (1.0 + _exp(-steepness * (x - 0.5)))


def _map(x: float, in_min: float, in_max: float, out_min: float, out_max: float) -> float:
    in_range = in_max - in_min
    if abs(in_range) < DIV_EPSILON:
        return out_min
    return out_min + (x - in_min) / in_range * (out_max - out_min)


def _smoothstep(x: float, edge0: float, edge1: float) -> float:
    span = edge1 - edge0
    if abs(span) < DIV_EPSILON:
        return 0.0 if x < edge0 else 1.0
    t = min(max((x - edge0) / span, 0.0), 1.0)
    return t * t * (3.0 - 2.0 * t)


def _wrap(x: float, low: float, high: float) -> float:
    span = high - low
    if not span > 0:
        return low
    if not math.isfinite(x):
        return math.nan
    return low + _rem_euclid(x - low, span)


# =============================================================================
# STATEFUL NODES
# =============================================================================

def _ring_capacity(seconds: float, dt: float) -> int:
    if dt <= 0 or not math.isfinite(seconds):
        return 1
    return max(1, min(int(math.ceil(seconds / dt)), MAX_RING_CAPACITY))


def _evaluate_diff(signal, ctx: EvalContext) -> float:
    current = evaluate_signal(signal.node.source, ctx)
    last = ctx.state.diffs.get(signal.id, current)
    ctx.state.diffs[signal.id] = current
    if ctx.dt <= 0:
        return 0.0
    return (current - last) / ctx.dt


def _evaluate_integrate(signal, ctx: EvalContext) -> float:
    node = signal.node
    current = evaluate_signal(node.source, ctx)
    decay_beats = evaluate_signal(node.decay_beats, ctx)

    accumulator = ctx.state.integrators.get(signal.id, 0.0) + current * ctx.dt
    if decay_beats > 0:
        decay_sec = ctx.beats_to_seconds(decay_beats)
        if decay_sec > 0:
            accumulator *= math.exp(-ctx.dt / decay_sec)

    ctx.state.integrators[signal.id] = accumulator
    return accumulator


def _evaluate_delay(signal, ctx: EvalContext) -> float:
    node = signal.node
    current = evaluate_signal(node.source, ctx)
    beats = evaluate_signal(node.beats, ctx)
    if beats <= 0:
        return current

    capacity = _ring_capacity(ctx.beats_to_seconds(beats), ctx.dt)
    return ctx.state.delay_buffer(signal.id, capacity).push(current)


def _evaluate_anticipate(signal, ctx: EvalContext) -> float:
    node = signal.node
    current = evaluate_signal(node.source, ctx)
    beats = evaluate_signal(node.beats, ctx)
    if not beats > 0:
        return current

    root = nodes.find_root_source(node.source)
    buffer = _lookup_buffer(root, ctx) if root is not None else None
    if buffer is None:
        return current
    return buffer.sample(ctx.time + ctx.beats_to_seconds(beats))


def _evaluate_moving_average(signal, ctx: EvalContext) -> float:
    node = signal.node
    current = evaluate_signal(node.source, ctx)
    window_beats = evaluate_signal(node.window_beats, ctx)

    capacity = _ring_capacity(ctx.beats_to_seconds(window_beats), ctx.dt)
    buffer = ctx.state.ring_buffer(signal.id, capacity)
    buffer.push(current)
    return buffer.average()


def _evaluate_exponential(signal, ctx: EvalContext) -> float:
    node = signal.node
    current = evaluate_signal(node.source, ctx)
    attack_beats = evaluate_signal(node.attack_beats, ctx)
    release_beats = evaluate_signal(node.release_beats, ctx)

    last = ctx.state.exp_smooth.get(signal.id, current)
    beats = attack_beats if current > last else release_beats
    tau = max(ctx.beats_to_seconds(beats), MIN_SMOOTH_TAU_SEC)
    alpha = 1.0 - math.exp(-ctx.dt / tau) if ctx.dt > 0 else 0.0

    smoothed = last + alpha * (current - last)
    ctx.state.exp_smooth[signal.id] = smoothed
    return smoothed


def _evaluate_gaussian(signal, ctx: EvalContext) -> float:
    node = signal.node
    # probes and stateful nodes below the smoother advance every frame
    current = evaluate_signal(node.source, ctx)
    sigma_beats = evaluate_signal(node.sigma_beats, ctx)
    root = nodes.find_root_source(node.source)
    buffer = _lookup_buffer(root, ctx) if root is not None else None
    if buffer is None or not sigma_beats > 0:
        return current

    sigma = ctx.beats_to_seconds(sigma_beats)
    if not sigma > 0:
        return current

    total = 0.0
    weight_sum = 0.0
    for i in range(GAUSSIAN_TAPS):
        offset = (i / (GAUSSIAN_TAPS - 1) - 0.5) * 2.0 * 3.0 * sigma
        weight = math.exp(-offset * offset / (2.0 * sigma * sigma))
        total += weight * buffer.sample(max(ctx.time + offset, 0.0))
        weight_sum += weight
    return total / weight_sum


def _evaluate_normalise(signal, ctx: EvalContext) -> float:
    node = signal.node
    value = evaluate_signal(node.source, ctx)
    stats = ctx.statistics.get(node.source.id)
    if stats is None:
        kind = 'global' if isinstance(node, nodes.NormaliseGlobal) else 'robust'
        ctx.state.warn_once(
            ('missing_statistics', node.source.id),
            f"No statistics available for {kind} normalization "
            f"(signal {node.source.id}) - returning raw value"
        )
        return value
    if isinstance(node, nodes.NormaliseGlobal):
        return stats.normalize_global(value)
    return stats.normalize_robust(value)


def _evaluate_range(signal, ctx: EvalContext) -> float:
    node = signal.node
    value = evaluate_signal(node.source, ctx)
    low = evaluate_signal(node.min, ctx)
    high = evaluate_signal(node.max, ctx)
    span = high - low
    if not span > 0:
        return 0.5
    return min(max((value - low) / span, 0.0), 1.0)


def _evaluate_hysteresis(signal, ctx: EvalContext) -> float:
    node = signal.node
    value = evaluate_signal(node.source, ctx)
    on_threshold = evaluate_signal(node.on_threshold, ctx)
    off_threshold = evaluate_signal(node.off_threshold, ctx)

    was_on = ctx.state.gates.get(signal.id, False)
    is_on = value >= off_threshold if was_on else value >= on_threshold
    ctx.state.gates[signal.id] = is_on
    return 1.0 if is_on else 0.0


# =============================================================================
# REDUCER
# =============================================================================

def _reduce(signal, ctx: EvalContext) -> float:
    node = signal.node
    ev = evaluate_signal

    # Sources
    if isinstance(node, nodes.SAMPLED_SOURCES):
        return _evaluate_sampled_source(signal, ctx)
    if isinstance(node, nodes.Constant):
        return node.value
    if isinstance(node, nodes.Oscillator):
        return generators.oscillator(
            node.shape, ctx.beat_position(), node.frequency, node.phase, node.duty
        )
    if isinstance(node, nodes.Noise):
        return _evaluate_noise(signal, ctx)
    if isinstance(node, nodes.Perlin):
        return generators.perlin(ctx.beat_position(), node.scale_beats, node.seed)
    if isinstance(node, nodes.EventImpulse):
        return _evaluate_impulse(node, ctx)
    if isinstance(node, nodes.EventEnvelope):
        return _evaluate_envelope(node, ctx)
    if isinstance(node, nodes.EventDistance):
        return _evaluate_distance(node, ctx)
    if isinstance(node, nodes.EventWindowCount):
        return _evaluate_window_count(signal, ctx)
    if isinstance(node, nodes.EventPhase):
        return _evaluate_phase(node, ctx)

    # Arithmetic, math and mapping
    if isinstance(node, nodes.BinaryOp):
        return _binary(node.op, ev(node.a, ctx), ev(node.b, ctx))
    if isinstance(node, nodes.UnaryOp):
        return _unary(node.op, ev(node.source, ctx))
    if isinstance(node, nodes.Mix):
        weight = ev(node.weight, ctx)
        return ev(node.a, ctx) * (1.0 - weight) + ev(node.b, ctx) * weight
    if isinstance(node, nodes.Lerp):
        a = ev(node.a, ctx)
        return a + (ev(node.b, ctx) - a) * ev(node.t, ctx)
    if isinstance(node, nodes.Clamp):
        return min(max(ev(node.source, ctx), ev(node.min, ctx)), ev(node.max, ctx))
    if isinstance(node, nodes.Wrap):
        return _wrap(ev(node.source, ctx), ev(node.min, ctx), ev(node.max, ctx))
    if isinstance(node, nodes.Sigmoid):
        return _sigmoid(ev(node.source, ctx), ev(node.steepness, ctx))
    if isinstance(node, nodes.Map):
        return _map(
            ev(node.source, ctx), ev(node.in_min, ctx), ev(node.in_max, ctx),
            ev(node.out_min, ctx), ev(node.out_max, ctx)
        )
    if isinstance(node, nodes.Smoothstep):
        return _smoothstep(ev(node.source, ctx), ev(node.edge0, ctx), ev(node.edge1, ctx))

    # Stateful
    if isinstance(node, nodes.Diff):
        return _evaluate_diff(signal, ctx)
    if isinstance(node, nodes.Integrate):
        return _evaluate_integrate(signal, ctx)
    if isinstance(node, nodes.Delay):
        return _evaluate_delay(signal, ctx)
    if isinstance(node, nodes.Anticipate):
        return _evaluate_anticipate(signal, ctx)
    if isinstance(node, nodes.MovingAverage):
        return _evaluate_moving_average(signal, ctx)
    if isinstance(node, nodes.ExponentialSmooth):
        return _evaluate_exponential(signal, ctx)
    if isinstance(node, nodes.GaussianSmooth):
        return _evaluate_gaussian(signal, ctx)

    # Normalisation and gating
    if isinstance(node, nodes.STATISTICS_NODES):
        return _evaluate_normalise(signal, ctx)
    if isinstance(node, nodes.NormaliseRange):
        return _evaluate_range(signal, ctx)
    if isinstance(node, nodes.GateThreshold):
        return 1.0 if ev(node.source, ctx) >= ev(node.threshold, ctx) else 0.0
    if isinstance(node, nodes.GateHysteresis):
        return _evaluate_hysteresis(signal, ctx)

    if isinstance(node, nodes.Probe):
        value = ev(node.source, ctx)
        if ctx.collector is not None:
            ctx.collector.emit(node.name, value)
        return value

    raise TypeError(f"Unknown signal node type: {type(node).__name__}")
