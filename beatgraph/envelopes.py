"""
Envelope Module

Easing curves and per-event envelope shapes used when an EventStream is
turned back into a continuous signal.

CONTRACT:
- Easing input is clamped to [0, 1]; every curve maps 0 -> 0 and 1 -> 1
- Envelope durations arrive in seconds (already tempo-converted)
- A zero-length envelope degrades to an impulse of half a frame either side
"""

from typing import Callable, Dict, List, Sequence
import math

from beatgraph.params import ToSignalOptions
from beatgraph.timebase import DEFAULT_BPM


# =============================================================================
# EASING
# =============================================================================

def _quadratic_in_out(t: float) -> float:
    if t < 0.5:
        return 2.0 * t * t
    return -1.0 + (4.0 - 2.0 * t) * t


def _cubic_in_out(t: float) -> float:
    if t < 0.5:
        return 4.0 * t * t * t
    t1 = 2.0 * t - 2.0
    return 0.5 * t1 * t1 * t1 + 1.0


def _exponential_in(t: float) -> float:
    return 0.0 if t == 0.0 else 2.0 ** (10.0 * (t - 1.0))


def _exponential_out(t: float) -> float:
    return 1.0 if t == 1.0 else 1.0 - 2.0 ** (-10.0 * t)


def _elastic(t: float) -> float:
    if t == 0.0 or t == 1.0:
        return t
    c4 = (2.0 * math.pi) / 3.0
    return 2.0 ** (-10.0 * t) * math.sin((t * 10.0 - 0.75) * c4) + 1.0


EASINGS: Dict[str, Callable[[float], float]] = {
    'linear': lambda t: t,
    'quadratic_in': lambda t: t * t,
    'quadratic_out': lambda t: t * (2.0 - t),
    'quadratic_in_out': _quadratic_in_out,
    'cubic_in': lambda t: t * t * t,
    'cubic_out': lambda t: (t - 1.0) ** 3 + 1.0,
    'cubic_in_out': _cubic_in_out,
    'exponential_in': _exponential_in,
    'exponential_out': _exponential_out,
    'smoothstep': lambda t: t * t * (3.0 - 2.0 * t),
    'elastic': _elastic,
}


def apply_easing(t: float, easing: str) -> float:
    """Apply a named easing curve to t clamped to [0, 1]."""
    t = min(max(t, 0.0), 1.0)
    return EASINGS[easing](t)


# =============================================================================
# ENVELOPE SHAPES
# =============================================================================

def envelope_value(
    offset: float,
    weight: float,
    options: ToSignalOptions,
    seconds: Dict[str, float],
    frame_dt: float
) -> float:
    """
    Contribution of one event to the envelope.

    Parameters:
        offset: Evaluation time minus event time, in seconds
        weight: Event weight
        options: Envelope options (shape, easing, sustain level)
        seconds: Tempo-converted durations keyed 'attack', 'decay',
                 'sustain', 'release', 'width'
        frame_dt: Current frame delta, used by impulse fallbacks

    Returns:
        Envelope contribution (0.0 outside the envelope's support)
    """
    shape = options.envelope
    easing = options.easing
    half_frame = frame_dt * 0.5

    if shape == 'impulse':
        return weight if abs(offset) <= half_frame else 0.0

    if shape == 'step':
        return weight if offset >= 0.0 else 0.0

    attack = seconds['attack']
    decay = seconds['decay']

    if shape == 'attack_decay':
        if offset < 0.0:
            return 0.0
        if offset < attack:
            return weight * apply_easing(offset / attack if attack > 0 else 1.0, easing)
        decay_offset = offset - attack
        if decay <= 0.0 or decay_offset >= decay:
            return 0.0
        return weight * (1.0 - apply_easing(decay_offset / decay, easing))

    if shape == 'adsr':
        sustain = seconds['sustain']
        release = seconds['release']
        level = options.sustain_level
        if offset < 0.0:
            return 0.0
        if offset < attack:
            return weight * apply_easing(offset / attack if attack > 0 else 1.0, easing)
        if offset < attack + decay:
            t = (offset - attack) / decay if decay > 0 else 1.0
            return weight * (1.0 - (1.0 - level) * apply_easing(t, easing))
        if offset < attack + decay + sustain:
            return weight * level
        release_offset = offset - attack - decay - sustain
        if release <= 0.0 or release_offset >= release:
            return 0.0
        return weight * level * (1.0 - apply_easing(release_offset / release, easing))

    if shape == 'gaussian':
        # width is roughly the two-sigma span
        sigma = seconds['width'] / 2.0
        if sigma <= 0.0:
            return weight if abs(offset) < half_frame else 0.0
        return weight * math.exp(-0.5 * (offset / sigma) ** 2)

    if shape == 'exponential_decay':
        if offset < 0.0:
            return 0.0
        if decay <= 0.0:
            return weight if abs(offset) < half_frame else 0.0
        # decay is the time to fall to ~5%, i.e. three time constants
        tau = decay / 3.0
        return weight * math.exp(-offset / tau)

    raise ValueError(f"Unknown envelope shape '{shape}'")


def combine_contributions(contributions: Sequence[float], overlap_mode: str) -> float:
    if not contributions:
        return 0.0
    if overlap_mode == 'max':
        return max(0.0, max(contributions))
    return float(sum(contributions))


# =============================================================================
# GROUPING
# =============================================================================

def group_events(events: Sequence, group_within_beats: float, merge_mode: str) -> List:
    """
    Collapse runs of events closer than group_within_beats into single events.

    A group starts at its first event; later events join while they lie
    within group_within_beats of the group's first event (beat positions,
    falling back to 120 BPM from the event time). The merged event keeps the
    first event's time and beat info; its weight is the sum, max or mean of
    the group's weights.

    Parameters:
        events: Time-sorted events
        group_within_beats: Grouping distance in beats
        merge_mode: 'sum', 'max' or 'mean'

    Returns:
        List of merged events in time order
    """
    def beat_of(event) -> float:
        if event.beat_position is not None:
            return event.beat_position
        return event.time * DEFAULT_BPM / 60.0

    merged = []
    group: List = []

    def flush():
        weights = [e.weight for e in group]
        if merge_mode == 'max':
            weight = max(weights)
        elif merge_mode == 'mean':
            weight = sum(weights) / len(weights)
        else:
            weight = sum(weights)
        merged.append(group[0].with_weight(weight))

    for event in events:
        if group and beat_of(event) - beat_of(group[0]) >= group_within_beats:
            flush()
            group = []
        group.append(event)

    if group:
        flush()

    return merged
