"""
Generators Module

Beat-synchronised oscillators and deterministic noise. Noise is a pure
function of (time, seed) through a 64-bit integer hash; no random module or
process-global generator is involved, so output is identical across runs
and platforms.
"""

import math

import numpy as np


HASH_MULTIPLIER: int = 0x517CC1B727220A95
U64_MASK: int = 0xFFFFFFFFFFFFFFFF
U64_MAX: float = float(U64_MASK)


def _mix(h: int, value: int) -> int:
    h = (h * HASH_MULTIPLIER) & U64_MASK
    h ^= value & U64_MASK
    h = (h * HASH_MULTIPLIER) & U64_MASK
    return h ^ (h >> 32)


def float_bits(value: float) -> int:
    """IEEE-754 single precision bit pattern of value."""
    return int(np.array(value, dtype=np.float32).view(np.uint32))


def hash_time(time: float, seed: int) -> int:
    return _mix(seed & U64_MASK, float_bits(time))


def hash_int(n: int, seed: int) -> int:
    # negative lattice points wrap like a two's complement u64
    return _mix(seed & U64_MASK, n)


def white_noise(time: float, seed: int) -> float:
    """Uniform value in [-1, 1] determined by (time, seed)."""
    return hash_time(time, seed) / U64_MAX * 2.0 - 1.0


def oscillator(shape: str, beat_position: float, frequency: float, phase: float, duty: float) -> float:
    """
    Periodic waveform in [-1, 1] with its period measured in beats.

    Parameters:
        shape: 'sin', 'square', 'triangle' or 'saw'
        beat_position: Current beat position
        frequency: Cycles per beat
        phase: Phase offset in cycles
        duty: High fraction of a square cycle
    """
    cycles = beat_position * frequency + phase
    if shape == 'sin':
        return math.sin(2.0 * math.pi * cycles)

    t = cycles % 1.0
    if shape == 'square':
        return 1.0 if t < duty else -1.0
    if shape == 'triangle':
        return 4.0 * t - 1.0 if t < 0.5 else 3.0 - 4.0 * t
    if shape == 'saw':
        return 2.0 * t - 1.0
    raise ValueError(f"Unknown oscillator shape '{shape}'")


def perlin(beat_position: float, scale_beats: float, seed: int) -> float:
    """
    1-D gradient noise with lattice spacing scale_beats.

    Returns 0.0 for a non-positive scale.
    """
    if not scale_beats > 0:
        return 0.0

    t = beat_position / scale_beats
    i = math.floor(t)
    f = t - i
    u = f * f * (3.0 - 2.0 * f)

    g0 = 1.0 if hash_int(i, seed) & 1 == 0 else -1.0
    g1 = 1.0 if hash_int(i + 1, seed) & 1 == 0 else -1.0
    n0 = g0 * f
    n1 = g1 * (f - 1.0)
    return n0 + u * (n1 - n0)
