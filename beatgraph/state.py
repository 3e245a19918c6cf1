"""
Runtime State Module

Mutable per-signal memory for stateful transforms, kept outside the
immutable graph and keyed by signal identity.

DESIGN CONSTRAINTS:
- One SignalState per execution mode (playback, each analysis run)
- Entries are created lazily on first access and never shared between ids
- Two signals with identical structure but different ids have independent state
- clear() drops everything, including the "already warned" memory
"""

from typing import Dict, List, Optional, Set, Tuple
import warnings

import numpy as np


# Upper bound on ring capacities derived from beats/dt
MAX_RING_CAPACITY: int = 10000

PINK_NOISE_OCTAVES: int = 16


class SignalWarning(UserWarning):
    """Degraded evaluation (missing input, statistics or tempo)."""


# =============================================================================
# BUFFERS
# =============================================================================

class RingBuffer:
    """
    Fixed-capacity circular buffer used by moving averages.

    A capacity below 1 is clamped to 1.
    """

    def __init__(self, capacity: int):
        self.capacity = max(1, int(capacity))
        self.data = np.zeros(self.capacity, dtype=np.float64)
        self.cursor = 0
        self.count = 0

    def __len__(self) -> int:
        return self.count

    def push(self, value: float) -> None:
        self.data[self.cursor] = value
        self.cursor = (self.cursor + 1) % self.capacity
        if self.count < self.capacity:
            self.count += 1

    def is_full(self) -> bool:
        return self.count >= self.capacity

    def average(self) -> float:
        if self.count == 0:
            return 0.0
        return float(np.mean(self.data[:self.count]))

    def resize(self, capacity: int) -> None:
        """Change capacity; contents are discarded."""
        self.__init__(capacity)

    def clear(self) -> None:
        self.data.fill(0.0)
        self.cursor = 0
        self.count = 0


class DelayBuffer(RingBuffer):
    """
    Ring buffer returning the value pushed `capacity` frames ago.

    Until the buffer has filled, push() echoes the value just written.
    """

    def oldest(self) -> Optional[float]:
        if self.count == 0:
            return None
        if self.is_full():
            return float(self.data[self.cursor])
        return float(self.data[0])

    def push(self, value: float) -> float:
        if self.is_full():
            delayed = float(self.data[self.cursor])
            super().push(value)
            return delayed
        super().push(value)
        return value


class PinkNoiseState:
    """
    Voss-McCartney pink noise over 16 octaves.

    Each call refreshes the octave selected by the number of trailing zero
    bits of a running counter, so octave k updates every 2**k calls.
    """

    def __init__(self):
        self.octaves: List[float] = [0.0] * PINK_NOISE_OCTAVES
        self.counter = 0
        self.running_sum = 0.0

    def next(self, white: float) -> float:
        self.counter = (self.counter + 1) & 0xFFFFFFFF
        if self.counter == 0:
            octave = PINK_NOISE_OCTAVES
        else:
            octave = (self.counter & -self.counter).bit_length() - 1

        if octave < PINK_NOISE_OCTAVES:
            self.running_sum += white - self.octaves[octave]
            self.octaves[octave] = white

        return (self.running_sum + white) / (PINK_NOISE_OCTAVES + 1)


# =============================================================================
# STATE STORE
# =============================================================================

class SignalState:
    """
    Identity-keyed runtime state store.

    Attributes:
        exp_smooth: One-pole filter last output per id
        gates: Hysteresis gate on/off per id
        moving_averages: RingBuffer per id
        delays: DelayBuffer per id
        diffs: Last input per id for finite differences
        integrators: Accumulator per id
        pink_noise: PinkNoiseState per id
    """

    def __init__(self):
        self.exp_smooth: Dict[int, float] = {}
        self.gates: Dict[int, bool] = {}
        self.moving_averages: Dict[int, RingBuffer] = {}
        self.delays: Dict[int, DelayBuffer] = {}
        self.diffs: Dict[int, float] = {}
        self.integrators: Dict[int, float] = {}
        self.pink_noise: Dict[int, PinkNoiseState] = {}
        self._warned: Set[Tuple] = set()

    def ring_buffer(self, signal_id: int, capacity: int) -> RingBuffer:
        """Buffer for signal_id, resized (and cleared) when capacity changes."""
        capacity = max(1, min(int(capacity), MAX_RING_CAPACITY))
        buffer = self.moving_averages.get(signal_id)
        if buffer is None:
            buffer = self.moving_averages[signal_id] = RingBuffer(capacity)
        elif buffer.capacity != capacity:
            buffer.resize(capacity)
        return buffer

    def delay_buffer(self, signal_id: int, capacity: int) -> DelayBuffer:
        capacity = max(1, min(int(capacity), MAX_RING_CAPACITY))
        buffer = self.delays.get(signal_id)
        if buffer is None:
            buffer = self.delays[signal_id] = DelayBuffer(capacity)
        elif buffer.capacity != capacity:
            buffer.resize(capacity)
        return buffer

    def pink(self, signal_id: int) -> PinkNoiseState:
        noise = self.pink_noise.get(signal_id)
        if noise is None:
            noise = self.pink_noise[signal_id] = PinkNoiseState()
        return noise

    def warn_once(self, key: Tuple, message: str) -> bool:
        """
        Emit a SignalWarning the first time key is seen.

        Returns:
            True if the warning was emitted now
        """
        if key in self._warned:
            return False
        self._warned.add(key)
        warnings.warn(message, SignalWarning, stacklevel=3)
        return True

    def has_warned(self, key: Tuple) -> bool:
        return key in self._warned

    def clear(self) -> None:
        """Drop all state, e.g. when a graph is reloaded."""
        self.__init__()
