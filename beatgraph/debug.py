"""
Debug Probe Collector

Side channel for Probe nodes: records (time, value) pairs per probe name.
Collecting never changes the value a probe forwards.
"""

from typing import Dict, List, Set, Tuple
import math

import numpy as np


MAX_PROBE_NAME_LENGTH: int = 64
MAX_EMISSIONS_PER_SIGNAL: int = 100000


class DebugSignal:
    """Emissions recorded for one probe name."""

    def __init__(self, name: str):
        self.name = name
        self.emissions: List[Tuple[float, float]] = []

    def __len__(self) -> int:
        return len(self.emissions)

    def to_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return (times, values) as float32 arrays."""
        if not self.emissions:
            return np.array([], dtype=np.float32), np.array([], dtype=np.float32)
        times, values = zip(*self.emissions)
        return np.asarray(times, dtype=np.float32), np.asarray(values, dtype=np.float32)


class DebugCollector:
    """
    Collects probe emissions across evaluations.

    Usage:
        collector = DebugCollector()
        collector.set_time(t)      # once per frame, before evaluating
        collector.emit('energy', value)
    """

    def __init__(self):
        self.current_time = 0.0
        self._signals: Dict[str, DebugSignal] = {}
        self._emitted_this_frame: Set[str] = set()

    def set_time(self, time: float) -> None:
        if time != self.current_time:
            self._emitted_this_frame.clear()
        self.current_time = time

    def emit(self, name: str, value: float) -> bool:
        """
        Record value under name at the current time.

        Returns:
            False when the emission was ignored (bad name, non-finite value,
            duplicate in this frame, or per-name limit reached)
        """
        if not name or len(name) > MAX_PROBE_NAME_LENGTH:
            return False
        if not math.isfinite(value):
            return False
        if name in self._emitted_this_frame:
            return False

        signal = self._signals.get(name)
        if signal is None:
            signal = self._signals[name] = DebugSignal(name)
        if len(signal) >= MAX_EMISSIONS_PER_SIGNAL:
            return False

        signal.emissions.append((float(self.current_time), float(value)))
        self._emitted_this_frame.add(name)
        return True

    def signals(self) -> Dict[str, DebugSignal]:
        return dict(self._signals)

    def take(self) -> Dict[str, DebugSignal]:
        """Return everything collected so far and start afresh."""
        collected = self._signals
        self._signals = {}
        self._emitted_this_frame = set()
        return collected
