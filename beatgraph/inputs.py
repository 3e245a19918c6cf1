"""
Input Module

Raw sampled input buffers consumed by source nodes. Buffers are produced by
an upstream feature extractor; this module only reads them.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence
import math

import numpy as np


# Sample-index positions this close to an integer are treated as that integer
INDEX_EPSILON: float = 1e-6


def _time_to_index(time: float, sample_rate: float) -> float:
    position = time * sample_rate
    nearest = round(position)
    if abs(position - nearest) < INDEX_EPSILON:
        return float(nearest)
    return position


class InputSignal:
    """
    A uniformly sampled scalar series.

    Parameters:
        samples: Sample values (stored as float32)
        sample_rate: Samples per second
    """

    def __init__(self, samples: Sequence[float], sample_rate: float):
        if not sample_rate > 0:
            raise ValueError(f"sample_rate must be positive, got {sample_rate}")
        self.samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        self.sample_rate = float(sample_rate)

    def __len__(self) -> int:
        return len(self.samples)

    def __repr__(self) -> str:
        return f"InputSignal(n={len(self.samples)}, sample_rate={self.sample_rate:g})"

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    def sample(self, time: float) -> float:
        """
        Linearly interpolated value at time.

        Returns 0.0 outside [0, duration] and for an empty buffer.
        """
        n = len(self.samples)
        if n == 0 or not math.isfinite(time) or time < 0 or time > self.duration:
            return 0.0

        position = _time_to_index(time, self.sample_rate)
        index = int(position)
        if index >= n:
            return 0.0

        frac = position - index
        current = float(self.samples[index])
        if index + 1 >= n or frac == 0.0:
            return current

        following = float(self.samples[index + 1])
        return current + (following - current) * frac

    def sample_window(self, time: float, window: float) -> float:
        """
        Extremum-preserving sample: the largest absolute value of the samples
        in the half-open window (time - window, time].

        A window that covers at most one sample falls back to sample(time).
        """
        if not window > 0:
            return self.sample(time)

        n = len(self.samples)
        if n == 0 or not math.isfinite(time) or time < 0:
            return 0.0

        end_index = int(math.floor(_time_to_index(time, self.sample_rate)))
        start_time = time - window
        if start_time <= 0:
            start_index = 0
        else:
            start_index = int(math.floor(_time_to_index(start_time, self.sample_rate))) + 1

        end_index = min(end_index, n - 1)
        if start_index > end_index or start_index >= n:
            return 0.0
        if start_index == end_index:
            return self.sample(time)

        segment = self.samples[start_index:end_index + 1]
        return float(np.max(np.abs(segment)))


@dataclass
class InputBuffers:
    """
    Bundle of raw buffers available to one evaluation.

    Attributes:
        signals: Named inputs, e.g. {'energy': InputSignal}
        bands: Frequency-band scoped inputs, {band_key: {feature: InputSignal}}
        stems: Stem scoped inputs, {stem_id: {feature: InputSignal}}
        custom: Custom (user-produced) inputs, {signal_id: InputSignal}
    """
    signals: Dict[str, InputSignal] = field(default_factory=dict)
    bands: Dict[str, Dict[str, InputSignal]] = field(default_factory=dict)
    stems: Dict[str, Dict[str, InputSignal]] = field(default_factory=dict)
    custom: Dict[str, InputSignal] = field(default_factory=dict)

    @classmethod
    def from_arrays(
        cls,
        arrays: Dict[str, Sequence[float]],
        sample_rate: float
    ) -> 'InputBuffers':
        """Wrap plain arrays sharing one sample rate as named inputs."""
        return cls(signals={
            name: InputSignal(values, sample_rate) for name, values in arrays.items()
        })

    def get(self, name: str) -> Optional[InputSignal]:
        return self.signals.get(name)

    def get_band(self, band_key: str, feature: str) -> Optional[InputSignal]:
        return self.bands.get(band_key, {}).get(feature)

    def get_stem(self, stem_id: str, feature: str) -> Optional[InputSignal]:
        return self.stems.get(stem_id, {}).get(feature)

    def get_custom(self, signal_id: str) -> Optional[InputSignal]:
        return self.custom.get(signal_id)

    def longest_duration(self) -> float:
        """Duration of the longest buffer across all scopes (0.0 when empty)."""
        durations = [s.duration for s in self.signals.values()]
        durations += [s.duration for scoped in self.bands.values() for s in scoped.values()]
        durations += [s.duration for scoped in self.stems.values() for s in scoped.values()]
        durations += [s.duration for s in self.custom.values()]
        return max(durations, default=0.0)
