"""
Statistics Module

Whole-track aggregate descriptors used by Normalise.Global and
Normalise.Robust. Descriptors are computed once per load by the pre-pass
(see analysis.precompute_statistics) and are read-only afterwards.

Percentiles use the sorted-index rule: p = sorted[min(floor(n * q), n - 1)].
"""

from dataclasses import dataclass, asdict
from typing import Callable, Dict, Iterator, Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class SignalStatistics:
    """
    Aggregate descriptor of a sub-signal sampled across a track.

    Attributes:
        min: Minimum finite sample
        max: Maximum finite sample
        mean: Mean of finite samples
        percentile_5: 5th percentile (sorted-index rule)
        percentile_95: 95th percentile (sorted-index rule)
        sample_count: Number of finite samples
    """
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    percentile_5: float = 0.0
    percentile_95: float = 0.0
    sample_count: int = 0

    @classmethod
    def from_samples(cls, samples: Sequence[float]) -> 'SignalStatistics':
        """
        Compute descriptors from samples; non-finite values are ignored.

        An input with no finite samples yields all-zero statistics.
        """
        values = np.asarray(samples, dtype=np.float64).reshape(-1)
        values = values[np.isfinite(values)]
        n = len(values)
        if n == 0:
            return cls()

        ordered = np.sort(values)
        p5_index = min(int(n * 0.05), n - 1)
        p95_index = min(int(n * 0.95), n - 1)

        return cls(
            min=float(ordered[0]),
            max=float(ordered[-1]),
            mean=float(np.mean(ordered)),
            percentile_5=float(ordered[p5_index]),
            percentile_95=float(ordered[p95_index]),
            sample_count=n,
        )

    def normalize_global(self, value: float) -> float:
        """Min/max normalisation clamped to [0, 1]; 0.5 for a zero range."""
        return _normalize(value, self.min, self.max)

    def normalize_robust(self, value: float) -> float:
        """p5/p95 normalisation clamped to [0, 1]; 0.5 for a zero range."""
        return _normalize(value, self.percentile_5, self.percentile_95)

    def to_dict(self) -> Dict:
        return asdict(self)


def _normalize(value: float, low: float, high: float) -> float:
    span = high - low
    if not span > 0:
        return 0.5
    return min(max((value - low) / span, 0.0), 1.0)


class StatisticsCache:
    """Statistics keyed by signal id."""

    def __init__(self):
        self._entries: Dict[int, SignalStatistics] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, signal_id: int) -> bool:
        return signal_id in self._entries

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)

    def get(self, signal_id: int) -> Optional[SignalStatistics]:
        return self._entries.get(signal_id)

    def insert(self, signal_id: int, stats: SignalStatistics) -> None:
        self._entries[signal_id] = stats

    def contains(self, signal_id: int) -> bool:
        return signal_id in self._entries

    def clear(self) -> None:
        self._entries.clear()

    def is_empty(self) -> bool:
        return not self._entries

    def get_or_compute(
        self,
        signal_id: int,
        compute: Callable[[], Sequence[float]]
    ) -> SignalStatistics:
        """Return cached statistics, computing them from compute() on a miss."""
        stats = self._entries.get(signal_id)
        if stats is None:
            stats = SignalStatistics.from_samples(compute())
            self._entries[signal_id] = stats
        return stats
