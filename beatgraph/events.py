"""
Event Stream Module

Immutable, time-sorted collections of weighted events, plus the
constructors that turn a stream back into signal-graph sources.

DESIGN CONSTRAINTS:
- Construction always sorts by time (stable for equal times)
- Filters return new streams; nothing mutates in place
- Every stream gets a unique id from a process-wide counter
"""

from dataclasses import dataclass, asdict, replace
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
import bisect

import numpy as np

from beatgraph import nodes
from beatgraph.envelopes import group_events
from beatgraph.graph import IdentityCounter, Param, Signal, _as_signal
from beatgraph.params import PickEventsOptions, ToSignalOptions, validate_to_signal_options


_STREAM_IDS = IdentityCounter()


@dataclass(frozen=True)
class Event:
    """
    A discrete, weighted moment in time.

    Attributes:
        time: Time in seconds
        weight: Salience, 0-1 after extraction
        cluster_id: Cluster the event represents, if clustered
        source: Provenance tag (e.g. 'raw_peak', 'clustered')
        beat_position: Beat position at the event time, if known
        beat_phase: Phase within the beat at the event time, if known
    """
    time: float
    weight: float = 1.0
    cluster_id: Optional[int] = None
    source: Optional[str] = None
    beat_position: Optional[float] = None
    beat_phase: Optional[float] = None

    def with_weight(self, weight: float) -> 'Event':
        return replace(self, weight=float(weight))

    def with_beat_info(self, beat_position: float, beat_phase: float) -> 'Event':
        return replace(self, beat_position=float(beat_position), beat_phase=float(beat_phase))

    def with_cluster(self, cluster_id: int) -> 'Event':
        return replace(self, cluster_id=int(cluster_id))

    def with_source(self, source: str) -> 'Event':
        return replace(self, source=source)

    def to_dict(self) -> Dict:
        return asdict(self)


class EventStream:
    """
    Immutable, time-sorted sequence of events.

    Parameters:
        events: Events in any order
        source_description: Where the events came from (e.g. a graph description)
        options: Extraction options that produced the stream, if any
    """

    def __init__(
        self,
        events: Iterable[Event] = (),
        source_description: str = '',
        options: Optional[PickEventsOptions] = None
    ):
        self.id = _STREAM_IDS.next()
        self.events: Tuple[Event, ...] = tuple(sorted(events, key=lambda e: e.time))
        self.source_description = source_description
        self.options = options
        self._times = [e.time for e in self.events]

    @classmethod
    def empty(cls) -> 'EventStream':
        return cls()

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self.events)

    def __getitem__(self, index: int) -> Event:
        return self.events[index]

    def __repr__(self) -> str:
        return f"EventStream(id={self.id}, n={len(self.events)}, source='{self.source_description}')"

    def is_empty(self) -> bool:
        return not self.events

    def get(self, index: int) -> Optional[Event]:
        if 0 <= index < len(self.events):
            return self.events[index]
        return None

    @property
    def times(self) -> np.ndarray:
        return np.array(self._times, dtype=np.float64)

    @property
    def weights(self) -> np.ndarray:
        return np.array([e.weight for e in self.events], dtype=np.float64)

    def events_in_range(self, start: float, end: float) -> List[Event]:
        """Events with start <= time < end."""
        lo = bisect.bisect_left(self._times, start)
        hi = bisect.bisect_left(self._times, end)
        return list(self.events[lo:hi])

    def nearest_event(self, time: float) -> Optional[Event]:
        if not self.events:
            return None
        index = bisect.bisect_left(self._times, time)
        candidates = [i for i in (index - 1, index) if 0 <= i < len(self.events)]
        best = min(candidates, key=lambda i: abs(self._times[i] - time))
        return self.events[best]

    def time_span(self) -> Optional[Tuple[float, float]]:
        if not self.events:
            return None
        return self._times[0], self._times[-1]

    def max_weight(self) -> Optional[float]:
        if not self.events:
            return None
        return max(e.weight for e in self.events)

    def min_weight(self) -> Optional[float]:
        if not self.events:
            return None
        return min(e.weight for e in self.events)

    # =========================================================================
    # FILTERS
    # =========================================================================

    def filter_time(self, start: float, end: float) -> 'EventStream':
        return EventStream(
            self.events_in_range(start, end),
            f"{self.source_description} [time {start:g}-{end:g}]",
            self.options,
        )

    def filter_weight(self, min_weight: float) -> 'EventStream':
        return EventStream(
            [e for e in self.events if e.weight >= min_weight],
            f"{self.source_description} [weight>={min_weight:g}]",
            self.options,
        )

    def limit(self, max_events: int) -> 'EventStream':
        """First max_events events in time order."""
        count = max(0, int(max_events))
        return EventStream(
            self.events[:count],
            f"{self.source_description} [limit {count}]",
            self.options,
        )

    # =========================================================================
    # SIGNAL CONSTRUCTORS
    # =========================================================================

    def impulse(self) -> Signal:
        """Event weight within half a frame of each event, else 0."""
        return Signal(nodes.EventImpulse(self.events))

    def to_signal(self, options=None) -> Signal:
        """
        Shaped envelope signal.

        Parameters:
            options: ToSignalOptions, a mapping parsed by ToSignalOptions.from_dict,
                     or None for impulses

        Returns:
            Signal summing (or taking the max of) per-event envelopes
        """
        if options is None:
            options = ToSignalOptions()
        elif isinstance(options, dict):
            options = ToSignalOptions.from_dict(options)
        else:
            validate_to_signal_options(options)

        events = self.events
        if options.group_within_beats is not None:
            events = tuple(group_events(events, options.group_within_beats, options.merge_mode))
        return Signal(nodes.EventEnvelope(events, options))

    def _distance(self, unit: str, direction: str) -> Signal:
        return Signal(nodes.EventDistance(self.events, unit, direction))

    def beats_from_prev(self) -> Signal:
        return self._distance('beats', 'prev')

    def seconds_from_prev(self) -> Signal:
        return self._distance('seconds', 'prev')

    def frames_from_prev(self) -> Signal:
        return self._distance('frames', 'prev')

    def beats_to_next(self) -> Signal:
        return self._distance('beats', 'next')

    def seconds_to_next(self) -> Signal:
        return self._distance('seconds', 'next')

    def frames_to_next(self) -> Signal:
        return self._distance('frames', 'next')

    def _window(self, window: Param, unit: str, direction: str, density: bool) -> Signal:
        return Signal(nodes.EventWindowCount(self.events, _as_signal(window), unit, direction, density))

    def count_prev_beats(self, window: Param) -> Signal:
        return self._window(window, 'beats', 'prev', False)

    def count_next_beats(self, window: Param) -> Signal:
        return self._window(window, 'beats', 'next', False)

    def count_prev_seconds(self, window: Param) -> Signal:
        return self._window(window, 'seconds', 'prev', False)

    def count_next_seconds(self, window: Param) -> Signal:
        return self._window(window, 'seconds', 'next', False)

    def count_prev_frames(self, window: Param) -> Signal:
        return self._window(window, 'frames', 'prev', False)

    def count_next_frames(self, window: Param) -> Signal:
        return self._window(window, 'frames', 'next', False)

    def density_prev_beats(self, window: Param) -> Signal:
        return self._window(window, 'beats', 'prev', True)

    def density_next_beats(self, window: Param) -> Signal:
        return self._window(window, 'beats', 'next', True)

    def density_prev_seconds(self, window: Param) -> Signal:
        return self._window(window, 'seconds', 'prev', True)

    def density_next_seconds(self, window: Param) -> Signal:
        return self._window(window, 'seconds', 'next', True)

    def beat_phase_between(self) -> Signal:
        """0 at the previous event rising linearly to 1 at the next one."""
        return Signal(nodes.EventPhase(self.events))

    def probe(self, name: str) -> Signal:
        return self.to_signal().probe(name)

    # =========================================================================
    # EXPORT
    # =========================================================================

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'source': self.source_description,
            'n_events': len(self.events),
            'options': self.options.to_dict() if self.options is not None else None,
            'events': [e.to_dict() for e in self.events],
        }
