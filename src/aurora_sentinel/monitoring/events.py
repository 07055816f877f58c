"""
Event Segmenter
===============

Segment discrete disturbance intervals out of a noisy ground magnetometer
rate-of-change series (nT/min).

Single pass, hysteretic:
- |rate| >= threshold with no open event   -> open (start = end = t)
- |rate| >= threshold with an open event    -> extend end, track max |rate|
- quiet with an open event                  -> close once the silence since
                                               the last volatile sample
                                               exceeds the cooldown
An event still open at the end of the series is emitted as well.

Events are never persisted; every fetch re-derives them from the raw series.
"""

from dataclasses import dataclass
from typing import Optional

from aurora_sentinel.utils.time import MS_PER_MINUTE
from .constants import EVENT_RATE_THRESHOLD, EVENT_COOLDOWN_MINUTES


@dataclass
class NzMagEvent:
    """A contiguous disturbance interval (epoch ms)."""
    start: int
    end: int
    max_delta: float

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start) / MS_PER_MINUTE


def segment_events(rates: list,
                   threshold: float = EVENT_RATE_THRESHOLD,
                   cooldown_minutes: float = EVENT_COOLDOWN_MINUTES) -> list[NzMagEvent]:
    """
    Segment volatility events from an ascending rate-of-change series.

    Args:
        rates: TimeSeriesPoint list of dB/dt values (None values are ignored)
        threshold: |rate| at or above this is volatile
        cooldown_minutes: Quiet time after the last volatile sample before
            an event is closed

    Returns:
        Non-overlapping, time-ordered events
    """
    cooldown = cooldown_minutes * MS_PER_MINUTE
    events: list[NzMagEvent] = []
    active: Optional[NzMagEvent] = None

    for p in rates:
        if p.value is None:
            continue
        magnitude = abs(p.value)
        volatile = magnitude >= threshold

        if active is not None and p.time - active.end > cooldown:
            # Silence ran past the cooldown (possibly across a data gap)
            events.append(active)
            active = None

        if volatile:
            if active is None:
                active = NzMagEvent(start=p.time, end=p.time, max_delta=magnitude)
            else:
                active.end = p.time
                active.max_delta = max(active.max_delta, magnitude)

    if active is not None:
        events.append(active)
    return events
