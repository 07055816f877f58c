"""
Coupling & Smoothing
====================

Solar wind / magnetosphere coupling proxy and the small smoothing toolkit
the substorm state machine is built on.

Newell et al. (2007) coupling function:

    dΦ/dt = V^(4/3) · BT^(2/3) · |sin(θ/2)|^(8/3)

with BT = sqrt(By² + Bz²) and clock angle θ = atan2(By, Bz). It grows with
speed and transverse field strength and peaks for due-south IMF (θ = π).
The result is divided by NEWELL_SCALE to keep it in a readable range.

All helpers take ascending TimeSeriesPoint lists with no None values
(see normalize.drop_missing).
"""

import bisect
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from aurora_sentinel.utils.time import MS_PER_MINUTE
from .constants import (
    NEWELL_SCALE,
    SOUTH_BZ_THRESHOLD,
    SUSTAINED_SOUTH_FRACTION,
    JOIN_TOLERANCE_MINUTES,
)
from .normalize import TimeSeriesPoint


def newell_coupling(v: float, by: float, bz: float, scale: float = NEWELL_SCALE) -> float:
    """
    Newell coupling dΦ/dt for one solar wind sample.

    Args:
        v: Solar wind speed (km/s), must be >= 0
        by: IMF By GSM (nT)
        bz: IMF Bz GSM (nT)
        scale: Display divisor

    Returns:
        Non-negative coupling value
    """
    if v < 0:
        raise ValueError(f"Solar wind speed must be non-negative, got {v}")

    bt = math.hypot(by, bz)
    if bt == 0 or v == 0:
        return 0.0

    theta = math.atan2(by, bz)
    return (v ** (4 / 3)) * (bt ** (2 / 3)) * (abs(math.sin(theta / 2)) ** (8 / 3)) / scale


def window(points: list, minutes: float, now_ms: Optional[int] = None) -> list:
    """
    Trailing time window.

    The reference time is now_ms when given, otherwise the latest sample.
    """
    if not points:
        return []
    ref = now_ms if now_ms is not None else points[-1].time
    cutoff = ref - minutes * MS_PER_MINUTE
    return [p for p in points if cutoff <= p.time <= ref]


def moving_average(values, n: int) -> Optional[float]:
    """
    Mean of up to the n most recent values.

    Shorter input (stream start) averages what is there. None entries in the
    trailing slice are ignored. Returns None when nothing is left.
    """
    if n <= 0:
        raise ValueError(f"Window length must be positive, got {n}")
    tail = [v for v in list(values)[-n:] if v is not None]
    if not tail:
        return None
    return float(np.mean(tail))


def moving_average_series(series: list, n: int) -> list[TimeSeriesPoint]:
    """Per-point trailing moving average of a series."""
    values = [p.value for p in series]
    return [
        TimeSeriesPoint(p.time, moving_average(values[:i + 1], n))
        for i, p in enumerate(series)
    ]


def slope_per_minute(points: list, minutes: float) -> Optional[float]:
    """
    Rate of change over roughly the last `minutes`.

    Takes the earliest sample that is at least (minutes - 0.5) minutes older
    than the latest one and returns (latest - that) / elapsed minutes.
    Callers wanting a strictly trailing slope pass an already-windowed list.

    Returns:
        nT/min (or units/min), or None when fewer than 2 samples exist or no
        sample lies far enough back. None means "no opinion", not zero.
    """
    if len(points) < 2:
        return None

    latest = points[-1]
    newest_allowed = latest.time - (minutes - 0.5) * MS_PER_MINUTE

    for p in points[:-1]:
        if p.time <= newest_allowed:
            elapsed = (latest.time - p.time) / MS_PER_MINUTE
            if elapsed <= 0:
                return None
            return (latest.value - p.value) / elapsed
    return None


def rate_series(points: list) -> list[TimeSeriesPoint]:
    """
    Per-minute rate of change between consecutive samples.

    Each rate is stamped with the later sample's time. Samples sharing a
    timestamp with their predecessor are skipped.
    """
    rates = []
    for prev, cur in zip(points, points[1:]):
        elapsed = (cur.time - prev.time) / MS_PER_MINUTE
        if elapsed <= 0:
            continue
        rates.append(TimeSeriesPoint(cur.time, (cur.value - prev.value) / elapsed))
    return rates


def south_fraction(bz_points: list, minutes: float,
                   threshold: float = SOUTH_BZ_THRESHOLD,
                   now_ms: Optional[int] = None) -> Optional[float]:
    """Fraction of Bz samples in the trailing window with Bz <= threshold."""
    recent = window(bz_points, minutes, now_ms)
    if not recent:
        return None
    values = np.array([p.value for p in recent], dtype=float)
    return float(np.mean(values <= threshold))


def is_sustained_south(bz_points: list, minutes: float,
                       required_fraction: float = SUSTAINED_SOUTH_FRACTION,
                       now_ms: Optional[int] = None) -> bool:
    """True when at least required_fraction of the window is southward."""
    fraction = south_fraction(bz_points, minutes, now_ms=now_ms)
    return fraction is not None and fraction >= required_fraction


@dataclass
class CouplingSample:
    time: int
    speed: float
    bz: float
    by: float
    newell: float


@dataclass
class CouplingWindow:
    """
    Joined speed + field samples for the last N minutes.

    Recomputed every refresh cycle; never persisted.
    """
    minutes: float
    samples: list = field(default_factory=list)

    @property
    def newell_series(self) -> list[TimeSeriesPoint]:
        return [TimeSeriesPoint(s.time, s.newell) for s in self.samples]

    @property
    def bz_series(self) -> list[TimeSeriesPoint]:
        return [TimeSeriesPoint(s.time, s.bz) for s in self.samples]

    @property
    def latest(self) -> Optional[CouplingSample]:
        return self.samples[-1] if self.samples else None

    def mean_newell(self, minutes: float) -> Optional[float]:
        recent = window(self.newell_series, minutes)
        return float(np.mean([p.value for p in recent])) if recent else None

    def mean_bz(self, minutes: float) -> Optional[float]:
        recent = window(self.bz_series, minutes)
        return float(np.mean([p.value for p in recent])) if recent else None


def build_coupling_window(plasma: list, mag: list, minutes: float,
                          tolerance_minutes: float = JOIN_TOLERANCE_MINUTES,
                          now_ms: Optional[int] = None) -> CouplingWindow:
    """
    Join plasma speed onto field samples and compute dΦ/dt per sample.

    Each field sample takes the most recent plasma sample with a valid speed
    no later than itself and at most tolerance_minutes older. Field samples
    with no such partner are skipped.

    Args:
        plasma: PlasmaSample list (ascending)
        mag: MagneticFieldSample list (ascending, already validated)
        minutes: Window length
    """
    speeds = [p for p in plasma if p.speed is not None and p.speed >= 0]
    speed_times = [p.time for p in speeds]
    tolerance = tolerance_minutes * MS_PER_MINUTE

    result = CouplingWindow(minutes=minutes)
    for m in window(mag, minutes, now_ms):
        idx = bisect.bisect_right(speed_times, m.time) - 1
        if idx < 0:
            continue
        partner = speeds[idx]
        if m.time - partner.time > tolerance:
            continue
        result.samples.append(CouplingSample(
            time=m.time,
            speed=partner.speed,
            bz=m.bz,
            by=m.by,
            newell=newell_coupling(partner.speed, m.by, m.bz),
        ))
    return result
