"""
Substorm State Machine
======================

Heuristic substorm likelihood classifier.

This is a severity classifier tuned on the operational dashboard, NOT a
verified physical model. The thresholds in constants.py are kept as named
values; do not retune them without domain sign-off.

Probability model:
    base  = tanh(0.015 · dΦ_mean15 + 0.01 · dΦ_now)
    boost = +0.10 if mean15 Bz < -3, +0.05 if < -1, else 0
    P30   = clamp(0.15 + 0.7·base + boost, 0.01, 0.9)
    P60   = clamp(0.25 + 0.6·base + boost, 0.01, 0.9)

Rules, evaluated fresh each cycle, first match wins:
    1. ground onset or GOES onset                        -> ONSET
    2. sustained south, P30 >= 0.60, score >= 25         -> IMMINENT_30
    3. sustained south, P60 >= 0.60, score >= 20         -> LIKELY_60
    4. sustained south, dΦ_now >= MA60(dΦ), score >= 15  -> WATCH
    5. otherwise                                         -> QUIET

There is no remembered state: a cycle in which the onset flags clear and
nothing else matches goes straight from ONSET to QUIET.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from aurora_sentinel.utils.time import MS_PER_MINUTE
from .constants import (
    SubstormStatus,
    MEAN_WINDOW_MINUTES,
    DPHI_BASELINE_SAMPLES,
    SUSTAINED_SOUTH_MINUTES,
    GOES_ONSET_SLOPE,
    GOES_ONSET_SLOPE_MINUTES,
    GOES_ONSET_LOOKBACK_MINUTES,
    GROUND_ONSET_RATE,
    GROUND_ONSET_LOOKBACK_MINUTES,
    IMMINENT_P30,
    IMMINENT_MIN_SCORE,
    LIKELY_P60,
    LIKELY_MIN_SCORE,
    WATCH_MIN_SCORE,
)
from .coupling import (
    build_coupling_window,
    is_sustained_south,
    moving_average,
    slope_per_minute,
    window,
)
from .normalize import TimeSeriesPoint


@dataclass
class SubstormInputs:
    """Everything one classification cycle looks at."""
    dphi_now: float
    dphi_mean15: float
    dphi_ma60: float
    bz_mean15: float
    sustained_south: bool
    goes_onset: bool
    ground_onset: bool
    score: Optional[float]


@dataclass
class SubstormAssessment:
    status: str
    p30: float
    p60: float
    likelihood_pct: int
    reason: str
    inputs: Optional[SubstormInputs] = None

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'p30': self.p30,
            'p60': self.p60,
            'likelihood_pct': self.likelihood_pct,
            'reason': self.reason,
        }


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def bz_boost(bz_mean15: float) -> float:
    if bz_mean15 < -3:
        return 0.10
    if bz_mean15 < -1:
        return 0.05
    return 0.0


def substorm_probabilities(dphi_mean15: float, dphi_now: float,
                           bz_mean15: float) -> tuple[float, float]:
    """
    Probability of substorm onset within 30 and 60 minutes.

    Returns:
        (p30, p60), each clamped to [0.01, 0.9]
    """
    base = float(np.tanh(0.015 * dphi_mean15 + 0.01 * dphi_now))
    boost = bz_boost(bz_mean15)
    p30 = _clamp(0.15 + 0.7 * base + boost, 0.01, 0.9)
    p60 = _clamp(0.25 + 0.6 * base + boost, 0.01, 0.9)
    return p30, p60


def likelihood_percent(p30: float, p60: float) -> int:
    return _round_half_up(100 * (0.4 * p30 + 0.6 * p60))


def classify_substorm(inputs: SubstormInputs) -> SubstormAssessment:
    """
    Apply the priority-ordered rule list to one cycle's inputs.

    Returns:
        SubstormAssessment with status, probabilities and a reason string
    """
    p30, p60 = substorm_probabilities(inputs.dphi_mean15, inputs.dphi_now, inputs.bz_mean15)
    pct = likelihood_percent(p30, p60)
    score = inputs.score if inputs.score is not None else 0.0

    def result(status: str, reason: str) -> SubstormAssessment:
        return SubstormAssessment(status, p30, p60, pct, reason, inputs)

    if inputs.ground_onset or inputs.goes_onset:
        sources = [name for name, flag in (('ground', inputs.ground_onset),
                                           ('GOES', inputs.goes_onset)) if flag]
        return result(SubstormStatus.ONSET, f"Onset signature ({' + '.join(sources)})")

    if inputs.sustained_south:
        if p30 >= IMMINENT_P30 and score >= IMMINENT_MIN_SCORE:
            return result(SubstormStatus.IMMINENT_30,
                          f"Sustained southward IMF, P30={p30:.0%}, score {score:.0f}%")
        if p60 >= LIKELY_P60 and score >= LIKELY_MIN_SCORE:
            return result(SubstormStatus.LIKELY_60,
                          f"Sustained southward IMF, P60={p60:.0%}, score {score:.0f}%")
        if inputs.dphi_now >= inputs.dphi_ma60 and score >= WATCH_MIN_SCORE:
            return result(SubstormStatus.WATCH,
                          f"Coupling at/above 60-min average ({inputs.dphi_now:.1f} >= {inputs.dphi_ma60:.1f})")

    return result(SubstormStatus.QUIET, "No immediate signs of substorm development")


def goes_onset(hp: list, now_ms: Optional[int] = None,
               slope_threshold: float = GOES_ONSET_SLOPE,
               slope_minutes: float = GOES_ONSET_SLOPE_MINUTES,
               lookback_minutes: float = GOES_ONSET_LOOKBACK_MINUTES) -> bool:
    """
    True when any trailing Hp slope within the lookback reaches the threshold.

    The slope at each sample uses only samples up to and including it, and
    none older than slope_minutes + 0.5 before it.
    """
    if len(hp) < 2:
        return False
    ref = now_ms if now_ms is not None else hp[-1].time
    cutoff = ref - lookback_minutes * MS_PER_MINUTE

    for i, p in enumerate(hp):
        if p.time < cutoff or p.time > ref:
            continue
        trailing = window(hp[:i + 1], slope_minutes + 0.5)
        slope = slope_per_minute(trailing, slope_minutes)
        if slope is not None and slope >= slope_threshold:
            return True
    return False


def ground_onset(rates: list, now_ms: Optional[int] = None,
                 rate_threshold: float = GROUND_ONSET_RATE,
                 lookback_minutes: float = GROUND_ONSET_LOOKBACK_MINUTES) -> bool:
    """True when any |dB/dt| in the lookback strictly exceeds the threshold."""
    recent = window(rates, lookback_minutes, now_ms)
    return any(abs(p.value) > rate_threshold for p in recent)


def derive_inputs(plasma: list, mag: list, hp: list, ground_rates: list,
                  score: Optional[float],
                  now_ms: Optional[int] = None) -> Optional[SubstormInputs]:
    """
    Build one cycle's SubstormInputs from normalized feeds.

    Returns None when no joined speed + field sample exists; the caller
    reports that as insufficient data.
    """
    coupling = build_coupling_window(plasma, mag, DPHI_BASELINE_SAMPLES + MEAN_WINDOW_MINUTES,
                                     now_ms=now_ms)
    latest = coupling.latest
    if latest is None:
        return None

    newell_values = [s.newell for s in coupling.samples]
    bz_points = [TimeSeriesPoint(m.time, m.bz) for m in mag]

    return SubstormInputs(
        dphi_now=latest.newell,
        dphi_mean15=coupling.mean_newell(MEAN_WINDOW_MINUTES),
        dphi_ma60=moving_average(newell_values, DPHI_BASELINE_SAMPLES),
        bz_mean15=coupling.mean_bz(MEAN_WINDOW_MINUTES),
        sustained_south=is_sustained_south(bz_points, SUSTAINED_SOUTH_MINUTES, now_ms=now_ms),
        goes_onset=goes_onset(hp, now_ms),
        ground_onset=ground_onset(ground_rates, now_ms),
        score=score,
    )


def insufficient_data() -> SubstormAssessment:
    return SubstormAssessment(
        status=SubstormStatus.QUIET,
        p30=0.01,
        p60=0.01,
        likelihood_pct=likelihood_percent(0.01, 0.01),
        reason="Awaiting more magnetic field data",
    )
